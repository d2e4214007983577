"""Wire format for peer messages: framing, field layouts, authentication and payload encryption.

Layout:
    <TYPE> <VERSION> <SENDER> [fields...]\\r\\n
    [<host>:<port>\\r\\n]            GETCHUNK callback, enhanced restore only
    \\r\\n
    [encrypted body]
    \\r\\n\\r\\n
    <hex HMAC-SHA256 of every preceding byte>
"""

import logging
import re
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

from common.constants import (
    BASIC_PROTOCOL_VERSION,
    CRLF,
    HEADER_TERMINATOR,
    MAC_HEX_LENGTH,
    MAC_SEPARATOR,
    MAX_CHUNK_INDEX,
    MAX_REPLICATION_DEGREE,
    MAX_TOTAL_CHUNKS,
    MIN_REPLICATION_DEGREE,
)
from common.content_id import is_valid_content_id
from common.security import KeyProvider, MessageAuthenticator, PayloadCipher
from common.types import MessageType

logger = logging.getLogger(__name__)

VERSION_PATTERN = re.compile(r'^\d\.\d$')

# Fields following TYPE VERSION SENDER, in header order.
FIELD_LAYOUTS: Dict[MessageType, Tuple[str, ...]] = {
    MessageType.PUTCHUNK: ('content_id', 'chunk_index', 'replication_degree'),
    MessageType.STORED: ('content_id', 'chunk_index'),
    MessageType.DELETE: ('content_id',),
    MessageType.DELETED: ('content_id',),
    MessageType.GETCHUNK: ('content_id', 'chunk_index'),
    MessageType.CHUNK: ('content_id', 'chunk_index'),
    MessageType.REMOVED: ('content_id', 'chunk_index'),
    MessageType.STARTED: (),
    MessageType.RETRIEVE: ('content_id',),
    MessageType.INFO: ('content_id', 'total_chunks', 'replication_degree'),
}

BODY_REQUIRED = frozenset({MessageType.PUTCHUNK, MessageType.INFO})
BODY_ALLOWED = BODY_REQUIRED | {MessageType.CHUNK}


@dataclass(frozen=True)
class Message:
    """
    A decoded protocol message.

    Attributes:
        msg_type: Message kind
        version: Protocol version of the sender ("1.0" is basic)
        sender_id: Peer ID of the sender
        content_id: File content identifier (64 hex chars)
        chunk_index: Chunk number
        replication_degree: Desired degree (PUTCHUNK, INFO)
        total_chunks: Chunk count of a file (INFO)
        callback: "host:port" TCP address for chunk delivery (GETCHUNK)
        body: Plaintext payload (chunk bytes, or the file name for INFO)
    """
    msg_type: MessageType
    version: str
    sender_id: int
    content_id: Optional[str] = None
    chunk_index: Optional[int] = None
    replication_degree: Optional[int] = None
    total_chunks: Optional[int] = None
    callback: Optional[str] = None
    body: Optional[bytes] = None

    @property
    def is_enhanced(self) -> bool:
        return self.version != BASIC_PROTOCOL_VERSION


def split_address(address: str) -> Optional[Tuple[str, int]]:
    """
    Split "host:port" into its parts.

    Returns:
        (host, port) tuple, or None if malformed
    """
    host, sep, port = address.rpartition(':')
    if not sep or not host or not port.isdigit():
        return None
    port_number = int(port)
    if not 0 < port_number < 65536:
        return None
    return host, port_number


class WireCodec:
    """Builds and parses authenticated, encrypted messages."""

    def __init__(self, key_provider: KeyProvider, strict: bool = True):
        """
        Initialize codec.

        Args:
            key_provider: Source of the MAC and encryption keys
            strict: Reject headers carrying extra trailing fields
        """
        self._authenticator = MessageAuthenticator(key_provider)
        self._cipher = PayloadCipher(key_provider)
        self.strict = strict

    def build(self, message: Message) -> bytes:
        """
        Serialize and sign a message.

        Args:
            message: Message to encode

        Returns:
            Wire bytes

        Raises:
            ValueError: If a field required by the message type is missing
            KeyMaterialError: If keys are unavailable
        """
        tokens = [message.msg_type.value, message.version, str(message.sender_id)]
        for name in FIELD_LAYOUTS[message.msg_type]:
            value = getattr(message, name)
            if value is None:
                raise ValueError(f"{message.msg_type.value} requires field '{name}'")
            tokens.append(str(value))

        header = ' '.join(tokens).encode('ascii') + CRLF
        if message.callback is not None:
            if message.msg_type is not MessageType.GETCHUNK:
                raise ValueError("Only GETCHUNK carries a callback address")
            header += message.callback.encode('ascii') + CRLF
        header += CRLF

        body = self._cipher.encrypt(message.body) if message.body is not None else b''
        signed = header + body + MAC_SEPARATOR
        return signed + self._authenticator.sign(signed).encode('ascii')

    def parse(self, data: bytes) -> Optional[Message]:
        """
        Validate and decode wire bytes.

        Fails closed: any framing, authentication or field error yields None.

        Args:
            data: Raw datagram or TCP frame

        Returns:
            Decoded Message, or None if the bytes are not a valid message
        """
        if len(data) < MAC_HEX_LENGTH + len(MAC_SEPARATOR):
            return self._reject("message too short")

        signed, tag = data[:-MAC_HEX_LENGTH], data[-MAC_HEX_LENGTH:]
        if not signed.endswith(MAC_SEPARATOR):
            return self._reject("missing MAC separator")
        try:
            tag_text = tag.decode('ascii')
        except UnicodeDecodeError:
            return self._reject("non-ASCII MAC")
        if not self._authenticator.verify(signed, tag_text):
            return self._reject("MAC mismatch")

        content = signed[:-len(MAC_SEPARATOR)]
        header_end = content.find(HEADER_TERMINATOR)
        if header_end < 0:
            return self._reject("missing header terminator")

        try:
            lines = content[:header_end].decode('ascii').split('\r\n')
        except UnicodeDecodeError:
            return self._reject("non-ASCII header")
        raw_body = content[header_end + len(HEADER_TERMINATOR):]

        if len(lines) > 2:
            return self._reject("too many header lines")

        return self._decode(lines[0].split(), lines[1] if len(lines) == 2 else None, raw_body)

    def _decode(self, tokens: List[str], callback: Optional[str], raw_body: bytes) -> Optional[Message]:
        if len(tokens) < 3:
            return self._reject("header too short")

        try:
            msg_type = MessageType(tokens[0])
        except ValueError:
            return self._reject(f"unknown message type {tokens[0]!r}")

        layout = FIELD_LAYOUTS[msg_type]
        expected = 3 + len(layout)
        if len(tokens) < expected or (self.strict and len(tokens) != expected):
            return self._reject(f"{msg_type.value} expects {expected} fields, got {len(tokens)}")

        version, sender = tokens[1], tokens[2]
        if not VERSION_PATTERN.match(version):
            return self._reject(f"malformed version {version!r}")
        if not sender.isdigit():
            return self._reject(f"non-numeric sender {sender!r}")

        fields = {}
        for name, token in zip(layout, tokens[3:expected]):
            value = self._decode_field(name, token)
            if value is None:
                return self._reject(f"invalid {name} {token!r}")
            fields[name] = value

        if callback is not None:
            if msg_type is not MessageType.GETCHUNK or split_address(callback) is None:
                return self._reject(f"invalid callback line {callback!r}")

        body = None
        if raw_body:
            if msg_type not in BODY_ALLOWED:
                return self._reject(f"{msg_type.value} must not carry a body")
            try:
                body = self._cipher.decrypt(raw_body)
            except ValueError as e:
                return self._reject(str(e))
        elif msg_type in BODY_REQUIRED:
            return self._reject(f"{msg_type.value} requires a body")

        return Message(
            msg_type=msg_type,
            version=version,
            sender_id=int(sender),
            callback=callback,
            body=body,
            **fields
        )

    @staticmethod
    def _decode_field(name: str, token: str):
        if name == 'content_id':
            return token if is_valid_content_id(token) else None
        if not token.isdigit():
            return None
        value = int(token)
        if name == 'chunk_index' and value > MAX_CHUNK_INDEX:
            return None
        if name == 'replication_degree' and not MIN_REPLICATION_DEGREE <= value <= MAX_REPLICATION_DEGREE:
            return None
        if name == 'total_chunks' and not 1 <= value <= MAX_TOTAL_CHUNKS:
            return None
        return value

    @staticmethod
    def _reject(reason: str) -> None:
        logger.debug(f"Dropping message: {reason}")
        return None
