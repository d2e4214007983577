"""On-demand TCP side-channel that receives CHUNK messages for one enhanced restore.

Frame: 4-byte big-endian length, then a complete signed CHUNK message.
"""

import logging
import socket
import struct
import threading
from typing import Callable, List, Optional

from common.protocol import Message, WireCodec, split_address
from common.types import MessageType

logger = logging.getLogger(__name__)

FRAME_HEADER = struct.Struct('>I')
MAX_FRAME_BYTES = 1024 * 1024
ACCEPT_POLL_SECONDS = 0.5


def _recv_exact(conn: socket.socket, size: int) -> Optional[bytes]:
    buf = bytearray()
    while len(buf) < size:
        piece = conn.recv(size - len(buf))
        if not piece:
            return None
        buf.extend(piece)
    return bytes(buf)


def send_chunk_over_tcp(address: str, data: bytes, timeout: float) -> None:
    """
    Deliver one framed message to a restore server.

    Args:
        address: "host:port" taken from a GETCHUNK callback line
        data: Signed CHUNK message bytes
        timeout: Connect and send timeout in seconds

    Raises:
        ValueError: If address is malformed
        OSError: If the connection or send fails
    """
    parsed = split_address(address)
    if parsed is None:
        raise ValueError(f"Invalid restore address '{address}'")
    with socket.create_connection(parsed, timeout=timeout) as conn:
        conn.sendall(FRAME_HEADER.pack(len(data)) + data)


class RestoreServer:
    """
    TCP listener owned by one RESTORE operation.

    Accepts at most max_connections concurrent senders and hands each valid
    CHUNK for its content ID to on_chunk(index, data).
    """

    def __init__(
        self,
        codec: WireCodec,
        content_id: str,
        on_chunk: Callable[[int, bytes], None],
        advertise_host: str,
        bind_host: str = '0.0.0.0',
        max_connections: int = 10,
        io_timeout: float = 5.0
    ):
        self._codec = codec
        self._content_id = content_id
        self._on_chunk = on_chunk
        self._advertise_host = advertise_host
        self._bind_host = bind_host
        self._connection_slots = threading.BoundedSemaphore(max_connections)
        self._io_timeout = io_timeout
        self._sock: Optional[socket.socket] = None
        self._stop_event = threading.Event()
        self._accept_thread: Optional[threading.Thread] = None
        self._handlers: List[threading.Thread] = []
        self.address: Optional[str] = None

    def start(self) -> str:
        """
        Bind an ephemeral port and start accepting.

        Returns:
            "host:port" to advertise in GETCHUNK messages

        Raises:
            OSError: If the listener cannot be opened
        """
        sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        sock.bind((self._bind_host, 0))
        sock.listen()
        sock.settimeout(ACCEPT_POLL_SECONDS)
        self._sock = sock

        port = sock.getsockname()[1]
        self.address = f"{self._advertise_host}:{port}"

        self._accept_thread = threading.Thread(
            target=self._accept_loop,
            daemon=True,
            name=f"RestoreServer-{self._content_id[:8]}"
        )
        self._accept_thread.start()
        logger.info(f"Restore server for {self._content_id[:12]}... listening on {self.address}")
        return self.address

    def stop(self) -> None:
        self._stop_event.set()
        if self._sock is not None:
            self._sock.close()
        if self._accept_thread is not None:
            self._accept_thread.join(timeout=5.0)
        for handler in list(self._handlers):
            handler.join(timeout=self._io_timeout)
        logger.info(f"Restore server for {self._content_id[:12]}... closed")

    def _accept_loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                conn, addr = self._sock.accept()
            except socket.timeout:
                continue
            except OSError:
                break

            if not self._connection_slots.acquire(blocking=False):
                logger.warning(f"Restore server busy, refusing connection from {addr[0]}:{addr[1]}")
                conn.close()
                continue

            handler = threading.Thread(target=self._serve_connection, args=(conn,), daemon=True)
            self._handlers = [t for t in self._handlers if t.is_alive()]
            self._handlers.append(handler)
            handler.start()

    def _serve_connection(self, conn: socket.socket) -> None:
        try:
            with conn:
                conn.settimeout(self._io_timeout)
                while not self._stop_event.is_set():
                    header = _recv_exact(conn, FRAME_HEADER.size)
                    if header is None:
                        break
                    (size,) = FRAME_HEADER.unpack(header)
                    if size > MAX_FRAME_BYTES:
                        logger.warning(f"Dropping oversized restore frame ({size} bytes)")
                        break
                    frame = _recv_exact(conn, size)
                    if frame is None:
                        break
                    self._accept_frame(self._codec.parse(frame))
        except OSError as e:
            logger.debug(f"Restore connection error: {e}")
        finally:
            self._connection_slots.release()

    def _accept_frame(self, message: Optional[Message]) -> None:
        if message is None:
            return
        if message.msg_type is not MessageType.CHUNK or message.content_id != self._content_id:
            logger.debug(f"Ignoring unexpected {message.msg_type.value} on restore channel")
            return
        if message.body is None:
            return
        self._on_chunk(message.chunk_index, message.body)
