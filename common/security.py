"""Key material, message authentication and payload encryption."""

import hashlib
import hmac
import json
import logging
import os
import secrets
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from common.constants import ENCRYPTION_KEY_ALIAS, MAC_KEY_ALIAS
from common.exceptions import KeyMaterialError

logger = logging.getLogger(__name__)

KEYSTORE_VERSION = 1
MAC_KEY_BYTES = 32
ENCRYPTION_KEY_BYTES = 16
NONCE_BYTES = 12


class KeyProvider(ABC):
    """Opaque source of named keys."""

    @abstractmethod
    def get(self, alias: str) -> bytes:
        """
        Return the key stored under alias.

        Raises:
            KeyMaterialError: If the key is unavailable
        """


class StaticKeyProvider(KeyProvider):
    """Key provider backed by an in-memory mapping."""

    def __init__(self, keys: Dict[str, bytes]):
        self._keys = dict(keys)

    @classmethod
    def generate(cls) -> "StaticKeyProvider":
        return cls({
            MAC_KEY_ALIAS: secrets.token_bytes(MAC_KEY_BYTES),
            ENCRYPTION_KEY_ALIAS: secrets.token_bytes(ENCRYPTION_KEY_BYTES),
        })

    def get(self, alias: str) -> bytes:
        try:
            return self._keys[alias]
        except KeyError:
            raise KeyMaterialError(f"No key material for alias '{alias}'")


class KeystoreKeyProvider(KeyProvider):
    """
    Key provider backed by a JSON keystore shared by every peer of a group.

    File format: {"version": 1, "keys": {"mac": "<hex>", "encrypt": "<hex>"}}
    """

    def __init__(self, path: Path, create_if_missing: bool = False):
        """
        Initialize keystore provider.

        Args:
            path: Path to the keystore JSON file
            create_if_missing: Generate a fresh keystore when the file is absent
        """
        self._path = Path(path)
        self._lock = threading.Lock()
        self._keys: Optional[Dict[str, bytes]] = None
        self._create_if_missing = create_if_missing

    def get(self, alias: str) -> bytes:
        with self._lock:
            if self._keys is None:
                self._keys = self._load()
        try:
            return self._keys[alias]
        except KeyError:
            raise KeyMaterialError(f"Keystore {self._path} has no key '{alias}'")

    def _load(self) -> Dict[str, bytes]:
        if not self._path.exists():
            if not self._create_if_missing:
                raise KeyMaterialError(f"Keystore not found at {self._path}")
            return self._create()

        try:
            with open(self._path, 'r') as f:
                data = json.load(f)
            if data.get('version') != KEYSTORE_VERSION:
                raise KeyMaterialError(
                    f"Unsupported keystore version {data.get('version')} in {self._path}"
                )
            keys = {alias: bytes.fromhex(value) for alias, value in data['keys'].items()}
        except (OSError, json.JSONDecodeError, KeyError, ValueError, AttributeError) as e:
            raise KeyMaterialError(f"Failed to read keystore {self._path}: {e}") from e

        logger.info(f"Loaded {len(keys)} key(s) from keystore {self._path}")
        return keys

    def _create(self) -> Dict[str, bytes]:
        keys = {
            MAC_KEY_ALIAS: secrets.token_bytes(MAC_KEY_BYTES),
            ENCRYPTION_KEY_ALIAS: secrets.token_bytes(ENCRYPTION_KEY_BYTES),
        }
        data = {
            'version': KEYSTORE_VERSION,
            'keys': {alias: value.hex() for alias, value in keys.items()},
        }
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            with open(self._path, 'w') as f:
                json.dump(data, f, indent=2)
        except OSError as e:
            raise KeyMaterialError(f"Failed to create keystore {self._path}: {e}") from e

        logger.warning(f"Created new keystore at {self._path}, share it with every peer of the group")
        return keys


class MessageAuthenticator:
    """HMAC-SHA256 tags over raw message bytes."""

    def __init__(self, key_provider: KeyProvider):
        self._key_provider = key_provider

    def sign(self, data: bytes) -> str:
        """
        Compute the hex tag for data.

        Args:
            data: Bytes to authenticate

        Returns:
            64 lowercase hex characters
        """
        key = self._key_provider.get(MAC_KEY_ALIAS)
        return hmac.new(key, data, hashlib.sha256).hexdigest()

    def verify(self, data: bytes, tag: str) -> bool:
        """
        Check a hex tag in constant time.

        Args:
            data: Authenticated bytes
            tag: Hex tag received with them

        Returns:
            True if the tag matches, False otherwise
        """
        return hmac.compare_digest(self.sign(data), tag)


class PayloadCipher:
    """
    AES-GCM encryption for message bodies.

    Format: nonce (12 bytes) + ciphertext + tag
    """

    def __init__(self, key_provider: KeyProvider):
        self._key_provider = key_provider

    def encrypt(self, plaintext: bytes) -> bytes:
        aesgcm = AESGCM(self._key_provider.get(ENCRYPTION_KEY_ALIAS))
        nonce = os.urandom(NONCE_BYTES)
        return nonce + aesgcm.encrypt(nonce, plaintext, None)

    def decrypt(self, blob: bytes) -> bytes:
        """
        Decrypt a blob produced by encrypt.

        Raises:
            ValueError: If the blob is truncated or fails authentication
        """
        if len(blob) < NONCE_BYTES:
            raise ValueError("Encrypted payload too short")
        aesgcm = AESGCM(self._key_provider.get(ENCRYPTION_KEY_ALIAS))
        try:
            return aesgcm.decrypt(blob[:NONCE_BYTES], blob[NONCE_BYTES:], None)
        except InvalidTag as e:
            raise ValueError("Encrypted payload failed authentication") from e
