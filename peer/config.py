"""Peer configuration loaded from environment variables."""

import os
import socket
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Tuple

from common.constants import (
    BACKUP_WORKERS,
    BASIC_PROTOCOL_VERSION,
    BASE_TIMEOUT_SECONDS,
    CHANNEL_WORKERS,
    CONSECUTIVE_MSG_DELAY_SECONDS,
    DEFAULT_DATA_DIR,
    DEFAULT_KEYSTORE_PATH,
    DEFAULT_MC_GROUP,
    DEFAULT_MDB_GROUP,
    DEFAULT_MDR_GROUP,
    DELETE_ATTEMPTS,
    ENHANCED_PROTOCOL_VERSION,
    GATEWAY_BASE_PORT,
    JITTER_MAX_SECONDS,
    MAX_BACKUP_ATTEMPTS,
    MAX_CONCURRENT_RESTORES,
    METADATA_DIR_NAME,
    METADATA_SAVE_INTERVAL_SECONDS,
    RECLAIM_PACING_SECONDS,
    RESTORE_CHUNK_TIMEOUT_SECONDS,
    RESTORE_WINDOW,
    RESTORED_DIR_NAME,
    SCHEDULER_WORKERS,
    STORAGE_DIR_NAME,
)
from common.protocol import VERSION_PATTERN, split_address


def get_container_ip() -> str:
    """
    Get the peer's IP address on the local network.

    Uses routing table approach to find the correct interface IP.
    """
    s = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    try:
        s.connect(('8.8.8.8', 80))
        ip = s.getsockname()[0]
    except OSError:
        ip = socket.gethostbyname(socket.gethostname())
    finally:
        s.close()
    return ip


def parse_group(value: str) -> Tuple[str, int]:
    """
    Parse a "group:port" multicast address.

    Raises:
        ValueError: If the address is malformed
    """
    parsed = split_address(value)
    if parsed is None:
        raise ValueError(f"Invalid multicast address '{value}', expected <group>:<port>")
    return parsed


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ('1', 'true', 'yes', 'on')


@dataclass
class PeerConfig:
    """
    Settings for one peer process.

    Timings are in seconds. Tests shrink them to run whole protocols quickly.
    """
    peer_id: int
    protocol_version: str = ENHANCED_PROTOCOL_VERSION
    mc_group: Tuple[str, int] = field(default_factory=lambda: parse_group(DEFAULT_MC_GROUP))
    mdb_group: Tuple[str, int] = field(default_factory=lambda: parse_group(DEFAULT_MDB_GROUP))
    mdr_group: Tuple[str, int] = field(default_factory=lambda: parse_group(DEFAULT_MDR_GROUP))
    data_dir: Path = Path(DEFAULT_DATA_DIR)
    keystore_path: Path = Path(DEFAULT_KEYSTORE_PATH)
    gateway_host: str = "0.0.0.0"
    gateway_port: Optional[int] = None
    advertise_host: Optional[str] = None

    base_timeout: float = BASE_TIMEOUT_SECONDS
    max_attempts: int = MAX_BACKUP_ATTEMPTS
    jitter_min: float = 0.0
    jitter_max: float = JITTER_MAX_SECONDS
    consecutive_delay: float = CONSECUTIVE_MSG_DELAY_SECONDS
    restore_window: int = RESTORE_WINDOW
    restore_chunk_timeout: float = RESTORE_CHUNK_TIMEOUT_SECONDS
    delete_attempts: int = DELETE_ATTEMPTS
    reclaim_pacing: float = RECLAIM_PACING_SECONDS
    save_interval: float = METADATA_SAVE_INTERVAL_SECONDS

    channel_workers: int = CHANNEL_WORKERS
    backup_workers: int = BACKUP_WORKERS
    scheduler_workers: int = SCHEDULER_WORKERS
    max_restores: int = MAX_CONCURRENT_RESTORES

    strict_parsing: bool = True
    multicast_ttl: int = 1

    def __post_init__(self):
        if self.peer_id < 1:
            raise ValueError(f"Peer ID must be a positive integer, got {self.peer_id}")
        if not VERSION_PATTERN.match(self.protocol_version):
            raise ValueError(f"Invalid protocol version '{self.protocol_version}'")
        if self.jitter_min > self.jitter_max:
            raise ValueError("jitter_min must not exceed jitter_max")
        self.data_dir = Path(self.data_dir)
        self.keystore_path = Path(self.keystore_path)
        if self.gateway_port is None:
            self.gateway_port = GATEWAY_BASE_PORT + self.peer_id

    @classmethod
    def from_env(cls, **overrides) -> 'PeerConfig':
        """
        Build a config from PEER_* environment variables.

        Args:
            **overrides: Values taking precedence over the environment (e.g. from CLI flags)

        Returns:
            PeerConfig instance
        """
        values = {
            'peer_id': int(os.getenv('PEER_ID', '0')),
            'protocol_version': os.getenv('PEER_PROTOCOL_VERSION', ENHANCED_PROTOCOL_VERSION),
            'mc_group': parse_group(os.getenv('PEER_MC_ADDR', DEFAULT_MC_GROUP)),
            'mdb_group': parse_group(os.getenv('PEER_MDB_ADDR', DEFAULT_MDB_GROUP)),
            'mdr_group': parse_group(os.getenv('PEER_MDR_ADDR', DEFAULT_MDR_GROUP)),
            'data_dir': Path(os.getenv('PEER_DATA_DIR', DEFAULT_DATA_DIR)),
            'keystore_path': Path(os.getenv('PEER_KEYSTORE_PATH', DEFAULT_KEYSTORE_PATH)),
            'gateway_host': os.getenv('PEER_GATEWAY_HOST', '0.0.0.0'),
            'gateway_port': int(os.environ['PEER_GATEWAY_PORT']) if os.getenv('PEER_GATEWAY_PORT') else None,
            'advertise_host': os.getenv('PEER_ADVERTISE_HOST'),
            'base_timeout': float(os.getenv('PEER_BASE_TIMEOUT', str(BASE_TIMEOUT_SECONDS))),
            'max_attempts': int(os.getenv('PEER_MAX_ATTEMPTS', str(MAX_BACKUP_ATTEMPTS))),
            'jitter_max': float(os.getenv('PEER_JITTER_MAX', str(JITTER_MAX_SECONDS))),
            'save_interval': float(os.getenv('PEER_SAVE_INTERVAL', str(METADATA_SAVE_INTERVAL_SECONDS))),
            'strict_parsing': _env_bool('PEER_STRICT_PARSING', True),
        }
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)

    @property
    def is_enhanced(self) -> bool:
        return self.protocol_version != BASIC_PROTOCOL_VERSION

    @property
    def storage_dir(self) -> Path:
        return self.data_dir / STORAGE_DIR_NAME / str(self.peer_id)

    @property
    def restored_dir(self) -> Path:
        return self.data_dir / RESTORED_DIR_NAME

    @property
    def metadata_path(self) -> Path:
        return self.data_dir / METADATA_DIR_NAME / f"{self.peer_id}.json"

    def resolve_advertise_host(self) -> str:
        if self.advertise_host is None:
            self.advertise_host = get_container_ip()
        return self.advertise_host
