"""Project-wide constants (chunk geometry, protocol limits, timings, paths)."""

CHUNK_SIZE_BYTES: int = 64000
MAX_CHUNK_INDEX: int = 1_000_000
MAX_TOTAL_CHUNKS: int = MAX_CHUNK_INDEX + 1

MIN_REPLICATION_DEGREE: int = 1
MAX_REPLICATION_DEGREE: int = 9

CONTENT_ID_LENGTH: int = 64
MAC_HEX_LENGTH: int = 64

BASIC_PROTOCOL_VERSION: str = "1.0"
ENHANCED_PROTOCOL_VERSION: str = "2.0"

CRLF: bytes = b"\r\n"
HEADER_TERMINATOR: bytes = b"\r\n\r\n"
MAC_SEPARATOR: bytes = b"\r\n\r\n"

MAX_DATAGRAM_BYTES: int = 65507

# Timings (seconds)
BASE_TIMEOUT_SECONDS: float = 1.0
MAX_BACKUP_ATTEMPTS: int = 5
JITTER_MAX_SECONDS: float = 0.4
CONSECUTIVE_MSG_DELAY_SECONDS: float = 0.1
RESTORE_WINDOW: int = 5
RESTORE_CHUNK_TIMEOUT_SECONDS: float = 0.8
DELETE_ATTEMPTS: int = 3
RECLAIM_PACING_SECONDS: float = 0.1
METADATA_SAVE_INTERVAL_SECONDS: float = 5.0

# Pools
CHANNEL_WORKERS: int = 15
BACKUP_WORKERS: int = 5
SCHEDULER_WORKERS: int = 16
MAX_CONCURRENT_RESTORES: int = 10

DEFAULT_MAX_DISK_KB: int = 5000
BYTES_PER_KB: int = 1000

# Keystore aliases
MAC_KEY_ALIAS: str = "mac"
ENCRYPTION_KEY_ALIAS: str = "encrypt"

# Default multicast groups
DEFAULT_MC_GROUP: str = "224.0.0.1:8001"
DEFAULT_MDB_GROUP: str = "224.0.0.2:8002"
DEFAULT_MDR_GROUP: str = "224.0.0.3:8003"

DEFAULT_DATA_DIR: str = "./data"
DEFAULT_KEYSTORE_PATH: str = "./keystore.json"
STORAGE_DIR_NAME: str = "storage"
RESTORED_DIR_NAME: str = "restored"
METADATA_DIR_NAME: str = "metadata"

GATEWAY_BASE_PORT: int = 8000
