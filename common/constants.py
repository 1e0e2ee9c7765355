"""Project-wide constants (batch sizes, intervals, crypto parameters, channel settings)."""

CHUNK_BATCH_SIZE: int = 10000  # records per encrypted chunk
CHECK_INTERVAL_SECONDS: int = 10 * 60
DATA_RETENTION_HOURS: int = 24
DOWNLOAD_CHUNK_SIZE_BYTES: int = 30 * 1024 * 1024  # 30 MiB per ranged GET
FETCH_TIMEOUT_SECONDS: int = 30

DEFAULT_STORE_NAME: str = "LoanNumbers"
DEFAULT_DATASET_KIND: str = "numbers"
DEFAULT_ID_FIELD: str = "id"

# Key derivation constants. Anyone holding these can decrypt the store.
DEFAULT_PASSPHRASE: str = "fixed-secret-passphrase"
DEFAULT_SALT: str = "static_salt_value"
PBKDF2_ITERATIONS: int = 100000
AES_KEY_LENGTH_BYTES: int = 32
GCM_NONCE_LENGTH_BYTES: int = 12

META_KEY: str = "meta"
CHUNK_KEY_PREFIX: str = "chunk-"

IN_PROGRESS_POLL_SECONDS: float = 1.0
IN_PROGRESS_TIMEOUT_SECONDS: float = 60.0

CHANNEL_NAME: str = "island_channel"
MULTICAST_GROUP: str = "239.255.42.99"
MULTICAST_PORT: int = 50999
MAX_DATAGRAM_BYTES: int = 65000

PING_MAX_RETRIES: int = 3  # boot gives up on peers after about 0.7 s
PING_INITIAL_DELAY_SECONDS: float = 0.1
CHECK_TIMEOUT_SECONDS: float = 10.0

DEFAULT_STORAGE_BACKEND: str = "sqlite"
DEFAULT_STORAGE_PATH: str = "~/.island/store.db"

SOURCE_HOST: str = "0.0.0.0"
SOURCE_PORT: int = 5000
DEFAULT_SOURCE_DATA_DIR: str = "./data"
