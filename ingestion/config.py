"""Configuration settings for an ingestion context."""

import os
import socket
from dataclasses import dataclass
from typing import Optional

from common.constants import (
    CHECK_INTERVAL_SECONDS,
    CHUNK_BATCH_SIZE,
    DATA_RETENTION_HOURS,
    DEFAULT_DATASET_KIND,
    DEFAULT_ID_FIELD,
    DEFAULT_PASSPHRASE,
    DEFAULT_SALT,
    DEFAULT_STORAGE_BACKEND,
    DEFAULT_STORAGE_PATH,
    DEFAULT_STORE_NAME,
    DOWNLOAD_CHUNK_SIZE_BYTES,
    MULTICAST_GROUP,
    MULTICAST_PORT,
    PBKDF2_ITERATIONS,
    PING_INITIAL_DELAY_SECONDS,
    PING_MAX_RETRIES,
)

ENV_PREFIX = "ISLAND_"


def _env(name: str, default: Optional[str] = None) -> Optional[str]:
    return os.environ.get(f"{ENV_PREFIX}{name}", default)


def _env_bool(name: str, default: bool) -> bool:
    value = _env(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


@dataclass
class IngestionSettings:
    """
    Everything one context needs to ingest, store and share a dataset.
    """
    source_url: str = "http://localhost:5000/api/numbers"
    kind: str = DEFAULT_DATASET_KIND
    store_name: str = DEFAULT_STORE_NAME
    id_field: str = DEFAULT_ID_FIELD

    storage_backend: str = DEFAULT_STORAGE_BACKEND
    storage_path: str = DEFAULT_STORAGE_PATH
    batch_size: int = CHUNK_BATCH_SIZE

    passphrase: str = DEFAULT_PASSPHRASE
    salt: str = DEFAULT_SALT
    pbkdf2_iterations: int = PBKDF2_ITERATIONS

    retention_hours: float = DATA_RETENTION_HOURS
    check_interval: float = CHECK_INTERVAL_SECONDS
    use_change_token: bool = False
    ranged_download: bool = False
    download_chunk_size: int = DOWNLOAD_CHUNK_SIZE_BYTES

    multicast_group: str = MULTICAST_GROUP
    multicast_port: int = MULTICAST_PORT
    ping_max_retries: int = PING_MAX_RETRIES
    ping_initial_delay: float = PING_INITIAL_DELAY_SECONDS

    context_id: Optional[str] = None

    @property
    def retention_seconds(self) -> float:
        return self.retention_hours * 3600

    @classmethod
    def from_env(cls) -> 'IngestionSettings':
        """
        Build settings from ISLAND_* environment variables, falling back to
        the defaults above.
        """
        defaults = cls()
        return cls(
            source_url=_env("SOURCE_URL", defaults.source_url),
            kind=_env("DATASET_KIND", defaults.kind),
            store_name=_env("STORE_NAME", defaults.store_name),
            id_field=_env("ID_FIELD", defaults.id_field),
            storage_backend=_env("STORAGE_BACKEND", defaults.storage_backend),
            storage_path=_env("STORAGE_PATH", defaults.storage_path),
            batch_size=int(_env("BATCH_SIZE", str(defaults.batch_size))),
            passphrase=_env("PASSPHRASE", defaults.passphrase),
            salt=_env("SALT", defaults.salt),
            pbkdf2_iterations=int(_env("PBKDF2_ITERATIONS", str(defaults.pbkdf2_iterations))),
            retention_hours=float(_env("RETENTION_HOURS", str(defaults.retention_hours))),
            check_interval=float(_env("CHECK_INTERVAL", str(defaults.check_interval))),
            use_change_token=_env_bool("USE_CHANGE_TOKEN", defaults.use_change_token),
            ranged_download=_env_bool("RANGED_DOWNLOAD", defaults.ranged_download),
            download_chunk_size=int(
                _env("DOWNLOAD_CHUNK_SIZE", str(defaults.download_chunk_size))
            ),
            multicast_group=_env("MULTICAST_GROUP", defaults.multicast_group),
            multicast_port=int(_env("MULTICAST_PORT", str(defaults.multicast_port))),
            ping_max_retries=int(_env("PING_MAX_RETRIES", str(defaults.ping_max_retries))),
            ping_initial_delay=float(
                _env("PING_INITIAL_DELAY", str(defaults.ping_initial_delay))
            ),
            context_id=_env("CONTEXT_ID") or f"{socket.gethostname()}-{os.getpid()}",
        )
