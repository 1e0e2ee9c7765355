"""Configuration management for Island CLI."""

import json
import os
import shutil
import tempfile
from pathlib import Path

from common.constants import (
    DEFAULT_DATASET_KIND,
    DEFAULT_STORAGE_BACKEND,
    DEFAULT_STORAGE_PATH,
    DEFAULT_STORE_NAME,
)
from common.logging_config import get_logger
from ingestion.config import IngestionSettings

logger = get_logger(__name__)


class Config:
    """Manages CLI configuration stored in JSON file."""

    DEFAULT_CONFIG = {
        "source_url": os.environ.get("ISLAND_SOURCE_URL", "http://localhost:5000/api/numbers"),
        "storage_backend": os.environ.get("ISLAND_STORAGE_BACKEND", DEFAULT_STORAGE_BACKEND),
        "storage_path": os.environ.get("ISLAND_STORAGE_PATH", DEFAULT_STORAGE_PATH),
        "store_name": DEFAULT_STORE_NAME,
        "kind": DEFAULT_DATASET_KIND,
        "timeout": 30,
        "check_timeout": 10,
        "max_retries": 3,
        "retry_backoff_multiplier": 2,
    }

    def __init__(self, config_path: Path):
        """
        Initialize configuration manager.

        Args:
            config_path: Path to config JSON file (typically ~/.island/config.json)
        """
        self.config_path = config_path
        self.data = self._load()

    def _load(self) -> dict:
        """
        Load configuration from file, creating defaults if necessary.

        Returns:
            Configuration dictionary
        """
        try:
            self.config_path.parent.mkdir(parents=True, exist_ok=True)
        except PermissionError:
            self.config_path = Path(tempfile.gettempdir()) / '.island' / 'config.json'
            self.config_path.parent.mkdir(parents=True, exist_ok=True)

        if self.config_path.exists():
            try:
                with open(self.config_path, 'r') as f:
                    data = json.load(f)
                config = self.DEFAULT_CONFIG.copy()
                config.update(data)
                return config
            except (json.JSONDecodeError, IOError) as e:
                logger.warning(f"Config file {self.config_path} unreadable ({e}), using defaults")
                backup_path = self.config_path.with_suffix('.json.bak')
                try:
                    shutil.copy(self.config_path, backup_path)
                except OSError:
                    pass
                return self.DEFAULT_CONFIG.copy()
        else:
            config = self.DEFAULT_CONFIG.copy()
            try:
                with open(self.config_path, 'w') as f:
                    json.dump(config, f, indent=2)
            except IOError as e:
                logger.debug(f"Could not write default config: {e}")
            return config

    def save(self) -> None:
        """Save current configuration to file."""
        try:
            with open(self.config_path, 'w') as f:
                json.dump(self.data, f, indent=2)
        except IOError as e:
            logger.warning(f"Could not save config: {e}")

    def get_source_url(self) -> str:
        return self.data.get('source_url', self.DEFAULT_CONFIG['source_url'])

    def set_source_url(self, url: str) -> None:
        """
        Remember the last inspected source URL and save to file.
        """
        self.data['source_url'] = url
        self.save()

    def get_timeout(self) -> int:
        """
        Get request timeout in seconds.

        Returns:
            Timeout value in seconds
        """
        return self.data.get('timeout', 30)

    def get_retry_config(self) -> dict:
        """
        Get retry configuration.

        Returns:
            Dictionary with 'max_retries' and 'retry_backoff_multiplier'
        """
        return {
            'max_retries': self.data.get('max_retries', 3),
            'retry_backoff_multiplier': self.data.get('retry_backoff_multiplier', 2),
        }

    def to_settings(self) -> IngestionSettings:
        """
        Ingestion settings for the CLI's own context: environment first,
        then this file's values on top.
        """
        settings = IngestionSettings.from_env()
        settings.source_url = self.get_source_url()
        settings.storage_backend = self.data.get('storage_backend', settings.storage_backend)
        settings.storage_path = self.data.get('storage_path', settings.storage_path)
        settings.store_name = self.data.get('store_name', settings.store_name)
        settings.kind = self.data.get('kind', settings.kind)
        settings.context_id = f"cli-{os.getpid()}"
        return settings
