"""Configuration management for the uploader."""

import json
import os
import shutil
import tempfile
from pathlib import Path

from common.constants import (
    CHUNK_TIMEOUT_SECONDS,
    DEFAULT_CHUNK_SIZE_BYTES,
    DEFAULT_MAX_CONCURRENCY,
    DEFAULT_SERVER_PORT,
)
from common.logging_config import get_logger

logger = get_logger(__name__)

DEFAULT_CONFIG_PATH = Path.home() / '.chunkferry' / 'config.json'


class Config:
    """Manages uploader configuration stored in a JSON file."""

    DEFAULT_CONFIG = {
        "server_host": os.environ.get("CHUNKFERRY_SERVER_HOST", "localhost"),
        "server_port": int(os.environ.get("CHUNKFERRY_SERVER_PORT", str(DEFAULT_SERVER_PORT))),
        "timeout": 30,
        "chunk_size": DEFAULT_CHUNK_SIZE_BYTES,
        "max_concurrency": DEFAULT_MAX_CONCURRENCY,
        "chunk_timeout": CHUNK_TIMEOUT_SECONDS,
    }

    def __init__(self, config_path: Path = DEFAULT_CONFIG_PATH):
        """
        Initialize configuration manager.

        Args:
            config_path: Path to config JSON file (typically ~/.chunkferry/config.json)
        """
        self.config_path = Path(config_path)
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
            self.config_path = Path(tempfile.gettempdir()) / '.chunkferry' / 'config.json'
            self.config_path.parent.mkdir(parents=True, exist_ok=True)

        if not self.config_path.exists():
            config = self.DEFAULT_CONFIG.copy()
            try:
                with open(self.config_path, 'w') as f:
                    json.dump(config, f, indent=2)
            except OSError as e:
                logger.warning(f"Could not write default config to {self.config_path}: {e}")
            return config

        try:
            with open(self.config_path, 'r') as f:
                data = json.load(f)
            config = self.DEFAULT_CONFIG.copy()
            config.update(data)
            return config
        except (json.JSONDecodeError, OSError) as e:
            backup_path = self.config_path.with_suffix('.json.bak')
            logger.warning(f"Config file {self.config_path} unreadable ({e}), backing up to {backup_path}")
            try:
                shutil.copy(self.config_path, backup_path)
            except OSError as copy_error:
                logger.warning(f"Could not back up config file: {copy_error}")
            return self.DEFAULT_CONFIG.copy()

    def save(self) -> None:
        """Save current configuration to file."""
        try:
            with open(self.config_path, 'w') as f:
                json.dump(self.data, f, indent=2)
        except OSError as e:
            logger.warning(f"Could not save config to {self.config_path}: {e}")

    def get_base_url(self) -> str:
        """
        Get upload server base URL.

        Returns:
            Base URL string (e.g., "http://localhost:8000")
        """
        host = self.data.get('server_host', 'localhost')
        port = self.data.get('server_port', DEFAULT_SERVER_PORT)
        return f"http://{host}:{port}"

    def get_timeout(self) -> float:
        """Get timeout in seconds for non-chunk requests."""
        return self.data.get('timeout', 30)

    def get_upload_defaults(self) -> dict:
        """
        Get default upload options.

        Returns:
            Dictionary with 'chunk_size', 'max_concurrency' and 'chunk_timeout'
        """
        return {
            'chunk_size': int(self.data.get('chunk_size', DEFAULT_CHUNK_SIZE_BYTES)),
            'max_concurrency': int(self.data.get('max_concurrency', DEFAULT_MAX_CONCURRENCY)),
            'chunk_timeout': float(self.data.get('chunk_timeout', CHUNK_TIMEOUT_SECONDS)),
        }
