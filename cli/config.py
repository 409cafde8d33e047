"""Configuration management for the policy replicator CLI."""

import json
import os
import shutil
import tempfile
from pathlib import Path

from common.logging_config import get_logger

logger = get_logger(__name__)


class Config:
    """
    Settings for reaching the replicator service, kept in a JSON file.

    Keys missing from the file fall back to DEFAULT_CONFIG; the service
    address defaults can be overridden with POLICY_REPLICATOR_HOST and
    POLICY_REPLICATOR_PORT.
    """

    DEFAULT_CONFIG = {
        "replicator_host": os.environ.get("POLICY_REPLICATOR_HOST", "localhost"),
        "replicator_port": int(os.environ.get("POLICY_REPLICATOR_PORT", "8000")),
        "timeout": 30,
        "max_retries": 3,
        "retry_backoff_multiplier": 2,
    }

    def __init__(self, config_path: Path):
        """
        Args:
            config_path: JSON file, normally ~/.policy-replicator/config.json
        """
        self.config_path = config_path
        self.data = self._load()

    def _prepare_directory(self) -> None:
        try:
            self.config_path.parent.mkdir(parents=True, exist_ok=True)
        except PermissionError:
            fallback = Path(tempfile.gettempdir()) / '.policy-replicator' / 'config.json'
            logger.warning(f"Cannot create {self.config_path.parent}, using {fallback}")
            self.config_path = fallback
            self.config_path.parent.mkdir(parents=True, exist_ok=True)

    def _load(self) -> dict:
        """
        Read the config file merged over the defaults.

        A missing file is created with the defaults; an unreadable one is
        copied to config.json.bak and the defaults are used.
        """
        self._prepare_directory()
        settings = dict(self.DEFAULT_CONFIG)

        if not self.config_path.exists():
            self._write(settings)
            return settings

        try:
            settings.update(json.loads(self.config_path.read_text()))
        except (json.JSONDecodeError, OSError) as e:
            backup = self.config_path.with_suffix('.json.bak')
            logger.warning(f"Config file {self.config_path} is unreadable ({e}), backed up to {backup}")
            try:
                shutil.copy(self.config_path, backup)
            except OSError as copy_error:
                logger.warning(f"Could not back up config file: {copy_error}")
            return dict(self.DEFAULT_CONFIG)
        return settings

    def _write(self, settings: dict) -> None:
        try:
            self.config_path.write_text(json.dumps(settings, indent=2))
        except OSError as e:
            logger.warning(f"Could not write config file {self.config_path}: {e}")

    def save(self) -> None:
        """Persist the current settings."""
        self._write(self.data)

    def get_base_url(self) -> str:
        """
        Returns:
            Service base URL, e.g. "http://localhost:8000"
        """
        return f"http://{self.data['replicator_host']}:{self.data['replicator_port']}"

    def get_timeout(self) -> int:
        return self.data.get('timeout', 30)

    def get_retry_config(self) -> dict:
        """
        Returns:
            Dictionary with 'max_retries' and 'retry_backoff_multiplier'
        """
        return {
            key: self.data.get(key, self.DEFAULT_CONFIG[key])
            for key in ('max_retries', 'retry_backoff_multiplier')
        }
