"""Engine settings management for the FTP engine.

Provides EngineSettings dataclass and SettingsManager for persistence.
"""

import json
import logging
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Optional

from ftp_engine.config.paths import get_settings_path

logger = logging.getLogger("ftp_engine.settings")


@dataclass
class EngineSettings:
    """Settings that tune sessions and persist between runs."""

    # Connection behaviour
    timeout: float = 30
    passive_mode: bool = True
    security: str = "ftp"
    verify_tls: bool = True
    connect_retries: int = 1
    retry_delay: float = 0.5

    # Transfers
    block_size: int = 8192

    # Logging
    log_level: str = "INFO"

    # Last successful connection (CLI defaults)
    last_host: str = ""
    last_port: int = 0
    last_username: str = ""

    def to_dict(self) -> dict:
        """Convert settings to dictionary."""
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "EngineSettings":
        """Create settings from dictionary, ignoring unknown keys."""
        valid_fields = {f.name for f in cls.__dataclass_fields__.values()}
        filtered = {k: v for k, v in data.items() if k in valid_fields}
        return cls(**filtered)


class SettingsManager:
    """Manages engine settings persistence."""

    def __init__(self, config_path: Optional[Path] = None):
        """
        Initialize settings manager.

        Args:
            config_path: Optional custom path, defaults to platform standard
        """
        self._config_path = config_path or get_settings_path()
        self._settings: Optional[EngineSettings] = None

    @property
    def config_path(self) -> Path:
        """Path to settings file."""
        return self._config_path

    def load(self) -> EngineSettings:
        """
        Load settings from disk.

        Returns:
            EngineSettings instance (defaults if file not found)
        """
        if self._config_path.exists():
            try:
                with open(self._config_path, "r", encoding="utf-8") as f:
                    data = json.load(f)
                self._settings = EngineSettings.from_dict(data)
            except (json.JSONDecodeError, IOError, TypeError) as e:
                # Invalid or unreadable file, use defaults
                logger.warning(f"Ignoring unreadable settings file {self._config_path}: {e}")
                self._settings = EngineSettings()
        else:
            self._settings = EngineSettings()

        return self._settings

    def save(self, settings: EngineSettings) -> None:
        """
        Persist settings to disk.

        Args:
            settings: Settings to save
        """
        self._settings = settings

        # Ensure parent directory exists
        self._config_path.parent.mkdir(parents=True, exist_ok=True)

        with open(self._config_path, "w", encoding="utf-8") as f:
            json.dump(settings.to_dict(), f, indent=2)

    def reset(self) -> EngineSettings:
        """
        Reset to default settings.

        Returns:
            Default EngineSettings instance
        """
        self._settings = EngineSettings()

        # Remove existing file
        if self._config_path.exists():
            self._config_path.unlink()

        return self._settings

    def update(self, **kwargs) -> EngineSettings:
        """
        Update specific settings fields.

        Args:
            **kwargs: Field names and new values

        Returns:
            Updated EngineSettings instance
        """
        if self._settings is None:
            self.load()

        for key, value in kwargs.items():
            if hasattr(self._settings, key):
                setattr(self._settings, key, value)

        self.save(self._settings)
        return self._settings
