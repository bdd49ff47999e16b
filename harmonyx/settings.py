# SPDX-License-Identifier: Apache-2.0
"""
Global settings management for harmonyx.

This module provides a centralized settings system with:
- Hierarchical configuration (CLI > env > file > defaults)
- Settings persistence to JSON file

Usage:
    from harmonyx.settings import init_settings, get_settings

    # At startup
    init_settings(cli_args=args)

    # Anywhere else
    settings = get_settings()
    print(settings.decoder.final_channel)
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

# Settings file version for future migrations
SETTINGS_VERSION = "1.0"

# Default base path
DEFAULT_BASE_PATH = Path.home() / ".harmonyx"

_TRUE_VALUES = ("true", "1", "yes")


@dataclass
class DecoderSettings:
    """Harmony decoder and normalizer settings."""

    final_channel: str = "final"
    analysis_channel: str = "analysis"
    default_channel: str = "commentary"
    chunk_marker: str = "<<<CHUNK>>>"
    assume_start: bool = False  # prompt already ended with <|start|>assistant
    suppress_analysis: bool = True

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> DecoderSettings:
        """Create from dictionary."""
        return cls(
            final_channel=data.get("final_channel", "final"),
            analysis_channel=data.get("analysis_channel", "analysis"),
            default_channel=data.get("default_channel", "commentary"),
            chunk_marker=data.get("chunk_marker", "<<<CHUNK>>>"),
            assume_start=data.get("assume_start", False),
            suppress_analysis=data.get("suppress_analysis", True),
        )


@dataclass
class TransportSettings:
    """Live completion endpoint and SSE framing settings."""

    endpoint: str | None = None
    api_key: str | None = None
    model: str | None = None
    timeout: float = 120.0  # seconds
    data_prefix: str = "data:"
    done_token: str = "[DONE]"

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TransportSettings:
        """Create from dictionary."""
        return cls(
            endpoint=data.get("endpoint"),
            api_key=data.get("api_key"),
            model=data.get("model"),
            timeout=data.get("timeout", 120.0),
            data_prefix=data.get("data_prefix", "data:"),
            done_token=data.get("done_token", "[DONE]"),
        )


@dataclass
class LoggingSettings:
    """Logging configuration settings."""

    level: str = "info"
    format: str = "standard"  # "standard" or "json"
    log_dir: str | None = None  # None means console only
    retention_days: int = 7  # Number of days to keep rotated log files

    def get_log_dir(self, base_path: Path) -> Path:
        """
        Get the resolved log directory path.

        Args:
            base_path: Base harmonyx directory.

        Returns:
            Resolved log directory path.
        """
        if self.log_dir:
            return Path(self.log_dir).expanduser().resolve()
        return base_path / "logs"

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "level": self.level,
            "format": self.format,
            "log_dir": self.log_dir,
            "retention_days": self.retention_days,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> LoggingSettings:
        """Create from dictionary."""
        return cls(
            level=data.get("level", "info"),
            format=data.get("format", "standard"),
            log_dir=data.get("log_dir"),
            retention_days=data.get("retention_days", 7),
        )


@dataclass
class GlobalSettings:
    """
    Global settings for harmonyx.

    Combines all settings sections and provides methods for:
    - Loading from file with CLI/env overrides
    - Saving to file
    - Validation
    """

    base_path: Path = field(default_factory=lambda: DEFAULT_BASE_PATH)
    decoder: DecoderSettings = field(default_factory=DecoderSettings)
    transport: TransportSettings = field(default_factory=TransportSettings)
    logging: LoggingSettings = field(default_factory=LoggingSettings)

    @classmethod
    def load(
        cls,
        base_path: str | Path | None = None,
        cli_args: Any | None = None,
    ) -> GlobalSettings:
        """
        Load settings with priority hierarchy: CLI > env > file > defaults.

        Args:
            base_path: Base directory for harmonyx (default: ~/.harmonyx).
            cli_args: Argparse namespace with CLI arguments.

        Returns:
            Loaded GlobalSettings instance.
        """
        if base_path:
            resolved_base = Path(base_path).expanduser().resolve()
        else:
            resolved_base = DEFAULT_BASE_PATH

        settings = cls(base_path=resolved_base)

        settings_file = resolved_base / "settings.json"
        if settings_file.exists():
            settings._load_from_file(settings_file)
            logger.debug(f"Loaded settings from {settings_file}")

        settings._apply_env_overrides()

        if cli_args:
            settings._apply_cli_overrides(cli_args)

        return settings

    def _load_from_file(self, path: Path) -> None:
        """
        Load settings from a JSON file.

        Args:
            path: Path to the settings JSON file.
        """
        try:
            with open(path, encoding="utf-8") as f:
                data = json.load(f)

            version = data.get("version", "1.0")
            if version != SETTINGS_VERSION:
                logger.info(
                    f"Settings file version {version} differs from "
                    f"current {SETTINGS_VERSION}, migrating..."
                )

            if "decoder" in data:
                self.decoder = DecoderSettings.from_dict(data["decoder"])
            if "transport" in data:
                self.transport = TransportSettings.from_dict(data["transport"])
            if "logging" in data:
                self.logging = LoggingSettings.from_dict(data["logging"])

        except json.JSONDecodeError as e:
            logger.warning(f"Failed to parse settings file {path}: {e}")
        except OSError as e:
            logger.warning(f"Failed to read settings file {path}: {e}")

    def _apply_env_overrides(self) -> None:
        """Apply HARMONYX_* environment variable overrides."""
        # Decoder settings
        if final_channel := os.getenv("HARMONYX_FINAL_CHANNEL"):
            self.decoder.final_channel = final_channel
        if default_channel := os.getenv("HARMONYX_DEFAULT_CHANNEL"):
            self.decoder.default_channel = default_channel
        if assume_start := os.getenv("HARMONYX_ASSUME_START"):
            self.decoder.assume_start = assume_start.lower() in _TRUE_VALUES

        # Transport settings
        if endpoint := os.getenv("HARMONYX_ENDPOINT"):
            self.transport.endpoint = endpoint
        if api_key := os.getenv("HARMONYX_API_KEY"):
            self.transport.api_key = api_key
        if model := os.getenv("HARMONYX_MODEL"):
            self.transport.model = model
        if timeout := os.getenv("HARMONYX_TIMEOUT"):
            try:
                self.transport.timeout = float(timeout)
            except ValueError:
                logger.warning(f"Invalid HARMONYX_TIMEOUT value: {timeout}")

        # Logging settings
        if log_level := os.getenv("HARMONYX_LOG_LEVEL"):
            self.logging.level = log_level
        if log_dir := os.getenv("HARMONYX_LOG_DIR"):
            self.logging.log_dir = log_dir
        if retention_days := os.getenv("HARMONYX_LOG_RETENTION_DAYS"):
            try:
                self.logging.retention_days = int(retention_days)
            except ValueError:
                logger.warning(f"Invalid HARMONYX_LOG_RETENTION_DAYS: {retention_days}")

    def _apply_cli_overrides(self, args: Any) -> None:
        """
        Apply CLI argument overrides.

        Args:
            args: Argparse namespace with CLI arguments.
        """
        # Decoder settings
        if hasattr(args, "final_channel") and args.final_channel is not None:
            self.decoder.final_channel = args.final_channel
        if hasattr(args, "assume_start") and args.assume_start is not None:
            self.decoder.assume_start = args.assume_start

        # Transport settings
        if hasattr(args, "endpoint") and args.endpoint is not None:
            self.transport.endpoint = args.endpoint
        if hasattr(args, "api_key") and args.api_key is not None:
            self.transport.api_key = args.api_key
        if hasattr(args, "model") and args.model is not None:
            self.transport.model = args.model
        if hasattr(args, "timeout") and args.timeout is not None:
            self.transport.timeout = args.timeout

        # Logging settings
        if hasattr(args, "log_level") and args.log_level is not None:
            self.logging.level = args.log_level
        if hasattr(args, "log_format") and args.log_format is not None:
            self.logging.format = args.log_format

    def save(self) -> None:
        """Save current settings to the settings file."""
        self.ensure_directories()

        settings_file = self.base_path / "settings.json"
        data = {
            "version": SETTINGS_VERSION,
            "decoder": self.decoder.to_dict(),
            "transport": self.transport.to_dict(),
            "logging": self.logging.to_dict(),
        }

        try:
            with open(settings_file, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2)
            logger.info(f"Saved settings to {settings_file}")
        except OSError as e:
            logger.error(f"Failed to save settings to {settings_file}: {e}")
            raise

    def ensure_directories(self) -> None:
        """Create necessary directories if they don't exist."""
        directories = [self.base_path]
        if self.logging.log_dir:
            directories.append(self.logging.get_log_dir(self.base_path))

        for directory in directories:
            if not directory.exists():
                try:
                    directory.mkdir(parents=True, exist_ok=True)
                    logger.debug(f"Created directory: {directory}")
                except OSError as e:
                    logger.error(f"Failed to create directory {directory}: {e}")
                    raise

    def validate(self) -> list[str]:
        """
        Validate all settings.

        Returns:
            List of validation error messages (empty if valid).
        """
        errors = []

        # Decoder validation
        for name in ("final_channel", "analysis_channel", "default_channel"):
            if not getattr(self.decoder, name):
                errors.append(f"Invalid {name}: must be a non-empty channel name")
        if (
            self.decoder.final_channel
            and self.decoder.final_channel == self.decoder.analysis_channel
        ):
            errors.append(
                f"final_channel and analysis_channel must differ "
                f"(both are {self.decoder.final_channel!r})"
            )
        if not self.decoder.chunk_marker:
            errors.append("Invalid chunk_marker: must be non-empty")

        # Transport validation
        if self.transport.timeout <= 0:
            errors.append(
                f"Invalid timeout: {self.transport.timeout} (must be > 0)"
            )
        if self.transport.endpoint and not self.transport.endpoint.startswith(
            ("http://", "https://")
        ):
            errors.append(
                f"Invalid endpoint: {self.transport.endpoint} "
                "(must start with http:// or https://)"
            )
        if not self.transport.data_prefix:
            errors.append("Invalid data_prefix: must be non-empty")

        # Logging validation
        valid_log_levels = {"trace", "debug", "info", "warning", "error", "critical"}
        if self.logging.level.lower() not in valid_log_levels:
            errors.append(
                f"Invalid log level: {self.logging.level} "
                f"(must be one of {valid_log_levels})"
            )
        if self.logging.format not in ("standard", "json"):
            errors.append(
                f"Invalid log format: {self.logging.format} "
                "(must be 'standard' or 'json')"
            )
        if self.logging.retention_days < 0:
            errors.append(
                f"Invalid retention_days: {self.logging.retention_days} (must be >= 0)"
            )

        return errors

    def to_dict(self) -> dict[str, Any]:
        """Convert all settings to a dictionary."""
        return {
            "version": SETTINGS_VERSION,
            "base_path": str(self.base_path),
            "decoder": self.decoder.to_dict(),
            "transport": self.transport.to_dict(),
            "logging": self.logging.to_dict(),
        }


# Global singleton instance
_global_settings: GlobalSettings | None = None


def get_settings() -> GlobalSettings:
    """
    Get the global settings instance.

    Returns:
        The global GlobalSettings instance.

    Raises:
        RuntimeError: If settings have not been initialized.
    """
    global _global_settings
    if _global_settings is None:
        raise RuntimeError(
            "Settings not initialized. Call init_settings() first."
        )
    return _global_settings


def init_settings(
    base_path: str | Path | None = None,
    cli_args: Any | None = None,
) -> GlobalSettings:
    """
    Initialize global settings (call once at startup).

    Args:
        base_path: Base directory for harmonyx (default: ~/.harmonyx).
        cli_args: Argparse namespace with CLI arguments.

    Returns:
        The initialized GlobalSettings instance.
    """
    global _global_settings
    _global_settings = GlobalSettings.load(base_path=base_path, cli_args=cli_args)
    logger.info(f"Initialized settings with base_path: {_global_settings.base_path}")
    return _global_settings


def reset_settings() -> None:
    """
    Reset global settings (primarily for testing).

    This clears the global singleton, allowing init_settings to be called again.
    """
    global _global_settings
    _global_settings = None
