# ==============================================================================
# MOD IDENTIFIER - CONFIGURATION MODULE
# ==============================================================================
# Centralized configuration management for the application.
#
# This module handles:
#   - Loading/saving configuration from a JSON file
#   - Default values for all settings
#   - Range validation of numeric settings
#
# Configuration is stored in: <user data dir>/config.json
#
# Usage:
#   from modident.core.config import Config
#   config = Config()
#   config.load()
#   print(config.database_path)
#   config.include_partial_digest = True
#   config.save()
# ==============================================================================

import json
import logging
import os
from typing import Any, Dict, Optional

from modident.extractors.vpk_format import ParseOptions
from .paths import Paths

logger = logging.getLogger(__name__)


# ==============================================================================
# DEFAULT CONFIGURATION VALUES
# ==============================================================================
# These are used when no config file exists or when values are missing.

MIN_BLOCK_SIZE = 4 * 1024
MAX_BLOCK_SIZE = 16 * 1024 * 1024

DEFAULT_CONFIG = {
    # -------------------------------------------------------------------------
    # DATABASE
    # -------------------------------------------------------------------------
    # Path to SQLite catalog ("" = user data dir)
    "database_path": "",

    # -------------------------------------------------------------------------
    # FINGERPRINTING
    # -------------------------------------------------------------------------
    # SHA256 the whole archive (enables the exact tier)
    "include_exact_digest": True,

    # Build the block hash tree (enables the partial-similarity tier)
    "include_partial_digest": False,

    # Leaf size of the block hash tree, in bytes
    "partial_block_size": 65536,

    # Threads used to compute digests in parallel
    "hash_workers": 1,

    # Reject archives larger than this (in MB, 0 = no limit)
    "max_file_size_mb": 0,

    # -------------------------------------------------------------------------
    # ADVANCED
    # -------------------------------------------------------------------------
    # Log level for the modident logger
    "log_level": "INFO",

    # Enable debug logging (overrides log_level)
    "debug_mode": False,
}

LOG_LEVELS = ('DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL')


# ==============================================================================
# CONFIGURATION CLASS
# ==============================================================================
class Config:
    """
    Configuration manager for Mod Identifier.

    Handles loading, saving, and accessing application settings.
    Settings are stored in a JSON file and can be accessed as
    properties on this object.

    Attributes:
        config_path: Path to the configuration file
        data: Dictionary containing all settings
    """

    def __init__(self, config_path: Optional[str] = None):
        """
        Initialize the configuration manager.

        Args:
            config_path: Path to config file. If None, uses default location.
        """
        self.config_path = config_path or Paths.get_config_path()

        # Initialize with defaults
        self.data: Dict[str, Any] = DEFAULT_CONFIG.copy()

        # Track if config has been modified
        self._modified = False

    # -------------------------------------------------------------------------
    # LOADING AND SAVING
    # -------------------------------------------------------------------------

    def load(self) -> bool:
        """
        Load configuration from file.

        If the file doesn't exist, defaults are used.
        Missing keys are filled with defaults; unknown keys are ignored.

        Returns:
            True if file was loaded, False if using defaults
        """
        if not os.path.isfile(self.config_path):
            logger.info("Config file not found, using defaults")
            return False

        try:
            with open(self.config_path, 'r', encoding='utf-8') as f:
                loaded = json.load(f)
        except json.JSONDecodeError as e:
            logger.error("Invalid config file %s: %s", self.config_path, e)
            return False
        except OSError as e:
            logger.error("Failed to load config: %s", e)
            return False

        if not isinstance(loaded, dict):
            logger.error("Invalid config file %s: expected a JSON object", self.config_path)
            return False

        # Merge with defaults (so new settings get default values)
        for key, value in loaded.items():
            if key in self.data:
                self._set_loaded(key, value)

        logger.info("Loaded config from %s", self.config_path)
        self._modified = False
        return True

    def _set_loaded(self, key: str, value: Any):
        """Store a loaded value through its property setter, so it is clamped and checked."""
        setter = getattr(type(self), key, None)
        if not isinstance(setter, property) or setter.fset is None:
            self.data[key] = value
            return

        try:
            setter.fset(self, value)
        except (TypeError, ValueError) as e:
            logger.warning("Ignoring invalid %s in config (%r): %s", key, value, e)
            self.data[key] = DEFAULT_CONFIG[key]

    def save(self) -> bool:
        """
        Save configuration to file.

        Creates the directory if it doesn't exist.

        Returns:
            True if saved successfully
        """
        try:
            directory = os.path.dirname(self.config_path)
            if directory:
                os.makedirs(directory, exist_ok=True)

            with open(self.config_path, 'w', encoding='utf-8') as f:
                json.dump(self.data, f, indent=4, sort_keys=True)
        except OSError as e:
            logger.error("Failed to save config: %s", e)
            return False

        logger.info("Saved config to %s", self.config_path)
        self._modified = False
        return True

    def reset_to_defaults(self):
        """Reset all settings to their default values."""
        self.data = DEFAULT_CONFIG.copy()
        self._modified = True

    @property
    def modified(self) -> bool:
        return self._modified

    # -------------------------------------------------------------------------
    # PROPERTY ACCESS
    # -------------------------------------------------------------------------
    # These properties provide type-safe access to common settings

    @property
    def database_path(self) -> str:
        """Get the database path (falls back to the user data dir)."""
        return self.data.get('database_path') or Paths.get_database_path()

    @database_path.setter
    def database_path(self, value: str):
        self.data['database_path'] = value
        self._modified = True

    @property
    def include_exact_digest(self) -> bool:
        return bool(self.data.get('include_exact_digest', True))

    @include_exact_digest.setter
    def include_exact_digest(self, value: bool):
        self.data['include_exact_digest'] = bool(value)
        self._modified = True

    @property
    def include_partial_digest(self) -> bool:
        return bool(self.data.get('include_partial_digest', False))

    @include_partial_digest.setter
    def include_partial_digest(self, value: bool):
        self.data['include_partial_digest'] = bool(value)
        self._modified = True

    @property
    def partial_block_size(self) -> int:
        """Get the hash tree block size in bytes."""
        return self.data.get('partial_block_size', 65536)

    @partial_block_size.setter
    def partial_block_size(self, value: int):
        """Set the block size, clamped to 4KB..16MB."""
        self.data['partial_block_size'] = max(MIN_BLOCK_SIZE, min(MAX_BLOCK_SIZE, int(value)))
        self._modified = True

    @property
    def hash_workers(self) -> int:
        """Get the number of hashing threads."""
        return self.data.get('hash_workers', 1)

    @hash_workers.setter
    def hash_workers(self, value: int):
        """Set the number of hashing threads."""
        self.data['hash_workers'] = max(1, min(16, int(value)))
        self._modified = True

    @property
    def max_file_size_mb(self) -> int:
        return self.data.get('max_file_size_mb', 0)

    @max_file_size_mb.setter
    def max_file_size_mb(self, value: int):
        value = int(value)
        if value < 0:
            raise ValueError("max_file_size_mb must be 0 (no limit) or positive")
        self.data['max_file_size_mb'] = value
        self._modified = True

    @property
    def max_file_size_bytes(self) -> int:
        """Size limit in bytes, 0 when unlimited."""
        return self.max_file_size_mb * 1024 * 1024

    @property
    def log_level(self) -> str:
        """Get the effective log level name."""
        if self.debug_mode:
            return 'DEBUG'
        return self.data.get('log_level', 'INFO')

    @log_level.setter
    def log_level(self, value: str):
        """Set the log level."""
        value = str(value).upper()
        if value not in LOG_LEVELS:
            raise ValueError(f"log_level must be one of {', '.join(LOG_LEVELS)}")
        self.data['log_level'] = value
        self._modified = True

    @property
    def debug_mode(self) -> bool:
        """Check if debug mode is enabled."""
        return self.data.get('debug_mode', False)

    @debug_mode.setter
    def debug_mode(self, value: bool):
        """Set debug mode."""
        self.data['debug_mode'] = bool(value)
        self._modified = True

    def parse_options(self) -> ParseOptions:
        """ParseOptions matching the fingerprint settings."""
        return ParseOptions(
            include_exact_digest=self.include_exact_digest,
            include_partial_digest=self.include_partial_digest,
        )

    # -------------------------------------------------------------------------
    # GENERIC ACCESS
    # -------------------------------------------------------------------------

    def get(self, key: str, default: Any = None) -> Any:
        """
        Get a configuration value.

        Args:
            key: Configuration key
            default: Default value if key not found

        Returns:
            The configuration value
        """
        return self.data.get(key, default)

    def __getitem__(self, key: str) -> Any:
        """Allow dictionary-style access: config['key']"""
        return self.data[key]


# ==============================================================================
# CLI CONFIG INSTANCE
# ==============================================================================
# Lazily loaded instance for the command-line entry points. Library code takes
# a Config argument instead.

_cli_config: Optional[Config] = None


def get_config() -> Config:
    """
    Get the command-line configuration instance.

    Creates and loads config on first call.
    """
    global _cli_config

    if _cli_config is None:
        _cli_config = Config()
        _cli_config.load()

    return _cli_config
