"""
Configuration management for Blocklift.

This module handles loading and accessing configuration values from config.yaml.
The conversion engine never reads the global configuration directly: the CLI
snapshots the relevant values into an immutable ConversionOptions and passes
it down explicitly.
"""

import yaml
import os
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional
import logging


class ReplacementPolicy(str, Enum):
    """How embedded blocks inside rich documents are rewritten."""
    REPLACE = "replace"
    AUGMENT = "augment"


class ConfigManager:
    """
    Manages configuration loading and access for Blocklift.
    """

    def __init__(self, config_path: str = "config.yaml"):
        """
        Initialize the configuration manager.

        Args:
            config_path: Path to the configuration file
        """
        self.config_path = Path(config_path)
        self._config: Dict[str, Any] = {}
        self._load_config()

    def _load_config(self) -> None:
        """Load configuration from YAML file."""
        try:
            if not self.config_path.exists():
                raise FileNotFoundError(f"Configuration file not found: {self.config_path}")

            with open(self.config_path, 'r', encoding='utf-8') as f:
                self._config = yaml.safe_load(f) or {}

            logging.info(f"Configuration loaded from {self.config_path}")

        except (OSError, yaml.YAMLError) as e:
            logging.error(f"Failed to load configuration: {e}")
            # Fall back to default configuration
            self._config = self._get_default_config()

    def _get_default_config(self) -> Dict[str, Any]:
        """Get default configuration values as fallback."""
        return {
            "api": {
                "base_url": "https://site-api.datocms.com",
                "token_env": "DATOCMS_API_TOKEN",
                "timeout": 30.0,
                "page_size": 100
            },
            "conversion": {
                "replacement_policy": "replace",
                "fully_replace": False,
                "skip_deletions": False,
                "name_suffix": "",
                "fallback_locale": None,
                "rename_to_original": True,
                "verbose": False
            },
            "performance": {
                "batch_size": 10,
                "batch_delay": 0.2,
                "field_delay": 0.5
            },
            "state": {
                "enabled": True,
                "filename": "blocklift.db"
            },
            "logging": {
                "level": "INFO",
                "format": "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
            },
            "paths": {
                "log_file": "blocklift.log"
            }
        }

    def get(self, key_path: str, default: Any = None) -> Any:
        """
        Get a configuration value using dot notation.

        Args:
            key_path: Dot-separated path to the configuration value (e.g., "api.base_url")
            default: Default value if key is not found

        Returns:
            The configuration value

        Examples:
            config.get("performance.batch_size")  # Returns 10
            config.get("conversion.replacement_policy")  # Returns "replace"
        """
        keys = key_path.split('.')
        value = self._config

        for key in keys:
            if isinstance(value, dict) and key in value:
                value = value[key]
            else:
                return default

        return value

    def get_section(self, section: str) -> Dict[str, Any]:
        """
        Get an entire configuration section.

        Args:
            section: Name of the configuration section

        Returns:
            Dictionary containing the section configuration
        """
        return self._config.get(section, {})

    def reload(self) -> None:
        """Reload configuration from file."""
        self._load_config()

    # Convenience properties for commonly used values

    @property
    def api_base_url(self) -> str:
        """Get the content management API base URL."""
        return self.get("api.base_url", "https://site-api.datocms.com")

    @property
    def api_token(self) -> Optional[str]:
        """Get the API token from the environment variable named in the config."""
        return os.environ.get(self.get("api.token_env", "DATOCMS_API_TOKEN"))

    @property
    def api_timeout(self) -> float:
        """Get API request timeout."""
        return self.get("api.timeout", 30.0)

    @property
    def page_size(self) -> int:
        """Get record page size for paged iteration."""
        return self.get("api.page_size", 100)

    @property
    def state_enabled(self) -> bool:
        """Whether mappings and failures are persisted to DuckDB."""
        return self.get("state.enabled", True)

    @property
    def state_filename(self) -> str:
        """Get state database filename."""
        return self.get("state.filename", "blocklift.db")

    @property
    def log_filename(self) -> str:
        """Get log file name."""
        return self.get("paths.log_file", "blocklift.log")


@dataclass(frozen=True)
class ConversionOptions:
    """
    Immutable settings for one conversion run.

    Built once (usually from the configuration file plus CLI flags) and
    passed to every engine component.
    """
    replacement_policy: ReplacementPolicy = ReplacementPolicy.REPLACE
    fully_replace: bool = False
    skip_deletions: bool = False
    name_suffix: str = ""
    fallback_locale: Optional[str] = None
    rename_to_original: bool = True
    verbose: bool = False
    batch_size: int = 10
    batch_delay: float = 0.2
    field_delay: float = 0.5

    @property
    def replaces(self) -> bool:
        """True when embedded blocks are removed, not just linked alongside."""
        return self.replacement_policy == ReplacementPolicy.REPLACE

    @property
    def deletes_original_type(self) -> bool:
        """True when the source block type is destroyed after conversion."""
        return self.fully_replace and self.replaces and not self.skip_deletions

    @classmethod
    def from_config(cls, manager: ConfigManager, **overrides: Any) -> "ConversionOptions":
        """
        Snapshot conversion settings from a configuration manager.

        Args:
            manager: Loaded configuration
            **overrides: Values that take precedence (CLI flags); None is ignored

        Returns:
            A frozen ConversionOptions instance
        """
        values = {
            "replacement_policy": ReplacementPolicy(
                manager.get("conversion.replacement_policy", "replace")
            ),
            "fully_replace": bool(manager.get("conversion.fully_replace", False)),
            "skip_deletions": bool(manager.get("conversion.skip_deletions", False)),
            "name_suffix": manager.get("conversion.name_suffix", "") or "",
            "fallback_locale": manager.get("conversion.fallback_locale"),
            "rename_to_original": bool(manager.get("conversion.rename_to_original", True)),
            "verbose": bool(manager.get("conversion.verbose", False)),
            "batch_size": int(manager.get("performance.batch_size", 10)),
            "batch_delay": float(manager.get("performance.batch_delay", 0.2)),
            "field_delay": float(manager.get("performance.field_delay", 0.5)),
        }
        for key, value in overrides.items():
            if value is not None:
                values[key] = value
        if not isinstance(values["replacement_policy"], ReplacementPolicy):
            values["replacement_policy"] = ReplacementPolicy(values["replacement_policy"])
        return cls(**values)


# Global configuration instance
config = ConfigManager()


def get_config() -> ConfigManager:
    """
    Get the global configuration instance.

    Returns:
        The global ConfigManager instance
    """
    return config
