"""
Configuration management for the Media Plan Builder application.
Handles plan defaults, seeding switches, and environment configuration.
"""

import logging
import os
import streamlit as st
from typing import Optional
from dataclasses import dataclass
from dotenv import load_dotenv

# Set up logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

load_dotenv()


@dataclass
class AppConfig:
    """Application configuration settings."""
    default_site: str = "MiQ"
    default_rate_model: str = "CPM"
    default_rate: str = "25.00"
    default_units: int = 1000000
    seed_catalog: bool = True
    seed_sample_campaign: bool = True
    export_dir: str = "exports"
    log_level: str = "INFO"


class ConfigManager:
    """Manages application configuration and settings."""

    def __init__(self):
        self._config: Optional[AppConfig] = None

    def load_config(self) -> AppConfig:
        """Load configuration from Streamlit secrets and environment."""
        if self._config is not None:
            return self._config

        defaults = AppConfig()
        self._config = AppConfig(
            default_site=self._get_setting("DEFAULT_SITE", defaults.default_site),
            default_rate_model=self._get_setting("DEFAULT_RATE_MODEL", defaults.default_rate_model),
            default_rate=self._get_setting("DEFAULT_RATE", defaults.default_rate),
            default_units=self._get_int_setting("DEFAULT_UNITS", defaults.default_units),
            seed_catalog=self._get_bool_setting("SEED_CATALOG", defaults.seed_catalog),
            seed_sample_campaign=self._get_bool_setting("SEED_SAMPLE_CAMPAIGN", defaults.seed_sample_campaign),
            export_dir=self._get_setting("EXPORT_DIR", defaults.export_dir),
            log_level=self._get_setting("LOG_LEVEL", defaults.log_level).upper()
        )

        logger.info(f"Loaded configuration: default site {self._config.default_site}, "
                    f"seed catalog {self._config.seed_catalog}")
        return self._config

    def reset(self):
        """Forget the cached configuration so the next load re-reads it."""
        self._config = None

    def _get_secret_or_env(self, key: str) -> Optional[str]:
        """Get value from Streamlit secrets or environment variables."""
        # Try Streamlit secrets first; a missing secrets.toml raises FileNotFoundError
        try:
            if hasattr(st, 'secrets') and key in st.secrets:
                return str(st.secrets[key])
        except FileNotFoundError:
            logger.debug(f"No Streamlit secrets file, reading {key} from environment")

        # Fall back to environment variables
        return os.getenv(key)

    def _get_setting(self, key: str, default: str) -> str:
        """Get string setting with default value."""
        value = self._get_secret_or_env(key)
        return value if value is not None and value.strip() else default

    def _get_int_setting(self, key: str, default: int) -> int:
        """Get integer setting with default value."""
        value = self._get_secret_or_env(key)
        if value is not None:
            try:
                return int(value.replace(',', ''))
            except ValueError:
                logger.warning(f"Ignoring non-integer value for {key}: {value!r}")
        return default

    def _get_bool_setting(self, key: str, default: bool) -> bool:
        """Get boolean setting with default value."""
        value = self._get_secret_or_env(key)
        if value is None:
            return default
        text = value.strip().lower()
        if text in ('true', '1', 'yes', 'on'):
            return True
        if text in ('false', '0', 'no', 'off'):
            return False
        logger.warning(f"Ignoring non-boolean value for {key}: {value!r}")
        return default

    def get_log_level(self) -> int:
        """Get the configured log level as a logging constant."""
        config = self.load_config()
        return getattr(logging, config.log_level, logging.INFO)


# Global configuration manager instance
config_manager = ConfigManager()
