from dataclasses import dataclass, field, is_dataclass
from pathlib import Path
import sys
import tomllib
from typing import Any, TypeVar

import keyring
from keyring.errors import KeyringError
from loguru import logger

# --- Constants ---
APP_NAME = "coinfeed"
# Use a platform-agnostic user config directory
if sys.platform == "win32":
    CONFIG_DIR = Path.home() / "AppData" / "Roaming" / APP_NAME
else:
    CONFIG_DIR = Path.home() / ".config" / APP_NAME

CONFIG_FILE = CONFIG_DIR / "config.toml"

# --- Keyring Service Name ---
KEYRING_SERVICE_NAME = f"{APP_NAME.lower()}-api-keys"

DEFAULT_CONFIG_TEXT = """\
# coinfeed configuration file
# Uncomment and edit any setting to override its default.
#
# [general]
# log_level_console = "INFO"
#
# [feed]
# throttle_interval_s = 1.0
# backoff_max_delay_s = 60.0
#
# [cache]
# directory = "~/.config/coinfeed/cache"
"""

# --- Dataclass Models for Settings ---
T = TypeVar("T")


@dataclass
class GeneralSettings:
    """General application settings."""

    log_level_console: str = "INFO"
    log_level_file: str = "DEBUG"
    log_directory: str = str(CONFIG_DIR / "logs")


@dataclass
class FeedSettings:
    """Timing and sizing of the live and polled price feeds."""

    series_capacity: int = 300
    throttle_interval_s: float = 1.0
    min_tick_spacing_s: float = 1.0
    request_timeout_s: float = 10.0
    price_timeout_s: float = 15.0
    backoff_base_delay_s: float = 5.0
    backoff_max_delay_s: float = 60.0
    quote_asset: str = "USDT"


@dataclass
class EndpointSettings:
    """Base URLs of the public market data APIs."""

    binance_stream_url: str = "wss://stream.binance.com:9443/ws"
    binance_api_url: str = "https://api.binance.com/api/v3"
    binance_us_api_url: str = "https://api.binance.us/api/v3"
    coinbase_api_url: str = "https://api.coinbase.com/v2"
    coingecko_api_url: str = "https://api.coingecko.com/api/v3"
    user_agent: str = "coinfeed/1.0"


@dataclass
class CacheSettings:
    """Settings for the on-disk market cache and favorites."""

    directory: str = str(CONFIG_DIR / "cache")
    market_timeout_s: float = 15.0

    @property
    def path(self) -> Path:
        return Path(self.directory).expanduser()


@dataclass
class Settings:
    """Root container for all application settings."""

    general: GeneralSettings = field(default_factory=GeneralSettings)
    feed: FeedSettings = field(default_factory=FeedSettings)
    endpoints: EndpointSettings = field(default_factory=EndpointSettings)
    cache: CacheSettings = field(default_factory=CacheSettings)


def _update_dataclass(dc_instance: T, data: dict[str, Any]) -> T:
    """Recursively updates a dataclass instance from a dictionary."""
    for f in field_names(dc_instance):
        if f in data:
            field_value = getattr(dc_instance, f)
            if is_dataclass(field_value):
                if isinstance(data[f], dict):
                    _update_dataclass(field_value, data[f])
                else:
                    logger.warning(f"Ignoring non-table value for section '{f}'.")
            else:
                setattr(dc_instance, f, data[f])
    return dc_instance


def field_names(dc_instance: Any) -> list[str]:
    """Helper to get field names from a dataclass instance."""
    return [f.name for f in dc_instance.__dataclass_fields__.values()]


def load_config(path: Path = CONFIG_FILE) -> Settings:
    """Loads settings from a TOML file, merging them with defaults.

    If the config file does not exist, it creates a commented template.

    Args:
        path: The path to the configuration file.

    Returns:
        A populated Settings object.
    """
    settings_obj = Settings()
    logger.info(f"Loading configuration from '{path}'...")

    if not path.exists():
        logger.warning(f"Configuration file not found. Creating default at '{path}'.")
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with path.open("w", encoding="utf-8") as f:
                f.write(DEFAULT_CONFIG_TEXT)
        except OSError as e:
            logger.error(f"Failed to create default config file: {e}")
        return settings_obj

    try:
        with path.open("rb") as f:
            user_config = tomllib.load(f)
        _update_dataclass(settings_obj, user_config)
        logger.success("Successfully loaded user configuration.")
    except tomllib.TOMLDecodeError as e:
        logger.error(f"Error decoding TOML from '{path}': {e}")
        logger.warning("Using default settings due to configuration error.")
        settings_obj = Settings()
    except OSError as e:
        logger.error(f"Could not read config file '{path}': {e}")
        logger.warning("Using default settings due to configuration error.")

    return settings_obj


# --- Keyring Management ---


def get_api_key(service_name: str) -> str | None:
    """Retrieves an API key for a market data service from the system keyring.

    Args:
        service_name: The lower-case name of the service (e.g., 'coingecko').

    Returns:
        The stored key, or None if none is stored or the keyring is unavailable.
    """
    service_name = service_name.lower()
    try:
        api_key = keyring.get_password(KEYRING_SERVICE_NAME, f"{service_name}_key")
    except KeyringError as e:
        logger.error(f"Could not retrieve credentials from keyring: {e}")
        return None
    if api_key:
        logger.debug(f"Retrieved API key for '{service_name}' from keyring.")
    return api_key


def set_api_key(service_name: str, api_key: str) -> None:
    """Stores an API key for a market data service in the system keyring."""
    service_name = service_name.lower()
    try:
        keyring.set_password(KEYRING_SERVICE_NAME, f"{service_name}_key", api_key)
        logger.info(f"Successfully stored API key for '{service_name}' in keyring.")
    except KeyringError as e:
        logger.error(f"Could not store credentials in keyring: {e}")
