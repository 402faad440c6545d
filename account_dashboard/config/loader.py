"""
Configuration management and loading.

Handles pricing catalog, store and logging settings.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

DEFAULT_FEED_URL = (
    "https://raw.githubusercontent.com/BerriAI/litellm/main/"
    "model_prices_and_context_window.json"
)
BUNDLED_PRICING_FILE = Path(__file__).resolve().parent.parent / "resources" / "model_pricing.json"

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


@dataclass(frozen=True)
class PricingConfig:
    """Pricing catalog sources and refresh timing."""
    feed_url: str = DEFAULT_FEED_URL
    data_dir: Path = Path("data")
    cache_file: str = "model_pricing.json"
    fallback_file: Path = BUNDLED_PRICING_FILE
    refresh_interval_hours: float = 24
    download_timeout_seconds: float = 30
    watch_interval_seconds: float = 60
    reload_debounce_seconds: float = 0.5

    def __post_init__(self):
        """Validate timing values are positive."""
        for name in (
            "refresh_interval_hours",
            "download_timeout_seconds",
            "watch_interval_seconds",
            "reload_debounce_seconds",
        ):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be > 0")
        if not self.feed_url:
            raise ValueError("feed_url cannot be empty")
        if not self.cache_file:
            raise ValueError("cache_file cannot be empty")

    @property
    def cache_path(self) -> Path:
        return Path(self.data_dir) / self.cache_file

    @property
    def refresh_interval_seconds(self) -> float:
        return self.refresh_interval_hours * 3600


@dataclass(frozen=True)
class StoreConfig:
    """Key-value store location."""
    path: str = "account_dashboard.db"


@dataclass(frozen=True)
class LoggingConfig:
    """Log output settings."""
    level: str = "INFO"

    def __post_init__(self):
        if self.level not in LOG_LEVELS:
            raise ValueError(f"logging level must be one of: {list(LOG_LEVELS)}")


@dataclass(frozen=True)
class DashboardConfig:
    """Complete dashboard configuration."""
    pricing: PricingConfig = field(default_factory=PricingConfig)
    store: StoreConfig = field(default_factory=StoreConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


def load_dashboard_config(path: Optional[str] = None) -> DashboardConfig:
    """Load and validate dashboard configuration from a YAML file.

    Every section is optional; omitted values take their defaults. Unknown
    keys are rejected so that typos do not silently fall back to defaults.

    Args:
        path: Path to YAML configuration file, or None for all defaults

    Returns:
        Validated DashboardConfig object

    Raises:
        FileNotFoundError: If config file doesn't exist
        yaml.YAMLError: If YAML is invalid
        ValueError: If configuration is invalid
    """
    if path is None:
        return DashboardConfig()

    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(f"Dashboard config file not found: {path}")

    with open(config_path, 'r', encoding='utf-8') as f:
        try:
            raw_config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise yaml.YAMLError(f"Invalid YAML in config file {path}: {e}")

    if raw_config is None:
        return DashboardConfig()
    if not isinstance(raw_config, dict):
        raise ValueError("Configuration root must be a dictionary")

    allowed_top_keys = {'pricing', 'store', 'logging'}
    unknown_keys = set(raw_config.keys()) - allowed_top_keys
    if unknown_keys:
        raise ValueError(f"Unknown configuration keys: {unknown_keys}")

    return DashboardConfig(
        pricing=_parse_pricing_config(_section(raw_config, 'pricing')),
        store=_parse_store_config(_section(raw_config, 'store')),
        logging=_parse_logging_config(_section(raw_config, 'logging')),
    )


def _section(raw_config: Dict, name: str) -> Dict:
    data = raw_config.get(name) or {}
    if not isinstance(data, dict):
        raise ValueError(f"'{name}' must be a dictionary")
    return data


def _check_keys(data: Dict, allowed: set, path: str) -> None:
    unknown_keys = set(data.keys()) - allowed
    if unknown_keys:
        raise ValueError(f"Unknown keys in {path}: {unknown_keys}")


def _positive_number(data: Dict, key: str, path: str) -> Any:
    value = data[key]
    if isinstance(value, bool) or not isinstance(value, (int, float)) or value <= 0:
        raise ValueError(f"'{key}' in {path} must be > 0")
    return float(value)


def _parse_pricing_config(data: Dict) -> PricingConfig:
    """Parse and validate the pricing section.

    Raises:
        ValueError: If configuration is invalid
    """
    numeric_keys = {
        'refresh_interval_hours',
        'download_timeout_seconds',
        'watch_interval_seconds',
        'reload_debounce_seconds',
    }
    string_keys = {'feed_url', 'data_dir', 'cache_file', 'fallback_file'}
    _check_keys(data, numeric_keys | string_keys, "pricing")

    kwargs: Dict[str, Any] = {}
    for key in string_keys & data.keys():
        value = data[key]
        if not isinstance(value, str) or not value.strip():
            raise ValueError(f"'{key}' in pricing must be a non-empty string")
        kwargs[key] = Path(value) if key in ('data_dir', 'fallback_file') else value

    for key in numeric_keys & data.keys():
        kwargs[key] = _positive_number(data, key, "pricing")

    return PricingConfig(**kwargs)


def _parse_store_config(data: Dict) -> StoreConfig:
    _check_keys(data, {'path'}, "store")
    if 'path' not in data:
        return StoreConfig()
    value = data['path']
    if not isinstance(value, str) or not value.strip():
        raise ValueError("'path' in store must be a non-empty string")
    return StoreConfig(path=value)


def _parse_logging_config(data: Dict) -> LoggingConfig:
    _check_keys(data, {'level'}, "logging")
    if 'level' not in data:
        return LoggingConfig()
    level = data['level']
    if not isinstance(level, str):
        raise ValueError("'level' in logging must be a string")
    return LoggingConfig(level=level.upper())
