"""
Configuration loading and validation.
"""

import logging
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

import yaml


class ConfigValidationError(Exception):
    """Raised when configuration is invalid."""

    pass


@dataclass
class DatabaseConfig:
    """Database configuration."""

    path: str = "data/market_pulse.db"


@dataclass
class ScheduleConfig:
    """Background cycle timing."""

    interval_seconds: float = 60
    startup_delay_seconds: float = 10
    watchlist_interval_seconds: float = 300
    watchlist_startup_delay_seconds: float = 30


@dataclass
class PriceCacheConfig:
    """Price cache refresh policy."""

    isolate_asset_failures: bool = False


@dataclass
class UserAlertsConfig:
    """User alert settings."""

    cooldown_minutes: int = 5
    reaches_threshold_percent: float = 0.1
    max_alerts_per_user: int = 50


@dataclass
class WatchlistConfig:
    """Watchlist auto-alert settings."""

    anchor: str = "1h"
    momentum_threshold_percent: float = 5.0
    target_offset_percent: float = 5.0
    round_number_min_gap_percent: float = 1.0
    reaches_threshold_percent: float = 0.5
    auto_alert_cooldown_hours: int = 24


@dataclass
class HubNotificationConfig:
    """In-process session hub settings."""

    enabled: bool = True


@dataclass
class DiscordNotificationConfig:
    """Discord notification settings."""

    enabled: bool = False
    global_webhook_url: Optional[str] = None
    mention_on_critical: bool = True


@dataclass
class NotificationsConfig:
    """Notifications configuration."""

    hub: HubNotificationConfig = field(default_factory=HubNotificationConfig)
    discord: DiscordNotificationConfig = field(
        default_factory=DiscordNotificationConfig
    )


@dataclass
class AdvancedConfig:
    """Advanced configuration."""

    log_level: str = "INFO"
    max_workers: int = 1
    cycle_timeout_seconds: Optional[float] = None


@dataclass
class AppConfig:
    """Main application configuration."""

    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    schedule: ScheduleConfig = field(default_factory=ScheduleConfig)
    price_cache: PriceCacheConfig = field(default_factory=PriceCacheConfig)
    user_alerts: UserAlertsConfig = field(default_factory=UserAlertsConfig)
    watchlist: WatchlistConfig = field(default_factory=WatchlistConfig)
    notifications: NotificationsConfig = field(default_factory=NotificationsConfig)
    advanced: AdvancedConfig = field(default_factory=AdvancedConfig)


def _substitute_env_vars(value: Any) -> Any:
    """Substitute environment variables in string values."""
    if isinstance(value, str):
        # Match ${VAR_NAME} pattern
        pattern = r"\$\{([^}]+)\}"
        matches = re.findall(pattern, value)
        for var_name in matches:
            env_value = os.environ.get(var_name, "")
            value = value.replace(f"${{{var_name}}}", env_value)
        return value
    elif isinstance(value, dict):
        return {k: _substitute_env_vars(v) for k, v in value.items()}
    elif isinstance(value, list):
        return [_substitute_env_vars(item) for item in value]
    return value


def _build_section(cls, values: Optional[dict[str, Any]], name: str):
    """Instantiate a config dataclass, reporting unknown keys."""
    try:
        return cls(**(values or {}))
    except TypeError as e:
        raise ConfigValidationError(f"Invalid '{name}' section: {e}") from e


def _require_positive(value: Any, name: str) -> None:
    if not isinstance(value, (int, float)) or value <= 0:
        raise ConfigValidationError(f"{name} must be a positive number, got {value!r}")


def _require_non_negative(value: Any, name: str) -> None:
    if not isinstance(value, (int, float)) or value < 0:
        raise ConfigValidationError(f"{name} must be zero or positive, got {value!r}")


def _validate_config(config_dict: dict[str, Any]) -> None:
    """Validate raw configuration values that need filesystem checks."""
    # Check database path is provided
    db_config = config_dict.get("database") or {}
    db_path = db_config.get("path")
    if not db_path:
        raise ConfigValidationError("Database path is required")

    if db_path != ":memory:":
        parent = Path(db_path).parent
        if parent.exists() and not os.access(parent, os.W_OK):
            raise ConfigValidationError(f"Database path not writable: {parent}")


def validate(config: AppConfig) -> None:
    """
    Check value ranges of a loaded configuration.

    Raises:
        ConfigValidationError: If a value is out of range
    """
    schedule = config.schedule
    _require_positive(schedule.interval_seconds, "schedule.interval_seconds")
    _require_positive(schedule.watchlist_interval_seconds, "schedule.watchlist_interval_seconds")
    _require_non_negative(schedule.startup_delay_seconds, "schedule.startup_delay_seconds")
    _require_non_negative(
        schedule.watchlist_startup_delay_seconds, "schedule.watchlist_startup_delay_seconds"
    )

    alerts = config.user_alerts
    _require_non_negative(alerts.cooldown_minutes, "user_alerts.cooldown_minutes")
    _require_non_negative(alerts.reaches_threshold_percent, "user_alerts.reaches_threshold_percent")
    _require_positive(alerts.max_alerts_per_user, "user_alerts.max_alerts_per_user")

    watchlist = config.watchlist
    if watchlist.anchor not in ("1h", "current"):
        raise ConfigValidationError(
            f"watchlist.anchor must be '1h' or 'current', got {watchlist.anchor!r}"
        )
    _require_positive(watchlist.momentum_threshold_percent, "watchlist.momentum_threshold_percent")
    _require_positive(watchlist.target_offset_percent, "watchlist.target_offset_percent")
    _require_non_negative(
        watchlist.round_number_min_gap_percent, "watchlist.round_number_min_gap_percent"
    )
    _require_non_negative(watchlist.reaches_threshold_percent, "watchlist.reaches_threshold_percent")
    _require_non_negative(watchlist.auto_alert_cooldown_hours, "watchlist.auto_alert_cooldown_hours")

    notifications = config.notifications
    if not notifications.hub.enabled and not notifications.discord.enabled:
        raise ConfigValidationError("At least one notification transport must be enabled")

    advanced = config.advanced
    if not isinstance(logging.getLevelName(str(advanced.log_level).upper()), int):
        raise ConfigValidationError(f"Unknown log level: {advanced.log_level}")
    if not isinstance(advanced.max_workers, int) or advanced.max_workers < 1:
        raise ConfigValidationError(
            f"advanced.max_workers must be at least 1, got {advanced.max_workers!r}"
        )
    if advanced.cycle_timeout_seconds is not None:
        _require_positive(advanced.cycle_timeout_seconds, "advanced.cycle_timeout_seconds")


def load_config(config_path: str) -> AppConfig:
    """
    Load configuration from YAML file.

    Args:
        config_path: Path to configuration file

    Returns:
        AppConfig instance

    Raises:
        ConfigValidationError: If configuration is invalid
        FileNotFoundError: If config file doesn't exist
    """
    path = Path(config_path)
    if not path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    with open(path) as f:
        raw_config = yaml.safe_load(f) or {}

    # Substitute environment variables
    config_dict = _substitute_env_vars(raw_config)

    # Validate
    _validate_config(config_dict)

    # Notifications
    notif_dict = config_dict.get("notifications") or {}
    discord_dict = dict(notif_dict.get("discord") or {})
    if not discord_dict.get("global_webhook_url"):
        # Empty after env substitution means unset
        discord_dict["global_webhook_url"] = None
    notifications = NotificationsConfig(
        hub=_build_section(HubNotificationConfig, notif_dict.get("hub"), "notifications.hub"),
        discord=_build_section(DiscordNotificationConfig, discord_dict, "notifications.discord"),
    )

    config = AppConfig(
        database=_build_section(DatabaseConfig, config_dict.get("database"), "database"),
        schedule=_build_section(ScheduleConfig, config_dict.get("schedule"), "schedule"),
        price_cache=_build_section(
            PriceCacheConfig, config_dict.get("price_cache"), "price_cache"
        ),
        user_alerts=_build_section(
            UserAlertsConfig, config_dict.get("user_alerts"), "user_alerts"
        ),
        watchlist=_build_section(WatchlistConfig, config_dict.get("watchlist"), "watchlist"),
        notifications=notifications,
        advanced=_build_section(AdvancedConfig, config_dict.get("advanced"), "advanced"),
    )
    validate(config)
    return config
