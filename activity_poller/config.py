"""
Poller configuration.

Settings are read once at startup into an explicit ``PollerConfig`` value object
that is passed to the rest of the package. Sources, lowest precedence first:

    1. built-in defaults
    2. an optional YAML file (lower-case keys, see ``ENV_KEYS``)
    3. environment variables (upper-case, see ``ENV_KEYS``)

Usage:
    from activity_poller.config import load_config

    config = load_config("config/poller.yaml")
"""

import json
import os
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional

import pytz
import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator

from activity_poller.errors import ConfigError
from activity_poller.logging_conf import logger

DEFAULT_SCOPES = ["https://www.googleapis.com/auth/admin.reports.audit.readonly"]

# config key -> environment variable
ENV_KEYS = {
    "start_ts": "POLL_START_TS",
    "targets": "POLL_TARGETS",
    "poll_interval_sec": "POLL_INTERVAL_SEC",
    "max_pages_per_invocation": "MAX_PAGES_PER_INVOCATION",
    "scopes": "GSUITE_SCOPES",
    "creds_json": "GSUITE_CREDS",
    "subject": "GSUITE_SUBJECT",
    "user_key": "GSUITE_USER_KEY",
}

POLICY_ENV_KEYS = {
    "quota_cooldown_sec": "QUOTA_COOLDOWN_SEC",
    "quota_buffer_sec": "QUOTA_BUFFER_SEC",
    "quota_timezone": "QUOTA_TIMEZONE",
    "day_catchup_hours": "CATCHUP_DAY_HOURS",
    "hour_catchup_hours": "CATCHUP_HOUR_HOURS",
}


class SchedulePolicy(BaseModel):
    """Tuning constants for window catch-up and quota backoff."""

    # Backlog (whole hours) above which the next window is one day wide
    day_catchup_hours: int = Field(default=24, gt=0)
    day_window_sec: int = Field(default=24 * 3600, gt=0)
    # Backlog (whole hours) above which the next window is one hour wide
    hour_catchup_hours: int = Field(default=1, ge=0)
    hour_window_sec: int = Field(default=3600, gt=0)

    quota_cooldown_sec: int = Field(default=900, gt=0)
    quota_buffer_sec: int = Field(default=60, ge=0)
    quota_timezone: str = "America/Los_Angeles"

    fast_delay_sec: int = Field(default=1, gt=0)
    initial_delay_sec: int = Field(default=1, gt=0)
    start_offset_sec: int = Field(default=300, ge=0)

    model_config = {"frozen": True}

    @field_validator("quota_timezone")
    @classmethod
    def _known_timezone(cls, value: str) -> str:
        try:
            pytz.timezone(value)
        except pytz.UnknownTimeZoneError:
            raise ValueError(f"unknown timezone: {value}")
        return value

    @property
    def tz(self):
        return pytz.timezone(self.quota_timezone)


class PollerConfig(BaseModel):
    targets: List[str]
    start_ts: Optional[datetime] = None
    poll_interval_sec: int = Field(default=60, gt=0)
    # 0 or unset means a single page per invocation
    max_pages_per_invocation: Optional[int] = Field(default=1, ge=0)
    scopes: List[str] = Field(default_factory=lambda: list(DEFAULT_SCOPES))
    creds_json: Optional[str] = Field(default=None, repr=False)
    subject: Optional[str] = None
    user_key: str = "all"
    policy: SchedulePolicy = Field(default_factory=SchedulePolicy)

    model_config = {"frozen": True}

    @field_validator("targets", mode="before")
    @classmethod
    def _split_targets(cls, value: Any) -> Any:
        return _split_list(value)

    @field_validator("targets")
    @classmethod
    def _check_targets(cls, value: List[str]) -> List[str]:
        targets = [t.strip() for t in value]
        if not targets:
            raise ValueError("at least one target is required")
        if any(not t for t in targets):
            raise ValueError("target names must not be blank")
        if len(set(targets)) != len(targets):
            raise ValueError("target names must be unique")
        return targets

    @field_validator("scopes", mode="before")
    @classmethod
    def _split_scopes(cls, value: Any) -> Any:
        return [s.strip() for s in _split_list(value) if s and s.strip()]

    @field_validator("start_ts")
    @classmethod
    def _utc_start(cls, value: Optional[datetime]) -> Optional[datetime]:
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)

    @property
    def page_budget(self) -> int:
        return self.max_pages_per_invocation or 1


def _split_list(value: Any) -> Any:
    """Accept a list, a JSON list string or a comma-separated string."""
    if value is None:
        return []
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return []
        if text.startswith("["):
            try:
                return json.loads(text)
            except json.JSONDecodeError as e:
                raise ValueError(f"invalid JSON list: {e}")
        return [part for part in text.split(",")]
    return value


def load_yaml(path: str) -> Dict[str, Any]:
    """Read a YAML config file into a dict."""
    try:
        with open(path, "r") as f:
            data = yaml.safe_load(f) or {}
    except OSError as e:
        raise ConfigError(f"Cannot read config file {path}: {e}")
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}")

    if not isinstance(data, dict):
        raise ConfigError(f"Invalid config file {path}: expected a mapping at top level")
    return data


def load_config(path: Optional[str] = None, env: Optional[Mapping[str, str]] = None) -> PollerConfig:
    """
    Build a PollerConfig from an optional YAML file and the environment.

    Args:
        path: Optional YAML file path
        env: Environment mapping (defaults to os.environ)

    Returns:
        Validated PollerConfig

    Raises:
        ConfigError: If any value is missing or malformed
    """
    env = os.environ if env is None else env
    raw: Dict[str, Any] = load_yaml(path) if path else {}
    policy_raw: Dict[str, Any] = dict(raw.pop("policy", None) or {})

    for key, var in ENV_KEYS.items():
        if env.get(var):
            raw[key] = env[var]
    for key, var in POLICY_ENV_KEYS.items():
        if env.get(var):
            policy_raw[key] = env[var]

    if "targets" not in raw:
        raise ConfigError(f"No targets configured. Set {ENV_KEYS['targets']} or 'targets' in the config file.")

    try:
        config = PollerConfig(policy=SchedulePolicy(**policy_raw), **raw)
    except ValidationError as e:
        raise ConfigError(f"Invalid configuration: {e}")

    logger.info(
        f"Loaded configuration for {len(config.targets)} targets "
        f"(interval={config.poll_interval_sec}s, page budget={config.page_budget})"
    )
    return config
