"""Collection state carried between invocations, and the per-invocation outcome types."""

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from activity_poller.errors import ConfigError


def to_iso(value: Optional[datetime]) -> Optional[str]:
    """Render a datetime as an ISO-8601 UTC string with millisecond precision."""
    if value is None:
        return None
    value = value.astimezone(timezone.utc)
    return value.strftime("%Y-%m-%dT%H:%M:%S.") + f"{value.microsecond // 1000:03d}Z"


def parse_iso(value: Any) -> Optional[datetime]:
    """Parse an ISO-8601 string into an aware UTC datetime. Naive input is taken as UTC."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        text = str(value).strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


@dataclass(frozen=True)
class CollectionState:
    target: str
    since: datetime
    until: datetime
    continuation_token: Optional[str] = None
    quota_reset_at: Optional[datetime] = None
    poll_interval_sec: int = 1

    def __post_init__(self):
        if self.since > self.until:
            raise ValueError(f"since ({to_iso(self.since)}) is after until ({to_iso(self.until)})")
        if self.poll_interval_sec <= 0:
            raise ValueError("poll_interval_sec must be > 0")

    def evolve(self, **changes) -> "CollectionState":
        """Return a copy with the given fields replaced."""
        return replace(self, **changes)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "target": self.target,
            "since": to_iso(self.since),
            "until": to_iso(self.until),
            "continuation_token": self.continuation_token,
            "quota_reset_at": to_iso(self.quota_reset_at),
            "poll_interval_sec": self.poll_interval_sec,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CollectionState":
        """
        Rebuild a state from its persisted form.

        Raises:
            ConfigError: If a required key is missing or a value is malformed
        """
        try:
            return cls(
                target=data["target"],
                since=parse_iso(data["since"]),
                until=parse_iso(data["until"]),
                continuation_token=data.get("continuation_token") or None,
                quota_reset_at=parse_iso(data.get("quota_reset_at")),
                poll_interval_sec=int(data.get("poll_interval_sec", 1)),
            )
        except KeyError as e:
            raise ConfigError(f"Persisted state is missing {e}")
        except (TypeError, ValueError) as e:
            raise ConfigError(f"Persisted state is malformed: {e}")


@dataclass
class FetchOutcome:
    """Events gathered by one paginated fetch; a token means pages remain in the window."""

    records: List[Dict[str, Any]] = field(default_factory=list)
    continuation_token: Optional[str] = None
    pages: int = 0

    @property
    def exhausted(self) -> bool:
        return self.continuation_token is None


@dataclass
class InvocationResult:
    """What one invocation hands back to the host."""

    records: List[Any]
    state: CollectionState
    delay_sec: int

    def __iter__(self):
        # Allows `records, state, delay = result`
        return iter((self.records, self.state, self.delay_sec))
