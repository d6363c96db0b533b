import json
import math
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence, Tuple

from activity_poller.logging_conf import logger

# Candidate JSON paths, first match wins
TS_PATHS: List[List[Any]] = [["id", "time"]]
TYPE_ID_PATHS: List[List[Any]] = [["kind"]]

MESSAGE_TYPE = "json/gsuite"
PROG_NAME = "GsuiteCollector"
PRIORITY = 11


@dataclass
class LogRecord:
    message: str
    message_ts: Optional[int] = None
    message_ts_us: Optional[int] = None
    message_type_id: Optional[str] = None
    message_type: str = MESSAGE_TYPE
    priority: int = PRIORITY
    prog_name: str = PROG_NAME

    def to_dict(self) -> Dict[str, Any]:
        """Wire form expected by the log shipper; optional keys are omitted when unknown."""
        record = {
            "priority": self.priority,
            "progName": self.prog_name,
            "message": self.message,
            "messageType": self.message_type,
        }
        if self.message_ts is not None:
            record["messageTs"] = self.message_ts
        if self.message_type_id is not None:
            record["messageTypeId"] = self.message_type_id
        if self.message_ts_us:
            record["messageTsUs"] = self.message_ts_us
        return record


def get_by_path(obj: Any, path: Sequence[Any]) -> Any:
    """Walk dict keys / list indexes; None on any miss."""
    current = obj
    for key in path:
        if isinstance(current, dict):
            current = current.get(key)
        elif isinstance(current, list) and isinstance(key, int) and -len(current) <= key < len(current):
            current = current[key]
        else:
            return None
        if current is None:
            return None
    return current


def first_match(obj: Any, paths: Sequence[Sequence[Any]]) -> Any:
    for path in paths:
        value = get_by_path(obj, path)
        if value is not None:
            return value
    return None


def split_timestamp(value: Any) -> Optional[Tuple[int, Optional[int]]]:
    """
    Split a timestamp into whole epoch seconds and a microsecond remainder.

    Args:
        value: ISO-8601 string or epoch seconds (int/float)

    Returns:
        (seconds, microseconds or None) or None if the value is not a timestamp
    """
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        if not math.isfinite(value):
            return None
        seconds = math.floor(value)
        usec = int(round((value - seconds) * 1_000_000))
        if usec == 1_000_000:
            seconds, usec = seconds + 1, 0
        return seconds, usec or None
    if not isinstance(value, str) or not value.strip():
        return None

    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)

    seconds = int(parsed.timestamp() // 1)
    return seconds, parsed.microsecond or None


def format_event(event: Dict[str, Any], ts_paths=TS_PATHS, type_id_paths=TYPE_ID_PATHS) -> LogRecord:
    """
    Frame one raw event as a log record.

    Args:
        event: Raw upstream event object
        ts_paths: Candidate paths to the event timestamp
        type_id_paths: Candidate paths to the event type identifier

    Returns:
        LogRecord; missing timestamp or type id just leaves those fields unset
    """
    ts = split_timestamp(first_match(event, ts_paths))
    type_id = first_match(event, type_id_paths)

    record = LogRecord(message=json.dumps(event, separators=(",", ":"), default=str))
    if ts is not None:
        record.message_ts, record.message_ts_us = ts
    if type_id is not None:
        record.message_type_id = f"{type_id}"
    return record


def normalize_events(raw_items: List[Dict[str, Any]], ts_paths=TS_PATHS, type_id_paths=TYPE_ID_PATHS) -> List[LogRecord]:
    """Frame every event, preserving order. Nothing is dropped."""
    records = [format_event(item, ts_paths, type_id_paths) for item in raw_items]
    missing_ts = sum(1 for r in records if r.message_ts is None)
    if missing_ts:
        logger.debug(f"{missing_ts} of {len(records)} events had no recognizable timestamp")
    return records
