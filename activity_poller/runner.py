import os
import json
import asyncio
import tempfile
import math
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, List, Optional

from activity_poller.auth import TokenProvider, load_credentials
from activity_poller.collector import collect
from activity_poller.config import PollerConfig
from activity_poller.errors import ConfigError
from activity_poller.logging_conf import logger
from activity_poller.reports_client import ReportsClient
from activity_poller.state import CollectionState, parse_iso, to_iso
from activity_poller.window import initialize

Sink = Callable[[List[Dict]], None]


class StateStore:
    """Keeps the per-target collection states, and when each is next due, in a JSON file between runs."""

    def __init__(self, path: str):
        self.path = path
        # target -> earliest time the host may invoke it again
        self.due: Dict[str, datetime] = {}

    def load(self) -> Optional[List[CollectionState]]:
        """Return the stored states, or None if nothing has been stored yet. Fills ``due``."""
        if not os.path.exists(self.path):
            return None
        try:
            with open(self.path, "r") as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            raise ConfigError(f"State file {self.path} is not valid JSON: {e}")
        if not isinstance(data, list):
            raise ConfigError(f"State file {self.path} must hold a list of states")

        states = [CollectionState.from_dict(item) for item in data]
        self.due = {}
        for item, state in zip(data, states):
            try:
                next_run_at = parse_iso(item.get("next_run_at"))
            except ValueError as e:
                raise ConfigError(f"State file {self.path} has a malformed next_run_at: {e}")
            if next_run_at is not None:
                self.due[state.target] = next_run_at
        return states

    def save(self, states: List[CollectionState], due: Optional[Dict[str, datetime]] = None) -> None:
        """Write states atomically so a crash never leaves a half-written file."""
        if due is not None:
            self.due = dict(due)
        entries = []
        for state in states:
            entry = state.to_dict()
            entry["next_run_at"] = to_iso(self.due.get(state.target))
            entries.append(entry)

        directory = os.path.dirname(os.path.abspath(self.path))
        os.makedirs(directory, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=directory, prefix=".state-", suffix=".json")
        try:
            with os.fdopen(fd, "w") as f:
                json.dump(entries, f, indent=2)
            os.replace(tmp_path, self.path)
        except BaseException:
            os.unlink(tmp_path)
            raise


def print_sink(records: List[Dict]) -> None:
    """Default sink: one JSON document per line on stdout."""
    for record in records:
        print(json.dumps(record))


def reconcile(states: List[CollectionState], config: PollerConfig, now: datetime) -> List[CollectionState]:
    """Keep stored states for configured targets and initialize any new ones."""
    by_target = {s.target: s for s in states}
    missing = [t for t in config.targets if t not in by_target]
    if missing:
        fresh = initialize(config.model_copy(update={"targets": missing}), now)
        by_target.update({s.target: s for s in fresh})
    dropped = set(by_target) - set(config.targets)
    if dropped:
        logger.info(f"Dropping state for targets no longer configured: {', '.join(sorted(dropped))}")
    return [by_target[t] for t in config.targets]


async def run_once(config: PollerConfig, store: StateStore, client, sink: Sink = print_sink,
                   now: Optional[datetime] = None) -> int:
    """
    Run one invocation for every target that is due.

    A target is due once its previous delay has elapsed; targets that are not yet
    due keep their state untouched and are not fetched.

    Args:
        config: Poller configuration
        store: Where states are loaded from and saved to
        client: Object with an async ``fetch_page(params)``
        sink: Receives the framed records of each target
        now: Wall-clock time (defaults to current UTC time)

    Returns:
        Seconds until the earliest target is due again
    """
    now = now or datetime.now(timezone.utc)
    stored = store.load()
    states = reconcile(stored, config, now) if stored is not None else initialize(config, now)

    next_states = []
    due: Dict[str, datetime] = {}
    for state in states:
        due_at = store.due.get(state.target)
        if due_at is not None and now < due_at:
            logger.debug(f"Skipping {state.target}, next collection due at {to_iso(due_at)}")
            next_states.append(state)
            due[state.target] = due_at
            continue

        try:
            result = await collect(state, config, client.fetch_page, now=now)
        except Exception as e:
            # Keep the previous state so the next run retries the same window
            logger.error(f"Collection failed for {state.target}: {str(e)}")
            next_states.append(state)
            due[state.target] = now + timedelta(seconds=state.poll_interval_sec)
            continue
        sink([r.to_dict() for r in result.records])
        next_states.append(result.state)
        due[state.target] = now + timedelta(seconds=result.delay_sec)

    store.save(next_states, due)
    earliest = min(due.values())
    return max(1, math.ceil((earliest - now).total_seconds()))


async def run(config: PollerConfig, store: StateStore, once: bool = False, sink: Sink = print_sink):
    """
    Poll continuously, sleeping for the delay each round asks for.

    Args:
        config: Poller configuration
        store: State persistence
        once: Run a single round and return
        sink: Record sink
    """
    credentials = load_credentials(config.creds_json, config.scopes, config.subject)
    async with ReportsClient(TokenProvider(credentials)) as client:
        while True:
            delay = await run_once(config, store, client, sink)
            if once:
                return delay
            logger.info(f"Sleeping {delay}s before the next collection")
            await asyncio.sleep(delay)
