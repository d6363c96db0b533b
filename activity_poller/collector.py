"""
One collection invocation per target.

The host hands in the last persisted state; ``collect`` returns the framed records,
the state to persist and the delay before the next call. Quota exhaustion is
resolved into a valid next state here; every other failure propagates unchanged
so the host retries with the state it already has.
"""

from datetime import datetime, timezone
from typing import Any, Dict, Optional

from activity_poller.config import PollerConfig
from activity_poller.errors import QuotaExceeded
from activity_poller.logging_conf import logger
from activity_poller.pagination import FetchPage, fetch_all
from activity_poller.reports_client import build_params
from activity_poller.state import CollectionState, InvocationResult, to_iso
from activity_poller.transform import normalize_events
from activity_poller.window import quota_in_effect, transition


async def collect(state: CollectionState, config: PollerConfig, fetch_page: FetchPage,
                  now: Optional[datetime] = None) -> InvocationResult:
    """
    Run one invocation for a single target.

    Args:
        state: Last persisted state for the target
        config: Poller configuration
        fetch_page: Upstream page fetcher
        now: Wall-clock time to schedule against (defaults to current UTC time)

    Returns:
        InvocationResult(records, state, delay_sec)
    """
    now = now or datetime.now(timezone.utc)
    logger.info(f"GSUI000001 Collecting data for {state.target} from {to_iso(state.since)} till {to_iso(state.until)}")

    if quota_in_effect(state, now):
        # Skip the fetch entirely so no further quota is burned
        logger.info(f"API daily limit exceeded. The quota will be reset at {to_iso(state.quota_reset_at)}")
        return InvocationResult([], state, state.poll_interval_sec)

    try:
        outcome = await fetch_all(
            fetch_page,
            build_params(state, config.user_key),
            config.page_budget,
            start_token=state.continuation_token,
        )
    except QuotaExceeded as e:
        new_state, delay = transition(state, e, now, config.poll_interval_sec, config.policy)
        return InvocationResult([], new_state, delay)

    records = normalize_events(outcome.records)
    new_state, delay = transition(state, outcome, now, config.poll_interval_sec, config.policy)
    logger.info(f"GSUI000002 Next collection in {delay} seconds")
    return InvocationResult(records, new_state, delay)


def registration_values(config: PollerConfig) -> Dict[str, Any]:
    """Parameters the host records when registering this collector."""
    return {
        "gsuiteScope": ",".join(config.scopes),
        "gsuiteApplicationNames": list(config.targets),
    }
