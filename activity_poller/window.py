"""
Window scheduling.

Decides the next ``[since, until)`` fetch window and poll delay for a target from
the previous state and the outcome of the last fetch. Every function here is pure
apart from logging; the caller supplies ``now``.
"""

from datetime import datetime, time, timedelta, timezone
from typing import List, Optional, Tuple, Union

from activity_poller.config import PollerConfig, SchedulePolicy
from activity_poller.errors import ConfigError, QuotaExceeded
from activity_poller.logging_conf import logger
from activity_poller.state import CollectionState, FetchOutcome, to_iso

Outcome = Union[FetchOutcome, QuotaExceeded]

DEFAULT_POLICY = SchedulePolicy()


def _utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def initialize(config: PollerConfig, now: datetime) -> List[CollectionState]:
    """
    Build the first state for every configured target.

    Args:
        config: Validated poller configuration
        now: Current wall-clock time

    Returns:
        One CollectionState per target, in configuration order

    Raises:
        ConfigError: If the targets or start time are unusable
    """
    if not config.targets:
        raise ConfigError("No targets configured")

    policy = config.policy
    start = config.start_ts or (_utc(now) - timedelta(seconds=policy.start_offset_sec))
    start = _utc(start)
    end = start + timedelta(seconds=config.poll_interval_sec)

    states = [
        CollectionState(
            target=target,
            since=start,
            until=end,
            continuation_token=None,
            quota_reset_at=None,
            poll_interval_sec=policy.initial_delay_sec,
        )
        for target in config.targets
    ]
    logger.info(f"Initialized {len(states)} collection states starting at {to_iso(start)}")
    return states


def quota_in_effect(state: CollectionState, now: datetime) -> bool:
    """True while a previously hit daily quota has not yet reset."""
    return state.quota_reset_at is not None and _utc(now) < state.quota_reset_at


def next_quota_reset(now: datetime, tz, buffer_sec: int) -> datetime:
    """
    Return the next local midnight in ``tz`` (as UTC) plus a safety buffer.

    Daily quotas reset at midnight in the upstream's reference timezone rather than
    at UTC midnight, so the boundary is computed in local time and converted back.
    """
    local_now = _utc(now).astimezone(tz)
    next_day = local_now.date() + timedelta(days=1)
    # pytz zones must localize naive datetimes to pick the right DST offset
    midnight = tz.localize(datetime.combine(next_day, time(0, 0)))
    return midnight.astimezone(timezone.utc) + timedelta(seconds=buffer_sec)


def hours_behind(now: datetime, reference: datetime) -> int:
    """Whole hours (truncated) that ``reference`` lags behind ``now``."""
    return int((_utc(now) - _utc(reference)).total_seconds() // 3600)


def catch_up_width(behind_hours: int, poll_interval_sec: int, policy: SchedulePolicy = DEFAULT_POLICY) -> timedelta:
    """Width of the next window given how far collection lags real time."""
    if behind_hours > policy.day_catchup_hours:
        return timedelta(seconds=policy.day_window_sec)
    if behind_hours > policy.hour_catchup_hours:
        return timedelta(seconds=policy.hour_window_sec)
    return timedelta(seconds=poll_interval_sec)


def next_window(
    state: CollectionState,
    now: datetime,
    poll_interval_sec: int,
    policy: SchedulePolicy = DEFAULT_POLICY,
) -> CollectionState:
    """State for the window following a fully drained one."""
    now = _utc(now)
    # A window ending in the future only covered events up to now
    drained_until = max(state.since, min(state.until, now))

    behind = hours_behind(now, drained_until)
    width = catch_up_width(behind, poll_interval_sec, policy)
    if behind > policy.hour_catchup_hours:
        logger.info(
            f"Collection for {state.target} is {behind} hours behind. "
            f"Widening the next window to {int(width.total_seconds())}s to catch up"
        )

    until = drained_until + width
    lagging = (now - until).total_seconds() > poll_interval_sec
    delay = policy.fast_delay_sec if lagging else poll_interval_sec

    return CollectionState(
        target=state.target,
        since=drained_until,
        until=until,
        continuation_token=None,
        quota_reset_at=None,
        poll_interval_sec=delay,
    )


def transition(
    state: CollectionState,
    outcome: Optional[Outcome],
    now: datetime,
    poll_interval_sec: int,
    policy: SchedulePolicy = DEFAULT_POLICY,
) -> Tuple[CollectionState, int]:
    """
    Compute the state to persist after an invocation, and the delay before the next one.

    Args:
        state: State the invocation started from
        outcome: FetchOutcome from the fetcher, or the QuotaExceeded it raised
        now: Current wall-clock time
        poll_interval_sec: Configured base poll interval
        policy: Catch-up and quota tuning

    Returns:
        Tuple of (next state, delay in seconds)
    """
    if quota_in_effect(state, now):
        logger.info(f"API daily limit exceeded. The quota will be reset at {to_iso(state.quota_reset_at)}")
        return state, state.poll_interval_sec

    if isinstance(outcome, QuotaExceeded):
        reset_at = next_quota_reset(now, policy.tz, policy.quota_buffer_sec)
        logger.info(f"API daily limit exceeded. The quota will be reset at {to_iso(reset_at)}")
        new_state = state.evolve(quota_reset_at=reset_at, poll_interval_sec=policy.quota_cooldown_sec)
        return new_state, new_state.poll_interval_sec

    if outcome is None:
        raise ValueError("transition requires a fetch outcome unless the quota is in effect")

    if outcome.continuation_token is not None:
        new_state = state.evolve(
            continuation_token=outcome.continuation_token,
            quota_reset_at=None,
            poll_interval_sec=policy.fast_delay_sec,
        )
        return new_state, new_state.poll_interval_sec

    new_state = next_window(state, now, poll_interval_sec, policy)
    return new_state, new_state.poll_interval_sec
