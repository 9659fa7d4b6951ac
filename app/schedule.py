"""
Alpen-Webcams fetcher - Fetch eligibility.

The archive files each snapshot under the 10-minute boundary it shows, but
publishes it roughly two minutes later. This module turns the current time and
the archive time of the last fetched image into a decision: fetch now or not,
and which archive minute to ask for.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from app.constants import (
    ARCHIVE_STEP,
    ARCHIVE_STEP_MINUTES,
    MIN_PUBLISH_LAG,
    PRE_PUBLISH_REMAINDERS,
    PUBLISH_WINDOW_REMAINDERS,
    STALE_AFTER,
)


@dataclass(frozen=True)
class FetchDecision:
    """Outcome of one eligibility evaluation."""

    now: datetime
    forced: bool
    in_publish_window: bool
    elapsed: timedelta | None
    stale: bool
    should_fetch: bool
    target: datetime | None = None
    lag: timedelta | None = None

    @property
    def eligible(self) -> bool:
        """True when a fetch is wanted, before the publish-lag check."""
        return self.should_fetch or (self.forced and self.stale)

    @property
    def premature(self) -> bool:
        """True when the target snapshot cannot exist yet."""
        return self.lag is not None and self.lag < MIN_PUBLISH_LAG

    @property
    def issue_request(self) -> bool:
        return self.target is not None and not self.premature


def _absolute(moment: datetime) -> datetime:
    """Aware datetimes in UTC; same-zone subtraction ignores DST offsets."""
    if moment.tzinfo is None:
        return moment
    return moment.astimezone(timezone.utc)


def archive_minute(now: datetime, step_back: bool = False) -> datetime:
    """
    Truncate ``now`` to its 10-minute archive boundary (seconds zeroed).

    With ``step_back`` the previous boundary is returned instead. The result
    is in ``now``'s zone, stepped on absolute time so it is always a wall time
    that exists.
    """
    remainder = now.minute % ARCHIVE_STEP_MINUTES
    target = _absolute(now) - timedelta(
        minutes=remainder, seconds=now.second, microseconds=now.microsecond
    )
    if step_back:
        target -= ARCHIVE_STEP
    if now.tzinfo is not None:
        target = target.astimezone(now.tzinfo)
    return target


def evaluate_fetch(
    now: datetime,
    last_success_time: datetime | None,
    forced: bool = False,
) -> FetchDecision:
    """
    Decide whether to fetch at ``now`` and which archive minute to request.

    A first fetch is always attempted. Afterwards a fetch happens only in the
    publish window (2-3 minutes past a boundary) once the last image is more
    than 5 minutes old. A forced evaluation fetches whenever the last image is
    stale. First and forced fetches made 0-1 minutes past a boundary ask for
    the previous boundary, since the current one is not published yet.
    """
    remainder = now.minute % ARCHIVE_STEP_MINUTES
    in_publish_window = remainder in PUBLISH_WINDOW_REMAINDERS
    elapsed = (
        _absolute(now) - _absolute(last_success_time)
        if last_success_time is not None
        else None
    )
    stale = elapsed is None or elapsed > STALE_AFTER
    should_fetch = elapsed is None or (in_publish_window and stale)

    decision = FetchDecision(
        now=now,
        forced=forced,
        in_publish_window=in_publish_window,
        elapsed=elapsed,
        stale=stale,
        should_fetch=should_fetch,
    )
    if not decision.eligible:
        return decision

    step_back = (last_success_time is None or forced) and (
        remainder in PRE_PUBLISH_REMAINDERS
    )
    target = archive_minute(now, step_back=step_back)
    return FetchDecision(
        now=now,
        forced=forced,
        in_publish_window=in_publish_window,
        elapsed=elapsed,
        stale=stale,
        should_fetch=should_fetch,
        target=target,
        lag=_absolute(now) - _absolute(target),
    )
