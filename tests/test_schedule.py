"""
Tests for app.schedule - fetch eligibility and archive minute selection.
"""

from datetime import datetime, timedelta, timezone
from zoneinfo import ZoneInfo

from app.archive import build_image_url
from app.cameras import find_camera
from app.schedule import FetchDecision, archive_minute, evaluate_fetch

BERLIN = ZoneInfo("Europe/Berlin")


def _day_of_minutes(second=30):
    """Every minute of one hour, at the given second."""
    base = datetime(2024, 6, 15, 10, 0, second)
    return [base + timedelta(minutes=m) for m in range(60)]


# ---------------------------------------------------------------------------
# Properties
# ---------------------------------------------------------------------------


def test_first_fetch_is_always_attempted():
    """Without a previous success, should_fetch holds for every minute."""
    for now in _day_of_minutes():
        decision = evaluate_fetch(now, None)
        assert decision.should_fetch is True
        assert decision.stale is True
        assert decision.elapsed is None


def test_no_fetch_outside_publish_window_when_fresh():
    """A recent success outside minutes 2-3 past a boundary means no fetch."""
    for now in _day_of_minutes():
        if now.minute % 10 in (2, 3):
            continue
        last = now - timedelta(minutes=2)
        decision = evaluate_fetch(now, last)
        assert decision.should_fetch is False
        assert decision.target is None


def test_no_fetch_outside_publish_window_even_when_stale():
    """A stale image alone does not trigger an unforced fetch."""
    for now in _day_of_minutes():
        if now.minute % 10 in (2, 3):
            continue
        decision = evaluate_fetch(now, now - timedelta(minutes=30))
        assert decision.stale is True
        assert decision.should_fetch is False
        assert decision.eligible is False


def test_target_is_on_a_ten_minute_boundary():
    """Every computed target has zero seconds and a minute divisible by 10."""
    for second in (0, 14, 59):
        for now in _day_of_minutes(second):
            for forced in (False, True):
                decision = evaluate_fetch(now, None, forced=forced)
                assert decision.target is not None
                assert decision.target.second == 0
                assert decision.target.microsecond == 0
                assert decision.target.minute % 10 == 0
                assert decision.target <= now


def test_first_or_forced_fetch_steps_back_right_after_boundary():
    """Minutes 0-1 past a boundary target the previous boundary."""
    for now in _day_of_minutes():
        remainder = now.minute % 10
        if remainder not in (0, 1):
            continue
        expected = now.replace(minute=now.minute - remainder, second=0) - timedelta(
            minutes=10
        )
        assert evaluate_fetch(now, None).target == expected
        stale_last = now - timedelta(hours=1)
        assert evaluate_fetch(now, stale_last, forced=True).target == expected


def test_window_fetch_with_history_does_not_step_back():
    """An unforced fetch in the publish window targets the current boundary."""
    now = datetime(2024, 6, 15, 10, 12, 10)
    decision = evaluate_fetch(now, datetime(2024, 6, 15, 10, 0))
    assert decision.in_publish_window is True
    assert decision.stale is True
    assert decision.should_fetch is True
    assert decision.target == datetime(2024, 6, 15, 10, 10)


def test_window_fetch_skipped_when_not_stale():
    """In the publish window, a success under 5 minutes old blocks fetching."""
    now = datetime(2024, 6, 15, 10, 12, 0)
    decision = evaluate_fetch(now, datetime(2024, 6, 15, 10, 10))
    assert decision.in_publish_window is True
    assert decision.stale is False
    assert decision.should_fetch is False


def test_stale_threshold_is_strictly_more_than_five_minutes():
    now = datetime(2024, 6, 15, 10, 22, 0)
    assert evaluate_fetch(now, now - timedelta(minutes=5)).stale is False
    assert evaluate_fetch(now, now - timedelta(minutes=5, seconds=1)).stale is True


def test_forced_fetch_still_requires_staleness():
    """Forcing does not bypass the 5-minute staleness rule."""
    now = datetime(2024, 6, 15, 10, 7, 30)
    decision = evaluate_fetch(now, datetime(2024, 6, 15, 10, 5), forced=True)
    assert decision.stale is False
    assert decision.eligible is False
    assert decision.target is None


def test_forced_fetch_when_stale_outside_window():
    """A forced, stale evaluation fetches the current boundary."""
    now = datetime(2024, 6, 15, 10, 7, 30)
    decision = evaluate_fetch(now, datetime(2024, 6, 15, 9, 50), forced=True)
    assert decision.should_fetch is False
    assert decision.eligible is True
    assert decision.target == datetime(2024, 6, 15, 10, 0)
    assert decision.issue_request is True


def test_step_back_crosses_midnight():
    now = datetime(2024, 6, 16, 0, 1, 0)
    decision = evaluate_fetch(now, None)
    assert decision.target == datetime(2024, 6, 15, 23, 50)


def test_premature_when_lag_under_fifteen_seconds():
    """A target less than 15 s old is premature and not requested."""
    now = datetime(2024, 6, 15, 10, 20, 10)
    target = datetime(2024, 6, 15, 10, 20)
    decision = FetchDecision(
        now=now,
        forced=False,
        in_publish_window=False,
        elapsed=None,
        stale=True,
        should_fetch=True,
        target=target,
        lag=now - target,
    )
    assert decision.premature is True
    assert decision.issue_request is False


def test_lag_of_exactly_fifteen_seconds_is_not_premature():
    now = datetime(2024, 6, 15, 10, 20, 15)
    target = datetime(2024, 6, 15, 10, 20)
    decision = FetchDecision(
        now=now,
        forced=False,
        in_publish_window=False,
        elapsed=None,
        stale=True,
        should_fetch=True,
        target=target,
        lag=now - target,
    )
    assert decision.premature is False
    assert decision.issue_request is True


def test_archive_minute_truncates_and_steps_back():
    now = datetime(2024, 6, 15, 10, 27, 45, 123456)
    assert archive_minute(now) == datetime(2024, 6, 15, 10, 20)
    assert archive_minute(now, step_back=True) == datetime(2024, 6, 15, 10, 10)


# ---------------------------------------------------------------------------
# Scenarios
# ---------------------------------------------------------------------------


def test_scenario_first_fetch_in_publish_window():
    """10:22:30 with no prior success fetches 10:20 (lag 150 s)."""
    decision = evaluate_fetch(datetime(2024, 6, 15, 10, 22, 30), None)
    assert decision.in_publish_window is True
    assert decision.target == datetime(2024, 6, 15, 10, 20)
    assert decision.lag == timedelta(seconds=150)
    assert decision.issue_request is True


def test_scenario_forced_first_fetch_on_the_hour():
    """10:00:30, forced, no prior success: back up to 09:50."""
    decision = evaluate_fetch(datetime(2024, 6, 15, 10, 0, 30), None, forced=True)
    assert decision.target == datetime(2024, 6, 15, 9, 50)
    assert decision.issue_request is True


def test_scenario_stale_but_outside_window():
    """10:04 with last success 09:55: stale, not in window, not forced."""
    decision = evaluate_fetch(
        datetime(2024, 6, 15, 10, 4), datetime(2024, 6, 15, 9, 55)
    )
    assert decision.elapsed == timedelta(minutes=9)
    assert decision.stale is True
    assert decision.in_publish_window is False
    assert decision.should_fetch is False
    assert decision.issue_request is False


# ---------------------------------------------------------------------------
# Daylight saving transitions (Europe/Berlin)
# ---------------------------------------------------------------------------


def test_elapsed_uses_absolute_time_when_clocks_fall_back():
    """02:50 CEST then 02:02:30 CET is 12.5 minutes later, not 47.5 earlier."""
    last = datetime(2024, 10, 27, 2, 50, tzinfo=BERLIN)
    now = datetime(2024, 10, 27, 2, 2, 30, tzinfo=BERLIN, fold=1)

    decision = evaluate_fetch(now, last)

    assert decision.elapsed == timedelta(minutes=12, seconds=30)
    assert decision.stale is True
    assert decision.should_fetch is True
    assert decision.target.astimezone(timezone.utc) == datetime(
        2024, 10, 27, 1, 0, tzinfo=timezone.utc
    )
    assert decision.target.fold == 1
    assert decision.lag == timedelta(seconds=150)


def test_step_back_skips_missing_hour_when_clocks_spring_forward():
    """03:00 CEST minus one step is 01:50 CET; 02:50 never happened."""
    now = datetime(2024, 3, 31, 3, 0, 40, tzinfo=BERLIN)

    decision = evaluate_fetch(now, None, forced=True)

    assert decision.target.astimezone(timezone.utc) == datetime(
        2024, 3, 31, 0, 50, tzinfo=timezone.utc
    )
    assert decision.target.strftime("%H%M") == "0150"
    assert decision.lag == timedelta(minutes=10, seconds=40)
    url = build_image_url(find_camera("wallberg"), decision.target)
    assert url.endswith("/wallberg/2024/03/31/0150_hd.jpg")


def test_archive_minute_keeps_zone_of_aware_input():
    now = datetime(2024, 6, 15, 10, 27, 45, tzinfo=BERLIN)
    target = archive_minute(now)
    assert target.tzinfo is BERLIN
    assert (target.hour, target.minute, target.second) == (10, 20, 0)
