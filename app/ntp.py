"""
NTP time check - verify the system clock before scheduling fetches.

Archive minutes are derived from the wall clock, so a skewed clock asks the
archive for snapshots that do not exist yet (or skips the newest one).
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

try:
    import ntplib
except ImportError:
    ntplib = None  # type: ignore[assignment]

logger = logging.getLogger(__name__)

# A 15 s publish lag is the tightest margin the fetch rules rely on
_NTP_OFFSET_THRESHOLD_SEC = 15

_NTP_SERVER = "pool.ntp.org"


def check_ntp_time(threshold_sec: float = _NTP_OFFSET_THRESHOLD_SEC) -> bool:
    """
    Compare the system clock against NTP and log an error on large drift.

    Returns False only when the offset exceeds ``threshold_sec``. An
    unreachable server or a missing ntplib counts as acceptable.
    """
    if ntplib is None:
        logger.warning("ntplib not installed; skipping NTP time verification.")
        return True
    try:
        response = ntplib.NTPClient().request(_NTP_SERVER, version=3)
    except Exception as exc:
        logger.warning(
            "Could not verify system time via NTP (%s): %s. "
            "Archive minute selection assumes the clock is right.",
            _NTP_SERVER,
            exc,
        )
        return True

    # Positive offset: local clock is ahead of NTP
    offset_sec = response.offset
    if abs(offset_sec) <= threshold_sec:
        logger.debug("NTP check OK: offset %.2f s from %s", offset_sec, _NTP_SERVER)
        return True

    ntp_utc = datetime.fromtimestamp(response.tx_time, tz=timezone.utc)
    logger.error(
        "System time is incorrect: offset from NTP (%s) is %.1f s "
        "(threshold %.1f s, NTP UTC %s). Webcam fetches may target "
        "unpublished snapshots. Fix system time (NTP sync).",
        _NTP_SERVER,
        offset_sec,
        threshold_sec,
        ntp_utc.isoformat(),
    )
    return False
