"""
Alpen-Webcams fetcher - Application constants.

Centralizes the archive timing rules and host limits.
"""

from datetime import timedelta

# Time
SECONDS_PER_MINUTE = 60
MILLISECONDS_PER_SECOND = 1000

# The archive files one snapshot per 10-minute boundary
ARCHIVE_STEP_MINUTES = 10
ARCHIVE_STEP = timedelta(minutes=ARCHIVE_STEP_MINUTES)

# Minutes past each boundary when the newest snapshot is expected to be online
PUBLISH_WINDOW_REMAINDERS = frozenset({2, 3})

# Minutes past each boundary when the current snapshot is not online yet
PRE_PUBLISH_REMAINDERS = frozenset({0, 1})

# A result older than this is stale and may be replaced
STALE_AFTER = timedelta(minutes=5)

# The archive needs at least this long after a boundary to publish
MIN_PUBLISH_LAG = timedelta(seconds=15)

# Re-evaluation cadence while the consumer is visible
DEFAULT_CHECK_INTERVAL_SECONDS = 15

# HTTP
DEFAULT_REQUEST_TIMEOUT_SECONDS = 5

# Asset store limits (1 hour, 12 entries)
DEFAULT_ASSET_MAX_AGE_SECONDS = 60 * SECONDS_PER_MINUTE
DEFAULT_ASSET_MAX_ENTRIES = 12

# Host channel names
CHANNEL_WEBCAM_IMAGE = "webcam_image"

# Visibility state that counts as inactive; every other state is active
VISIBILITY_SLEEP = "SLEEP"
VISIBILITY_ACTIVE = "ACTIVE"

# Web UI
DEFAULT_LOG_DISPLAY_COUNT = 100
