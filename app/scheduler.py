"""
Alpen-Webcams fetcher - Fetch scheduler.

While the display is visible, re-evaluates fetch eligibility every 15 seconds
on an APScheduler job. Fetches run on a short-lived thread; at most one is in
flight per camera. Data requests are answered with the last good image.
"""

from __future__ import annotations

import json
import logging
import threading
from concurrent.futures import Future
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import requests
from apscheduler.jobstores.base import JobLookupError
from apscheduler.triggers.interval import IntervalTrigger

from app import archive
from app.cameras import CameraSource, resolve_camera
from app.constants import (
    CHANNEL_WEBCAM_IMAGE,
    DEFAULT_CHECK_INTERVAL_SECONDS,
    DEFAULT_REQUEST_TIMEOUT_SECONDS,
    MILLISECONDS_PER_SECOND,
    VISIBILITY_SLEEP,
)
from app.host import Host, Subscription
from app.schedule import FetchDecision, evaluate_fetch

logger = logging.getLogger(__name__)

IMAGE_CONTENT_TYPE = "jpg"
IMAGE_FILENAME = "now.jpg"

# Extra wait on top of the request timeout before a data request gives up
_DATA_REQUEST_GRACE_SECONDS = 1.0

# Recent log lines for the web status page
_log_lock = threading.Lock()
_log_state = {
    "entries": [],  # list[dict]
    "bytes": 0,  # approximate byte size of entries
}

_MAX_LOG_BYTES = 500 * 1024  # 500 KB


def _append_log(message: str, level: str = "INFO") -> None:
    entry = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "level": level,
        "message": message,
    }
    with _log_lock:
        _log_state["entries"].append(entry)
        _log_state["bytes"] += len(json.dumps(entry))

        while _log_state["bytes"] > _MAX_LOG_BYTES and len(_log_state["entries"]) > 1:
            removed = _log_state["entries"].pop(0)
            _log_state["bytes"] -= len(json.dumps(removed))


def get_log_entries() -> list[dict]:
    """Return a copy of the captured log entries, oldest first."""
    with _log_lock:
        return list(_log_state["entries"])


class _SchedulerLogHandler(logging.Handler):
    """Captures scheduler log records for the web status page."""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            _append_log(self.format(record), record.levelname)
        except Exception as exc:
            # Not via _append_log, which may be what is failing
            logging.getLogger().warning(
                "Scheduler log handler failed to store entry: %s", exc
            )


def install_log_capture() -> None:
    """Attach the capture handler to the fetch loggers (once)."""
    for name in ("app.scheduler", "app.archive"):
        target = logging.getLogger(name)
        if any(isinstance(h, _SchedulerLogHandler) for h in target.handlers):
            continue
        handler = _SchedulerLogHandler()
        handler.setFormatter(logging.Formatter("%(message)s"))
        target.addHandler(handler)


class FetchStatus(Enum):
    IDLE = "idle"
    FETCHING = "fetching"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass(frozen=True)
class ImageResult:
    """The last good image: an asset reference and the archive time it shows."""

    asset_uid: str
    filename: str
    captured_at: datetime

    @property
    def time_ms(self) -> int:
        return int(self.captured_at.timestamp() * MILLISECONDS_PER_SECOND)

    def to_payload(self) -> dict:
        return {
            "image": {"asset_uid": self.asset_uid, "filename": self.filename},
            "time_ms": self.time_ms,
            "captured_at": self.captured_at.isoformat(),
        }


@dataclass
class PendingFetch:
    sequence: int
    target: datetime
    url: str
    future: Future = field(default_factory=Future)


class FetchScheduler:
    """
    Fetch loop for one camera.

    ``scheduler`` is an APScheduler scheduler owned by the caller; the
    recurring check is added to it while the display is visible and removed
    when it goes to sleep.
    """

    def __init__(
        self,
        camera: CameraSource | None,
        host: Host,
        scheduler,
        *,
        check_interval_seconds: int = DEFAULT_CHECK_INTERVAL_SECONDS,
        request_timeout: float = DEFAULT_REQUEST_TIMEOUT_SECONDS,
        verify_tls: bool = False,
        tz: ZoneInfo | None = None,
        clock=None,
    ) -> None:
        self.camera = camera
        self.host = host
        self._scheduler = scheduler
        self._check_interval_seconds = check_interval_seconds
        self._request_timeout = request_timeout
        self._verify_tls = verify_tls
        self._tz = tz
        self._clock = clock or (lambda: datetime.now(self._tz))

        self._lock = threading.Lock()
        self._timer_lock = threading.Lock()

        self._status = FetchStatus.IDLE
        self._last_success_time: datetime | None = None
        self._last_result: ImageResult | None = None
        self._in_flight: PendingFetch | None = None
        self._fetch_sequence = 0
        self._timer_job = None
        self._stopped = False
        self._subscriptions: list[Subscription] = []

    @classmethod
    def from_config(cls, config: dict, host: Host, scheduler) -> FetchScheduler:
        source = config.get("source", {})
        schedule = config.get("schedule", {})
        tz_name = (source.get("timezone") or "").strip()
        tz = None
        if tz_name:
            try:
                tz = ZoneInfo(tz_name)
            except (ZoneInfoNotFoundError, ValueError):
                logger.error(
                    "Unknown timezone %r; using host local time.", tz_name
                )
        return cls(
            resolve_camera(config),
            host,
            scheduler,
            check_interval_seconds=schedule.get(
                "check_interval_seconds", DEFAULT_CHECK_INTERVAL_SECONDS
            ),
            request_timeout=source.get(
                "request_timeout", DEFAULT_REQUEST_TIMEOUT_SECONDS
            ),
            verify_tls=bool(source.get("verify_tls", False)),
            tz=tz,
        )

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def status(self) -> FetchStatus:
        with self._lock:
            return self._status

    @property
    def last_success_time(self) -> datetime | None:
        with self._lock:
            return self._last_success_time

    @property
    def last_result(self) -> ImageResult | None:
        with self._lock:
            return self._last_result

    @property
    def in_flight(self) -> PendingFetch | None:
        with self._lock:
            return self._in_flight

    @property
    def fetch_sequence(self) -> int:
        with self._lock:
            return self._fetch_sequence

    @property
    def timer_active(self) -> bool:
        with self._timer_lock:
            return self._timer_job is not None

    @property
    def stopped(self) -> bool:
        return self._stopped

    def snapshot(self) -> dict:
        """Return a JSON-friendly view of the scheduler state."""
        with self._lock:
            pending = self._in_flight
            result = self._last_result
            snap = {
                "camera": self.camera.to_dict() if self.camera else None,
                "status": self._status.value,
                "last_success_time": (
                    self._last_success_time.isoformat()
                    if self._last_success_time
                    else None
                ),
                "fetch_sequence": self._fetch_sequence,
                "in_flight": (
                    {
                        "sequence": pending.sequence,
                        "target": pending.target.isoformat(),
                        "url": pending.url,
                    }
                    if pending
                    else None
                ),
                "last_result": result.to_payload() if result else None,
                "stopped": self._stopped,
            }
        snap["timer_active"] = self.timer_active
        return snap

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Subscribe to the host's visibility changes and data requests."""
        if self.camera is not None:
            self._subscriptions.append(
                self.host.events.subscribe_visibility(
                    CHANNEL_WEBCAM_IMAGE, self.visibility_changed
                )
            )
        else:
            logger.error("'webcam' not defined in config; fetching disabled.")

        try:
            self._subscriptions.append(
                self.host.events.subscribe_data_requests(
                    CHANNEL_WEBCAM_IMAGE, self.on_data_request
                )
            )
        except ValueError as exc:
            logger.error("Could not subscribe to data requests: %s", exc)

        if self.camera is not None:
            logger.info(
                "Fetch scheduler started for %s (%s).",
                self.camera.display_name,
                self.camera.archive_base,
            )

    def stop(self, reason: str = "") -> None:
        """
        Stop the instance: cancel the timer and drop subscriptions.

        A fetch still running completes its request but leaves state alone.
        """
        logger.info("Stopping fetch scheduler%s.", f" ({reason})" if reason else "")
        with self._lock:
            self._stopped = True
        self._cancel_timer()
        for subscription in self._subscriptions:
            subscription.cancel()
        self._subscriptions.clear()

    def visibility_changed(self, state_new: str) -> None:
        """
        Follow the consumer's visibility.

        SLEEP cancels the recurring check. Any other state, when no check is
        running, evaluates once with ``forced`` and starts the check.
        """
        logger.info("Visibility changed: %s", state_new)
        if self._stopped:
            return
        if state_new == VISIBILITY_SLEEP:
            self._cancel_timer()
            return

        with self._timer_lock:
            if self._stopped or self._timer_job is not None:
                return
            self.evaluate(forced=True)
            self._timer_job = self._scheduler.add_job(
                self.evaluate,
                trigger=IntervalTrigger(seconds=self._check_interval_seconds),
                id=self._job_id(),
                name="Webcam fetch check",
                replace_existing=True,
                max_instances=1,
                coalesce=True,
            )
        logger.debug(
            "Fetch check scheduled every %d s.", self._check_interval_seconds
        )

    def _job_id(self) -> str:
        ident = self.camera.identifier if self.camera else "none"
        return f"fetch-check-{ident}-{id(self):x}"

    def _cancel_timer(self) -> None:
        with self._timer_lock:
            job = self._timer_job
            self._timer_job = None
            if job is None:
                return
            try:
                job.remove()
            except JobLookupError:
                logger.debug("Fetch check job already removed.")
        logger.debug("Fetch check cancelled.")

    # ------------------------------------------------------------------
    # Eligibility
    # ------------------------------------------------------------------

    def evaluate(self, forced: bool = False) -> FetchDecision | None:
        """
        Run one eligibility check and start a fetch when it says so.

        Never raises; errors are logged so the recurring job keeps going.
        """
        try:
            return self._evaluate(forced)
        except Exception:
            logger.exception("Fetch check failed")
            return None

    def _evaluate(self, forced: bool) -> FetchDecision | None:
        if self.camera is None:
            logger.debug("Fetch check skipped: no camera configured.")
            return None

        with self._lock:
            if self._stopped:
                return None
            if self._in_flight is not None:
                logger.debug(
                    "Fetch check skipped: fetch [ %d ] still in flight.",
                    self._in_flight.sequence,
                )
                return None

            decision = evaluate_fetch(self._clock(), self._last_success_time, forced)
            logger.debug(
                "Fetch check: publish window [ %s ], since last [ %s ], "
                "stale [ %s ], forced [ %s ] => %s",
                decision.in_publish_window,
                decision.elapsed,
                decision.stale,
                forced,
                decision.eligible,
            )
            if not decision.eligible:
                return decision
            if decision.premature:
                logger.debug(
                    "Not fetching %s: only %.1f s past the boundary.",
                    decision.target.isoformat(),
                    decision.lag.total_seconds(),
                )
                return decision
            pending = self._begin_fetch(decision.target)

        threading.Thread(
            target=self._run_fetch,
            args=(pending,),
            name=f"fetch-{pending.sequence}",
            daemon=True,
        ).start()
        return decision

    # ------------------------------------------------------------------
    # Fetch
    # ------------------------------------------------------------------

    def _begin_fetch(self, target: datetime) -> PendingFetch:
        """Mark a fetch for ``target`` as in flight. Caller holds _lock."""
        self._fetch_sequence += 1
        pending = PendingFetch(
            sequence=self._fetch_sequence,
            target=target,
            url=archive.build_image_url(self.camera, target),
        )
        self._in_flight = pending
        self._status = FetchStatus.FETCHING
        return pending

    def fetch(self, target: datetime) -> ImageResult | None:
        """
        Fetch the snapshot filed at ``target`` and wait for the outcome.

        If a fetch is already in flight no new request is made; the caller
        waits for that one and gets its outcome. Returns the new ImageResult,
        or None when the fetch failed or the instance is stopped.
        """
        if self.camera is None:
            logger.debug("fetch(%s) ignored: no camera configured.", target)
            return None

        with self._lock:
            if self._stopped:
                return None
            pending = self._in_flight
            owner = pending is None
            if owner:
                pending = self._begin_fetch(target)

        if owner:
            return self._run_fetch(pending)
        logger.debug(
            "fetch(%s) joins fetch [ %d ] in flight.",
            target.isoformat(),
            pending.sequence,
        )
        return pending.future.result()

    def _run_fetch(self, pending: PendingFetch) -> ImageResult | None:
        outcome = None
        try:
            outcome = self._execute(pending)
        except Exception:
            logger.exception("GetData [ %d ] failed", pending.sequence)
            self._settle_failure(pending)
        finally:
            pending.future.set_result(outcome)
        return outcome

    def _execute(self, pending: PendingFetch) -> ImageResult | None:
        logger.info("GetData [ %d ] [ %s ] ...", pending.sequence, pending.url)
        self.host.push.inform_loading(CHANNEL_WEBCAM_IMAGE)

        try:
            resp = archive.fetch_image(
                pending.url, timeout=self._request_timeout, verify=self._verify_tls
            )
        except requests.RequestException as exc:
            # A request cut short by stop() is expected; stay quiet about it
            if not self._stopped:
                logger.warning(
                    "GetData [ %d ] request failed: %s", pending.sequence, exc
                )
            self._settle_failure(pending)
            return None

        if not resp.ok:
            logger.error(
                "GetError [ %d ]: HTTP %s (%d bytes) for %s",
                pending.sequence,
                resp.status_code,
                len(resp.body),
                pending.url,
            )
            self._settle_failure(pending)
            return None

        with self._lock:
            if self._stopped:
                logger.debug(
                    "GetData [ %d ] finished after stop; discarded.", pending.sequence
                )
                return None
            uid = "img_" + pending.url
            self.host.assets.insert(uid, resp.body, IMAGE_CONTENT_TYPE)
            result = ImageResult(
                asset_uid=uid, filename=IMAGE_FILENAME, captured_at=pending.target
            )
            self._last_result = result
            self._last_success_time = pending.target
            self._in_flight = None
            self._status = FetchStatus.SUCCEEDED
            self.host.push.transmit(CHANNEL_WEBCAM_IMAGE, result.to_payload())

        logger.info(
            "GetData [ %d ] => got data after [ %d ] ms, transmitted.",
            pending.sequence,
            resp.elapsed_ms,
        )
        return result

    def _settle_failure(self, pending: PendingFetch) -> None:
        with self._lock:
            if self._stopped:
                return
            if self._in_flight is pending:
                self._in_flight = None
            self._status = FetchStatus.FAILED
        self.host.push.clear_loading(CHANNEL_WEBCAM_IMAGE)

    # ------------------------------------------------------------------
    # Data requests
    # ------------------------------------------------------------------

    def on_data_request(self, _params: object = None) -> dict | None:
        """
        Answer a data request with the last good image payload.

        Waits for a fetch in flight to settle first; the wait is bounded by
        the request timeout. Returns None when nothing was fetched yet.
        """
        logger.debug("Data request received.")
        with self._lock:
            pending = self._in_flight
        if pending is not None:
            try:
                pending.future.result(
                    timeout=self._request_timeout + _DATA_REQUEST_GRACE_SECONDS
                )
            except FutureTimeoutError:
                logger.warning(
                    "Data request stopped waiting for fetch [ %d ].", pending.sequence
                )
        with self._lock:
            result = self._last_result
        return result.to_payload() if result else None
