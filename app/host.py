"""
Alpen-Webcams fetcher - Host surface.

In-process stand-ins for the display host the fetcher plugs into:
  - EventSource: visibility and data-request subscriptions
  - AssetStore: bounded, expiring store for fetched image bytes
  - PushChannel: latest payload pushed per output channel
"""

from __future__ import annotations

import logging
import threading
import time
from collections import OrderedDict
from collections.abc import Callable
from dataclasses import dataclass, field

from app.constants import DEFAULT_ASSET_MAX_AGE_SECONDS, DEFAULT_ASSET_MAX_ENTRIES

logger = logging.getLogger(__name__)

VisibilityCallback = Callable[[str], None]
DataRequestCallback = Callable[[object], object]


class Subscription:
    """Handle returned by EventSource.subscribe_*; cancel() unsubscribes."""

    def __init__(self, remove: Callable[[], None]) -> None:
        self._remove = remove
        self._cancelled = False

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        if self._cancelled:
            return
        self._cancelled = True
        self._remove()


class EventSource:
    """
    Routes host events to registered handlers, keyed by channel name.

    Visibility changes fan out to every subscriber. Data requests go to the
    single handler registered for a channel.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._visibility: dict[str, list[VisibilityCallback]] = {}
        self._data_handlers: dict[str, DataRequestCallback] = {}
        self._visibility_state: dict[str, str] = {}

    def subscribe_visibility(
        self, channel: str, callback: VisibilityCallback
    ) -> Subscription:
        with self._lock:
            self._visibility.setdefault(channel, []).append(callback)

        def _remove() -> None:
            with self._lock:
                callbacks = self._visibility.get(channel, [])
                if callback in callbacks:
                    callbacks.remove(callback)

        logger.debug("Visibility subscriber added on %s", channel)
        return Subscription(_remove)

    def subscribe_data_requests(
        self, channel: str, callback: DataRequestCallback
    ) -> Subscription:
        """Register the data-request handler. Raises ValueError if taken."""
        with self._lock:
            if channel in self._data_handlers:
                raise ValueError(f"Data request handler already set for {channel!r}")
            self._data_handlers[channel] = callback

        def _remove() -> None:
            with self._lock:
                if self._data_handlers.get(channel) is callback:
                    del self._data_handlers[channel]

        logger.debug("Data request handler added on %s", channel)
        return Subscription(_remove)

    def visibility_state(self, channel: str) -> str | None:
        with self._lock:
            return self._visibility_state.get(channel)

    def emit_visibility(self, channel: str, state: str) -> int:
        """Deliver a visibility change. Returns the number of handlers called."""
        with self._lock:
            self._visibility_state[channel] = state
            callbacks = list(self._visibility.get(channel, []))
        for callback in callbacks:
            callback(state)
        return len(callbacks)

    def request_data(self, channel: str, params: object = None) -> object:
        """Ask the channel's handler for data; None when nobody is subscribed."""
        with self._lock:
            handler = self._data_handlers.get(channel)
        if handler is None:
            logger.debug("Data request on %s has no handler", channel)
            return None
        return handler(params)


@dataclass(frozen=True)
class Asset:
    uid: str
    data: bytes
    content_type: str
    stored_at: float


class AssetStore:
    """
    In-memory asset store with a maximum age and entry count.

    Expired entries are dropped on access; inserting past max_entries evicts
    the least recently used asset.
    """

    def __init__(
        self,
        max_age_seconds: float = DEFAULT_ASSET_MAX_AGE_SECONDS,
        max_entries: int = DEFAULT_ASSET_MAX_ENTRIES,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.max_age_seconds = max_age_seconds
        self.max_entries = max_entries
        self._clock = clock
        self._lock = threading.RLock()
        self._assets: OrderedDict[str, Asset] = OrderedDict()

    def __len__(self) -> int:
        with self._lock:
            self._expire()
            return len(self._assets)

    def __contains__(self, uid: str) -> bool:
        with self._lock:
            self._expire()
            return uid in self._assets

    def _expire(self) -> None:
        cutoff = self._clock() - self.max_age_seconds
        expired = [uid for uid, a in self._assets.items() if a.stored_at < cutoff]
        for uid in expired:
            del self._assets[uid]
        if expired:
            logger.debug("Expired %d asset(s)", len(expired))

    def insert(self, uid: str, data: bytes, content_type: str) -> Asset:
        asset = Asset(
            uid=uid, data=data, content_type=content_type, stored_at=self._clock()
        )
        with self._lock:
            self._expire()
            self._assets.pop(uid, None)
            self._assets[uid] = asset
            while len(self._assets) > self.max_entries:
                evicted, _ = self._assets.popitem(last=False)
                logger.debug("Evicted asset %s (limit %d)", evicted, self.max_entries)
        return asset

    def get(self, uid: str) -> Asset | None:
        with self._lock:
            self._expire()
            asset = self._assets.get(uid)
            if asset is not None:
                self._assets.move_to_end(uid)
            return asset


@dataclass
class _ChannelState:
    payload: dict | None = None
    loading: bool = False
    transmit_count: int = 0


class PushChannel:
    """Holds what was last pushed to each named output channel."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._channels: dict[str, _ChannelState] = {}

    def inform_loading(self, channel: str) -> None:
        with self._lock:
            self._channels.setdefault(channel, _ChannelState()).loading = True

    def clear_loading(self, channel: str) -> None:
        with self._lock:
            state = self._channels.get(channel)
            if state is not None:
                state.loading = False

    def transmit(self, channel: str, payload: dict) -> None:
        with self._lock:
            state = self._channels.setdefault(channel, _ChannelState())
            state.payload = payload
            state.loading = False
            state.transmit_count += 1
        logger.debug("Transmitted payload on %s", channel)

    def snapshot(self, channel: str) -> dict:
        with self._lock:
            state = self._channels.get(channel) or _ChannelState()
            return {
                "payload": state.payload,
                "loading": state.loading,
                "transmit_count": state.transmit_count,
            }


@dataclass
class Host:
    """The collaborators a FetchScheduler talks to."""

    events: EventSource = field(default_factory=EventSource)
    assets: AssetStore = field(default_factory=AssetStore)
    push: PushChannel = field(default_factory=PushChannel)

    @classmethod
    def from_config(cls, config: dict) -> Host:
        assets_cfg = config.get("assets", {})
        return cls(
            assets=AssetStore(
                max_age_seconds=assets_cfg.get(
                    "max_age_seconds", DEFAULT_ASSET_MAX_AGE_SECONDS
                ),
                max_entries=assets_cfg.get("max_entries", DEFAULT_ASSET_MAX_ENTRIES),
            )
        )
