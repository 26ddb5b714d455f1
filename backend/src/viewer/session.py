"""Stream session controller.

One :class:`StreamSession` owns at most one live subscription. States::

    IDLE --topic set--> SUBSCRIBING --first message--> STREAMING
    SUBSCRIBING/STREAMING --delivery error--> CLOSED
    any --topic or window size changed--> SUBSCRIBING (old handle closed first)

A CLOSED session is never retried on its own; it stays closed until the
parameters change or the caller re-applies them.
"""

import logging
from enum import Enum
from typing import Callable, List, Optional

from utilities import DEFAULT_WINDOW_SIZE

from .errors import SubscriptionDeliveryError
from .feed import FeedService, SubscriptionHandle
from .renderer import DisplayItem, render_all
from .window import WindowBuffer, check_window_size

logger = logging.getLogger(__name__)

UpdateCallback = Callable[[List[DisplayItem]], None]


class SessionState(str, Enum):
    IDLE = "idle"
    SUBSCRIBING = "subscribing"
    STREAMING = "streaming"
    CLOSED = "closed"


class StreamSession:
    def __init__(self, feed: FeedService, on_update: Optional[UpdateCallback] = None,
                 window_size: int = DEFAULT_WINDOW_SIZE):
        self.feed = feed
        self.on_update = on_update
        self.topic: Optional[str] = None
        self.buffer = WindowBuffer(window_size)
        self.state = SessionState.IDLE
        self.handle: Optional[SubscriptionHandle] = None
        self.last_error: Optional[SubscriptionDeliveryError] = None

    @property
    def window_size(self) -> int:
        return self.buffer.window_size

    @property
    def active(self) -> bool:
        return self.state in (SessionState.SUBSCRIBING, SessionState.STREAMING)

    def update(self, topic: Optional[str], window_size: int) -> None:
        """Point the session at ``(topic, window_size)``.

        Any open subscription is closed and the window cleared before the new
        one is opened. Unchanged parameters leave a running session alone but
        re-open a CLOSED one. An empty topic returns the session to IDLE.
        """
        # validate before tearing anything down
        check_window_size(window_size)
        topic = topic or None
        if topic == self.topic and window_size == self.window_size:
            if self.active or (topic is None and self.state is SessionState.IDLE):
                return
        try:
            self._teardown()
        finally:
            self.topic = topic
            self.buffer.window_size = window_size
        if self.topic is None:
            self.state = SessionState.IDLE
        self._publish()
        if self.topic is not None:
            self._open()

    def set_topic(self, topic: Optional[str]) -> None:
        self.update(topic, self.window_size)

    def set_window_size(self, window_size: int) -> None:
        self.update(self.topic, window_size)

    def items(self) -> List[DisplayItem]:
        return render_all(self.buffer.snapshot())

    def close(self) -> None:
        """Release the subscription; safe to call more than once."""
        had_handle = self.handle is not None
        self._teardown()
        if self.state is not SessionState.IDLE:
            self.state = SessionState.CLOSED
        if had_handle:
            logger.info("session for %s closed", self.topic)

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        self.close()

    # -------------- internals --------------

    def _open(self):
        self.state = SessionState.SUBSCRIBING
        self.last_error = None
        logger.info("subscribing to %s (window=%d)", self.topic, self.window_size)
        try:
            self.handle = self.feed.subscribe(self.topic, self.window_size, self._on_message, self._on_error)
        except SubscriptionDeliveryError as exc:
            self._mark_closed(exc)

    def _teardown(self):
        handle, self.handle = self.handle, None
        try:
            if handle is not None:
                self.feed.close(handle)
        finally:
            self.buffer.clear()

    def _on_message(self, handle: SubscriptionHandle, raw: str):
        if handle is not self.handle or not handle.live:
            logger.debug("ignoring delivery from stale subscription %r", handle)
            return
        if self.state is SessionState.SUBSCRIBING:
            self.state = SessionState.STREAMING
            logger.debug("streaming %s", self.topic)
        self.buffer.append(raw)
        self._publish()

    def _on_error(self, handle: SubscriptionHandle, exc: SubscriptionDeliveryError):
        if handle is not self.handle:
            return
        self.handle = None
        try:
            self.feed.close(handle)
        finally:
            self._mark_closed(exc)

    def _mark_closed(self, exc: SubscriptionDeliveryError):
        # the window is kept so the last messages stay on screen
        self.state = SessionState.CLOSED
        self.last_error = exc
        logger.error("feed for %s failed: %s", self.topic, exc)

    def _publish(self):
        if self.on_update is not None:
            self.on_update(self.items())
