"""Feed subscription services.

``subscribe`` returns a :class:`SubscriptionHandle` straight away and starts a
pump task on the running event loop; the pump pushes raw messages into the
handle, which forwards them to the subscriber's callbacks while it is live.
Closing a handle is synchronous: it marks the handle dead and cancels the pump,
so anything still in flight is dropped instead of delivered.
"""

import asyncio
import json
import logging
import uuid
from typing import Callable, Optional
from urllib.parse import quote

import httpx
import websockets

from models import Broker, Subscriber
from utilities import HTTP_TIMEOUT, VIEWER_SERVER_URL

from .errors import SubscriptionDeliveryError

logger = logging.getLogger(__name__)

MessageCallback = Callable[["SubscriptionHandle", str], None]
ErrorCallback = Callable[["SubscriptionHandle", SubscriptionDeliveryError], None]


class SubscriptionHandle:
    def __init__(self, topic: str, window_size: int,
                 on_message: MessageCallback, on_error: ErrorCallback):
        self.id = uuid.uuid4().hex
        self.topic = topic
        self.window_size = window_size
        self._on_message = on_message
        self._on_error = on_error
        self._task: Optional[asyncio.Task] = None
        self._closed = False

    @property
    def live(self) -> bool:
        return not self._closed

    @property
    def client_id(self) -> str:
        return f"viewer-{self.id}"

    def attach(self, task: asyncio.Task) -> None:
        self._task = task

    def deliver(self, raw: str) -> bool:
        if self._closed:
            logger.debug("dropping late delivery on closed %s subscription", self.topic)
            return False
        self._on_message(self, raw)
        return True

    def fail(self, exc: SubscriptionDeliveryError) -> None:
        if self._closed:
            return
        self._on_error(self, exc)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        task = self._task
        if task is None or task.done():
            return
        try:
            current = asyncio.current_task()
        except RuntimeError:
            current = None
        # a pump closing its own handle just stops at its next liveness check
        if task is not current:
            task.cancel()

    def __repr__(self):
        state = "live" if self.live else "closed"
        return f"<SubscriptionHandle {self.topic!r} window={self.window_size} {state}>"


class FeedService:
    """Base for feed transports. Subclasses implement :meth:`_pump`."""

    def subscribe(self, topic: str, window_size: int,
                  on_message: MessageCallback, on_error: ErrorCallback) -> SubscriptionHandle:
        handle = SubscriptionHandle(topic, window_size, on_message, on_error)
        handle.attach(asyncio.get_running_loop().create_task(self._run(handle)))
        logger.debug("subscribed %r via %s", handle, type(self).__name__)
        return handle

    def close(self, handle: SubscriptionHandle) -> None:
        handle.close()

    async def _run(self, handle: SubscriptionHandle):
        try:
            await self._pump(handle)
        except asyncio.CancelledError:
            raise
        except SubscriptionDeliveryError as exc:
            handle.fail(exc)
        except Exception as exc:
            logger.debug("feed for %s raised", handle.topic, exc_info=True)
            handle.fail(SubscriptionDeliveryError(handle.topic, f"{type(exc).__name__}: {exc}"))
        else:
            # a feed has no natural end; running out is a delivery failure
            handle.fail(SubscriptionDeliveryError(handle.topic, "feed ended"))

    async def _pump(self, handle: SubscriptionHandle):
        raise NotImplementedError


def _handle_frame(handle: SubscriptionHandle, item: dict) -> None:
    """Dispatch one broker/websocket frame; raises on terminal frames."""
    typ = item.get("type")
    if typ == "event":
        handle.deliver(item["message"])
    elif typ == "error":
        err = item.get("error") or {}
        code = err.get("code")
        if code == "SLOW_CONSUMER":
            logger.warning("feed for %s dropped messages: %s", handle.topic, err.get("message"))
            return
        raise SubscriptionDeliveryError(handle.topic, f"{code}: {err.get('message')}")
    elif typ == "info":
        raise SubscriptionDeliveryError(handle.topic, item.get("msg") or "feed closed by server")
    # ack and pong frames carry nothing for the viewer


class BrokerFeed(FeedService):
    """Subscribes straight to an in-process :class:`Broker`."""

    def __init__(self, broker: Broker):
        self.broker = broker

    async def _pump(self, handle: SubscriptionHandle):
        try:
            topic = await self.broker.get_topic(handle.topic)
        except KeyError:
            raise SubscriptionDeliveryError(handle.topic, f"topic {handle.topic} not found")
        sub = await topic.add_subscriber(Subscriber(handle.client_id, replay=handle.window_size), handle.window_size)
        try:
            while handle.live:
                _handle_frame(handle, await sub.queue.get())
        finally:
            sub.connected = False
            await topic.remove_subscriber(sub.client_id)


class WebSocketFeed(FeedService):
    """Client for the server's ``/ws`` pub/sub protocol."""

    def __init__(self, base_url: str = VIEWER_SERVER_URL):
        self.ws_url = base_url.rstrip("/").replace("http", "ws", 1) + "/ws"

    async def _pump(self, handle: SubscriptionHandle):
        async with websockets.connect(self.ws_url) as ws:
            await ws.send(json.dumps({
                "type": "subscribe",
                "topic": handle.topic,
                "client_id": handle.client_id,
                "last_n": handle.window_size,
                "request_id": str(uuid.uuid4()),
            }))
            async for frame in ws:
                if not handle.live:
                    break
                _handle_frame(handle, json.loads(frame))


class SSEFeed(FeedService):
    """Client for the server's ``/events/{topic}/{limit}`` Server-Sent Events stream."""

    def __init__(self, base_url: str = VIEWER_SERVER_URL, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.base_url = base_url.rstrip("/")
        self.transport = transport

    def events_url(self, topic: str, limit: int) -> str:
        return f"{self.base_url}/events/{quote(topic, safe='')}/{limit}"

    async def _pump(self, handle: SubscriptionHandle):
        timeout = httpx.Timeout(HTTP_TIMEOUT, read=None)
        async with httpx.AsyncClient(timeout=timeout, transport=self.transport) as client:
            async with client.stream("GET", self.events_url(handle.topic, handle.window_size)) as resp:
                if resp.status_code != 200:
                    raise SubscriptionDeliveryError(handle.topic, f"HTTP {resp.status_code} from event stream")
                data, event = [], None
                async for line in resp.aiter_lines():
                    if not handle.live:
                        break
                    if not line:
                        # blank line dispatches the pending event
                        if data:
                            payload = "\n".join(data)
                            if event == "error":
                                logger.warning("event stream for %s reported %s", handle.topic, payload)
                            else:
                                handle.deliver(payload)
                        data, event = [], None
                        continue
                    if line.startswith(":"):
                        continue
                    field, _, value = line.partition(":")
                    if value.startswith(" "):
                        value = value[1:]
                    if field == "data":
                        data.append(value)
                    elif field == "event":
                        event = value


FEEDS = {"ws": WebSocketFeed, "sse": SSEFeed}


def make_feed(kind: str, base_url: str = VIEWER_SERVER_URL) -> FeedService:
    try:
        return FEEDS[kind](base_url)
    except KeyError:
        raise ValueError(f"unknown feed transport {kind!r}; expected one of {sorted(FEEDS)}")
