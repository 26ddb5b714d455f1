import asyncio
import logging
from fastapi import WebSocket
from collections import deque
from typing import Dict, Deque, List, Optional
from utilities import make_event, make_error, make_info
from utilities import SUBSCRIBER_QUEUE_SIZE, REPLAY_BUFFER_SIZE

logger = logging.getLogger(__name__)

# ------------ In-memory structures ------------
class Subscriber:
    ''' Represents a subscriber client (websocket, SSE stream or in-process feed).'''

    def __init__(self, client_id: str, websocket: Optional[WebSocket] = None, replay: int = 0):

        # initialize fields
        self.client_id = client_id
        self.websocket = websocket

        # per subscriber message buffer
        # publisher should never wait for a slow subscriber
        # if subscriber is slow messages accumulate up to SUBSCRIBER_QUEUE_SIZE
        # if queue is full, oldest message is dropped and SLOW_CONSUMER error is enqueued
        # a replay request larger than that gets a queue big enough to hold it
        self.queue: asyncio.Queue = asyncio.Queue(maxsize=max(SUBSCRIBER_QUEUE_SIZE, replay))

        # background task that pops from queue and sends via WebSocket (websocket subscribers only)
        self.sender_task: Optional[asyncio.Task] = None
        self.connected = True

    # graceful cleanup
    async def stop(self):
        self.connected = False
        if self.sender_task:
            self.sender_task.cancel()
            try:
                await self.sender_task
            except asyncio.CancelledError:
                pass


class Topic:
    def __init__(self, name: str):
        self.name = name
        self.subscribers: Dict[str, Subscriber] = {}
        # raw message text, oldest first
        self.history: Deque[str] = deque(maxlen=REPLAY_BUFFER_SIZE)
        self.lock = asyncio.Lock()
        # stats
        self.messages_published = 0

    async def publish(self, raw: str) -> int:
        """Append to history and fan out; returns the message offset."""

        # locking before critical section
        async with self.lock:
            self.history.append(raw)
            offset = self.messages_published
            self.messages_published += 1
            subscribers = list(self.subscribers.values())

        # fan-out outside lock
        ev = make_event(self.name, raw)
        for sub in subscribers:
            # try enqueue, if full drop oldest and enqueue SLOW_CONSUMER info for that subscriber
            if sub.queue.full():
                # drop oldest, leaving room for the notice and the event
                while sub.queue.qsize() > max(sub.queue.maxsize - 2, 0):
                    sub.queue.get_nowait()

                # insert a SLOW_CONSUMER error into queue to notify client
                err = make_error(None, "SLOW_CONSUMER", "Subscriber queue overflow; oldest message dropped", self.name)
                sub.queue.put_nowait(err)
                logger.warning("subscriber %s on %s is slow; dropped oldest messages", sub.client_id, self.name)
            try:
                sub.queue.put_nowait(ev)
            except asyncio.QueueFull:
                # single-slot queues: the event wins over the notice
                sub.queue.get_nowait()
                sub.queue.put_nowait(ev)
        return offset

    async def add_subscriber(self, sub: Subscriber, last_n: int = 0) -> Subscriber:
        """Register ``sub`` and enqueue replay of the last ``last_n`` messages.

        Registration and replay happen under one lock acquisition so no publish
        can slip between the replayed history and the live stream.
        """
        async with self.lock:
            old = self.subscribers.get(sub.client_id)
            self.subscribers[sub.client_id] = sub
            history = list(self.history)[-last_n:] if last_n > 0 else []
            for raw in history:
                # replay is capped by the queue; the newest entries win
                if sub.queue.full():
                    sub.queue.get_nowait()
                sub.queue.put_nowait(make_event(self.name, raw))
        if old is not None and old is not sub:
            # already subscribed; the new registration replaces the old one
            await old.stop()
        return sub

    async def remove_subscriber(self, client_id: str) -> Optional[Subscriber]:
        async with self.lock:
            return self.subscribers.pop(client_id, None)


class Broker:
    """Registry of topics. One instance backs the app; tests create their own."""

    def __init__(self):
        self.topics: Dict[str, Topic] = {}
        self.lock = asyncio.Lock()

    async def get_topic(self, name: str) -> Topic:
        async with self.lock:
            t = self.topics.get(name)
            if t is None:
                raise KeyError(name)
            return t

    async def create_topic(self, name: str) -> Topic:
        async with self.lock:
            if name in self.topics:
                raise KeyError("exists")
            t = Topic(name)
            self.topics[name] = t
            logger.info("created topic %s", name)
            return t

    async def ensure_topic(self, name: str) -> Topic:
        async with self.lock:
            t = self.topics.get(name)
            if t is None:
                t = Topic(name)
                self.topics[name] = t
                logger.info("auto-created topic %s", name)
            return t

    async def delete_topic(self, name: str):
        async with self.lock:
            t = self.topics.pop(name, None)
        if t is None:
            raise KeyError("notfound")
        # notify subscribers and close them
        async with t.lock:
            subscribers = list(t.subscribers.values())
            t.subscribers.clear()
        info = make_info(name, "topic_deleted")
        for sub in subscribers:
            if sub.queue.full():
                # the deletion notice must get through
                sub.queue.get_nowait()
            sub.queue.put_nowait(info)
            # websockets are not closed here; their sender task will notice and exit
        logger.info("deleted topic %s (%d subscribers notified)", name, len(subscribers))

    async def list_topics(self) -> List[Topic]:
        async with self.lock:
            return list(self.topics.values())
