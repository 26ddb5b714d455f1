import asyncio

import httpx
import pytest

from models import Broker
from viewer.errors import SubscriptionDeliveryError
from viewer.feed import BrokerFeed, SSEFeed, WebSocketFeed, make_feed
from viewer.session import SessionState, StreamSession


async def eventually(predicate, timeout=1.0):
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.01)


class Recorder:
    def __init__(self):
        self.messages = []
        self.errors = []

    def on_message(self, handle, raw):
        self.messages.append(raw)

    def on_error(self, handle, exc):
        self.errors.append(exc)
        handle.close()


@pytest.mark.asyncio
async def test_broker_feed_replays_window_then_streams():
    broker = Broker()
    topic = await broker.create_topic("orders")
    for raw in ["m1", "m2", "m3"]:
        await topic.publish(raw)

    rec = Recorder()
    handle = BrokerFeed(broker).subscribe("orders", 2, rec.on_message, rec.on_error)
    await eventually(lambda: len(rec.messages) == 2)
    await topic.publish("m4")
    await eventually(lambda: len(rec.messages) == 3)
    assert rec.messages == ["m2", "m3", "m4"]

    handle.close()
    await asyncio.sleep(0.05)
    await topic.publish("m5")
    await asyncio.sleep(0.05)
    assert rec.messages == ["m2", "m3", "m4"]
    assert topic.subscribers == {}


@pytest.mark.asyncio
async def test_broker_feed_unknown_topic_is_a_delivery_error():
    rec = Recorder()
    BrokerFeed(Broker()).subscribe("missing", 5, rec.on_message, rec.on_error)
    await eventually(lambda: rec.errors)
    assert isinstance(rec.errors[0], SubscriptionDeliveryError)
    assert rec.errors[0].topic == "missing"


@pytest.mark.asyncio
async def test_broker_feed_topic_deletion_ends_session():
    broker = Broker()
    await broker.create_topic("orders")
    session = StreamSession(BrokerFeed(broker), window_size=5)
    session.set_topic("orders")
    await eventually(lambda: len((broker.topics["orders"]).subscribers) == 1)

    await broker.delete_topic("orders")
    await eventually(lambda: session.state is SessionState.CLOSED)
    assert "topic_deleted" in str(session.last_error)


@pytest.mark.asyncio
async def test_session_over_broker_switches_topics():
    broker = Broker()
    orders = await broker.create_topic("orders")
    payments = await broker.create_topic("payments")
    session = StreamSession(BrokerFeed(broker), window_size=3)

    session.set_topic("orders")
    await eventually(lambda: "viewer-" + session.handle.id in orders.subscribers)
    await orders.publish('{"time":1700000000000,"id":1}')
    await eventually(lambda: session.state is SessionState.STREAMING)
    assert session.items()[0].value == {"time": "2023-11-14 22:13:20", "id": 1}

    session.set_topic("payments")
    await eventually(lambda: not orders.subscribers and payments.subscribers)
    await orders.publish("late order")
    await payments.publish("p1")
    await eventually(lambda: session.buffer.snapshot() == ["p1"])

    session.close()
    await eventually(lambda: not payments.subscribers)


def sse_transport(body: bytes, status: int = 200):
    def handler(request):
        return httpx.Response(status, content=body, headers={"content-type": "text/event-stream"})
    return httpx.MockTransport(handler)


@pytest.mark.asyncio
async def test_sse_feed_parses_frames_and_reports_end_of_stream():
    body = (
        b": keep-alive\n\n"
        b"data: plain line\n\n"
        b'data: {"id": 1}\n\n'
        b"data: first\ndata: second\n\n"
        b'event: error\ndata: {"code": "SLOW_CONSUMER"}\n\n'
    )
    rec = Recorder()
    feed = SSEFeed("http://feed.test", transport=sse_transport(body))
    feed.subscribe("orders", 10, rec.on_message, rec.on_error)
    await eventually(lambda: rec.errors)
    assert rec.messages == ["plain line", '{"id": 1}', "first\nsecond"]
    assert str(rec.errors[0]) == "feed ended"


@pytest.mark.asyncio
async def test_sse_feed_http_error():
    rec = Recorder()
    feed = SSEFeed("http://feed.test", transport=sse_transport(b"", status=404))
    feed.subscribe("missing", 10, rec.on_message, rec.on_error)
    await eventually(lambda: rec.errors)
    assert "404" in str(rec.errors[0])
    assert rec.messages == []


def test_sse_url_quotes_topic():
    assert SSEFeed("http://h:8000/").events_url("a/b c", 5) == "http://h:8000/events/a%2Fb%20c/5"


def test_make_feed():
    assert isinstance(make_feed("sse"), SSEFeed)
    ws = make_feed("ws", "https://example.com/")
    assert isinstance(ws, WebSocketFeed)
    assert ws.ws_url == "wss://example.com/ws"
    with pytest.raises(ValueError):
        make_feed("kafka")


@pytest.mark.asyncio
async def test_close_from_error_callback_does_not_cancel_own_pump():
    rec = Recorder()
    handle = BrokerFeed(Broker()).subscribe("missing", 1, rec.on_message, rec.on_error)
    await eventually(lambda: rec.errors)
    await asyncio.wait_for(handle._task, 1)
    assert not handle._task.cancelled()
    assert rec.messages == []


@pytest.mark.asyncio
async def test_unrenderable_message_does_not_end_session():
    broker = Broker()
    topic = await broker.create_topic("logs")
    updates = []
    session = StreamSession(BrokerFeed(broker), on_update=updates.append, window_size=3)
    session.set_topic("logs")
    await eventually(lambda: topic.subscribers)

    await topic.publish("[" * 100000)
    await topic.publish("after")
    await eventually(lambda: session.buffer.snapshot()[-1:] == ["after"])

    assert session.state is SessionState.STREAMING
    assert [i.kind.value for i in updates[-1]] == ["plain", "plain"]
    session.close()


@pytest.mark.asyncio
async def test_broker_feed_replays_more_than_queue_default():
    broker = Broker()
    topic = await broker.create_topic("bulk")
    for i in range(90):
        await topic.publish(f"m{i}")
    rec = Recorder()
    handle = BrokerFeed(broker).subscribe("bulk", 80, rec.on_message, rec.on_error)
    await eventually(lambda: len(rec.messages) == 80)
    assert rec.messages == [f"m{i}" for i in range(10, 90)]
    assert rec.errors == []
    handle.close()


@pytest.mark.asyncio
async def test_websocket_feed_replays_streams_and_reports_deletion(live_server):
    async with httpx.AsyncClient(base_url=live_server, timeout=5) as c:
        assert (await c.post("/topics", json={"name": "orders"})).status_code == 201
        for i in range(3):
            await c.get(f"/produce/orders/m{i}")

        rec = Recorder()
        WebSocketFeed(live_server).subscribe("orders", 2, rec.on_message, rec.on_error)
        await eventually(lambda: len(rec.messages) == 2, timeout=5)
        await c.get("/produce/orders/m3")
        await eventually(lambda: len(rec.messages) == 3, timeout=5)
        assert rec.messages == ["m1", "m2", "m3"]

        await c.delete("/topics/orders")
        await eventually(lambda: rec.errors, timeout=5)
        assert "topic_deleted" in str(rec.errors[0])
        assert rec.errors[0].topic == "orders"


@pytest.mark.asyncio
async def test_websocket_feed_close_stops_delivery(live_server):
    async with httpx.AsyncClient(base_url=live_server, timeout=5) as c:
        await c.get("/produce/logs/first")
        rec = Recorder()
        handle = WebSocketFeed(live_server).subscribe("logs", 5, rec.on_message, rec.on_error)
        await eventually(lambda: rec.messages == ["first"], timeout=5)

        handle.close()

        async def subscriber_count():
            topics = (await c.get("/topics")).json()["topics"]
            return topics[0]["subscribers"]

        loop = asyncio.get_running_loop()
        deadline = loop.time() + 5
        while await subscriber_count():
            assert loop.time() < deadline, "server kept the closed subscription"
            await asyncio.sleep(0.05)
        await c.get("/produce/logs/second")
        await asyncio.sleep(0.2)
        assert rec.messages == ["first"]
        assert rec.errors == []


@pytest.mark.asyncio
async def test_websocket_feed_unknown_topic(live_server):
    rec = Recorder()
    WebSocketFeed(live_server).subscribe("missing", 5, rec.on_message, rec.on_error)
    await eventually(lambda: rec.errors, timeout=5)
    assert str(rec.errors[0]).startswith("TOPIC_NOT_FOUND")
