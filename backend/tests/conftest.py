import socket
import threading
import time

import pytest
import uvicorn

import main
from models import Broker
from viewer.feed import FeedService, SubscriptionHandle


class RecordingFeed(FeedService):
    """Feed double: hands out handles without starting any pump task."""

    def __init__(self):
        self.handles = []
        self.closed = []

    def subscribe(self, topic, window_size, on_message, on_error):
        handle = SubscriptionHandle(topic, window_size, on_message, on_error)
        self.handles.append(handle)
        return handle

    def close(self, handle):
        self.closed.append(handle)
        handle.close()


@pytest.fixture
def feed():
    return RecordingFeed()


def _free_port():
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(("127.0.0.1", 0))
        return s.getsockname()[1]


@pytest.fixture
def live_server(monkeypatch, tmp_path):
    """The app served by uvicorn on a background thread, with a fresh broker."""
    monkeypatch.setattr(main, "BROKER", Broker())
    monkeypatch.setattr(main, "LOG_DIR", str(tmp_path))
    port = _free_port()
    server = uvicorn.Server(uvicorn.Config(main.app, host="127.0.0.1", port=port, log_level="warning"))
    thread = threading.Thread(target=server.run, daemon=True)
    thread.start()
    deadline = time.monotonic() + 10
    while not server.started:
        if time.monotonic() > deadline or not thread.is_alive():
            raise RuntimeError("uvicorn did not start")
        time.sleep(0.02)
    yield f"http://127.0.0.1:{port}"
    server.should_exit = True
    thread.join(timeout=10)
