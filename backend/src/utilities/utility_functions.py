import logging
from datetime import datetime, timezone
from typing import Optional

from .constants import LOG_FORMAT, LOG_LEVEL


def now_ts() -> str:
    return datetime.now(timezone.utc).isoformat()


def configure_logging(level: Optional[str] = None) -> None:
    """Install the process-wide log format once; later calls only adjust the level."""
    root = logging.getLogger()
    lvl = (level or LOG_LEVEL).upper()
    if not root.handlers:
        logging.basicConfig(level=lvl, format=LOG_FORMAT)
    else:
        root.setLevel(lvl)

# Server -> client messages are built as dicts
def make_ack(request_id: Optional[str], topic: Optional[str], status: str = "ok"):
    return {"type": "ack", "request_id": request_id, "topic": topic, "status": status, "ts": now_ts()}

def make_pong(request_id: Optional[str]):
    return {"type": "pong", "request_id": request_id, "ts": now_ts()}

def make_event(topic: str, message: str):
    return {"type": "event", "topic": topic, "message": message, "ts": now_ts()}

def make_error(request_id: Optional[str], code: str, message: str, topic: Optional[str] = None):
    return {"type": "error", "request_id": request_id, "topic": topic, "error": {"code": code, "message": message}, "ts": now_ts()}

def make_info(topic: Optional[str], msg: str):
    return {"type": "info", "topic": topic, "msg": msg, "ts": now_ts()}

def sse_frame(raw: str) -> str:
    # multi-line payloads need one data: field per line
    lines = raw.split("\n")
    return "".join(f"data: {line}\n" for line in lines) + "\n"
