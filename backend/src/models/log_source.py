import asyncio
import logging
import os
from dataclasses import dataclass
from typing import Dict, List, Tuple

from utilities import LOG_POLL_INTERVAL, LOG_SUFFIX

from .models import Broker

logger = logging.getLogger(__name__)


def is_log_name(filename: str) -> bool:
    """True for a bare ``*.log`` file name (no directory parts)."""
    return (
        filename.endswith(LOG_SUFFIX)
        and filename == os.path.basename(filename)
        and filename not in (".", "..")
    )


def list_log_files(log_dir: str) -> List[str]:
    """Sorted ``*.log`` names in ``log_dir``; raises OSError if it cannot be read."""
    return sorted(
        entry.name for entry in os.scandir(log_dir)
        if entry.is_file() and is_log_name(entry.name)
    )


@dataclass
class _TailState:
    offset: int = 0
    # trailing text not yet terminated by a newline
    partial: str = ""


class LogDirectorySource:
    """Tails every ``*.log`` file in a directory into a topic named after the file.

    Each scan reads what was appended since the previous one and publishes it
    line by line. A file that shrinks is assumed rotated and read from the start.
    """

    def __init__(self, log_dir: str, broker: Broker, interval: float = LOG_POLL_INTERVAL):
        self.log_dir = log_dir
        self.broker = broker
        self.interval = interval
        self._files: Dict[str, _TailState] = {}

    def _read_new(self, name: str, state: _TailState) -> Tuple[List[str], _TailState]:
        path = os.path.join(self.log_dir, name)
        size = os.path.getsize(path)
        if size < state.offset:
            logger.info("%s shrank, reading from the start", name)
            state = _TailState()
        if size == state.offset:
            return [], state
        with open(path, "rb") as f:
            f.seek(state.offset)
            chunk = f.read(size - state.offset)
        text = state.partial + chunk.decode("utf-8", errors="replace")
        *complete, partial = text.split("\n")
        lines = [line.rstrip("\r") for line in complete if line.strip()]
        return lines, _TailState(offset=state.offset + len(chunk), partial=partial)

    async def scan(self) -> int:
        """Publish new lines from every log file once; returns how many were published."""
        try:
            names = await asyncio.to_thread(list_log_files, self.log_dir)
        except OSError as exc:
            logger.debug("cannot read log directory %s: %s", self.log_dir, exc)
            return 0
        published = 0
        for name in names:
            state = self._files.get(name, _TailState())
            try:
                lines, state = await asyncio.to_thread(self._read_new, name, state)
            except OSError as exc:
                logger.warning("cannot tail %s: %s", name, exc)
                continue
            self._files[name] = state
            if not lines:
                continue
            topic = await self.broker.ensure_topic(name)
            for line in lines:
                await topic.publish(line)
            published += len(lines)
        # forget files that disappeared so a recreated file starts over
        for name in set(self._files) - set(names):
            del self._files[name]
        return published

    async def run(self):
        logger.info("tailing *%s files in %s every %.1fs", LOG_SUFFIX, self.log_dir, self.interval)
        while True:
            await self.scan()
            await asyncio.sleep(self.interval)
