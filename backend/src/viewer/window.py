from collections import deque
from typing import Deque, List


def check_window_size(value) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value < 1:
        raise ValueError(f"window size must be a positive integer, got {value!r}")
    return value


class WindowBuffer:
    """Most recent messages of the active session, oldest first.

    ``append`` trims to ``window_size - 1`` previous entries before adding the
    new one, so the window never holds more than ``window_size`` after an
    append. Changing ``window_size`` does not touch what is already held; the
    new bound applies from the next append.
    """

    def __init__(self, window_size: int):
        self._items: Deque[str] = deque()
        self.window_size = window_size

    @property
    def window_size(self) -> int:
        return self._window_size

    @window_size.setter
    def window_size(self, value: int):
        self._window_size = check_window_size(value)

    def append(self, raw: str) -> None:
        while len(self._items) > self._window_size - 1:
            self._items.popleft()
        self._items.append(raw)

    def snapshot(self) -> List[str]:
        return list(self._items)

    def clear(self) -> None:
        self._items.clear()

    def __len__(self) -> int:
        return len(self._items)
