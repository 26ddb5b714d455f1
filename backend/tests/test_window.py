import pytest

from viewer.window import WindowBuffer, check_window_size


def test_keeps_most_recent_messages():
    buf = WindowBuffer(3)
    for raw in ["a", "b", "c", "d"]:
        buf.append(raw)
    assert buf.snapshot() == ["b", "c", "d"]


@pytest.mark.parametrize("window_size,count", [(1, 5), (5, 3), (5, 5), (4, 10)])
def test_snapshot_is_last_min_n_in_arrival_order(window_size, count):
    buf = WindowBuffer(window_size)
    msgs = [f"m{i}" for i in range(count)]
    for raw in msgs:
        buf.append(raw)
        assert len(buf) <= window_size
    assert buf.snapshot() == msgs[-min(count, window_size):]


def test_shrink_applies_on_next_append():
    buf = WindowBuffer(5)
    for raw in "abcde":
        buf.append(raw)
    buf.window_size = 2
    # nothing is trimmed retroactively
    assert buf.snapshot() == list("abcde")
    buf.append("f")
    assert buf.snapshot() == ["e", "f"]


def test_grow_keeps_history():
    buf = WindowBuffer(2)
    for raw in "abc":
        buf.append(raw)
    buf.window_size = 4
    buf.append("d")
    buf.append("e")
    assert buf.snapshot() == ["b", "c", "d", "e"]


def test_clear_and_snapshot_is_a_copy():
    buf = WindowBuffer(3)
    buf.append("a")
    snap = buf.snapshot()
    snap.append("x")
    assert buf.snapshot() == ["a"]
    buf.clear()
    assert buf.snapshot() == []


@pytest.mark.parametrize("bad", [0, -1, 2.5, "3", True])
def test_rejects_non_positive_sizes(bad):
    with pytest.raises(ValueError):
        WindowBuffer(bad)
    buf = WindowBuffer(1)
    with pytest.raises(ValueError):
        buf.window_size = bad
    assert buf.window_size == 1


def test_check_window_size_returns_valid_value():
    assert check_window_size(7) == 7
    with pytest.raises(ValueError):
        check_window_size(0)
