import time

from docker.errors import APIError

from gsl.models import LogEvent
from gsl.runtime import LogBus
from gsl.streams import LogStreamManager, StreamHandle, StreamTable


def _wait_for(predicate, timeout=3.0):
    deadline = time.time() + timeout
    while time.time() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return False


def _running_container(runtime, fake_docker, tmp_path, lines):
    cid = runtime.create_container("s1", "busybox:latest", 7777, str(tmp_path))
    runtime.start(cid)
    fake_docker.container(cid).log_chunks = lines
    return cid


def _drain(q):
    out = []
    while not q.empty():
        out.append(q.get_nowait())
    return out


def test_bus_drops_oldest_when_full():
    bus = LogBus(maxsize=2)
    q = bus.subscribe()
    for i in range(3):
        bus.emit("s", f"line {i}")
    assert [e.line for e in _drain(q)] == ["line 1", "line 2"]

    bus.unsubscribe(q)
    bus.emit("s", "after")
    assert q.empty()


def test_table_replace_and_remove_if():
    table = StreamTable()
    first, second = StreamHandle("s", "c1"), StreamHandle("s", "c2")
    assert table.replace("s", first) is None
    assert table.replace("s", second) is first
    assert table.remove_if("s", first) is False
    assert table.get("s") is second
    assert table.remove_if("s", second) is True
    assert table.ids() == []


def test_stream_forwards_lines(runtime, fake_docker, cfg, tmp_path):
    cid = _running_container(runtime, fake_docker, tmp_path, [b"[Server] Done\n", b"\n", b"player joined\n"])
    bus = LogBus()
    q = bus.subscribe()
    mgr = LogStreamManager(runtime, bus, cfg)

    mgr.start("s1", cid)
    assert _wait_for(lambda: q.qsize() >= 2)
    assert _drain(q) == [LogEvent("s1", "[Server] Done"), LogEvent("s1", "player joined")]
    assert mgr.is_active("s1")
    assert mgr.active_ids() == ["s1"]

    assert mgr.stop("s1") is True
    assert mgr.stop("s1") is False
    assert not mgr.is_active("s1")
    # Cancelling closes the runtime stream so the blocked read returns.
    assert _wait_for(lambda: fake_docker.container(cid).streams[-1].closed.is_set())


def test_restart_supersedes_previous_stream(runtime, fake_docker, cfg, tmp_path):
    cid = _running_container(runtime, fake_docker, tmp_path, [b"hello\n"])
    bus = LogBus()
    mgr = LogStreamManager(runtime, bus, cfg)

    first = mgr.start("s1", cid)
    assert _wait_for(lambda: len(fake_docker.container(cid).streams) == 1)
    second = mgr.start("s1", cid)

    assert first.cancelled.is_set()
    assert not first.thread.is_alive()
    assert mgr.table.get("s1") is second
    assert mgr.table.ids() == ["s1"]
    mgr.stop_all()


def test_stream_ends_when_container_not_running(runtime, fake_docker, cfg, tmp_path):
    cid = runtime.create_container("s1", "busybox:latest", 7777, str(tmp_path))
    mgr = LogStreamManager(runtime, LogBus(), cfg)

    handle = mgr.start("s1", cid)
    handle.join(2)

    assert not handle.thread.is_alive()
    assert mgr.table.get("s1") is None
    assert fake_docker.container(cid).streams == []


def test_gives_up_when_daemon_unreachable(runtime, fake_docker, cfg, tmp_path):
    cid = _running_container(runtime, fake_docker, tmp_path, [])
    fake_docker.down = True
    mgr = LogStreamManager(runtime, LogBus(), cfg)

    handle = mgr.start("s1", cid)
    handle.join(2)

    assert not handle.thread.is_alive()
    assert mgr.table.get("s1") is None


def test_stream_keeps_multibyte_characters(runtime, fake_docker, cfg, tmp_path):
    raw = "Jürgen joined\n".encode("utf-8")
    cid = _running_container(runtime, fake_docker, tmp_path, [raw[i : i + 1] for i in range(len(raw))])
    bus = LogBus()
    q = bus.subscribe()
    mgr = LogStreamManager(runtime, bus, cfg)

    mgr.start("s1", cid)
    assert _wait_for(lambda: q.qsize() >= 1)
    assert _drain(q) == [LogEvent("s1", "Jürgen joined")]
    mgr.stop_all()


def test_reconnects_after_stream_end_then_gives_up(runtime, fake_docker, cfg, tmp_path):
    cid = _running_container(runtime, fake_docker, tmp_path, [])
    container = fake_docker.container(cid)
    container.stream_plan = [[] for _ in range(10)]
    mgr = LogStreamManager(runtime, LogBus(), cfg)

    handle = mgr.start("s1", cid)
    handle.join(2)

    assert not handle.thread.is_alive()
    assert len(container.streams) == cfg.log_max_reconnects + 1
    assert mgr.table.get("s1") is None


def test_lines_between_failures_reset_reconnect_counter(runtime, fake_docker, cfg, tmp_path):
    cid = _running_container(runtime, fake_docker, tmp_path, [])
    container = fake_docker.container(cid)
    container.stream_plan = [
        [b"line 0\n"],
        [b"line 1\n", OSError("connection reset by peer")],
        [b"line 2\n"],
        [b"line 3\n", OSError("connection reset by peer")],
        [b"line 4\n"],
        [b"line 5\n", OSError("connection reset by peer")],
    ]
    assert len(container.stream_plan) > cfg.log_max_reconnects + 1
    bus = LogBus()
    q = bus.subscribe()
    mgr = LogStreamManager(runtime, bus, cfg)

    mgr.start("s1", cid)
    # After the planned streams the default one follows the running container and blocks.
    assert _wait_for(lambda: len(container.streams) == 7)

    assert [e.line for e in _drain(q)] == [f"line {i}" for i in range(6)]
    assert mgr.is_active("s1")
    mgr.stop_all()


class _UnclosableFlood:
    """Keeps producing lines even after close(); only the cancel check stops forwarding."""

    def __init__(self, after_first):
        self.after_first = after_first

    def __iter__(self):
        yield b"first\n"
        self.after_first()
        for i in range(1000):
            yield f"flood {i}\n".encode()

    def close(self):
        pass


def test_cancel_wins_against_incoming_lines(runtime, fake_docker, cfg, tmp_path):
    cid = _running_container(runtime, fake_docker, tmp_path, [])
    bus = LogBus()
    q = bus.subscribe()
    mgr = LogStreamManager(runtime, bus, cfg)
    fake_docker.container(cid).stream_plan = [_UnclosableFlood(lambda: mgr.stop("s1"))]

    handle = mgr.start("s1", cid)
    handle.join(2)

    assert not handle.thread.is_alive()
    assert [e.line for e in _drain(q)] == ["first"]


def test_ping_api_error_retries_then_gives_up(runtime, fake_docker, cfg, tmp_path):
    cid = _running_container(runtime, fake_docker, tmp_path, [])
    fake_docker.ping_error = APIError("500 Server Error: Internal Server Error")
    mgr = LogStreamManager(runtime, LogBus(), cfg)

    handle = mgr.start("s1", cid)
    handle.join(2)

    assert not handle.thread.is_alive()
    assert fake_docker.pings == cfg.log_max_reconnects + 1
    assert mgr.table.get("s1") is None
