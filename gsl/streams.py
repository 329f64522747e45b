from __future__ import annotations

import logging
from threading import Event, Lock, Thread

from .docker_ops import RuntimeClient, iter_lines
from .errors import GslError
from .models import ServerStatus
from .runtime import LogBus
from .settings import Settings, settings as default_settings

logger = logging.getLogger(__name__)

_STREAMABLE = {ServerStatus.RUNNING, ServerStatus.INSTALLING}


class StreamHandle:
    """Cancellation signal plus the thread and runtime stream it controls."""

    def __init__(self, server_id: str, container_id: str):
        self.server_id = server_id
        self.container_id = container_id
        self.cancelled = Event()
        self.thread: Thread | None = None
        self._lock = Lock()
        self._stream = None

    def cancel(self) -> None:
        self.cancelled.set()
        with self._lock:
            stream, self._stream = self._stream, None
        if stream is not None:
            _close(stream)

    def attach_stream(self, stream) -> bool:
        """Register the active runtime stream; False if already cancelled."""
        with self._lock:
            if self.cancelled.is_set():
                return False
            self._stream = stream
            return True

    def detach_stream(self) -> None:
        with self._lock:
            stream, self._stream = self._stream, None
        if stream is not None:
            _close(stream)

    def join(self, timeout: float | None = None) -> None:
        if self.thread is not None:
            self.thread.join(timeout)

    def is_alive(self) -> bool:
        return self.thread is not None and self.thread.is_alive() and not self.cancelled.is_set()


def _close(stream) -> None:
    close = getattr(stream, "close", None)
    if close is None:
        return
    try:
        close()
    except Exception as e:
        logger.debug("Closing log stream failed: %s", e)


class StreamTable:
    """server id -> active StreamHandle.

    Mutated only through ``replace`` and ``remove``/``remove_if`` so the
    check and the write always happen under one lock acquisition.
    """

    def __init__(self) -> None:
        self._lock = Lock()
        self._handles: dict[str, StreamHandle] = {}

    def replace(self, server_id: str, handle: StreamHandle) -> StreamHandle | None:
        with self._lock:
            previous = self._handles.get(server_id)
            self._handles[server_id] = handle
            return previous

    def remove(self, server_id: str) -> StreamHandle | None:
        with self._lock:
            return self._handles.pop(server_id, None)

    def remove_if(self, server_id: str, handle: StreamHandle) -> bool:
        with self._lock:
            if self._handles.get(server_id) is handle:
                del self._handles[server_id]
                return True
            return False

    def get(self, server_id: str) -> StreamHandle | None:
        with self._lock:
            return self._handles.get(server_id)

    def ids(self) -> list[str]:
        with self._lock:
            return list(self._handles)


class LogStreamManager:
    """Follows container logs per server and republishes lines on a LogBus.

    At most one stream is live per server id: starting a stream cancels the
    previous one for that id before the new thread runs.
    """

    def __init__(
        self,
        runtime: RuntimeClient,
        bus: LogBus,
        cfg: Settings = default_settings,
        table: StreamTable | None = None,
    ):
        self.runtime = runtime
        self.bus = bus
        self.cfg = cfg
        self.table = table or StreamTable()

    def start(self, server_id: str, container_id: str) -> StreamHandle:
        handle = StreamHandle(server_id, container_id)
        previous = self.table.replace(server_id, handle)
        if previous is not None:
            previous.cancel()
            previous.join(self.cfg.stream_supersede_wait_s)

        handle.thread = Thread(target=self._run, args=(handle,), name=f"logs-{server_id}", daemon=True)
        handle.thread.start()
        return handle

    def stop(self, server_id: str) -> bool:
        """Cancel the stream for ``server_id``; the container is not touched."""
        handle = self.table.remove(server_id)
        if handle is None:
            return False
        handle.cancel()
        return True

    def stop_all(self) -> None:
        for server_id in self.table.ids():
            self.stop(server_id)

    def is_active(self, server_id: str) -> bool:
        handle = self.table.get(server_id)
        return handle is not None and handle.is_alive()

    def active_ids(self) -> list[str]:
        return [sid for sid in self.table.ids() if self.is_active(sid)]

    def _run(self, handle: StreamHandle) -> None:
        try:
            self._loop(handle)
        finally:
            self.table.remove_if(handle.server_id, handle)

    def _loop(self, handle: StreamHandle) -> None:
        server_id, container_id = handle.server_id, handle.container_id
        max_attempts = self.cfg.log_max_reconnects
        attempts = 0

        while not handle.cancelled.is_set():
            try:
                self.runtime.ping()
            except GslError as e:
                attempts += 1
                logger.error("Docker connect failed for log stream %s: %s", server_id, e)
                if attempts > max_attempts:
                    logger.warning("Giving up log stream for %s after %d attempts", server_id, attempts)
                    return
                handle.cancelled.wait(self.cfg.connect_retry_s)
                continue

            try:
                status = self.runtime.container_status(container_id)
            except GslError:
                status = None
            if status is not None and status not in _STREAMABLE:
                logger.info("Container for %s is %s, log stream ends", server_id, status.value)
                return

            try:
                stream = self.runtime.stream_logs(container_id, follow=True, tail=self.cfg.log_tail)
            except GslError as e:
                logger.warning("Opening log stream for %s failed: %s", server_id, e)
                stream = None

            if stream is not None:
                if not handle.attach_stream(stream):
                    _close(stream)
                    return
                try:
                    for line in iter_lines(stream):
                        if handle.cancelled.is_set():
                            return
                        attempts = 0
                        self.bus.emit(server_id, line)
                except Exception as e:
                    logger.debug("Log stream for %s interrupted: %s", server_id, e)
                finally:
                    handle.detach_stream()

            if handle.cancelled.is_set():
                return
            attempts += 1
            if attempts > max_attempts:
                logger.warning("Giving up log stream for %s after %d reconnects", server_id, attempts)
                return
            handle.cancelled.wait(self.cfg.log_reconnect_delay_s)
