from __future__ import annotations

import queue
from threading import Lock

from .models import LogEvent


class LogBus:
    """In-memory fan-out of log events to subscriber queues.

    Producers (log streams, install runs) never block on consumers; each
    subscriber owns a bounded queue and the oldest pending event is dropped
    when it overflows.
    """

    def __init__(self, maxsize: int = 2000) -> None:
        self.lock = Lock()
        self.maxsize = maxsize
        self.subscribers: list[queue.Queue[LogEvent]] = []

    def subscribe(self) -> "queue.Queue[LogEvent]":
        q: queue.Queue[LogEvent] = queue.Queue(maxsize=self.maxsize)
        with self.lock:
            self.subscribers.append(q)
        return q

    def unsubscribe(self, q: "queue.Queue[LogEvent]") -> None:
        with self.lock:
            if q in self.subscribers:
                self.subscribers.remove(q)

    def publish(self, event: LogEvent) -> None:
        with self.lock:
            targets = list(self.subscribers)
        for q in targets:
            while True:
                try:
                    q.put_nowait(event)
                    break
                except queue.Full:
                    try:
                        q.get_nowait()
                    except queue.Empty:
                        pass

    def emit(self, server_id: str, line: str) -> None:
        self.publish(LogEvent(server_id=server_id, line=line))
