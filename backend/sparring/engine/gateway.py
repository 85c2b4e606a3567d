from __future__ import annotations

import logging
import queue
import threading
from collections.abc import Callable
from typing import Any, Protocol

from .types import AssessorAssignment, MatchInfo, MatchRecord, RoundState, ScoreboardSnapshot, ScoreEvent

logger = logging.getLogger(__name__)


class PersistenceGateway(Protocol):
    """Store contract the engine consumes. Implemented by ``crud.SqlGateway``."""

    def load_match(self, match_id: int) -> MatchRecord | None: ...

    def list_assessor_assignments(self, match_id: int) -> list[AssessorAssignment]: ...

    def save_match(self, match: MatchInfo) -> None: ...

    def save_round(self, round: RoundState) -> None: ...

    def append_event(self, event: ScoreEvent) -> None: ...

    def save_snapshot(self, snapshot: ScoreboardSnapshot) -> None: ...


_STOP = object()


class PersistenceQueue:
    """Single background writer for store updates.

    Writes are enqueued by the match engine while it holds a match lock and are
    applied in submission order by one worker thread, so a slow store never
    blocks live scoring. Writes are best effort: a failure is logged and the
    next write proceeds.
    """

    def __init__(self, gateway: PersistenceGateway, name: str = "sparring-persistence") -> None:
        self.gateway = gateway
        self._name = name
        self._queue: queue.Queue = queue.Queue()
        self._thread: threading.Thread | None = None
        self._lock = threading.Lock()

    def start(self) -> None:
        with self._lock:
            if self._thread is not None and self._thread.is_alive():
                return
            self._thread = threading.Thread(target=self._run, name=self._name, daemon=True)
            self._thread.start()

    def stop(self, timeout: float | None = 5.0) -> None:
        with self._lock:
            thread = self._thread
            self._thread = None
        if thread is None:
            return
        self._queue.put(_STOP)
        thread.join(timeout)

    def submit(self, func: Callable[..., Any], *args: Any) -> None:
        self.start()
        self._queue.put((func, args))

    def save_match(self, match: MatchInfo) -> None:
        self.submit(self.gateway.save_match, match)

    def save_round(self, round: RoundState) -> None:
        self.submit(self.gateway.save_round, round)

    def append_event(self, event: ScoreEvent) -> None:
        self.submit(self.gateway.append_event, event)

    def save_snapshot(self, snapshot: ScoreboardSnapshot) -> None:
        self.submit(self.gateway.save_snapshot, snapshot)

    def flush(self) -> None:
        """Block until every write submitted so far has been applied."""
        if self._thread is None:
            return
        self._queue.join()

    def _run(self) -> None:
        while True:
            item = self._queue.get()
            try:
                if item is _STOP:
                    return
                func, args = item
                try:
                    func(*args)
                except Exception:
                    logger.exception("Background write %s failed", getattr(func, "__name__", func))
            finally:
                self._queue.task_done()
