from __future__ import annotations

import logging
import threading
import time

from ..config import EngineSettings
from .errors import NotFound
from .gateway import PersistenceGateway, PersistenceQueue
from .state_machine import MatchStateMachine, MatchStore
from .timer import Clock, Scheduler, ThreadingScheduler

logger = logging.getLogger(__name__)


class MatchRegistry:
    """Hands out one MatchStateMachine per match id.

    Machines are built lazily from the store on first access, which is also
    how a match is recovered after a restart. The registry lock only guards
    the id -> machine map; matches never share a lock.

    Machines for ENDED or CANCELLED matches are dropped the next time another
    match has to be loaded, once the writer has flushed their final state.
    A later request for one rebuilds it from the store.
    """

    def __init__(
        self,
        gateway: PersistenceGateway,
        *,
        settings: EngineSettings | None = None,
        writer: MatchStore | None = None,
        clock: Clock = time.monotonic,
        scheduler: Scheduler | None = None,
    ) -> None:
        self.gateway = gateway
        self.settings = settings or EngineSettings()
        self.writer = writer if writer is not None else PersistenceQueue(gateway)
        self._clock = clock
        self._scheduler = scheduler or ThreadingScheduler()
        self._machines: dict[int, MatchStateMachine] = {}
        self._lock = threading.Lock()

    def get(self, match_id: int) -> MatchStateMachine:
        machine = self._machines.get(match_id)
        if machine is not None:
            return machine

        record = self.gateway.load_match(match_id)
        if record is None or record.match.deleted_at is not None:
            raise NotFound(f"Match {match_id} not found.")

        self.evict_finished()

        with self._lock:
            machine = self._machines.get(match_id)
            if machine is None:
                machine = MatchStateMachine.from_record(
                    record,
                    self.writer,
                    settings=self.settings,
                    assignments_loader=self.gateway.list_assessor_assignments,
                    clock=self._clock,
                    scheduler=self._scheduler,
                )
                self._machines[match_id] = machine
                logger.info(
                    "Loaded match %s (%s, round %s, %s event(s))",
                    match_id,
                    record.match.status.value,
                    record.match.current_round,
                    len(record.events),
                )
        return machine

    def peek(self, match_id: int) -> MatchStateMachine | None:
        return self._machines.get(match_id)

    def forget(self, match_id: int) -> None:
        with self._lock:
            self._machines.pop(match_id, None)

    def evict_finished(self) -> list[int]:
        finished = [match_id for match_id, machine in list(self._machines.items()) if machine.status.is_terminal]
        if not finished:
            return []

        self.flush()
        evicted = []
        with self._lock:
            for match_id in finished:
                machine = self._machines.get(match_id)
                if machine is not None and machine.status.is_terminal:
                    del self._machines[match_id]
                    evicted.append(match_id)
        if evicted:
            logger.info("Released %s finished match(es): %s", len(evicted), evicted)
        return evicted

    def loaded(self) -> list[int]:
        return sorted(self._machines)

    def flush(self) -> None:
        flush = getattr(self.writer, "flush", None)
        if flush is not None:
            flush()

    def shutdown(self) -> None:
        stop = getattr(self.writer, "stop", None)
        if stop is not None:
            stop()
