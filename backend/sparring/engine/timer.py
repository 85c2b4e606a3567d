from __future__ import annotations

import logging
import math
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Protocol

logger = logging.getLogger(__name__)

Clock = Callable[[], float]


@dataclass(frozen=True)
class TimerFrame:
    """Immutable view of a round timer, safe to read without the match lock."""

    scheduled_seconds: int
    elapsed_before: float
    running_since: float | None

    def elapsed(self, now: float) -> float:
        if self.running_since is None:
            return self.elapsed_before
        return self.elapsed_before + max(0.0, now - self.running_since)

    def remaining(self, now: float) -> float:
        return max(0.0, self.scheduled_seconds - self.elapsed(now))

    def remaining_seconds(self, now: float) -> int:
        return math.ceil(self.remaining(now))


class RoundTimer:
    def __init__(self, scheduled_seconds: int, clock: Clock = time.monotonic) -> None:
        if scheduled_seconds < 1:
            raise ValueError("Round duration must be at least one second.")
        self._clock = clock
        self._scheduled = scheduled_seconds
        self._elapsed_before = 0.0
        self._running_since: float | None = None

    @classmethod
    def restored(cls, scheduled_seconds: int, remaining_seconds: float, clock: Clock = time.monotonic) -> RoundTimer:
        timer = cls(scheduled_seconds, clock)
        remaining = min(max(0.0, remaining_seconds), scheduled_seconds)
        timer._elapsed_before = scheduled_seconds - remaining
        return timer

    @property
    def running(self) -> bool:
        return self._running_since is not None

    @property
    def scheduled_seconds(self) -> int:
        return self._scheduled

    def start(self) -> None:
        if self._running_since is None:
            self._running_since = self._clock()

    def pause(self) -> None:
        if self._running_since is not None:
            self._elapsed_before += max(0.0, self._clock() - self._running_since)
            self._running_since = None

    stop = pause

    def elapsed(self) -> float:
        return self.frame().elapsed(self._clock())

    def remaining(self) -> float:
        return self.frame().remaining(self._clock())

    def expired(self) -> bool:
        return self.remaining() <= 0

    def frame(self) -> TimerFrame:
        return TimerFrame(
            scheduled_seconds=self._scheduled,
            elapsed_before=self._elapsed_before,
            running_since=self._running_since,
        )


class ScheduledCall(Protocol):
    def cancel(self) -> None: ...


class Scheduler(Protocol):
    def schedule(self, delay: float, callback: Callable[[], None]) -> ScheduledCall: ...


class ThreadingScheduler:
    """Runs expiry callbacks on daemon ``threading.Timer`` threads."""

    def schedule(self, delay: float, callback: Callable[[], None]) -> ScheduledCall:
        call = threading.Timer(max(0.0, delay), self._run, args=(callback,))
        call.daemon = True
        call.start()
        return call

    @staticmethod
    def _run(callback: Callable[[], None]) -> None:
        try:
            callback()
        except Exception:
            logger.exception("Round timer callback failed")
