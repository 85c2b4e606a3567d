"""Consensus voting for assessor scoring decisions.

A decision is one PendingVoteWindow, keyed by (match, round, corner, window
number). Windows for the same round and corner are sequential: a window is
opened by the first vote, and it is destroyed either when one score value
reaches the acceptance threshold (one ScoreEvent is appended to the ledger)
or when the lead official closes it, or when its round ends.

Windows live only in memory. They are never persisted and are not rebuilt on
recovery; assessors simply vote again.
"""
from __future__ import annotations

import logging
import time
from collections import Counter
from collections.abc import Iterable
from dataclasses import dataclass, field

from .errors import InvalidScoreValue, NotAssigned, WindowClosed
from .ledger import EventLedger
from .timer import Clock
from .types import AssessorAssignment, AssessorRole, Corner, EventKind, ScoreEvent, VoteOutcome

logger = logging.getLogger(__name__)

DEFAULT_ALLOWED_VALUES = (1, 2)


@dataclass(frozen=True)
class WindowKey:
    match_id: int
    round: int
    corner: Corner
    number: int


@dataclass
class VoteWindow:
    key: WindowKey
    opened_at: float
    votes: dict[str, int] = field(default_factory=dict)
    resolved_at: float | None = None

    @property
    def resolved(self) -> bool:
        return self.resolved_at is not None

    def tally(self) -> Counter:
        return Counter(self.votes.values())

    def voters_for(self, value: int) -> list[str]:
        return [assessor_id for assessor_id, vote in self.votes.items() if vote == value]


class ConsensusEngine:
    def __init__(
        self,
        ledger: EventLedger,
        *,
        allowed_values: Iterable[int] = DEFAULT_ALLOWED_VALUES,
        threshold: int | None = None,
        late_vote_grace_seconds: float = 2.0,
        clock: Clock = time.monotonic,
    ) -> None:
        self._ledger = ledger
        self._allowed_values = tuple(sorted(set(allowed_values)))
        self._fixed_threshold = threshold
        self._grace = late_vote_grace_seconds
        self._clock = clock

        self._open: dict[tuple[int, Corner], VoteWindow] = {}
        self._resolved: dict[tuple[int, Corner], VoteWindow] = {}
        self._numbers: dict[tuple[int, Corner], int] = {}
        self._assignments: dict[str, AssessorAssignment] = {}

    @property
    def match_id(self) -> int:
        return self._ledger.match_id

    @property
    def allowed_values(self) -> tuple[int, ...]:
        return self._allowed_values

    def load_assignments(self, assignments: Iterable[AssessorAssignment]) -> None:
        self._assignments = {
            item.user_id: item for item in assignments if item.match_id == self.match_id
        }

    def assignment(self, user_id: str) -> AssessorAssignment | None:
        return self._assignments.get(user_id)

    def is_assessor(self, user_id: str) -> bool:
        item = self._assignments.get(user_id)
        return item is not None and item.role is AssessorRole.ASSESSOR

    def is_judge(self, user_id: str) -> bool:
        item = self._assignments.get(user_id)
        return item is not None and item.role is AssessorRole.JUDGE

    @property
    def assessor_count(self) -> int:
        return sum(1 for item in self._assignments.values() if item.role is AssessorRole.ASSESSOR)

    @property
    def threshold(self) -> int:
        if self._fixed_threshold is not None:
            return self._fixed_threshold
        # Strict majority of the assigned assessors.
        return self.assessor_count // 2 + 1

    def cast_vote(
        self,
        *,
        round: int,
        corner: Corner,
        assessor_id: str,
        value: int,
        timestamp_in_round_seconds: int,
    ) -> VoteOutcome:
        if not self.is_assessor(assessor_id):
            raise NotAssigned(f"User {assessor_id} is not an assessor on match {self.match_id}.")

        slot = (round, corner)
        window = self._open.get(slot)
        previous = self._resolved.get(slot) if window is None else None
        if window is None and self._recently_resolved(slot):
            raise WindowClosed(f"The {corner.value} decision for round {round} was already resolved.")

        if value not in self._allowed_values:
            allowed = ", ".join(str(item) for item in self._allowed_values)
            raise InvalidScoreValue(f"Score value must be one of: {allowed}.")

        since_previous = None
        if previous is not None and previous.resolved_at is not None:
            since_previous = self._clock() - previous.resolved_at
        opened = window is None
        if opened:
            window = self._open_window(slot)

        window.votes[assessor_id] = value
        vote_count = window.tally()[value]

        event = None
        if vote_count >= self.threshold:
            event = self._accept(window, value, timestamp_in_round_seconds)

        logger.info(
            "Vote match=%s round=%s corner=%s assessor=%s value=%s count=%s/%s accepted=%s",
            self.match_id,
            round,
            corner.value,
            assessor_id,
            value,
            vote_count,
            self.assessor_count,
            event is not None,
        )

        return VoteOutcome(
            match_id=self.match_id,
            round=round,
            corner=corner,
            score=value,
            window=window.key.number,
            vote_count=vote_count,
            total_assessors=self.assessor_count,
            score_accepted=event is not None,
            votes=dict(window.votes),
            event=event,
            opened_window=opened,
            since_previous_decision_seconds=since_previous,
        )

    def _recently_resolved(self, slot: tuple[int, Corner]) -> bool:
        window = self._resolved.get(slot)
        if window is None or window.resolved_at is None:
            return False
        if self._clock() - window.resolved_at < self._grace:
            return True
        del self._resolved[slot]
        return False

    def _open_window(self, slot: tuple[int, Corner]) -> VoteWindow:
        number = self._numbers.get(slot, 0) + 1
        self._numbers[slot] = number
        self._resolved.pop(slot, None)

        round_number, corner = slot
        window = VoteWindow(
            key=WindowKey(self.match_id, round_number, corner, number),
            opened_at=self._clock(),
        )
        self._open[slot] = window
        return window

    def _accept(self, window: VoteWindow, value: int, timestamp_in_round_seconds: int) -> ScoreEvent:
        agreeing = window.voters_for(value)
        event = self._ledger.append(
            round=window.key.round,
            timestamp_in_round_seconds=timestamp_in_round_seconds,
            corner=window.key.corner,
            event_kind=EventKind.for_score_value(value),
            agreeing_assessor_ids=agreeing,
            description=(
                f"Consensus +{value} {window.key.corner.value} - Round {window.key.round} "
                f"- Window {window.key.number} ({len(agreeing)}/{self.assessor_count})"
            ),
        )

        window.resolved_at = self._clock()
        slot = (window.key.round, window.key.corner)
        del self._open[slot]
        self._resolved[slot] = window
        return event

    def close_window(self, round: int, corner: Corner) -> VoteWindow | None:
        window = self._open.pop((round, corner), None)
        if window is not None:
            logger.info(
                "Closed vote window match=%s round=%s corner=%s window=%s with %s unresolved vote(s)",
                self.match_id,
                round,
                corner.value,
                window.key.number,
                len(window.votes),
            )
        return window

    def discard_round(self, round: int) -> int:
        discarded = [slot for slot in self._open if slot[0] == round]
        for slot in discarded:
            del self._open[slot]
        for slot in [slot for slot in self._resolved if slot[0] == round]:
            del self._resolved[slot]
        return len(discarded)

    def discard_all(self) -> int:
        count = len(self._open)
        self._open.clear()
        self._resolved.clear()
        return count

    def open_windows(self) -> list[VoteWindow]:
        return sorted(self._open.values(), key=lambda window: (window.key.round, window.key.corner.value))
