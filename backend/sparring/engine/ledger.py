from __future__ import annotations

import bisect
from collections.abc import Iterable
from datetime import datetime, timezone

from .errors import ValidationError
from .types import Corner, EventKind, ScoreEvent


def _order_key(event: ScoreEvent) -> tuple[int, int, int]:
    return (event.round, event.timestamp_in_round_seconds, event.sequence)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class EventLedger:
    """Append-only, ordered record of scoring events for a single match.

    Entries are kept sorted by ``(round, timestamp_in_round_seconds, sequence)``.
    The sequence is a per-match counter assigned on append, so two events
    recorded in the same second still have a deterministic order. A second
    list keeps insertion order for ``since()`` consumers.
    """

    def __init__(self, match_id: int, events: Iterable[ScoreEvent] = ()) -> None:
        self.match_id = match_id
        self._ordered: list[ScoreEvent] = []
        self._by_sequence: list[ScoreEvent] = []
        self._last_sequence = 0

        for event in sorted(events, key=lambda item: item.sequence):
            self._insert(event)

    def __len__(self) -> int:
        return len(self._by_sequence)

    @property
    def last_sequence(self) -> int:
        return self._last_sequence

    def append(
        self,
        *,
        round: int,
        timestamp_in_round_seconds: int,
        corner: Corner,
        event_kind: EventKind,
        recording_judge_id: str | None = None,
        agreeing_assessor_ids: Iterable[str] | None = None,
        description: str | None = None,
        voids_sequence: int | None = None,
        created_at: datetime | None = None,
    ) -> ScoreEvent:
        if round < 1:
            raise ValidationError("Round number must be at least 1.")
        if timestamp_in_round_seconds < 0:
            raise ValidationError("Timestamp in round cannot be negative.")

        event = ScoreEvent(
            match_id=self.match_id,
            sequence=self._last_sequence + 1,
            round=round,
            timestamp_in_round_seconds=timestamp_in_round_seconds,
            corner=corner,
            event_kind=event_kind,
            created_at=created_at or _utcnow(),
            recording_judge_id=recording_judge_id,
            agreeing_assessor_ids=(
                frozenset(agreeing_assessor_ids) if agreeing_assessor_ids is not None else None
            ),
            description=description,
            voids_sequence=voids_sequence,
        )
        self._insert(event)
        return event

    def _insert(self, event: ScoreEvent) -> None:
        if event.match_id != self.match_id:
            raise ValidationError("Event belongs to another match.")
        if event.sequence <= self._last_sequence:
            raise ValidationError(f"Sequence {event.sequence} is already in the ledger.")

        bisect.insort(self._ordered, event, key=_order_key)
        self._by_sequence.append(event)
        self._last_sequence = event.sequence

    def events(self, descending: bool = False) -> list[ScoreEvent]:
        if descending:
            return list(reversed(self._ordered))
        return list(self._ordered)

    def since(self, sequence: int) -> list[ScoreEvent]:
        index = bisect.bisect_right(self._by_sequence, sequence, key=lambda item: item.sequence)
        return self._by_sequence[index:]

    def is_last_in_order(self, event: ScoreEvent) -> bool:
        return bool(self._ordered) and self._ordered[-1] is event

    def get(self, sequence: int) -> ScoreEvent | None:
        index = bisect.bisect_left(self._by_sequence, sequence, key=lambda item: item.sequence)
        if index < len(self._by_sequence) and self._by_sequence[index].sequence == sequence:
            return self._by_sequence[index]
        return None

    def latest_effective(self) -> ScoreEvent | None:
        voided = {event.voids_sequence for event in self._by_sequence if event.is_compensation}
        for event in reversed(self._by_sequence):
            if event.is_compensation or event.sequence in voided:
                continue
            return event
        return None
