from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, replace

from .ledger import EventLedger
from .types import Corner, CornerTally, EventKind, MatchStatus, ScoreboardSnapshot, ScoreEvent


@dataclass(frozen=True)
class Tallies:
    red: CornerTally = CornerTally()
    blue: CornerTally = CornerTally()
    last_event_sequence: int | None = None

    def for_corner(self, corner: Corner) -> CornerTally:
        return self.red if corner is Corner.RED else self.blue

    def totals(self) -> tuple[int, int]:
        return self.red.score, self.blue.score


def _step(tally: CornerTally, kind: EventKind) -> CornerTally:
    if kind is EventKind.WARNING:
        return replace(tally, warnings=tally.warnings + 1)
    if kind is EventKind.MEDICAL_TIMEOUT:
        return replace(tally, medical_timeouts=tally.medical_timeouts + 1)
    # Running floor: a deduction never takes a corner below zero.
    return replace(tally, score=max(0, tally.score + kind.point_delta))


def apply_event(tallies: Tallies, event: ScoreEvent) -> Tallies:
    if event.is_compensation:
        return replace(tallies, last_event_sequence=event.sequence)

    updated = _step(tallies.for_corner(event.corner), event.event_kind)
    if event.corner is Corner.RED:
        return replace(tallies, red=updated, last_event_sequence=event.sequence)
    return replace(tallies, blue=updated, last_event_sequence=event.sequence)


def fold(events: Iterable[ScoreEvent]) -> Tallies:
    """Fold events, already in ledger order, into per-corner tallies."""
    ordered = list(events)
    voided = {event.voids_sequence for event in ordered if event.is_compensation}

    tallies = Tallies()
    last_sequence = None
    for event in ordered:
        last_sequence = max(last_sequence or 0, event.sequence)
        if event.sequence in voided:
            continue
        tallies = apply_event(tallies, event)

    return replace(tallies, last_event_sequence=last_sequence)


class ScoreboardProjector:
    def __init__(self, ledger: EventLedger) -> None:
        self._ledger = ledger
        self._tallies = fold(ledger.events())

    @property
    def tallies(self) -> Tallies:
        return self._tallies

    def apply(self, event: ScoreEvent) -> Tallies:
        if event.is_compensation or not self._ledger.is_last_in_order(event):
            return self.refold()
        self._tallies = apply_event(self._tallies, event)
        return self._tallies

    def refold(self) -> Tallies:
        self._tallies = fold(self._ledger.events())
        return self._tallies

    def snapshot(
        self,
        *,
        current_round: int,
        total_rounds: int,
        remaining_seconds: int,
        status: MatchStatus,
    ) -> ScoreboardSnapshot:
        return ScoreboardSnapshot(
            match_id=self._ledger.match_id,
            current_round=current_round,
            total_rounds=total_rounds,
            remaining_seconds=remaining_seconds,
            status=status,
            red=self._tallies.red,
            blue=self._tallies.blue,
            last_event_sequence=self._tallies.last_event_sequence,
        )
