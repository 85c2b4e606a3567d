"""Match lifecycle and the single write path for one live match.

Every mutating operation (control commands, votes, direct events, undo and
timer expiry) runs under the per-match lock. Readers use the last published
state, which is replaced as a whole after each mutation and never modified
in place.
"""
from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Any, Protocol

from ..config import EngineSettings
from .consensus import ConsensusEngine, VoteWindow
from .errors import InvalidTransition, NotAssigned, NotFound, ValidationError, WindowClosed
from .ledger import EventLedger
from .projector import ScoreboardProjector
from .timer import Clock, RoundTimer, ScheduledCall, Scheduler, ThreadingScheduler, TimerFrame
from .types import (
    AssessorAssignment,
    AssessorRole,
    ControlAction,
    ControlOutcome,
    Corner,
    EventKind,
    MatchInfo,
    MatchRecord,
    MatchStatus,
    RoundKind,
    RoundState,
    RoundStatus,
    ScoreboardSnapshot,
    ScoreEvent,
    VoteOutcome,
)

logger = logging.getLogger(__name__)

TRANSITIONS: dict[tuple[MatchStatus, ControlAction], MatchStatus] = {
    (MatchStatus.PENDING, ControlAction.START): MatchStatus.IN_PROGRESS,
    (MatchStatus.IN_PROGRESS, ControlAction.PAUSE): MatchStatus.PAUSED,
    (MatchStatus.PAUSED, ControlAction.RESUME): MatchStatus.IN_PROGRESS,
    # The continuation policy may turn END_ROUND into ENDED.
    (MatchStatus.IN_PROGRESS, ControlAction.END_ROUND): MatchStatus.IN_PROGRESS,
    (MatchStatus.IN_PROGRESS, ControlAction.END_MATCH): MatchStatus.ENDED,
    (MatchStatus.PAUSED, ControlAction.END_MATCH): MatchStatus.ENDED,
    (MatchStatus.PENDING, ControlAction.CANCEL): MatchStatus.CANCELLED,
    (MatchStatus.IN_PROGRESS, ControlAction.CANCEL): MatchStatus.CANCELLED,
    (MatchStatus.PAUSED, ControlAction.CANCEL): MatchStatus.CANCELLED,
}

HALTING_ACTIONS = frozenset({ControlAction.END_MATCH, ControlAction.CANCEL})

CONFIGURABLE_FIELDS = frozenset(
    {
        "total_rounds",
        "round_duration_seconds",
        "tie_breaker_duration_seconds",
        "allow_extra_round",
        "max_extra_rounds",
        "tie_break_rule",
    }
)


def next_status(status: MatchStatus, action: ControlAction) -> MatchStatus:
    target = TRANSITIONS.get((status, action))
    if target is None:
        raise InvalidTransition(f"Cannot {action.value} a match that is {status.value}.")
    return target


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class MatchStore(Protocol):
    def save_match(self, match: MatchInfo) -> None: ...

    def save_round(self, round: RoundState) -> None: ...

    def append_event(self, event: ScoreEvent) -> None: ...

    def save_snapshot(self, snapshot: ScoreboardSnapshot) -> None: ...


@dataclass(frozen=True)
class Published:
    match: MatchInfo
    rounds: tuple[RoundState, ...]
    events: tuple[ScoreEvent, ...]
    snapshot: ScoreboardSnapshot
    frame: TimerFrame


@dataclass(frozen=True)
class WindowView:
    round: int
    corner: Corner
    window: int
    votes: dict[str, int]
    vote_count: dict[int, int]


class MatchStateMachine:
    def __init__(
        self,
        match: MatchInfo,
        store: MatchStore,
        *,
        settings: EngineSettings | None = None,
        rounds: Iterable[RoundState] = (),
        events: Iterable[ScoreEvent] = (),
        assignments: Iterable[AssessorAssignment] = (),
        snapshot: ScoreboardSnapshot | None = None,
        assignments_loader: Callable[[int], list[AssessorAssignment]] | None = None,
        clock: Clock = time.monotonic,
        scheduler: Scheduler | None = None,
        wall_clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._match = replace(match)
        self._store = store
        self._settings = settings or EngineSettings()
        self._clock = clock
        self._scheduler = scheduler or ThreadingScheduler()
        self._now = wall_clock
        self._assignments_loader = assignments_loader

        self._lock = threading.RLock()
        self._halt_guard = threading.Lock()
        self._halts_pending = 0

        self._rounds: list[RoundState] = sorted((replace(item) for item in rounds), key=lambda item: item.round_number)
        self._ledger = EventLedger(match.id, events)
        self._projector = ScoreboardProjector(self._ledger)
        self._consensus = ConsensusEngine(
            self._ledger,
            allowed_values=self._settings.allowed_values,
            threshold=self._settings.consensus_threshold,
            late_vote_grace_seconds=self._settings.late_vote_grace_seconds,
            clock=clock,
        )
        self._consensus.load_assignments(assignments)

        self._timer = self._restore_timer(snapshot)
        self._timer_call: ScheduledCall | None = None
        self._timer_generation = 0
        self._last_outcome: ControlOutcome | None = None

        if self._match.status is MatchStatus.IN_PROGRESS:
            # A live match found on load was interrupted; the official resumes it.
            logger.warning("Match %s recovered mid-round; holding it PAUSED", self._match.id)
            self._match.status = MatchStatus.PAUSED
            self._store.save_match(replace(self._match))

        self._published = self._build_published()

    @classmethod
    def from_record(cls, record: MatchRecord, store: MatchStore, **kwargs: Any) -> MatchStateMachine:
        return cls(
            record.match,
            store,
            rounds=record.rounds,
            events=record.events,
            assignments=record.assignments,
            snapshot=record.snapshot,
            **kwargs,
        )

    # ------------------------------------------------------------------
    # Reads (lock free)
    # ------------------------------------------------------------------

    @property
    def match_id(self) -> int:
        return self._match.id

    @property
    def match(self) -> MatchInfo:
        return self._published.match

    @property
    def status(self) -> MatchStatus:
        return self._published.match.status

    @property
    def last_outcome(self) -> ControlOutcome | None:
        return self._last_outcome

    def scoreboard(self) -> ScoreboardSnapshot:
        published = self._published
        remaining = published.frame.remaining_seconds(self._clock())
        return replace(published.snapshot, remaining_seconds=remaining)

    def rounds(self) -> list[RoundState]:
        return list(self._published.rounds)

    def events(self, descending: bool = False, since: int | None = None) -> list[ScoreEvent]:
        events = list(self._published.events)
        if since is not None:
            events = [event for event in events if event.sequence > since]
            events.sort(key=lambda event: event.sequence)
            return events
        if descending:
            events.reverse()
        return events

    # ------------------------------------------------------------------
    # Control commands
    # ------------------------------------------------------------------

    def control(self, action: ControlAction, current_round: int | None = None) -> ControlOutcome:
        assignments = None
        if action is ControlAction.START and self._assignments_loader is not None:
            assignments = self._assignments_loader(self._match.id)

        if action in HALTING_ACTIONS:
            with self._halt_guard:
                self._halts_pending += 1
        try:
            with self._lock:
                handler = self._handlers[action]
                self._check_expected_round(current_round)
                outcome = handler(self, assignments) if action is ControlAction.START else handler(self)
                self._last_outcome = outcome
                self._publish()
        finally:
            if action in HALTING_ACTIONS:
                with self._halt_guard:
                    self._halts_pending -= 1

        logger.info(
            "Match %s %s -> %s (round %s)",
            self._match.id,
            action.value,
            outcome.status.value,
            outcome.current_round,
        )
        return outcome

    def start(self, current_round: int | None = None) -> ControlOutcome:
        return self.control(ControlAction.START, current_round)

    def pause(self, current_round: int | None = None) -> ControlOutcome:
        return self.control(ControlAction.PAUSE, current_round)

    def resume(self, current_round: int | None = None) -> ControlOutcome:
        return self.control(ControlAction.RESUME, current_round)

    def end_round(self, current_round: int | None = None) -> ControlOutcome:
        return self.control(ControlAction.END_ROUND, current_round)

    def end_match(self, current_round: int | None = None) -> ControlOutcome:
        return self.control(ControlAction.END_MATCH, current_round)

    def cancel(self, current_round: int | None = None) -> ControlOutcome:
        return self.control(ControlAction.CANCEL, current_round)

    def _check_expected_round(self, current_round: int | None) -> None:
        if current_round is not None and current_round != self._match.current_round:
            raise InvalidTransition(
                f"Command targets round {current_round} but match {self._match.id} "
                f"is on round {self._match.current_round}."
            )

    def _do_start(self, assignments: list[AssessorAssignment] | None) -> ControlOutcome:
        target = next_status(self._match.status, ControlAction.START)

        if not self._match.red_present or not self._match.blue_present:
            raise ValidationError("Confirm both competitors are present before starting the match.")

        if assignments is None:
            assessor_count = self._consensus.assessor_count
        else:
            assessor_count = sum(
                1
                for item in assignments
                if item.match_id == self._match.id and item.role is AssessorRole.ASSESSOR
            )
        threshold = self._settings.consensus_threshold or assessor_count // 2 + 1

        if assessor_count < self._settings.min_assessors:
            raise ValidationError(
                f"At least {self._settings.min_assessors} assessor(s) must be assigned, found {assessor_count}."
            )
        if assessor_count and threshold > assessor_count:
            raise ValidationError(
                f"Consensus threshold {threshold} exceeds the {assessor_count} assigned assessor(s)."
            )

        if assignments is not None:
            self._consensus.load_assignments(assignments)

        now = self._now()
        self._match.status = target
        self._match.started_at = self._match.started_at or now
        self._open_round(1, RoundKind.MAIN, now)
        return self._outcome(ControlAction.START)

    def _do_pause(self) -> ControlOutcome:
        target = next_status(self._match.status, ControlAction.PAUSE)
        self._disarm_timer()
        self._timer.pause()
        self._match.status = target
        self._store.save_match(replace(self._match))
        return self._outcome(ControlAction.PAUSE)

    def _do_resume(self) -> ControlOutcome:
        target = next_status(self._match.status, ControlAction.RESUME)
        self._match.status = target
        self._timer.start()
        self._arm_timer()
        self._store.save_match(replace(self._match))
        return self._outcome(ControlAction.RESUME)

    def _do_end_round(self) -> ControlOutcome:
        next_status(self._match.status, ControlAction.END_ROUND)
        return self._end_round_locked(ControlAction.END_ROUND)

    def _do_end_match(self) -> ControlOutcome:
        next_status(self._match.status, ControlAction.END_MATCH)
        now = self._now()
        current = self._current_round()
        if current is not None and current.status is RoundStatus.IN_PROGRESS:
            self._close_round(current, now)
        return self._finish(ControlAction.END_MATCH, now)

    def _do_cancel(self) -> ControlOutcome:
        target = next_status(self._match.status, ControlAction.CANCEL)
        now = self._now()
        current = self._current_round()
        if current is not None and current.status is RoundStatus.IN_PROGRESS:
            self._close_round(current, now)
        self._disarm_timer()
        self._timer.pause()
        discarded = self._consensus.discard_all()
        if discarded:
            logger.info("Discarded %s open vote window(s) for cancelled match %s", discarded, self._match.id)

        self._match.status = target
        self._match.ended_at = now
        self._store.save_match(replace(self._match))
        return self._outcome(ControlAction.CANCEL)

    _handlers: dict[ControlAction, Callable[..., ControlOutcome]] = {
        ControlAction.START: _do_start,
        ControlAction.PAUSE: _do_pause,
        ControlAction.RESUME: _do_resume,
        ControlAction.END_ROUND: _do_end_round,
        ControlAction.END_MATCH: _do_end_match,
        ControlAction.CANCEL: _do_cancel,
    }

    def _end_round_locked(self, action: ControlAction) -> ControlOutcome:
        now = self._now()
        closing = self._current_round()
        if closing is None:
            raise InvalidTransition(f"Match {self._match.id} has no open round.")

        self._close_round(closing, now)

        red, blue = self._projector.tallies.totals()
        match = self._match
        if match.current_round < match.total_rounds:
            self._open_round(match.current_round + 1, RoundKind.MAIN, now)
            return self._outcome(action)

        if red != blue:
            return self._finish(action, now)

        if match.allow_extra_round and self._extra_rounds_played() < match.max_extra_rounds:
            self._open_round(match.current_round + 1, RoundKind.TIE_BREAKER, now)
            logger.info("Match %s tied %s-%s; opening tie-breaker round %s", match.id, red, blue, match.current_round)
            return self._outcome(action)

        return self._finish(action, now)

    def _finish(self, action: ControlAction, now: datetime) -> ControlOutcome:
        self._disarm_timer()
        self._timer.pause()
        self._consensus.discard_all()

        red, blue = self._projector.tallies.totals()
        if red > blue:
            winner = Corner.RED
        elif blue > red:
            winner = Corner.BLUE
        else:
            winner = None

        self._match.status = MatchStatus.ENDED
        self._match.ended_at = now
        self._match.winner_corner = winner
        self._store.save_match(replace(self._match))

        tie_break_required = winner is None
        if tie_break_required:
            logger.info(
                "Match %s ended tied %s-%s; tie-break rule %r must decide",
                self._match.id,
                red,
                blue,
                self._match.tie_break_rule,
            )
        return self._outcome(action, tie_break_required=tie_break_required)

    def _outcome(self, action: ControlAction, tie_break_required: bool = False) -> ControlOutcome:
        current = self._current_round()
        return ControlOutcome(
            match_id=self._match.id,
            action=action,
            status=self._match.status,
            current_round=self._match.current_round,
            round_kind=current.round_kind if current else None,
            winner_corner=self._match.winner_corner,
            tie_break_required=tie_break_required,
            tie_break_rule=self._match.tie_break_rule if tie_break_required else None,
        )

    # ------------------------------------------------------------------
    # Rounds and timer
    # ------------------------------------------------------------------

    def _current_round(self) -> RoundState | None:
        for item in reversed(self._rounds):
            if item.round_number == self._match.current_round:
                return item
        return None

    def _open_round_number(self) -> int | None:
        current = self._current_round()
        if current is None or current.status is not RoundStatus.IN_PROGRESS:
            return None
        return current.round_number

    def _extra_rounds_played(self) -> int:
        return sum(1 for item in self._rounds if item.round_kind is RoundKind.TIE_BREAKER)

    def _open_round(self, number: int, kind: RoundKind, now: datetime) -> RoundState:
        duration = self._match.duration_for(kind)
        new_round = RoundState(
            match_id=self._match.id,
            round_number=number,
            round_kind=kind,
            scheduled_duration_seconds=duration,
            status=RoundStatus.IN_PROGRESS,
            started_at=now,
        )
        self._rounds.append(new_round)
        self._match.current_round = number

        self._timer = RoundTimer(duration, self._clock)
        self._timer.start()
        self._arm_timer()

        self._store.save_round(replace(new_round))
        self._store.save_match(replace(self._match))
        return new_round

    def _close_round(self, closing: RoundState, now: datetime) -> None:
        self._disarm_timer()
        self._timer.pause()

        red, blue = self._projector.tallies.totals()
        closing.status = RoundStatus.ENDED
        closing.ended_at = now
        closing.actual_duration_seconds = int(round(self._timer.elapsed()))
        closing.red_score = red
        closing.blue_score = blue

        discarded = self._consensus.discard_round(closing.round_number)
        if discarded:
            logger.info(
                "Discarded %s unresolved vote window(s) when round %s of match %s ended",
                discarded,
                closing.round_number,
                self._match.id,
            )
        self._store.save_round(replace(closing))

    def _restore_timer(self, snapshot: ScoreboardSnapshot | None) -> RoundTimer:
        current = self._current_round()
        if current is None:
            return RoundTimer(self._match.duration_for(RoundKind.MAIN), self._clock)

        scheduled = current.scheduled_duration_seconds
        if current.status is RoundStatus.ENDED:
            elapsed = current.actual_duration_seconds or scheduled
            return RoundTimer.restored(scheduled, scheduled - elapsed, self._clock)
        if snapshot is not None and snapshot.current_round == current.round_number:
            return RoundTimer.restored(scheduled, snapshot.remaining_seconds, self._clock)
        return RoundTimer.restored(scheduled, scheduled, self._clock)

    def _arm_timer(self) -> None:
        self._disarm_timer()
        token = (self._match.current_round, self._timer_generation)
        delay = self._timer.remaining()
        interval = self._settings.snapshot_interval_seconds
        if interval:
            # Wakes at least every interval so a quiet round still persists its clock.
            delay = min(delay, interval)
        self._timer_call = self._scheduler.schedule(delay, lambda: self._on_timer(token))

    def _disarm_timer(self) -> None:
        self._timer_generation += 1
        if self._timer_call is not None:
            self._timer_call.cancel()
            self._timer_call = None

    def _on_timer(self, token: tuple[int, int]) -> None:
        round_number, generation = token
        with self._lock:
            if (
                generation != self._timer_generation
                or self._match.status is not MatchStatus.IN_PROGRESS
                or self._open_round_number() != round_number
            ):
                logger.debug("Ignoring stale timer for match %s round %s", self._match.id, round_number)
                return
            if not self._timer.expired():
                self._store.save_snapshot(self.scoreboard())
                self._arm_timer()
                return

            logger.info("Round %s of match %s expired", round_number, self._match.id)
            self._timer_call = None
            self._last_outcome = self._end_round_locked(ControlAction.END_ROUND)
            self._publish()

    # ------------------------------------------------------------------
    # Scoring inputs
    # ------------------------------------------------------------------

    def _halting(self) -> bool:
        return self._halts_pending > 0

    def cast_vote(
        self,
        assessor_id: str,
        corner: Corner,
        value: int,
        round: int | None = None,
    ) -> VoteOutcome:
        with self._lock:
            if not self._consensus.is_assessor(assessor_id):
                raise NotAssigned(f"User {assessor_id} is not an assessor on match {self._match.id}.")

            open_round = self._open_round_number()
            if self._halting() or not self._match.status.is_live or open_round is None:
                raise WindowClosed(f"Match {self._match.id} is not accepting votes.")
            if round is not None and round != open_round:
                raise WindowClosed(f"Round {round} is closed; match {self._match.id} is on round {open_round}.")

            outcome = self._consensus.cast_vote(
                round=open_round,
                corner=corner,
                assessor_id=assessor_id,
                value=value,
                timestamp_in_round_seconds=int(self._timer.elapsed()),
            )
            if outcome.event is not None:
                self._accept_event(outcome.event)
            return outcome

    def record_direct_event(
        self,
        corner: Corner,
        event_kind: EventKind,
        *,
        round: int | None = None,
        timestamp_in_round_seconds: int | None = None,
        judge_id: str | None = None,
        assessor_ids: Iterable[str] | None = None,
    ) -> ScoreEvent:
        with self._lock:
            if self._halting() or not self._match.status.is_live:
                raise InvalidTransition(f"Match {self._match.id} is not in progress.")
            if judge_id is not None and not self._consensus.is_judge(judge_id):
                raise NotAssigned(f"User {judge_id} is not a judge on match {self._match.id}.")

            agreeing = list(assessor_ids) if assessor_ids is not None else None
            for assessor_id in agreeing or []:
                if not self._consensus.is_assessor(assessor_id):
                    raise NotAssigned(f"User {assessor_id} is not an assessor on match {self._match.id}.")

            open_round = self._open_round_number()
            round_number = round if round is not None else open_round
            if round_number is None or not any(item.round_number == round_number for item in self._rounds):
                raise NotFound(f"Round {round_number} not found for match {self._match.id}.")
            if round_number != open_round:
                raise WindowClosed(f"Round {round_number} of match {self._match.id} has ended.")

            if timestamp_in_round_seconds is None:
                timestamp_in_round_seconds = int(self._timer.elapsed())
            if timestamp_in_round_seconds < 0:
                raise ValidationError("Timestamp in round cannot be negative.")

            event = self._ledger.append(
                round=round_number,
                timestamp_in_round_seconds=timestamp_in_round_seconds,
                corner=corner,
                event_kind=event_kind,
                recording_judge_id=judge_id,
                agreeing_assessor_ids=agreeing or None,
                description=(
                    f"{event_kind.value} - {corner.value} - Round {round_number} "
                    f"- Time {timestamp_in_round_seconds}"
                ),
            )
            self._accept_event(event)

        logger.info(
            "Recorded %s for %s in match %s round %s (judge=%s)",
            event_kind.value,
            corner.value,
            self._match.id,
            round_number,
            judge_id,
        )
        return event

    def undo_last_event(self, judge_id: str | None = None) -> ScoreEvent:
        with self._lock:
            if self._halting() or not self._match.status.is_live:
                raise InvalidTransition(f"Match {self._match.id} is not in progress.")
            if judge_id is not None and not self._consensus.is_judge(judge_id):
                raise NotAssigned(f"User {judge_id} is not a judge on match {self._match.id}.")

            target = self._ledger.latest_effective()
            if target is None:
                raise ValidationError(f"Match {self._match.id} has no event to undo.")

            event = self._ledger.append(
                round=target.round,
                timestamp_in_round_seconds=target.timestamp_in_round_seconds,
                corner=target.corner,
                event_kind=target.event_kind,
                recording_judge_id=judge_id,
                description=f"Undo #{target.sequence} ({target.event_kind.value} {target.corner.value})",
                voids_sequence=target.sequence,
            )
            self._accept_event(event)

        logger.info("Match %s: event #%s voided by #%s", self._match.id, target.sequence, event.sequence)
        return event

    def _accept_event(self, event: ScoreEvent) -> None:
        self._projector.apply(event)
        self._store.append_event(event)
        self._publish()

    def close_vote_window(self, corner: Corner, round: int | None = None) -> bool:
        with self._lock:
            round_number = round if round is not None else self._match.current_round
            return self._consensus.close_window(round_number, corner) is not None

    def voting_status(self) -> list[WindowView]:
        with self._lock:
            return [self._window_view(window) for window in self._consensus.open_windows()]

    @staticmethod
    def _window_view(window: VoteWindow) -> WindowView:
        return WindowView(
            round=window.key.round,
            corner=window.key.corner,
            window=window.key.number,
            votes=dict(window.votes),
            vote_count=dict(window.tally()),
        )

    @property
    def assessor_count(self) -> int:
        return self._consensus.assessor_count

    # ------------------------------------------------------------------
    # Pre-start configuration
    # ------------------------------------------------------------------

    def configure(self, **changes: Any) -> MatchInfo:
        unknown = set(changes) - CONFIGURABLE_FIELDS
        if unknown:
            raise ValidationError(f"Unknown match setting(s): {', '.join(sorted(unknown))}.")

        with self._lock:
            self._require_pending("change match settings")

            updated = replace(self._match, **changes)
            if updated.total_rounds < 1:
                raise ValidationError("Total rounds must be at least 1.")
            if updated.round_duration_seconds < 1:
                raise ValidationError("Round duration must be at least 1 second.")
            if updated.tie_breaker_duration_seconds is not None and updated.tie_breaker_duration_seconds < 1:
                raise ValidationError("Tie-breaker duration must be at least 1 second.")
            if updated.max_extra_rounds < 0:
                raise ValidationError("Max extra rounds cannot be negative.")

            self._match = updated
            self._timer = RoundTimer(updated.duration_for(RoundKind.MAIN), self._clock)
            self._store.save_match(replace(self._match))
            self._publish()
            return self._published.match

    def confirm_presence(self, red: bool | None = None, blue: bool | None = None) -> MatchInfo:
        with self._lock:
            self._require_pending("confirm presence")
            if red is not None:
                self._match.red_present = red
            if blue is not None:
                self._match.blue_present = blue
            self._store.save_match(replace(self._match))
            self._publish()
            return self._published.match

    def _require_pending(self, what: str) -> None:
        if self._match.status is not MatchStatus.PENDING:
            raise InvalidTransition(
                f"Can only {what} before the match starts; match {self._match.id} is {self._match.status.value}."
            )

    # ------------------------------------------------------------------
    # Publishing
    # ------------------------------------------------------------------

    def _build_published(self) -> Published:
        frame = self._timer.frame()
        snapshot = self._projector.snapshot(
            current_round=self._match.current_round,
            total_rounds=self._match.total_rounds,
            remaining_seconds=frame.remaining_seconds(self._clock()),
            status=self._match.status,
        )
        return Published(
            match=replace(self._match),
            rounds=tuple(replace(item) for item in self._rounds),
            events=tuple(self._ledger.events()),
            snapshot=snapshot,
            frame=frame,
        )

    def _publish(self) -> None:
        self._published = self._build_published()
        self._store.save_snapshot(self._published.snapshot)
