from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum


class MatchStatus(str, Enum):
    PENDING = "PENDING"
    IN_PROGRESS = "IN_PROGRESS"
    PAUSED = "PAUSED"
    ENDED = "ENDED"
    CANCELLED = "CANCELLED"

    @property
    def is_terminal(self) -> bool:
        return self in (MatchStatus.ENDED, MatchStatus.CANCELLED)

    @property
    def is_live(self) -> bool:
        return self in (MatchStatus.IN_PROGRESS, MatchStatus.PAUSED)


class RoundStatus(str, Enum):
    PENDING = "PENDING"
    IN_PROGRESS = "IN_PROGRESS"
    ENDED = "ENDED"


class RoundKind(str, Enum):
    MAIN = "MAIN"
    TIE_BREAKER = "TIE_BREAKER"


class Corner(str, Enum):
    RED = "RED"
    BLUE = "BLUE"


class EventKind(str, Enum):
    SCORE_PLUS_1 = "SCORE_PLUS_1"
    SCORE_PLUS_2 = "SCORE_PLUS_2"
    SCORE_MINUS_1 = "SCORE_MINUS_1"
    MEDICAL_TIMEOUT = "MEDICAL_TIMEOUT"
    WARNING = "WARNING"

    @property
    def point_delta(self) -> int:
        return _POINT_DELTAS.get(self, 0)

    @classmethod
    def for_score_value(cls, value: int) -> EventKind:
        return cls(f"SCORE_PLUS_{value}")


_POINT_DELTAS = {
    EventKind.SCORE_PLUS_1: 1,
    EventKind.SCORE_PLUS_2: 2,
    EventKind.SCORE_MINUS_1: -1,
}


class ControlAction(str, Enum):
    START = "START"
    PAUSE = "PAUSE"
    RESUME = "RESUME"
    END_ROUND = "END_ROUND"
    END_MATCH = "END_MATCH"
    CANCEL = "CANCEL"


class AssessorRole(str, Enum):
    ASSESSOR = "ASSESSOR"
    JUDGE = "JUDGE"


@dataclass
class MatchInfo:
    id: int
    competition_id: str | None
    weight_class_id: str | None
    field_id: str | None

    red_name: str
    red_unit: str | None
    red_bib: str | None
    blue_name: str
    blue_unit: str | None
    blue_bib: str | None

    total_rounds: int = 3
    round_duration_seconds: int = 120
    tie_breaker_duration_seconds: int | None = None
    allow_extra_round: bool = True
    max_extra_rounds: int = 1
    tie_break_rule: str | None = None

    status: MatchStatus = MatchStatus.PENDING
    current_round: int = 1
    red_present: bool = False
    blue_present: bool = False
    winner_corner: Corner | None = None

    started_at: datetime | None = None
    ended_at: datetime | None = None
    deleted_at: datetime | None = None

    def duration_for(self, kind: RoundKind) -> int:
        if kind is RoundKind.TIE_BREAKER and self.tie_breaker_duration_seconds:
            return self.tie_breaker_duration_seconds
        return self.round_duration_seconds


@dataclass
class RoundState:
    match_id: int
    round_number: int
    round_kind: RoundKind
    scheduled_duration_seconds: int
    status: RoundStatus = RoundStatus.PENDING
    actual_duration_seconds: int | None = None
    started_at: datetime | None = None
    ended_at: datetime | None = None
    red_score: int = 0
    blue_score: int = 0


@dataclass(frozen=True)
class ScoreEvent:
    match_id: int
    sequence: int
    round: int
    timestamp_in_round_seconds: int
    corner: Corner
    event_kind: EventKind
    created_at: datetime
    recording_judge_id: str | None = None
    agreeing_assessor_ids: frozenset[str] | None = None
    description: str | None = None
    voids_sequence: int | None = None

    @property
    def is_compensation(self) -> bool:
        return self.voids_sequence is not None


@dataclass(frozen=True)
class AssessorAssignment:
    match_id: int
    user_id: str
    position: int
    role: AssessorRole
    notes: str | None = None


@dataclass(frozen=True)
class CornerTally:
    score: int = 0
    warnings: int = 0
    medical_timeouts: int = 0


@dataclass(frozen=True)
class ScoreboardSnapshot:
    match_id: int
    current_round: int
    total_rounds: int
    remaining_seconds: int
    status: MatchStatus
    red: CornerTally = field(default_factory=CornerTally)
    blue: CornerTally = field(default_factory=CornerTally)
    last_event_sequence: int | None = None

    def tally(self, corner: Corner) -> CornerTally:
        return self.red if corner is Corner.RED else self.blue


@dataclass(frozen=True)
class VoteOutcome:
    match_id: int
    round: int
    corner: Corner
    score: int
    window: int
    vote_count: int
    total_assessors: int
    score_accepted: bool
    votes: dict[str, int]
    event: ScoreEvent | None = None
    # True when this vote started a new window. A vote arriving after the late
    # grace period for a resolved decision lands here with the gap since that
    # decision in since_previous_decision_seconds.
    opened_window: bool = False
    since_previous_decision_seconds: float | None = None


@dataclass(frozen=True)
class ControlOutcome:
    match_id: int
    action: ControlAction
    status: MatchStatus
    current_round: int
    round_kind: RoundKind | None
    winner_corner: Corner | None = None
    tie_break_required: bool = False
    tie_break_rule: str | None = None


@dataclass
class MatchRecord:
    """Everything the store holds for one match, as loaded on recovery."""

    match: MatchInfo
    rounds: list[RoundState] = field(default_factory=list)
    events: list[ScoreEvent] = field(default_factory=list)
    assignments: list[AssessorAssignment] = field(default_factory=list)
    snapshot: ScoreboardSnapshot | None = None
