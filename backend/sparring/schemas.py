from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field


class ORMBaseModel(BaseModel):
    model_config = ConfigDict(from_attributes=True)


MatchStatus = Literal["PENDING", "IN_PROGRESS", "PAUSED", "ENDED", "CANCELLED"]
RoundStatus = Literal["PENDING", "IN_PROGRESS", "ENDED"]
RoundKind = Literal["MAIN", "TIE_BREAKER"]
Corner = Literal["RED", "BLUE"]
EventKind = Literal["SCORE_PLUS_1", "SCORE_PLUS_2", "SCORE_MINUS_1", "MEDICAL_TIMEOUT", "WARNING"]
ControlAction = Literal["START", "PAUSE", "RESUME", "END_ROUND", "END_MATCH", "CANCEL"]
AssessorRole = Literal["ASSESSOR", "JUDGE"]


class CompetitorCreate(BaseModel):
    name: str = Field(min_length=1, max_length=200)
    unit: str | None = Field(default=None, max_length=200)
    bib_number: str | None = Field(default=None, max_length=50)


class MatchCreate(BaseModel):
    competition_id: str | None = Field(default=None, max_length=64)
    weight_class_id: str | None = Field(default=None, max_length=64)
    field_id: str | None = Field(default=None, max_length=64)
    stage: str | None = Field(default=None, max_length=50)

    red: CompetitorCreate
    blue: CompetitorCreate

    total_rounds: int = Field(default=3, ge=1, le=10)
    round_duration_seconds: int = Field(default=120, ge=1, le=3600)
    tie_breaker_duration_seconds: int | None = Field(default=None, ge=1, le=3600)
    allow_extra_round: bool = True
    max_extra_rounds: int = Field(default=1, ge=0, le=5)
    tie_break_rule: str | None = Field(default=None, max_length=50)


class MatchSettingsUpdate(BaseModel):
    total_rounds: int | None = Field(default=None, ge=1, le=10)
    round_duration_seconds: int | None = Field(default=None, ge=1, le=3600)
    tie_breaker_duration_seconds: int | None = Field(default=None, ge=1, le=3600)
    allow_extra_round: bool | None = None
    max_extra_rounds: int | None = Field(default=None, ge=0, le=5)
    tie_break_rule: str | None = Field(default=None, max_length=50)


class PresenceUpdate(BaseModel):
    red_present: bool | None = None
    blue_present: bool | None = None


class CompetitorRead(BaseModel):
    name: str
    unit: str | None = None
    bib_number: str | None = None
    present: bool = False


class MatchRead(BaseModel):
    id: int
    competition_id: str | None = None
    weight_class_id: str | None = None
    field_id: str | None = None
    stage: str | None = None

    red: CompetitorRead
    blue: CompetitorRead

    total_rounds: int
    round_duration_seconds: int
    tie_breaker_duration_seconds: int | None = None
    allow_extra_round: bool
    max_extra_rounds: int
    tie_break_rule: str | None = None

    status: MatchStatus
    current_round: int
    winner_corner: Corner | None = None

    started_at: datetime | None = None
    ended_at: datetime | None = None


class AssessorAssignmentCreate(BaseModel):
    user_id: str = Field(min_length=1, max_length=64)
    position: int = Field(ge=1, le=10)
    role: AssessorRole = "ASSESSOR"
    notes: str | None = Field(default=None, max_length=255)


class AssessorAssignmentRead(ORMBaseModel):
    id: int
    match_id: int
    user_id: str
    position: int
    role: AssessorRole
    notes: str | None = None


class ControlCommand(BaseModel):
    action: ControlAction
    current_round: int | None = Field(default=None, ge=1)


class ControlResultRead(BaseModel):
    match_id: int
    action: ControlAction
    status: MatchStatus
    current_round: int
    round_kind: RoundKind | None = None
    winner_corner: Corner | None = None
    tie_break_required: bool = False
    tie_break_rule: str | None = None


class VoteSubmit(BaseModel):
    match_id: int = Field(gt=0)
    assessor_id: str = Field(min_length=1, max_length=64)
    corner: Corner
    score: int
    round: int | None = Field(default=None, ge=1)


class VoteResultRead(BaseModel):
    match_id: int
    round: int
    corner: Corner
    score: int
    window: int
    vote_count: int
    total_assessors: int
    score_accepted: bool
    votes: dict[str, int]
    event_sequence: int | None = None
    opened_window: bool = False
    since_previous_decision_seconds: float | None = None


class VoteWindowRead(BaseModel):
    round: int
    corner: Corner
    window: int
    votes: dict[str, int]
    vote_count: dict[int, int]


class ScoreEventCreate(BaseModel):
    match_id: int = Field(gt=0)
    corner: Corner
    event_kind: EventKind
    round: int | None = Field(default=None, ge=1)
    timestamp_in_round_seconds: int | None = Field(default=None, ge=0)
    judge_id: str | None = Field(default=None, max_length=64)
    assessor_ids: list[str] | None = None


class UndoRequest(BaseModel):
    judge_id: str | None = Field(default=None, max_length=64)


class ScoreEventRead(BaseModel):
    match_id: int
    sequence: int
    round: int
    timestamp_in_round_seconds: int
    corner: Corner
    event_kind: EventKind
    created_at: datetime
    recording_judge_id: str | None = None
    agreeing_assessor_ids: list[str] | None = None
    description: str | None = None
    voids_sequence: int | None = None


class RoundRead(BaseModel):
    round_number: int
    round_kind: RoundKind
    status: RoundStatus
    scheduled_duration_seconds: int
    actual_duration_seconds: int | None = None
    started_at: datetime | None = None
    ended_at: datetime | None = None
    red_score: int
    blue_score: int


class CornerScoreRead(BaseModel):
    score: int
    warnings: int
    medical_timeouts: int
    name: str
    unit: str | None = None
    bib_number: str | None = None


class ScoreboardRead(BaseModel):
    match_id: int
    current_round: int
    total_rounds: int
    remaining_seconds: int
    status: MatchStatus
    red_corner: CornerScoreRead
    blue_corner: CornerScoreRead
    winner_corner: Corner | None = None
    last_event_sequence: int | None = None
