from collections.abc import Callable

from sqlalchemy.orm import Session, selectinload

from . import models, schemas
from .engine import (
    AssessorAssignment,
    AssessorRole,
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
)
from .engine.types import CornerTally
from .models import utcnow

# ---------------------------------------------------------------------------
# Record <-> engine conversion
# ---------------------------------------------------------------------------


def match_info(match: models.Match) -> MatchInfo:
    return MatchInfo(
        id=match.id,
        competition_id=match.competition_id,
        weight_class_id=match.weight_class_id,
        field_id=match.field_id,
        red_name=match.red_name,
        red_unit=match.red_unit,
        red_bib=match.red_bib,
        blue_name=match.blue_name,
        blue_unit=match.blue_unit,
        blue_bib=match.blue_bib,
        total_rounds=match.total_rounds,
        round_duration_seconds=match.round_duration_seconds,
        tie_breaker_duration_seconds=match.tie_breaker_duration_seconds,
        allow_extra_round=match.allow_extra_round,
        max_extra_rounds=match.max_extra_rounds,
        tie_break_rule=match.tie_break_rule,
        status=MatchStatus(match.status),
        current_round=match.current_round,
        red_present=match.red_present,
        blue_present=match.blue_present,
        winner_corner=Corner(match.winner_corner) if match.winner_corner else None,
        started_at=match.started_at,
        ended_at=match.ended_at,
        deleted_at=match.deleted_at,
    )


def round_state(match_round: models.MatchRound) -> RoundState:
    return RoundState(
        match_id=match_round.match_id,
        round_number=match_round.round_number,
        round_kind=RoundKind(match_round.round_kind),
        scheduled_duration_seconds=match_round.scheduled_duration_seconds,
        status=RoundStatus(match_round.status),
        actual_duration_seconds=match_round.actual_duration_seconds,
        started_at=match_round.started_at,
        ended_at=match_round.ended_at,
        red_score=match_round.red_score,
        blue_score=match_round.blue_score,
    )


def score_event(record: models.ScoreEventRecord) -> ScoreEvent:
    agreeing = record.agreeing_assessor_ids
    return ScoreEvent(
        match_id=record.match_id,
        sequence=record.sequence,
        round=record.round,
        timestamp_in_round_seconds=record.timestamp_in_round_seconds,
        corner=Corner(record.corner),
        event_kind=EventKind(record.event_kind),
        created_at=record.created_at,
        recording_judge_id=record.recording_judge_id,
        agreeing_assessor_ids=frozenset(agreeing) if agreeing is not None else None,
        description=record.description,
        voids_sequence=record.voids_sequence,
    )


def assessor_assignment(record: models.AssessorAssignmentRecord) -> AssessorAssignment:
    return AssessorAssignment(
        match_id=record.match_id,
        user_id=record.user_id,
        position=record.position,
        role=AssessorRole(record.role),
        notes=record.notes,
    )


def scoreboard_snapshot(record: models.ScoreboardSnapshotRecord) -> ScoreboardSnapshot:
    return ScoreboardSnapshot(
        match_id=record.match_id,
        current_round=record.current_round,
        total_rounds=record.total_rounds,
        remaining_seconds=record.remaining_seconds,
        status=MatchStatus(record.status),
        red=CornerTally(
            score=record.red_score,
            warnings=record.red_warning_count,
            medical_timeouts=record.red_medical_timeout_count,
        ),
        blue=CornerTally(
            score=record.blue_score,
            warnings=record.blue_warning_count,
            medical_timeouts=record.blue_medical_timeout_count,
        ),
        last_event_sequence=record.last_event_sequence,
    )


# ---------------------------------------------------------------------------
# Matches and assessor assignments
# ---------------------------------------------------------------------------


def _normalize_text(value: str | None) -> str | None:
    if value is None:
        return None
    cleaned = " ".join(value.split())
    return cleaned or None


def create_match(db: Session, payload: schemas.MatchCreate) -> models.Match:
    red_name = _normalize_text(payload.red.name)
    blue_name = _normalize_text(payload.blue.name)
    if not red_name or not blue_name:
        raise ValueError("Both competitor names are required.")

    match = models.Match(
        competition_id=payload.competition_id,
        weight_class_id=payload.weight_class_id,
        field_id=payload.field_id,
        stage=_normalize_text(payload.stage),
        red_name=red_name,
        red_unit=_normalize_text(payload.red.unit),
        red_bib=_normalize_text(payload.red.bib_number),
        blue_name=blue_name,
        blue_unit=_normalize_text(payload.blue.unit),
        blue_bib=_normalize_text(payload.blue.bib_number),
        total_rounds=payload.total_rounds,
        round_duration_seconds=payload.round_duration_seconds,
        tie_breaker_duration_seconds=payload.tie_breaker_duration_seconds,
        allow_extra_round=payload.allow_extra_round,
        max_extra_rounds=payload.max_extra_rounds,
        tie_break_rule=_normalize_text(payload.tie_break_rule),
        status=MatchStatus.PENDING.value,
        current_round=1,
    )
    db.add(match)
    db.commit()
    db.refresh(match)
    return match


def list_matches(db: Session) -> list[models.Match]:
    query = db.query(models.Match).filter(models.Match.deleted_at.is_(None))
    return query.order_by(models.Match.id.asc()).all()


def get_match_or_raise(db: Session, match_id: int) -> models.Match:
    match = (
        db.query(models.Match)
        .options(selectinload(models.Match.assessors))
        .filter(models.Match.id == match_id, models.Match.deleted_at.is_(None))
        .first()
    )
    if not match:
        raise LookupError("Match not found.")
    return match


def soft_delete_match(db: Session, match_id: int) -> models.Match:
    match = get_match_or_raise(db, match_id)
    if match.status != MatchStatus.PENDING.value:
        raise ValueError("Only a match that has not started can be deleted.")

    match.deleted_at = utcnow()
    db.commit()
    return match


def list_assessors(db: Session, match_id: int) -> list[models.AssessorAssignmentRecord]:
    get_match_or_raise(db, match_id)
    return (
        db.query(models.AssessorAssignmentRecord)
        .filter(models.AssessorAssignmentRecord.match_id == match_id)
        .order_by(models.AssessorAssignmentRecord.position.asc())
        .all()
    )


def assign_assessor(
    db: Session,
    match_id: int,
    payload: schemas.AssessorAssignmentCreate,
) -> models.AssessorAssignmentRecord:
    match = get_match_or_raise(db, match_id)
    if match.status != MatchStatus.PENDING.value:
        raise ValueError("Assessors can only be assigned before the match starts.")

    user_id = _normalize_text(payload.user_id)
    if not user_id:
        raise ValueError("User id cannot be empty.")

    for existing in match.assessors:
        if existing.position == payload.position:
            raise ValueError(f"Position {payload.position} is already taken for this match.")
        if existing.user_id == user_id:
            raise ValueError("This user is already assigned to the match.")

    assignment = models.AssessorAssignmentRecord(
        match_id=match_id,
        user_id=user_id,
        position=payload.position,
        role=payload.role,
        notes=_normalize_text(payload.notes),
    )
    db.add(assignment)
    db.commit()
    db.refresh(assignment)
    return assignment


def remove_assessor(db: Session, match_id: int, position: int) -> None:
    match = get_match_or_raise(db, match_id)
    if match.status != MatchStatus.PENDING.value:
        raise ValueError("Assessors can only be removed before the match starts.")

    assignment = next((item for item in match.assessors if item.position == position), None)
    if assignment is None:
        raise LookupError("Assessor assignment not found.")

    db.delete(assignment)
    db.commit()


# ---------------------------------------------------------------------------
# Store used by the match engine
# ---------------------------------------------------------------------------


class SqlGateway:
    """SQLAlchemy implementation of the engine's persistence contract.

    Each call opens its own short session, so the gateway can be used from the
    background writer thread as well as from request handlers.
    """

    def __init__(self, session_factory: Callable[[], Session]) -> None:
        self._session_factory = session_factory

    def load_match(self, match_id: int) -> MatchRecord | None:
        with self._session_factory() as db:
            match = (
                db.query(models.Match)
                .options(
                    selectinload(models.Match.rounds),
                    selectinload(models.Match.events),
                    selectinload(models.Match.assessors),
                    selectinload(models.Match.snapshot),
                )
                .filter(models.Match.id == match_id)
                .first()
            )
            if match is None:
                return None

            return MatchRecord(
                match=match_info(match),
                rounds=[round_state(item) for item in match.rounds],
                events=[score_event(item) for item in match.events],
                assignments=[assessor_assignment(item) for item in match.assessors],
                snapshot=scoreboard_snapshot(match.snapshot) if match.snapshot else None,
            )

    def list_assessor_assignments(self, match_id: int) -> list[AssessorAssignment]:
        with self._session_factory() as db:
            records = (
                db.query(models.AssessorAssignmentRecord)
                .filter(models.AssessorAssignmentRecord.match_id == match_id)
                .order_by(models.AssessorAssignmentRecord.position.asc())
                .all()
            )
            return [assessor_assignment(item) for item in records]

    def save_match(self, match: MatchInfo) -> None:
        with self._session_factory() as db:
            record = db.get(models.Match, match.id)
            if record is None:
                raise LookupError(f"Match {match.id} not found.")

            record.total_rounds = match.total_rounds
            record.round_duration_seconds = match.round_duration_seconds
            record.tie_breaker_duration_seconds = match.tie_breaker_duration_seconds
            record.allow_extra_round = match.allow_extra_round
            record.max_extra_rounds = match.max_extra_rounds
            record.tie_break_rule = match.tie_break_rule
            record.status = match.status.value
            record.current_round = match.current_round
            record.red_present = match.red_present
            record.blue_present = match.blue_present
            record.winner_corner = match.winner_corner.value if match.winner_corner else None
            record.started_at = match.started_at
            record.ended_at = match.ended_at
            db.commit()

    def save_round(self, round: RoundState) -> None:
        with self._session_factory() as db:
            record = (
                db.query(models.MatchRound)
                .filter(
                    models.MatchRound.match_id == round.match_id,
                    models.MatchRound.round_number == round.round_number,
                )
                .first()
            )
            if record is None:
                record = models.MatchRound(match_id=round.match_id, round_number=round.round_number)
                db.add(record)

            record.round_kind = round.round_kind.value
            record.status = round.status.value
            record.scheduled_duration_seconds = round.scheduled_duration_seconds
            record.actual_duration_seconds = round.actual_duration_seconds
            record.started_at = round.started_at
            record.ended_at = round.ended_at
            record.red_score = round.red_score
            record.blue_score = round.blue_score
            db.commit()

    def append_event(self, event: ScoreEvent) -> None:
        with self._session_factory() as db:
            agreeing = sorted(event.agreeing_assessor_ids) if event.agreeing_assessor_ids is not None else None
            db.add(
                models.ScoreEventRecord(
                    match_id=event.match_id,
                    sequence=event.sequence,
                    round=event.round,
                    timestamp_in_round_seconds=event.timestamp_in_round_seconds,
                    corner=event.corner.value,
                    event_kind=event.event_kind.value,
                    recording_judge_id=event.recording_judge_id,
                    agreeing_assessor_ids=agreeing,
                    description=event.description,
                    voids_sequence=event.voids_sequence,
                    created_at=event.created_at,
                )
            )
            db.commit()

    def save_snapshot(self, snapshot: ScoreboardSnapshot) -> None:
        with self._session_factory() as db:
            record = db.get(models.ScoreboardSnapshotRecord, snapshot.match_id)
            if record is None:
                record = models.ScoreboardSnapshotRecord(match_id=snapshot.match_id)
                db.add(record)

            record.current_round = snapshot.current_round
            record.total_rounds = snapshot.total_rounds
            record.remaining_seconds = snapshot.remaining_seconds
            record.status = snapshot.status.value
            record.red_score = snapshot.red.score
            record.blue_score = snapshot.blue.score
            record.red_warning_count = snapshot.red.warnings
            record.blue_warning_count = snapshot.blue.warnings
            record.red_medical_timeout_count = snapshot.red.medical_timeouts
            record.blue_medical_timeout_count = snapshot.blue.medical_timeouts
            record.last_event_sequence = snapshot.last_event_sequence
            db.commit()
