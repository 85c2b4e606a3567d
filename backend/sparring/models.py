from datetime import datetime, timezone

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from .database import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


MATCH_STATUSES = "('PENDING', 'IN_PROGRESS', 'PAUSED', 'ENDED', 'CANCELLED')"
CORNERS = "('RED', 'BLUE')"


class Match(Base):
    __tablename__ = "matches"

    id = Column(Integer, primary_key=True, index=True)

    competition_id = Column(String(64), nullable=True, index=True)
    weight_class_id = Column(String(64), nullable=True)
    field_id = Column(String(64), nullable=True)
    stage = Column(String(50), nullable=True)

    red_name = Column(String(200), nullable=False)
    red_unit = Column(String(200), nullable=True)
    red_bib = Column(String(50), nullable=True)
    blue_name = Column(String(200), nullable=False)
    blue_unit = Column(String(200), nullable=True)
    blue_bib = Column(String(50), nullable=True)

    total_rounds = Column(Integer, default=3, nullable=False)
    round_duration_seconds = Column(Integer, default=120, nullable=False)
    tie_breaker_duration_seconds = Column(Integer, nullable=True)
    allow_extra_round = Column(Boolean, default=True, nullable=False)
    max_extra_rounds = Column(Integer, default=1, nullable=False)
    tie_break_rule = Column(String(50), nullable=True)

    status = Column(String(16), default="PENDING", nullable=False, index=True)
    current_round = Column(Integer, default=1, nullable=False)
    red_present = Column(Boolean, default=False, nullable=False)
    blue_present = Column(Boolean, default=False, nullable=False)
    winner_corner = Column(String(8), nullable=True)

    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    started_at = Column(DateTime(timezone=True), nullable=True)
    ended_at = Column(DateTime(timezone=True), nullable=True)
    deleted_at = Column(DateTime(timezone=True), nullable=True)

    rounds = relationship(
        "MatchRound",
        back_populates="match",
        cascade="all, delete-orphan",
        order_by="MatchRound.round_number",
    )
    events = relationship(
        "ScoreEventRecord",
        back_populates="match",
        cascade="all, delete-orphan",
        order_by="ScoreEventRecord.sequence",
    )
    assessors = relationship(
        "AssessorAssignmentRecord",
        back_populates="match",
        cascade="all, delete-orphan",
        order_by="AssessorAssignmentRecord.position",
    )
    snapshot = relationship(
        "ScoreboardSnapshotRecord",
        back_populates="match",
        cascade="all, delete-orphan",
        uselist=False,
    )

    __table_args__ = (
        CheckConstraint("total_rounds >= 1", name="ck_match_total_rounds_positive"),
        CheckConstraint("round_duration_seconds >= 1", name="ck_match_round_duration_positive"),
        CheckConstraint(
            "tie_breaker_duration_seconds is null or tie_breaker_duration_seconds >= 1",
            name="ck_match_tie_breaker_duration_positive",
        ),
        CheckConstraint("max_extra_rounds >= 0", name="ck_match_max_extra_rounds_nonnegative"),
        CheckConstraint("current_round >= 1", name="ck_match_current_round_positive"),
        CheckConstraint(f"status in {MATCH_STATUSES}", name="ck_match_status_valid"),
        CheckConstraint(
            f"winner_corner in {CORNERS} or winner_corner is null",
            name="ck_match_winner_corner_valid",
        ),
    )


class MatchRound(Base):
    __tablename__ = "match_rounds"

    id = Column(Integer, primary_key=True, index=True)
    match_id = Column(Integer, ForeignKey("matches.id"), nullable=False, index=True)

    round_number = Column(Integer, nullable=False)
    round_kind = Column(String(16), default="MAIN", nullable=False)
    status = Column(String(16), default="PENDING", nullable=False)

    scheduled_duration_seconds = Column(Integer, nullable=False)
    actual_duration_seconds = Column(Integer, nullable=True)
    started_at = Column(DateTime(timezone=True), nullable=True)
    ended_at = Column(DateTime(timezone=True), nullable=True)

    red_score = Column(Integer, default=0, nullable=False)
    blue_score = Column(Integer, default=0, nullable=False)

    match = relationship("Match", back_populates="rounds")

    __table_args__ = (
        UniqueConstraint("match_id", "round_number", name="uq_match_round_number"),
        CheckConstraint("round_number >= 1", name="ck_round_number_positive"),
        CheckConstraint("round_kind in ('MAIN', 'TIE_BREAKER')", name="ck_round_kind_valid"),
        CheckConstraint("status in ('PENDING', 'IN_PROGRESS', 'ENDED')", name="ck_round_status_valid"),
        CheckConstraint("red_score >= 0", name="ck_round_red_score_nonnegative"),
        CheckConstraint("blue_score >= 0", name="ck_round_blue_score_nonnegative"),
    )


class ScoreEventRecord(Base):
    __tablename__ = "score_events"

    id = Column(Integer, primary_key=True, index=True)
    match_id = Column(Integer, ForeignKey("matches.id"), nullable=False, index=True)

    sequence = Column(Integer, nullable=False)
    round = Column(Integer, nullable=False)
    timestamp_in_round_seconds = Column(Integer, nullable=False)
    corner = Column(String(8), nullable=False)
    event_kind = Column(String(32), nullable=False)

    recording_judge_id = Column(String(64), nullable=True)
    agreeing_assessor_ids = Column(JSON, nullable=True)
    description = Column(Text, nullable=True)
    voids_sequence = Column(Integer, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    match = relationship("Match", back_populates="events")

    __table_args__ = (
        UniqueConstraint("match_id", "sequence", name="uq_event_match_sequence"),
        CheckConstraint("timestamp_in_round_seconds >= 0", name="ck_event_timestamp_nonnegative"),
        CheckConstraint(f"corner in {CORNERS}", name="ck_event_corner_valid"),
        CheckConstraint(
            "event_kind in ('SCORE_PLUS_1', 'SCORE_PLUS_2', 'SCORE_MINUS_1', 'MEDICAL_TIMEOUT', 'WARNING')",
            name="ck_event_kind_valid",
        ),
    )


class AssessorAssignmentRecord(Base):
    __tablename__ = "assessor_assignments"

    id = Column(Integer, primary_key=True, index=True)
    match_id = Column(Integer, ForeignKey("matches.id"), nullable=False, index=True)

    user_id = Column(String(64), nullable=False)
    position = Column(Integer, nullable=False)
    role = Column(String(16), default="ASSESSOR", nullable=False)
    notes = Column(String(255), nullable=True)

    match = relationship("Match", back_populates="assessors")

    __table_args__ = (
        UniqueConstraint("match_id", "position", name="uq_assessor_match_position"),
        UniqueConstraint("match_id", "user_id", name="uq_assessor_match_user"),
        CheckConstraint("position >= 1", name="ck_assessor_position_positive"),
        CheckConstraint("role in ('ASSESSOR', 'JUDGE')", name="ck_assessor_role_valid"),
    )


class ScoreboardSnapshotRecord(Base):
    __tablename__ = "scoreboard_snapshots"

    match_id = Column(Integer, ForeignKey("matches.id"), primary_key=True)

    current_round = Column(Integer, nullable=False)
    total_rounds = Column(Integer, nullable=False)
    remaining_seconds = Column(Integer, nullable=False)
    status = Column(String(16), nullable=False)

    red_score = Column(Integer, default=0, nullable=False)
    blue_score = Column(Integer, default=0, nullable=False)
    red_warning_count = Column(Integer, default=0, nullable=False)
    blue_warning_count = Column(Integer, default=0, nullable=False)
    red_medical_timeout_count = Column(Integer, default=0, nullable=False)
    blue_medical_timeout_count = Column(Integer, default=0, nullable=False)
    last_event_sequence = Column(Integer, nullable=True)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)

    match = relationship("Match", back_populates="snapshot")

    __table_args__ = (
        CheckConstraint("red_score >= 0", name="ck_snapshot_red_score_nonnegative"),
        CheckConstraint("blue_score >= 0", name="ck_snapshot_blue_score_nonnegative"),
        CheckConstraint("remaining_seconds >= 0", name="ck_snapshot_remaining_nonnegative"),
    )
