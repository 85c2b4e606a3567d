from . import schemas
from .engine import ControlOutcome, MatchInfo, RoundState, ScoreboardSnapshot, ScoreEvent, VoteOutcome
from .engine.state_machine import WindowView
from .engine.types import CornerTally


def match_to_read(match: MatchInfo, stage: str | None = None) -> schemas.MatchRead:
    return schemas.MatchRead(
        id=match.id,
        competition_id=match.competition_id,
        weight_class_id=match.weight_class_id,
        field_id=match.field_id,
        stage=stage,
        red=schemas.CompetitorRead(
            name=match.red_name,
            unit=match.red_unit,
            bib_number=match.red_bib,
            present=match.red_present,
        ),
        blue=schemas.CompetitorRead(
            name=match.blue_name,
            unit=match.blue_unit,
            bib_number=match.blue_bib,
            present=match.blue_present,
        ),
        total_rounds=match.total_rounds,
        round_duration_seconds=match.round_duration_seconds,
        tie_breaker_duration_seconds=match.tie_breaker_duration_seconds,
        allow_extra_round=match.allow_extra_round,
        max_extra_rounds=match.max_extra_rounds,
        tie_break_rule=match.tie_break_rule,
        status=match.status.value,
        current_round=match.current_round,
        winner_corner=match.winner_corner.value if match.winner_corner else None,
        started_at=match.started_at,
        ended_at=match.ended_at,
    )


def control_to_read(outcome: ControlOutcome) -> schemas.ControlResultRead:
    return schemas.ControlResultRead(
        match_id=outcome.match_id,
        action=outcome.action.value,
        status=outcome.status.value,
        current_round=outcome.current_round,
        round_kind=outcome.round_kind.value if outcome.round_kind else None,
        winner_corner=outcome.winner_corner.value if outcome.winner_corner else None,
        tie_break_required=outcome.tie_break_required,
        tie_break_rule=outcome.tie_break_rule,
    )


def vote_to_read(outcome: VoteOutcome) -> schemas.VoteResultRead:
    return schemas.VoteResultRead(
        match_id=outcome.match_id,
        round=outcome.round,
        corner=outcome.corner.value,
        score=outcome.score,
        window=outcome.window,
        vote_count=outcome.vote_count,
        total_assessors=outcome.total_assessors,
        score_accepted=outcome.score_accepted,
        votes=outcome.votes,
        event_sequence=outcome.event.sequence if outcome.event else None,
        opened_window=outcome.opened_window,
        since_previous_decision_seconds=outcome.since_previous_decision_seconds,
    )


def window_to_read(view: WindowView) -> schemas.VoteWindowRead:
    return schemas.VoteWindowRead(
        round=view.round,
        corner=view.corner.value,
        window=view.window,
        votes=view.votes,
        vote_count=view.vote_count,
    )


def event_to_read(event: ScoreEvent) -> schemas.ScoreEventRead:
    agreeing = sorted(event.agreeing_assessor_ids) if event.agreeing_assessor_ids is not None else None
    return schemas.ScoreEventRead(
        match_id=event.match_id,
        sequence=event.sequence,
        round=event.round,
        timestamp_in_round_seconds=event.timestamp_in_round_seconds,
        corner=event.corner.value,
        event_kind=event.event_kind.value,
        created_at=event.created_at,
        recording_judge_id=event.recording_judge_id,
        agreeing_assessor_ids=agreeing,
        description=event.description,
        voids_sequence=event.voids_sequence,
    )


def round_to_read(round_state: RoundState) -> schemas.RoundRead:
    return schemas.RoundRead(
        round_number=round_state.round_number,
        round_kind=round_state.round_kind.value,
        status=round_state.status.value,
        scheduled_duration_seconds=round_state.scheduled_duration_seconds,
        actual_duration_seconds=round_state.actual_duration_seconds,
        started_at=round_state.started_at,
        ended_at=round_state.ended_at,
        red_score=round_state.red_score,
        blue_score=round_state.blue_score,
    )


def _corner_to_read(tally: CornerTally, name: str, unit: str | None, bib: str | None) -> schemas.CornerScoreRead:
    return schemas.CornerScoreRead(
        score=tally.score,
        warnings=tally.warnings,
        medical_timeouts=tally.medical_timeouts,
        name=name,
        unit=unit,
        bib_number=bib,
    )


def scoreboard_to_read(snapshot: ScoreboardSnapshot, match: MatchInfo) -> schemas.ScoreboardRead:
    return schemas.ScoreboardRead(
        match_id=snapshot.match_id,
        current_round=snapshot.current_round,
        total_rounds=snapshot.total_rounds,
        remaining_seconds=snapshot.remaining_seconds,
        status=snapshot.status.value,
        red_corner=_corner_to_read(snapshot.red, match.red_name, match.red_unit, match.red_bib),
        blue_corner=_corner_to_read(snapshot.blue, match.blue_name, match.blue_unit, match.blue_bib),
        winner_corner=match.winner_corner.value if match.winner_corner else None,
        last_event_sequence=snapshot.last_event_sequence,
    )
