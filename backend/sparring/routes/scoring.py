from typing import Literal

from fastapi import APIRouter, Body, Depends, Query, Response, status

from .. import schemas, serializers
from ..engine import Corner, EventKind, MatchRegistry, NotFound, ScoringError
from ..runtime import get_registry
from .errors import http_error

router = APIRouter(tags=["scoring"])


@router.post("/votes", response_model=schemas.VoteResultRead)
def submit_vote(
    payload: schemas.VoteSubmit,
    registry: MatchRegistry = Depends(get_registry),
) -> schemas.VoteResultRead:
    try:
        machine = registry.get(payload.match_id)
        outcome = machine.cast_vote(
            payload.assessor_id,
            Corner(payload.corner),
            payload.score,
            round=payload.round,
        )
    except ScoringError as exc:
        raise http_error(exc) from exc

    return serializers.vote_to_read(outcome)


@router.get("/matches/{match_id}/votes", response_model=list[schemas.VoteWindowRead])
def list_vote_windows(
    match_id: int,
    registry: MatchRegistry = Depends(get_registry),
) -> list[schemas.VoteWindowRead]:
    try:
        machine = registry.get(match_id)
    except ScoringError as exc:
        raise http_error(exc) from exc

    return [serializers.window_to_read(view) for view in machine.voting_status()]


@router.delete("/matches/{match_id}/votes/{corner}", status_code=status.HTTP_204_NO_CONTENT)
def close_vote_window(
    match_id: int,
    corner: schemas.Corner,
    round_number: int | None = Query(default=None, alias="round", ge=1),
    registry: MatchRegistry = Depends(get_registry),
) -> Response:
    try:
        machine = registry.get(match_id)
        if not machine.close_vote_window(Corner(corner), round_number):
            raise NotFound(f"No open {corner} vote window for match {match_id}.")
    except ScoringError as exc:
        raise http_error(exc) from exc

    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/events", response_model=schemas.ScoreEventRead, status_code=status.HTTP_201_CREATED)
def record_event(
    payload: schemas.ScoreEventCreate,
    registry: MatchRegistry = Depends(get_registry),
) -> schemas.ScoreEventRead:
    try:
        machine = registry.get(payload.match_id)
        event = machine.record_direct_event(
            Corner(payload.corner),
            EventKind(payload.event_kind),
            round=payload.round,
            timestamp_in_round_seconds=payload.timestamp_in_round_seconds,
            judge_id=payload.judge_id,
            assessor_ids=payload.assessor_ids,
        )
    except ScoringError as exc:
        raise http_error(exc) from exc

    return serializers.event_to_read(event)


@router.post("/matches/{match_id}/undo", response_model=schemas.ScoreEventRead)
def undo_last_event(
    match_id: int,
    payload: schemas.UndoRequest | None = Body(default=None),
    registry: MatchRegistry = Depends(get_registry),
) -> schemas.ScoreEventRead:
    try:
        machine = registry.get(match_id)
        event = machine.undo_last_event(judge_id=payload.judge_id if payload else None)
    except ScoringError as exc:
        raise http_error(exc) from exc

    return serializers.event_to_read(event)


@router.get("/matches/{match_id}/scoreboard", response_model=schemas.ScoreboardRead)
def get_scoreboard(
    match_id: int,
    registry: MatchRegistry = Depends(get_registry),
) -> schemas.ScoreboardRead:
    try:
        machine = registry.get(match_id)
    except ScoringError as exc:
        raise http_error(exc) from exc

    return serializers.scoreboard_to_read(machine.scoreboard(), machine.match)


@router.get("/matches/{match_id}/rounds", response_model=list[schemas.RoundRead])
def list_rounds(
    match_id: int,
    registry: MatchRegistry = Depends(get_registry),
) -> list[schemas.RoundRead]:
    try:
        machine = registry.get(match_id)
    except ScoringError as exc:
        raise http_error(exc) from exc

    return [serializers.round_to_read(item) for item in machine.rounds()]


@router.get("/matches/{match_id}/events", response_model=list[schemas.ScoreEventRead])
def list_events(
    match_id: int,
    order: Literal["asc", "desc"] = Query(default="asc"),
    since: int | None = Query(default=None, ge=0),
    registry: MatchRegistry = Depends(get_registry),
) -> list[schemas.ScoreEventRead]:
    try:
        machine = registry.get(match_id)
    except ScoringError as exc:
        raise http_error(exc) from exc

    events = machine.events(descending=order == "desc", since=since)
    return [serializers.event_to_read(event) for event in events]
