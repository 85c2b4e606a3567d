from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy.orm import Session

from .. import crud, schemas, serializers
from ..database import get_db
from ..engine import ControlAction, InvalidTransition, MatchRegistry, MatchStatus, ScoringError
from ..runtime import get_registry
from .errors import http_error

router = APIRouter(tags=["matches"])

# Settings that may be cleared with an explicit null.
NULLABLE_SETTINGS = {"tie_breaker_duration_seconds", "tie_break_rule"}


@router.post("/", response_model=schemas.MatchRead, status_code=status.HTTP_201_CREATED)
def create_match(
    payload: schemas.MatchCreate,
    db: Session = Depends(get_db),
) -> schemas.MatchRead:
    try:
        match = crud.create_match(db, payload)
    except ValueError as exc:
        raise http_error(exc) from exc

    return serializers.match_to_read(crud.match_info(match), stage=match.stage)


@router.get("/", response_model=list[schemas.MatchRead])
def list_matches(
    status_filter: schemas.MatchStatus | None = Query(default=None, alias="status"),
    db: Session = Depends(get_db),
    registry: MatchRegistry = Depends(get_registry),
) -> list[schemas.MatchRead]:
    results = []
    for match in crud.list_matches(db):
        machine = registry.peek(match.id)
        # A loaded match may be ahead of the store while writes are queued.
        info = machine.match if machine is not None else crud.match_info(match)
        if status_filter and info.status.value != status_filter:
            continue
        results.append(serializers.match_to_read(info, stage=match.stage))
    return results


@router.get("/{match_id}", response_model=schemas.MatchRead)
def get_match(
    match_id: int,
    db: Session = Depends(get_db),
    registry: MatchRegistry = Depends(get_registry),
) -> schemas.MatchRead:
    try:
        machine = registry.get(match_id)
        record = crud.get_match_or_raise(db, match_id)
    except LookupError as exc:
        raise http_error(exc) from exc

    return serializers.match_to_read(machine.match, stage=record.stage)


@router.delete("/{match_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_match(
    match_id: int,
    db: Session = Depends(get_db),
    registry: MatchRegistry = Depends(get_registry),
) -> Response:
    try:
        machine = registry.get(match_id)
        if machine.status is not MatchStatus.PENDING:
            raise InvalidTransition(f"Match {match_id} is {machine.status.value} and cannot be deleted.")
        crud.soft_delete_match(db, match_id)
    except (ScoringError, LookupError, ValueError) as exc:
        raise http_error(exc) from exc

    registry.forget(match_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post(
    "/{match_id}/assessors",
    response_model=schemas.AssessorAssignmentRead,
    status_code=status.HTTP_201_CREATED,
)
def assign_assessor(
    match_id: int,
    payload: schemas.AssessorAssignmentCreate,
    db: Session = Depends(get_db),
    registry: MatchRegistry = Depends(get_registry),
) -> schemas.AssessorAssignmentRead:
    try:
        machine = registry.get(match_id)
        if machine.status is not MatchStatus.PENDING:
            raise InvalidTransition(f"Assessors are fixed once match {match_id} has started.")
        assignment = crud.assign_assessor(db, match_id, payload)
    except (ScoringError, LookupError, ValueError) as exc:
        raise http_error(exc) from exc

    return schemas.AssessorAssignmentRead.model_validate(assignment)


@router.get("/{match_id}/assessors", response_model=list[schemas.AssessorAssignmentRead])
def list_assessors(
    match_id: int,
    db: Session = Depends(get_db),
) -> list[schemas.AssessorAssignmentRead]:
    try:
        assignments = crud.list_assessors(db, match_id)
    except LookupError as exc:
        raise http_error(exc) from exc

    return [schemas.AssessorAssignmentRead.model_validate(item) for item in assignments]


@router.delete("/{match_id}/assessors/{position}", status_code=status.HTTP_204_NO_CONTENT)
def remove_assessor(
    match_id: int,
    position: int,
    db: Session = Depends(get_db),
    registry: MatchRegistry = Depends(get_registry),
) -> Response:
    try:
        machine = registry.get(match_id)
        if machine.status is not MatchStatus.PENDING:
            raise InvalidTransition(f"Assessors are fixed once match {match_id} has started.")
        crud.remove_assessor(db, match_id, position)
    except (ScoringError, LookupError, ValueError) as exc:
        raise http_error(exc) from exc

    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.patch("/{match_id}/settings", response_model=schemas.MatchRead)
def update_settings(
    match_id: int,
    payload: schemas.MatchSettingsUpdate,
    db: Session = Depends(get_db),
    registry: MatchRegistry = Depends(get_registry),
) -> schemas.MatchRead:
    changes = {
        key: value
        for key, value in payload.model_dump(exclude_unset=True).items()
        if value is not None or key in NULLABLE_SETTINGS
    }
    try:
        machine = registry.get(match_id)
        match = machine.configure(**changes)
        record = crud.get_match_or_raise(db, match_id)
    except (ScoringError, LookupError) as exc:
        raise http_error(exc) from exc

    return serializers.match_to_read(match, stage=record.stage)


@router.patch("/{match_id}/presence", response_model=schemas.MatchRead)
def update_presence(
    match_id: int,
    payload: schemas.PresenceUpdate,
    db: Session = Depends(get_db),
    registry: MatchRegistry = Depends(get_registry),
) -> schemas.MatchRead:
    try:
        machine = registry.get(match_id)
        match = machine.confirm_presence(red=payload.red_present, blue=payload.blue_present)
        record = crud.get_match_or_raise(db, match_id)
    except (ScoringError, LookupError) as exc:
        raise http_error(exc) from exc

    return serializers.match_to_read(match, stage=record.stage)


@router.post("/{match_id}/control", response_model=schemas.ControlResultRead)
def control_match(
    match_id: int,
    payload: schemas.ControlCommand,
    registry: MatchRegistry = Depends(get_registry),
) -> schemas.ControlResultRead:
    try:
        machine = registry.get(match_id)
        outcome = machine.control(ControlAction(payload.action), payload.current_round)
    except ScoringError as exc:
        raise http_error(exc) from exc

    return serializers.control_to_read(outcome)
