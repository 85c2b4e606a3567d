import os

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("AUTO_SEED_ON_EMPTY", "false")

from dataclasses import replace  # noqa: E402

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from sparring.config import EngineSettings  # noqa: E402
from sparring.crud import SqlGateway  # noqa: E402
from sparring.database import Base, get_db  # noqa: E402
from sparring.engine import (  # noqa: E402
    AssessorAssignment,
    AssessorRole,
    MatchInfo,
    MatchRecord,
    MatchRegistry,
    MatchStateMachine,
)
from sparring.main import app  # noqa: E402
from sparring.runtime import get_registry  # noqa: E402

ASSESSORS = ["A", "B", "C", "D", "E"]
JUDGE = "J"


class ManualClock:
    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class ManualCall:
    def __init__(self, due: float, callback) -> None:
        self.due = due
        self.callback = callback
        self.cancelled = False
        self.fired = False

    def cancel(self) -> None:
        self.cancelled = True


class ManualScheduler:
    """Fires scheduled callbacks only when the test moves the clock."""

    def __init__(self, clock: ManualClock) -> None:
        self.clock = clock
        self.calls: list[ManualCall] = []

    def schedule(self, delay: float, callback) -> ManualCall:
        call = ManualCall(self.clock() + delay, callback)
        self.calls.append(call)
        return call

    def pending(self) -> list[ManualCall]:
        return [call for call in self.calls if not call.cancelled and not call.fired]

    def advance(self, seconds: float) -> None:
        target = self.clock.now + seconds
        while True:
            due = [call for call in self.pending() if call.due <= target]
            if not due:
                break
            call = min(due, key=lambda item: item.due)
            self.clock.now = max(self.clock.now, call.due)
            call.fired = True
            call.callback()
        self.clock.now = target


class InMemoryGateway:
    def __init__(self) -> None:
        self.matches: dict[int, MatchInfo] = {}
        self.rounds: dict[tuple[int, int], object] = {}
        self.events: list = []
        self.assignments: list[AssessorAssignment] = []
        self.snapshots: dict[int, object] = {}
        self.writes: list[str] = []

    def add_match(self, **overrides) -> MatchInfo:
        match_id = len(self.matches) + 1
        data = {
            "id": match_id,
            "competition_id": "cup",
            "weight_class_id": "U68",
            "field_id": "F1",
            "red_name": "Red Fighter",
            "red_unit": "Red Club",
            "red_bib": "R1",
            "blue_name": "Blue Fighter",
            "blue_unit": "Blue Club",
            "blue_bib": "B1",
        }
        data.update(overrides)
        match = MatchInfo(**data)
        self.matches[match_id] = match
        return match

    def assign(self, match_id: int, user_id: str, role: AssessorRole = AssessorRole.ASSESSOR) -> None:
        position = sum(1 for item in self.assignments if item.match_id == match_id) + 1
        self.assignments.append(AssessorAssignment(match_id, user_id, position, role))

    def load_match(self, match_id: int) -> MatchRecord | None:
        match = self.matches.get(match_id)
        if match is None:
            return None
        return MatchRecord(
            match=replace(match),
            rounds=[replace(item) for key, item in sorted(self.rounds.items()) if key[0] == match_id],
            events=[event for event in self.events if event.match_id == match_id],
            assignments=self.list_assessor_assignments(match_id),
            snapshot=self.snapshots.get(match_id),
        )

    def list_assessor_assignments(self, match_id: int) -> list[AssessorAssignment]:
        return [item for item in self.assignments if item.match_id == match_id]

    def save_match(self, match: MatchInfo) -> None:
        self.writes.append("match")
        self.matches[match.id] = replace(match)

    def save_round(self, round) -> None:
        self.writes.append("round")
        self.rounds[(round.match_id, round.round_number)] = replace(round)

    def append_event(self, event) -> None:
        self.writes.append("event")
        self.events.append(event)

    def save_snapshot(self, snapshot) -> None:
        self.writes.append("snapshot")
        self.snapshots[snapshot.match_id] = snapshot


@pytest.fixture()
def clock():
    return ManualClock()


@pytest.fixture()
def scheduler(clock):
    return ManualScheduler(clock)


@pytest.fixture()
def gateway():
    return InMemoryGateway()


@pytest.fixture()
def settings():
    return EngineSettings()


@pytest.fixture()
def make_machine(gateway, clock, scheduler, settings):
    """Build a machine for a fresh match with five assessors and one judge."""

    def factory(assessors=ASSESSORS, judge=JUDGE, present=True, engine_settings=None, **overrides):
        match = gateway.add_match(red_present=present, blue_present=present, **overrides)
        for user_id in assessors:
            gateway.assign(match.id, user_id)
        if judge:
            gateway.assign(match.id, judge, AssessorRole.JUDGE)

        record = gateway.load_match(match.id)
        return MatchStateMachine.from_record(
            record,
            gateway,
            settings=engine_settings or settings,
            assignments_loader=gateway.list_assessor_assignments,
            clock=clock,
            scheduler=scheduler,
        )

    return factory


@pytest.fixture()
def session_factory():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    session_factory = sessionmaker(
        bind=engine,
        autoflush=False,
        autocommit=False,
        expire_on_commit=False,
    )
    Base.metadata.create_all(bind=engine)
    return session_factory


@pytest.fixture()
def registry(session_factory, clock, scheduler):
    sql_gateway = SqlGateway(session_factory)
    # Writes go straight to the store so assertions can read them back.
    return MatchRegistry(
        sql_gateway,
        settings=EngineSettings(),
        writer=sql_gateway,
        clock=clock,
        scheduler=scheduler,
    )


@pytest.fixture()
def client(session_factory, registry):
    def override_get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_registry] = lambda: registry
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()
