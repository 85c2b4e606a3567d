import pytest

from sparring.config import EngineSettings
from sparring.engine import (
    AssessorAssignment,
    AssessorRole,
    ConsensusEngine,
    Corner,
    EventKind,
    EventLedger,
    InvalidScoreValue,
    NotAssigned,
    WindowClosed,
)


def test_majority_of_five_resolves_on_the_third_matching_vote(make_machine):
    machine = make_machine()
    machine.start()

    results = [
        machine.cast_vote("A", Corner.RED, 1),
        machine.cast_vote("B", Corner.RED, 1),
        machine.cast_vote("C", Corner.RED, 2),
        machine.cast_vote("D", Corner.RED, 1),
    ]

    assert [result.score_accepted for result in results] == [False, False, False, True]
    assert [result.opened_window for result in results] == [True, False, False, False]
    assert results[0].since_previous_decision_seconds is None
    accepted = results[-1]
    assert accepted.vote_count == 3
    assert accepted.total_assessors == 5
    assert accepted.votes == {"A": 1, "B": 1, "C": 2, "D": 1}
    assert accepted.event is not None
    assert accepted.event.event_kind is EventKind.SCORE_PLUS_1
    assert accepted.event.agreeing_assessor_ids == frozenset({"A", "B", "D"})

    events = machine.events()
    assert len(events) == 1
    assert machine.scoreboard().red.score == 1

    with pytest.raises(WindowClosed):
        machine.cast_vote("E", Corner.RED, 1)
    assert len(machine.events()) == 1


def test_split_votes_never_resolve(make_machine):
    machine = make_machine()
    machine.start()

    machine.cast_vote("A", Corner.BLUE, 1)
    machine.cast_vote("B", Corner.BLUE, 1)
    machine.cast_vote("C", Corner.BLUE, 2)
    result = machine.cast_vote("D", Corner.BLUE, 2)

    assert result.score_accepted is False
    assert result.vote_count == 2
    assert machine.events() == []
    assert machine.scoreboard().blue.score == 0

    [window] = machine.voting_status()
    assert window.corner is Corner.BLUE
    assert window.vote_count == {1: 2, 2: 2}


def test_assessor_can_change_vote_within_open_window(make_machine):
    machine = make_machine()
    machine.start()

    machine.cast_vote("A", Corner.RED, 2)
    machine.cast_vote("A", Corner.RED, 1)
    machine.cast_vote("B", Corner.RED, 1)
    result = machine.cast_vote("C", Corner.RED, 1)

    assert result.score_accepted is True
    assert result.event.event_kind is EventKind.SCORE_PLUS_1


def test_vote_checks_assignment_before_window_and_value(make_machine):
    machine = make_machine()
    machine.start()

    with pytest.raises(NotAssigned):
        machine.cast_vote("stranger", Corner.RED, 7)
    with pytest.raises(NotAssigned):
        machine.cast_vote("J", Corner.RED, 1)

    for assessor_id in ("A", "B", "C"):
        machine.cast_vote(assessor_id, Corner.RED, 2)
    with pytest.raises(WindowClosed):
        machine.cast_vote("D", Corner.RED, 7)

    with pytest.raises(InvalidScoreValue):
        machine.cast_vote("D", Corner.BLUE, 7)
    assert machine.voting_status() == []


def test_late_vote_after_grace_period_opens_next_window(make_machine, scheduler):
    machine = make_machine()
    machine.start()

    for assessor_id in ("A", "B", "C"):
        machine.cast_vote(assessor_id, Corner.RED, 2)

    scheduler.advance(1)
    with pytest.raises(WindowClosed):
        machine.cast_vote("D", Corner.RED, 2)

    scheduler.advance(2)
    result = machine.cast_vote("D", Corner.RED, 2)
    assert result.window == 2
    assert result.score_accepted is False
    assert result.votes == {"D": 2}
    assert result.opened_window is True
    assert result.since_previous_decision_seconds == 3

    follow_up = machine.cast_vote("E", Corner.RED, 2)
    assert follow_up.opened_window is False
    assert follow_up.since_previous_decision_seconds is None


def test_votes_are_rejected_outside_an_open_round(make_machine):
    machine = make_machine()

    with pytest.raises(WindowClosed):
        machine.cast_vote("A", Corner.RED, 1)

    machine.start()
    with pytest.raises(WindowClosed):
        machine.cast_vote("A", Corner.RED, 1, round=2)

    machine.pause()
    result = machine.cast_vote("A", Corner.RED, 1)
    assert result.round == 1


def test_round_end_discards_unresolved_windows(make_machine):
    machine = make_machine()
    machine.start()

    machine.cast_vote("A", Corner.RED, 1)
    machine.cast_vote("B", Corner.BLUE, 2)
    machine.end_round()

    assert machine.voting_status() == []
    result = machine.cast_vote("C", Corner.RED, 1)
    assert result.round == 2
    assert result.window == 1
    assert result.votes == {"C": 1}


def test_close_window_drops_pending_votes(make_machine):
    machine = make_machine()
    machine.start()

    machine.cast_vote("A", Corner.RED, 1)
    assert machine.close_vote_window(Corner.RED) is True
    assert machine.close_vote_window(Corner.RED) is False

    result = machine.cast_vote("B", Corner.RED, 1)
    assert result.window == 2
    assert result.vote_count == 1


def test_fixed_threshold_overrides_majority(make_machine):
    machine = make_machine(engine_settings=EngineSettings(consensus_threshold=2))
    machine.start()

    machine.cast_vote("A", Corner.BLUE, 2)
    result = machine.cast_vote("B", Corner.BLUE, 2)

    assert result.score_accepted is True
    assert machine.scoreboard().blue.score == 2


def test_engine_threshold_is_strict_majority():
    ledger = EventLedger(1)
    engine = ConsensusEngine(ledger)

    engine.load_assignments(
        [AssessorAssignment(1, f"a{index}", index, AssessorRole.ASSESSOR) for index in range(1, 5)]
        + [AssessorAssignment(1, "judge", 5, AssessorRole.JUDGE)]
        + [AssessorAssignment(2, "elsewhere", 1, AssessorRole.ASSESSOR)]
    )

    assert engine.assessor_count == 4
    assert engine.threshold == 3
    assert engine.is_judge("judge")
    assert not engine.is_assessor("elsewhere")
