import logging

import pytest
from sqlalchemy.pool import StaticPool

from sparring.config import EngineSettings
from sparring.database import DEFAULT_SQLITE_PATH, engine_options, normalize_database_url
from sparring.engine import Corner, MatchRegistry, MatchStatus, PersistenceQueue


def test_queue_applies_writes_in_order(gateway):
    writer = PersistenceQueue(gateway)
    match = gateway.add_match()
    try:
        writer.save_match(match)
        writer.submit(gateway.writes.append, "custom")
        writer.save_match(match)
        writer.flush()
    finally:
        writer.stop()

    assert gateway.writes == ["match", "custom", "match"]


def test_failed_write_is_logged_and_next_write_proceeds(gateway, caplog):
    def broken(*args):
        raise RuntimeError("store unavailable")

    writer = PersistenceQueue(gateway)
    try:
        with caplog.at_level(logging.ERROR, logger="sparring.engine.gateway"):
            writer.submit(broken, 1)
            writer.submit(gateway.writes.append, "after")
            writer.flush()
    finally:
        writer.stop()

    assert gateway.writes == ["after"]
    assert "Background write broken failed" in caplog.text


def test_flush_without_writes_returns_immediately(gateway):
    PersistenceQueue(gateway).flush()


def test_registry_writes_through_background_queue(gateway, clock, scheduler):
    match = gateway.add_match(red_present=True, blue_present=True)
    for user_id in ("A", "B", "C"):
        gateway.assign(match.id, user_id)
    registry = MatchRegistry(gateway, settings=EngineSettings(), clock=clock, scheduler=scheduler)
    try:
        machine = registry.get(match.id)
        machine.start()
        machine.cast_vote("A", Corner.RED, 2)
        machine.cast_vote("B", Corner.RED, 2)
        registry.flush()
    finally:
        registry.shutdown()

    assert gateway.matches[match.id].status is MatchStatus.IN_PROGRESS
    assert [event.sequence for event in gateway.events] == [1]
    assert gateway.snapshots[match.id].red.score == 2


@pytest.mark.parametrize(
    ("env", "expected"),
    [
        ({}, EngineSettings()),
        (
            {
                "SCORING_MIN_ASSESSORS": "3",
                "SCORING_CONSENSUS_THRESHOLD": "2",
                "SCORING_LATE_VOTE_GRACE_SECONDS": "0.5",
                "SCORING_ALLOWED_VALUES": "2",
                "SCORING_SNAPSHOT_INTERVAL_SECONDS": "1.5",
            },
            EngineSettings(
                min_assessors=3,
                consensus_threshold=2,
                late_vote_grace_seconds=0.5,
                allowed_values=(2,),
                snapshot_interval_seconds=1.5,
            ),
        ),
        ({"SCORING_SNAPSHOT_INTERVAL_SECONDS": "0"}, EngineSettings(snapshot_interval_seconds=None)),
    ],
)
def test_engine_settings_from_env(monkeypatch, env, expected):
    for name in (
        "SCORING_MIN_ASSESSORS",
        "SCORING_CONSENSUS_THRESHOLD",
        "SCORING_LATE_VOTE_GRACE_SECONDS",
        "SCORING_ALLOWED_VALUES",
        "SCORING_SNAPSHOT_INTERVAL_SECONDS",
    ):
        monkeypatch.delenv(name, raising=False)
    for name, value in env.items():
        monkeypatch.setenv(name, value)

    assert EngineSettings.from_env() == expected


def test_engine_settings_reject_unknown_score_values(monkeypatch):
    monkeypatch.setenv("SCORING_ALLOWED_VALUES", "1,3")
    with pytest.raises(ValueError):
        EngineSettings.from_env()


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        (None, f"sqlite:///{DEFAULT_SQLITE_PATH}"),
        ("postgres://user@db/sparring", "postgresql+psycopg://user@db/sparring"),
        ("postgresql://user@db/sparring", "postgresql+psycopg://user@db/sparring"),
        ("sqlite:///tmp/other.db", "sqlite:///tmp/other.db"),
    ],
)
def test_normalize_database_url(raw, expected):
    assert normalize_database_url(raw) == expected


def test_engine_options_share_one_in_memory_connection():
    memory = engine_options("sqlite://")
    assert memory["poolclass"] is StaticPool
    assert memory["connect_args"]["check_same_thread"] is False

    assert "poolclass" not in engine_options("sqlite:///tmp/other.db")
    assert engine_options("postgresql+psycopg://user@db/sparring") == {"pool_pre_ping": True}
