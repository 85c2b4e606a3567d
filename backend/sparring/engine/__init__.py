from .consensus import ConsensusEngine
from .errors import (
    InvalidScoreValue,
    InvalidTransition,
    NotAssigned,
    NotFound,
    ScoringError,
    ValidationError,
    WindowClosed,
)
from .gateway import PersistenceGateway, PersistenceQueue
from .ledger import EventLedger
from .projector import ScoreboardProjector
from .registry import MatchRegistry
from .state_machine import TRANSITIONS, MatchStateMachine, next_status
from .timer import RoundTimer, ThreadingScheduler, TimerFrame
from .types import (
    AssessorAssignment,
    AssessorRole,
    ControlAction,
    ControlOutcome,
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
    VoteOutcome,
)

__all__ = [
    "AssessorAssignment",
    "AssessorRole",
    "ConsensusEngine",
    "ControlAction",
    "ControlOutcome",
    "Corner",
    "EventKind",
    "EventLedger",
    "InvalidScoreValue",
    "InvalidTransition",
    "MatchInfo",
    "MatchRecord",
    "MatchRegistry",
    "MatchStateMachine",
    "MatchStatus",
    "NotAssigned",
    "NotFound",
    "PersistenceGateway",
    "PersistenceQueue",
    "RoundKind",
    "RoundState",
    "RoundStatus",
    "RoundTimer",
    "ScoreEvent",
    "ScoreboardProjector",
    "ScoreboardSnapshot",
    "ScoringError",
    "TRANSITIONS",
    "ThreadingScheduler",
    "TimerFrame",
    "ValidationError",
    "VoteOutcome",
    "WindowClosed",
    "next_status",
]
