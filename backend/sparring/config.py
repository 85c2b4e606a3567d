import os
from dataclasses import dataclass, field


def _int_or_none(raw: str | None) -> int | None:
    if raw is None or not raw.strip():
        return None
    return int(raw)


def _interval_or_none(raw: str | None, default: float) -> float | None:
    if raw is None:
        return default
    if not raw.strip():
        return None
    value = float(raw)
    return value if value > 0 else None


def _allowed_values(raw: str | None) -> tuple[int, ...]:
    if not raw:
        return (1, 2)
    values = sorted({int(part) for part in raw.split(",") if part.strip()})
    if not values or any(value not in (1, 2) for value in values):
        raise ValueError("SCORING_ALLOWED_VALUES may only contain 1 and 2.")
    return tuple(values)


@dataclass(frozen=True)
class EngineSettings:
    min_assessors: int = 1
    consensus_threshold: int | None = None
    # A vote for a slot that resolved within this many seconds is rejected as
    # late. After that it opens the next window and the vote result reports
    # opened_window=True with the new window number.
    late_vote_grace_seconds: float = 2.0
    allowed_values: tuple[int, ...] = field(default=(1, 2))
    # How often a running round writes its scoreboard (and remaining time) to
    # the store. None disables the periodic save.
    snapshot_interval_seconds: float | None = 5.0

    @classmethod
    def from_env(cls) -> "EngineSettings":
        return cls(
            min_assessors=int(os.getenv("SCORING_MIN_ASSESSORS", "1")),
            consensus_threshold=_int_or_none(os.getenv("SCORING_CONSENSUS_THRESHOLD")),
            late_vote_grace_seconds=float(os.getenv("SCORING_LATE_VOTE_GRACE_SECONDS", "2.0")),
            allowed_values=_allowed_values(os.getenv("SCORING_ALLOWED_VALUES")),
            snapshot_interval_seconds=_interval_or_none(os.getenv("SCORING_SNAPSHOT_INTERVAL_SECONDS"), 5.0),
        )
