from functools import lru_cache

from .config import EngineSettings
from .crud import SqlGateway
from .database import SessionLocal
from .engine import MatchRegistry


@lru_cache(maxsize=1)
def get_registry() -> MatchRegistry:
    return MatchRegistry(SqlGateway(SessionLocal), settings=EngineSettings.from_env())
