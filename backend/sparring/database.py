"""SQLAlchemy engine and sessions for the scoring store.

Request handlers get a short-lived session from ``get_db``. The engine layer
never sees a session: ``crud.SqlGateway`` opens its own from ``SessionLocal``
for every write, which can run on the background writer thread. SQLite
connections are therefore shared across threads, and an in-memory database
keeps a single connection so every session sees the same tables.
"""
import os
from collections.abc import Generator
from pathlib import Path

from sqlalchemy import create_engine
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

BACKEND_DIR = Path(__file__).resolve().parents[1]
DEFAULT_SQLITE_PATH = BACKEND_DIR / "sparring.db"
IN_MEMORY_URLS = ("sqlite://", "sqlite:///:memory:")


def normalize_database_url(raw_url: str | None) -> str:
    """Default to the local SQLite file and route Postgres URLs to psycopg 3."""
    if not raw_url:
        return f"sqlite:///{DEFAULT_SQLITE_PATH}"

    for prefix in ("postgres://", "postgresql://"):
        if raw_url.startswith(prefix):
            return raw_url.replace(prefix, "postgresql+psycopg://", 1)

    return raw_url


def engine_options(url: str) -> dict[str, object]:
    if not url.startswith("sqlite"):
        return {"pool_pre_ping": True}

    options: dict[str, object] = {"connect_args": {"check_same_thread": False, "timeout": 30}}
    if url in IN_MEMORY_URLS:
        options["poolclass"] = StaticPool
    return options


DATABASE_URL = normalize_database_url(os.getenv("DATABASE_URL"))

engine = create_engine(DATABASE_URL, **engine_options(DATABASE_URL))
SessionLocal = sessionmaker(
    bind=engine,
    autoflush=False,
    autocommit=False,
    expire_on_commit=False,
)
Base = declarative_base()


def get_db() -> Generator[Session, None, None]:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
