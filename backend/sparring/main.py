import logging
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .database import Base, SessionLocal, engine
from .models import Match
from .routes import matches, scoring
from .runtime import get_registry

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

Base.metadata.create_all(bind=engine)


def should_auto_seed() -> bool:
    value = os.getenv("AUTO_SEED_ON_EMPTY", "true").strip().lower()
    return value in {"1", "true", "yes", "on"}


def seed_if_empty() -> None:
    if not should_auto_seed():
        return

    db = SessionLocal()
    try:
        has_matches = db.query(Match.id).first() is not None
    finally:
        db.close()

    if has_matches:
        return

    from .seed import seed

    seed()


seed_if_empty()


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    registry = app.dependency_overrides.get(get_registry, get_registry)()
    registry.flush()
    registry.shutdown()
    logger.info("Persistence writer stopped")


app = FastAPI(
    title="Sparring Match Scoring API",
    version="1.0.0",
    description=(
        "Live sparring match control with consensus scoring by assessors, "
        "round timing and scoreboard projection."
    ),
    lifespan=lifespan,
)

cors_origins = os.getenv(
    "CORS_ORIGINS",
    "http://localhost:5173,http://127.0.0.1:5173",
)
allow_origins = [origin.strip() for origin in cors_origins.split(",") if origin.strip()]

app.add_middleware(
    CORSMiddleware,
    allow_origins=allow_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/health")
def health() -> dict[str, str]:
    return {"status": "ok"}


app.include_router(matches.router, prefix="/matches")
app.include_router(scoring.router, prefix="/scoring")
