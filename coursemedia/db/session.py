# coursemedia/db/session.py
from __future__ import annotations

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from coursemedia.core.config import settings
from coursemedia.core.logging import get_logger

logger = get_logger(__name__)


def _connect_args(url: str) -> dict:
    # Worker threads share the engine; SQLite needs cross-thread connections
    # and a busy timeout so concurrent claims wait instead of erroring.
    if url.startswith("sqlite"):
        return {"check_same_thread": False, "timeout": 30}
    return {}


engine = create_engine(
    settings.DATABASE_URL,
    pool_pre_ping=True,
    future=True,
    connect_args=_connect_args(settings.DATABASE_URL),
)

logger.info("database engine created", dialect=engine.dialect.name)

SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    expire_on_commit=False,
    bind=engine,
)
