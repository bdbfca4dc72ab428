from sqlalchemy.orm import sessionmaker
from sqlalchemy import create_engine, text
from sqlalchemy.pool import StaticPool
import asyncio
import logging

from cinetrack.core.config import settings

logger = logging.getLogger(__name__)


def _build_engine(url: str):
    if url.startswith("postgres://"):
        # Some hosting providers still hand out the legacy scheme
        url = url.replace("postgres://", "postgresql+psycopg2://", 1)
    if url.startswith("sqlite"):
        # In-memory SQLite must share one connection across threads (tests)
        return create_engine(
            url,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    # pool_recycle: recycle connections after N seconds to prevent stale connections
    # pool_pre_ping: verify connections before using them
    return create_engine(
        url,
        pool_size=20,
        max_overflow=30,
        pool_timeout=30,
        pool_recycle=3600,
        pool_pre_ping=True,
    )


engine = _build_engine(settings.database_url)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


async def init_db():
    """Create tables and apply idempotent index migrations."""
    from cinetrack.models import Base
    loop = asyncio.get_running_loop()

    def _create_schema():
        Base.metadata.create_all(bind=engine)
        if engine.dialect.name != "postgresql":
            return
        stmts = [
            "CREATE INDEX IF NOT EXISTS idx_watchlist_user_status ON watchlist (user_id, status)",
            "CREATE INDEX IF NOT EXISTS idx_watchlist_title_media ON watchlist (tmdb_id, media_type)",
            "CREATE INDEX IF NOT EXISTS idx_recommendation_events_ts ON recommendation_events (timestamp)",
            "CREATE INDEX IF NOT EXISTS idx_intent_signals_created ON intent_signals (created_at)",
        ]
        with engine.begin() as conn:
            for stmt in stmts:
                try:
                    conn.execute(text(stmt))
                except Exception as e:
                    logger.warning(f"Index migration failed ({stmt}): {e}")

    await loop.run_in_executor(None, _create_schema)
    logger.info("Database schema ready")
