"""
Database engine, session factory and session helpers.

PostgreSQL (QueuePool) in every deployed environment. A DATABASE_URL
override pointing at SQLite gets one shared connection (StaticPool) so an
in-memory database survives across sessions; tests rely on this.
"""
from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker, Session
from sqlalchemy.pool import QueuePool, StaticPool
from core.config import Settings, settings
import logging
import time

logger = logging.getLogger(__name__)


def build_database_url(cfg: Settings) -> str:
    if cfg.DATABASE_URL:
        return cfg.DATABASE_URL
    return (
        f"postgresql://{cfg.POSTGRES_USER}:{cfg.POSTGRES_PASSWORD}"
        f"@{cfg.POSTGRES_HOST}:{cfg.POSTGRES_PORT}/{cfg.POSTGRES_DB}"
    )


def create_db_engine(url: str, cfg: Settings) -> Engine:
    if url.startswith("sqlite"):
        # TestClient runs sync endpoints in a threadpool
        return create_engine(
            url,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
            echo=cfg.DEBUG,
        )
    return create_engine(
        url,
        poolclass=QueuePool,
        pool_size=cfg.DB_POOL_SIZE,
        max_overflow=cfg.DB_MAX_OVERFLOW,
        pool_timeout=cfg.DB_POOL_TIMEOUT,
        pool_recycle=cfg.DB_POOL_RECYCLE,
        pool_pre_ping=True,
        echo=cfg.DEBUG,
    )


DATABASE_URL = build_database_url(settings)
engine = create_db_engine(DATABASE_URL, settings)

# expire_on_commit=False: returned ORM objects stay readable after commit
SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine,
    expire_on_commit=False,
)

Base = declarative_base()


def _open_session(attempts: int = 3, delay_s: float = 0.1) -> Session:
    """Open a session and prove the connection works, retrying briefly."""
    for attempt in range(attempts):
        db = SessionLocal()
        try:
            db.execute(text("SELECT 1"))
            return db
        except Exception as e:
            db.close()
            if attempt == attempts - 1:
                logger.error(f"Database unreachable after {attempts} attempts: {e}")
                raise
            logger.warning(f"Database connection attempt {attempt + 1} failed, retrying")
            time.sleep(delay_s * (2 ** attempt))


def get_db() -> Iterator[Session]:
    """
    FastAPI dependency: one session per request.

    Commits when the request succeeds, rolls back on any exception. HTTP
    errors raised by the endpoint are not logged as database errors.
    """
    from fastapi import HTTPException

    db = _open_session()
    try:
        yield db
        db.commit()
    except Exception as e:
        db.rollback()
        if not isinstance(e, HTTPException):
            logger.error(f"Database transaction error: {e}")
        raise
    finally:
        db.close()


@contextmanager
def session_scope() -> Iterator[Session]:
    """Transactional scope for worker code outside a request."""
    db = SessionLocal()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def check_db_connection() -> bool:
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        return True
    except Exception as e:
        logger.error(f"Database connection check failed: {e}")
        return False
