from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import create_engine, event
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from loguru import logger

from spotmate.core.config import DATABASE_URL

Base = declarative_base()

_IS_SQLITE = DATABASE_URL.startswith("sqlite")

# --- Engine ---
engine = create_engine(
    DATABASE_URL,
    echo=False,
    future=True,
    pool_pre_ping=not _IS_SQLITE,
    connect_args={"check_same_thread": False} if _IS_SQLITE else {},
)

SessionLocal = sessionmaker(
    bind=engine,
    autoflush=False,
    autocommit=False,
    future=True,
)


if _IS_SQLITE:
    # meetup_feedback -> matches needs enforcing locally too
    @event.listens_for(engine, "connect")
    def _sqlite_foreign_keys(dbapi_conn, _record):
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


@event.listens_for(engine, "before_cursor_execute")
def before_cursor_execute(conn, cursor, statement, parameters, context, executemany):
    logger.trace(f"SQL: {statement} | params={parameters}")


@contextmanager
def session_scope(factory: sessionmaker = SessionLocal) -> Iterator[Session]:
    """Commit on success, roll back and re-raise on any error."""
    db = factory()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


# --- FastAPI dependency ---
def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
