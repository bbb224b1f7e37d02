from sqlalchemy import event
from sqlalchemy.engine import Engine
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel, create_engine
import logging

# Register tables on SQLModel.metadata
from reelforge.models import ApiRotationState, Job  # noqa: F401

logger = logging.getLogger(__name__)


def make_engine(database_url: str, echo: bool = False) -> Engine:
    """
    Build the engine backing the job queue and rotation state.

    SQLite is the expected backend (single process, single writer). In-memory
    URLs share one connection so every session sees the same database.
    """
    if database_url.startswith("sqlite"):
        kwargs: dict = {"connect_args": {"check_same_thread": False}}
        if ":memory:" in database_url or database_url in ("sqlite://", "sqlite:///"):
            kwargs["poolclass"] = StaticPool
        engine = create_engine(database_url, echo=echo, **kwargs)
        event.listen(engine, "connect", _set_sqlite_pragmas)
        return engine

    return create_engine(database_url, echo=echo, pool_pre_ping=True)


def _set_sqlite_pragmas(dbapi_connection, connection_record):
    """WAL keeps readers unblocked while the run writes; busy_timeout rides out brief locks."""
    cursor = dbapi_connection.cursor()
    try:
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.execute("PRAGMA busy_timeout=5000")
    except Exception as e:
        logger.warning(f"Could not set SQLite pragmas: {e}")
    finally:
        cursor.close()


def create_db_and_tables(engine: Engine) -> None:
    SQLModel.metadata.create_all(engine)
