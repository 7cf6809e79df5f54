"""Database engine construction for the dispatch core."""
from sqlalchemy import event
from sqlalchemy.engine import Engine
from sqlalchemy.pool import StaticPool
from sqlmodel import create_engine

from notifier.utils.logger import get_logger

logger = get_logger(__name__)


def create_db_engine(database_url: str, echo: bool = False) -> Engine:
    """Create a SQLModel engine for the given URL.

    SQLite URLs get foreign keys switched on; in-memory SQLite shares one
    connection so every session sees the same database.
    """
    if not database_url.startswith("sqlite"):
        logger.info("Using PostgreSQL database")
        return create_engine(database_url, echo=echo, pool_pre_ping=True)

    logger.info("Using SQLite database", database_url=database_url)
    connect_args = {"check_same_thread": False}
    if database_url in ("sqlite://", "sqlite:///:memory:"):
        engine = create_engine(database_url, echo=echo, connect_args=connect_args, poolclass=StaticPool)
    else:
        engine = create_engine(database_url, echo=echo, connect_args=connect_args)

    @event.listens_for(engine, "connect")
    def set_sqlite_pragma(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    return engine
