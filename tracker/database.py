"""
Database connection and session management.

Components never reach for a global handle: scripts build a session here
and pass it into resolvers, pipelines and analyzers.
"""

from typing import Optional

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker

from config.settings import settings
from tracker.models import Base


def create_db_engine(url: Optional[str] = None, echo: Optional[bool] = None) -> Engine:
    """
    Create an engine for the given URL (defaults to settings.DATABASE_URL).

    SQLite connections get the pysqlite SAVEPOINT fix so per-record
    nested transactions roll back correctly.
    """
    url = url or settings.DATABASE_URL
    engine = create_engine(
        url,
        echo=settings.DEBUG if echo is None else echo,
        future=True,
    )

    if engine.dialect.name == "sqlite":
        @event.listens_for(engine, "connect")
        def _disable_pysqlite_transactions(dbapi_connection, connection_record):
            dbapi_connection.isolation_level = None

        @event.listens_for(engine, "begin")
        def _emit_begin(conn):
            conn.exec_driver_sql("BEGIN")

    return engine


def make_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(bind=engine, autoflush=False, autocommit=False)


def init_db(engine: Engine):
    """Initialize database tables."""
    Base.metadata.create_all(bind=engine)


def get_db(session_factory: sessionmaker):
    """Get database session."""
    db = session_factory()
    try:
        yield db
    finally:
        db.close()


def open_session(url: Optional[str] = None):
    """Create tables if needed and return a new session (used by scripts)."""
    if url is None and settings.DATABASE_URL.startswith("sqlite:///"):
        settings.project_root.joinpath("data").mkdir(exist_ok=True)
    engine = create_db_engine(url)
    init_db(engine)
    return make_session_factory(engine)()
