"""
Database session management (SQLAlchemy)

The engine and session factory are built explicitly from Settings and handed to
whoever needs them (FastAPI app state, the driver loop, tests).
"""
from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.orm import DeclarativeBase, sessionmaker, Session
from fastapi import Request

from noticehub.config import Settings


class Base(DeclarativeBase):
    """
    SQLAlchemy declarative base for all ORM models
    """
    pass


def create_db_engine(settings: Settings) -> Engine:
    """Create a SQLAlchemy engine for the configured DATABASE_URL"""
    return create_engine(settings.get_sqlalchemy_url(), pool_pre_ping=True)


def create_session_factory(engine: Engine) -> sessionmaker:
    """Create a session factory bound to the given engine"""
    return sessionmaker(bind=engine, autoflush=False, autocommit=False)


def get_db(request: Request):
    """
    FastAPI dependency - opens a session from the app's session factory and closes it

    Usage:
        @router.get("/sources")
        def list_sources(db: Session = Depends(get_db)):
            ...
    """
    SessionLocal = request.app.state.session_factory
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def check_db_connection(db: Session) -> None:
    """
    Health check - runs SELECT 1 on the session's connection

    Raises:
        sqlalchemy.exc.OperationalError: if the database is unreachable
    """
    db.execute(text("SELECT 1"))


def insert_for(db: Session, model):
    """
    Dialect-specific INSERT supporting ON CONFLICT (PostgreSQL in production,
    SQLite in tests).
    """
    dialect = db.get_bind().dialect.name
    if dialect == "postgresql":
        return pg_insert(model)
    if dialect == "sqlite":
        return sqlite_insert(model)
    raise NotImplementedError(f"Upsert is not supported for dialect {dialect!r}")
