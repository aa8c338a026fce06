"""
Database configuration and session management using SQLAlchemy.
"""

import logging
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

logger = logging.getLogger(__name__)

# Base class for models
Base = declarative_base()


class StorageError(RuntimeError):
    """The storage medium could not be opened or initialized."""


def create_db_engine(database_url: str, echo: bool = False) -> Engine:
    """
    Create an engine for ``database_url``.

    SQLite is the normal deployment target. File databases get their parent
    directory created; ``sqlite://`` (in-memory) shares one connection so
    every session sees the same data.
    """
    try:
        url = make_url(database_url)
        if url.get_backend_name() != "sqlite":
            return create_engine(database_url, pool_pre_ping=True, echo=echo)

        connect_args = {"check_same_thread": False}
        if not url.database or url.database == ":memory:":
            return create_engine(
                database_url,
                echo=echo,
                connect_args=connect_args,
                poolclass=StaticPool,
            )

        Path(url.database).expanduser().parent.mkdir(parents=True, exist_ok=True)
        return create_engine(database_url, echo=echo, connect_args=connect_args)
    except (SQLAlchemyError, OSError, ValueError) as e:
        raise StorageError(f"Cannot open database {database_url}: {e}") from e


def create_session_factory(engine: Engine) -> sessionmaker:
    """Session factory bound to ``engine``."""
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@contextmanager
def session_scope(factory: sessionmaker) -> Iterator[Session]:
    """
    Provide a database session that is always closed.

    Usage:
        with session_scope(factory) as db:
            ...
            db.commit()
    """
    db = factory()
    try:
        yield db
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def init_db(engine: Engine) -> None:
    """
    Initialize the database by creating all tables.

    Safe to run on every boot; existing tables are left untouched. Schema
    evolution of the state document is handled by the defaults reconciler,
    not by migrations.
    """
    # Register models on Base.metadata
    from hearth import db_models  # noqa: F401

    try:
        Base.metadata.create_all(bind=engine)
    except SQLAlchemyError as e:
        raise StorageError(f"Cannot initialize database: {e}") from e
    logger.debug("Database tables ready")
