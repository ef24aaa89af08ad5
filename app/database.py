# app/database.py
"""
Engine and session handling.

Request handlers get a session through the `get_db` dependency. Export
pipelines run after the request has returned, so they are handed a session
factory instead and open their own session.
"""

import os
from collections.abc import Callable, Iterator
from contextlib import contextmanager

from dotenv import load_dotenv
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, declarative_base, sessionmaker

load_dotenv()


def _normalize_database_url(url: str | None) -> str:
    if not url:
        raise RuntimeError("DATABASE_URL environment variable is not set")
    # Hosted Postgres hands out postgresql:// URLs
    if url.startswith("postgresql://"):
        return url.replace("postgresql://", "postgresql+psycopg2://", 1)
    return url


def _create_engine(url: str) -> Engine:
    # Export tasks and the TestClient touch SQLite from other threads
    connect_args = {"check_same_thread": False} if url.startswith("sqlite") else {}
    return create_engine(url, future=True, connect_args=connect_args)


DATABASE_URL = _normalize_database_url(os.getenv("DATABASE_URL"))
engine = _create_engine(DATABASE_URL)
SessionLocal = sessionmaker(bind=engine, autoflush=False, future=True)

Base = declarative_base()


def get_db() -> Iterator[Session]:
    """FastAPI dependency: one session per request, closed afterwards."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_session_factory() -> Callable[[], Session]:
    """FastAPI dependency: factory for sessions that outlive the request."""
    return SessionLocal


@contextmanager
def session_scope(factory: Callable[[], Session] | None = None) -> Iterator[Session]:
    """Session for work outside a request (startup, background jobs, CLI)."""
    db = (factory or SessionLocal)()
    try:
        yield db
    finally:
        db.close()
