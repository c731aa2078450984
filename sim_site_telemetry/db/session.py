from __future__ import annotations

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from ..config import get_database_url

Base = declarative_base()


def build_engine(url: str) -> Engine:
    """
    Create an engine for ``url``.

    SQLite connections are shareable across threads (FastAPI runs sync
    routes in a worker pool); in-memory SQLite additionally uses a single
    static connection so every session sees the same database.
    """
    if not url.startswith("sqlite"):
        return create_engine(url, echo=False, future=True, pool_pre_ping=True)
    kwargs = {"connect_args": {"check_same_thread": False}}
    if ":memory:" in url:
        kwargs["poolclass"] = StaticPool
    return create_engine(url, echo=False, future=True, **kwargs)


def build_session_factory(bind: Engine) -> sessionmaker:
    return sessionmaker(
        bind=bind,
        autoflush=False,
        autocommit=False,
        expire_on_commit=False,
        future=True,
    )


DATABASE_URL = get_database_url()
engine = build_engine(DATABASE_URL)
SessionLocal = build_session_factory(engine)


def init_db(bind: Engine | None = None) -> None:
    """
    Create the sites, equipment and telemetry tables when missing.
    """
    from . import models  # noqa: F401

    Base.metadata.create_all(bind=bind or engine)
