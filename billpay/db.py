from typing import Iterator

from fastapi import Request
from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker
from sqlalchemy.pool import StaticPool


class Base(DeclarativeBase):
    """SQLAlchemy Declarative Base."""

    pass


def _connect_args(url: str):
    # For SQLite, disable same-thread check
    return {"check_same_thread": False} if url.startswith("sqlite") else {}


def make_engine(url: str) -> Engine:
    """Create the process-wide engine for ``url``.

    Called once by ``create_app``; the engine lives on ``app.state`` and is
    disposed by the app lifespan.
    """
    kwargs = dict(
        connect_args=_connect_args(url),
        pool_pre_ping=True,
        future=True,
        echo=False,
    )
    if not url.startswith("sqlite"):
        kwargs.update(
            dict(
                pool_recycle=1800,  # recycle idle connections (~30m)
                pool_size=5,
                max_overflow=10,
            )
        )
    if url.startswith("sqlite") and ":memory:" in url:
        # Share one in-memory DB across connections
        kwargs["poolclass"] = StaticPool  # type: ignore[assignment]

    engine = create_engine(url, **kwargs)

    if url.startswith("sqlite"):

        @event.listens_for(engine, "connect")
        def _sqlite_pragma(dbapi_conn, _):
            cur = dbapi_conn.cursor()
            cur.execute("PRAGMA foreign_keys=ON;")
            if ":memory:" not in url:
                cur.execute("PRAGMA journal_mode=WAL;")
                cur.execute("PRAGMA synchronous=NORMAL;")
            cur.close()

    return engine


def make_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)


def get_db(request: Request) -> Iterator[Session]:
    """FastAPI dependency yielding a session from the app's session factory."""
    db = request.app.state.SessionLocal()
    try:
        yield db
    finally:
        db.close()
