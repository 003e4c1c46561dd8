from pathlib import Path
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from ..models import Base


def _ensure_sqlite_parent(database_url: str) -> None:
    # Ensure sqlite file parent directory exists to avoid 'unable to open database file'
    if database_url.startswith("sqlite:///") and ":memory:" not in database_url:
        db_path = database_url.split("sqlite:///")[-1]
        Path(db_path).expanduser().resolve().parent.mkdir(parents=True, exist_ok=True)


def make_engine(database_url: str, *, echo: bool = False) -> Engine:
    """Build an engine; sqlite connections may be shared across worker threads."""
    if not database_url.startswith("sqlite"):
        return create_engine(database_url, future=True, echo=echo, pool_pre_ping=True)

    _ensure_sqlite_parent(database_url)
    # concurrent writers wait on the database lock instead of failing fast
    connect_args = {"check_same_thread": False, "timeout": 30}
    if database_url in ("sqlite://", "sqlite:///:memory:"):
        return create_engine(
            database_url,
            future=True,
            echo=echo,
            connect_args=connect_args,
            poolclass=StaticPool,
        )
    return create_engine(database_url, future=True, echo=echo, connect_args=connect_args)


def make_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False, future=True)


def init_db(engine: Engine) -> None:
    Base.metadata.create_all(engine)
