from sqlalchemy import create_engine
from sqlalchemy.engine import make_url
from sqlalchemy.orm import sessionmaker, declarative_base
from .config import settings

DATABASE_URL = settings.database_url


def _engine_options(url: str) -> dict:
    parsed = make_url(url)
    if parsed.get_backend_name() != "sqlite":
        return {"pool_pre_ping": True}
    if parsed.database in (None, "", ":memory:") or "mode=memory" in url:
        # a shared in-memory connection lets one session's commit or reset land on another's write
        raise ValueError(f"In-memory SQLite cannot back concurrent sessions, use a file URL instead of {url!r}")
    # each pooled connection belongs to one session at a time; writers queue on SQLite's file lock
    return {"connect_args": {"check_same_thread": False, "timeout": 30}}


engine = create_engine(DATABASE_URL, **_engine_options(DATABASE_URL))

SessionLocal = sessionmaker(bind=engine)
Base = declarative_base()
