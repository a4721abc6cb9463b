from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, declarative_base
from .config import get_settings

Base = declarative_base()

# Lazy initialization - avoid connecting at import time
_engine = None
_SessionLocal = None


def get_engine():
    """Get or create the SQLAlchemy engine (lazy initialization)."""
    global _engine
    if _engine is not None:
        return _engine

    database_url = get_settings().database_url
    # SQLite needs special config
    connect_args = {"check_same_thread": False} if database_url.startswith("sqlite") else {}

    _engine = create_engine(database_url, connect_args=connect_args)
    return _engine


def get_session_local():
    """Get or create the SessionLocal factory (lazy initialization)."""
    global _SessionLocal
    if _SessionLocal is not None:
        return _SessionLocal

    _SessionLocal = sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=get_engine())
    return _SessionLocal


def init_db():
    """Create tables. Safe to call multiple times."""
    from . import models  # noqa: F401  register table metadata
    Base.metadata.create_all(bind=get_engine())


def get_db():
    """Dependency to provide a DB session."""
    SessionLocal = get_session_local()
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
