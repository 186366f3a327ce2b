from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from studio.config import get_settings
from studio.models import Base

_engine = None
_SessionLocal = None


def get_engine():
    """Engine for settings.database_url, created on first use."""
    global _engine
    if _engine is None:
        _engine = create_engine(get_settings().database_url, echo=False)
    return _engine


def get_sessionmaker() -> sessionmaker:
    global _SessionLocal
    if _SessionLocal is None:
        _SessionLocal = sessionmaker(bind=get_engine(), autoflush=False)
    return _SessionLocal


def init_db(engine=None):
    """Create all tables."""
    Base.metadata.create_all(bind=engine or get_engine())


def get_db():
    """FastAPI dependency."""
    db = get_sessionmaker()()
    try:
        yield db
    finally:
        db.close()
