"""Database base configuration."""

from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker, Session
from sqlalchemy.pool import StaticPool
from contextlib import contextmanager

from ..config import config

Base = declarative_base()

# Capture sessions write from their own threads
engine_options = {}
if config.DATABASE_URL.startswith("sqlite"):
    engine_options["connect_args"] = {"check_same_thread": False}
    if ":memory:" in config.DATABASE_URL:
        engine_options["poolclass"] = StaticPool

engine = create_engine(config.DATABASE_URL, echo=config.DEBUG, **engine_options)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

@contextmanager
def get_session() -> Session:
    """Get a database session."""
    session = SessionLocal()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()

def init_db():
    """Initialize the database."""
    config.ensure_directories()
    Base.metadata.create_all(bind=engine)
