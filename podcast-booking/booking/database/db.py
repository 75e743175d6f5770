"""
Database connection and session management.
"""

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, Session
from typing import Optional
import os

from .models import Base

# Database URL - SQLite for local dev, Postgres/Supabase for production
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./podcast_booking.db")

# Handle Supabase URL format (postgres:// -> postgresql://)
if DATABASE_URL.startswith("postgres://"):
    DATABASE_URL = DATABASE_URL.replace("postgres://", "postgresql://", 1)


def make_engine(url: str) -> Engine:
    """Create an engine with appropriate config for SQLite vs Postgres."""
    is_sqlite = "sqlite" in url
    return create_engine(
        url,
        connect_args={"check_same_thread": False} if is_sqlite else {},
        pool_pre_ping=not is_sqlite,  # Check connection health for Postgres
        echo=False  # Set True for SQL debugging
    )


engine = make_engine(DATABASE_URL)

# Session factory
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def init_db(bind: Optional[Engine] = None):
    """Create all tables"""
    Base.metadata.create_all(bind=bind or engine)


def dialect_insert(session: Session, model):
    """
    INSERT construct for the session's backend, so callers can chain
    .on_conflict_do_update() on both Postgres and SQLite.
    """
    dialect = session.get_bind().dialect.name
    if dialect == "postgresql":
        from sqlalchemy.dialects.postgresql import insert
    elif dialect == "sqlite":
        from sqlalchemy.dialects.sqlite import insert
    else:
        raise NotImplementedError(f"Upsert not supported for dialect '{dialect}'")
    return insert(model)
