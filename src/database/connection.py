"""
Database connection management for the inbound guard
"""
import os

from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

from .models import Base

# Get database URL from environment variable
DATABASE_URL = os.getenv('DATABASE_URL', 'sqlite:///inbound_guard.db')

# SQLite connections are shared with the CLI's worker threads
_connect_args = {'check_same_thread': False} if DATABASE_URL.startswith('sqlite') else {}

engine = create_engine(DATABASE_URL, connect_args=_connect_args)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

def init_db() -> None:
    """Initialize the database, creating all tables"""
    Base.metadata.create_all(bind=engine)

def get_db_session() -> Session:
    """Get a new database session"""
    db = SessionLocal()
    try:
        return db
    except Exception:
        db.close()
        raise
