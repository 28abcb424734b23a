"""
Database schema and connection management.

Uses SQLite with SQLAlchemy for the scan cursor, the archived-blob
index, and the durable job queue.
"""

from datetime import datetime
from pathlib import Path
from sqlalchemy import (
    create_engine, Column, Integer, BigInteger, String, Text, DateTime, Float, Index,
)
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker

Base = declarative_base()


class MonitorState(Base):
    """Single-row table holding the scan cursor."""

    __tablename__ = "monitor_state"

    id = Column(Integer, primary_key=True)
    last_processed_block = Column(BigInteger, nullable=False)
    updated_at = Column(DateTime, nullable=False, default=datetime.now, onupdate=datetime.now)


class ArchivedBlob(Base):
    """Index of blobs written to the archive store."""

    __tablename__ = "archived_blobs"

    blob_hash = Column(String, primary_key=True)  # versioned hash
    location = Column(String, nullable=False)
    l1_block_number = Column(BigInteger, nullable=False, index=True)
    l2_source = Column(String, nullable=False)
    tx_hash = Column(String, nullable=False)
    size = Column(Integer, nullable=False)
    sha256 = Column(String, nullable=False)
    archived_at = Column(DateTime, nullable=False, default=datetime.now)
    retrieval_count = Column(Integer, nullable=False, default=0)
    last_verified_at = Column(DateTime, nullable=True)


class QueueMessage(Base):
    """Row-per-message durable queue. `visible_at` is an epoch timestamp."""

    __tablename__ = "queue_messages"

    id = Column(Integer, primary_key=True, autoincrement=True)
    queue = Column(String, nullable=False)
    payload = Column(Text, nullable=False)
    visible_at = Column(Float, nullable=False, default=0.0)
    deliveries = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, nullable=False, default=datetime.now)

    __table_args__ = (Index("ix_queue_messages_queue_visible", "queue", "visible_at", "id"),)


def create_db_engine(db_path: Path) -> Engine:
    """
    Create an engine usable from several worker threads.

    Args:
        db_path: Path to SQLite database file
    """
    return create_engine(
        f"sqlite:///{db_path}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )


def init_database(db_path: Path) -> Engine:
    """
    Initialize database and create tables.

    Args:
        db_path: Path to SQLite database file

    Returns:
        The engine bound to the database
    """
    db_path.parent.mkdir(parents=True, exist_ok=True)
    engine = create_db_engine(db_path)
    Base.metadata.create_all(engine)
    return engine


def create_session_factory(db_path: Path) -> sessionmaker:
    """
    Initialize the database and return a session factory bound to it.

    Args:
        db_path: Path to SQLite database file

    Returns:
        SQLAlchemy sessionmaker
    """
    engine = init_database(db_path)
    return sessionmaker(bind=engine, expire_on_commit=False)


def get_session(db_path: Path):
    """
    Get database session.

    Args:
        db_path: Path to SQLite database file

    Returns:
        SQLAlchemy session
    """
    Session = sessionmaker(bind=create_db_engine(db_path), expire_on_commit=False)
    return Session()
