"""
Repositories over the SQLite database.

Every write commits before returning; SQLAlchemy failures surface as
PersistenceError so callers never mistake a lost write for progress.
"""

from datetime import datetime
from typing import List, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from .database import ArchivedBlob, MonitorState
from .errors import PersistenceError

CURSOR_ROW_ID = 1


class SqlCursorStore:
    """Persisted scan cursor: `get()` defaults to 0, `set()` is durable."""

    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    def get(self) -> int:
        try:
            with self._session_factory() as session:
                row = session.get(MonitorState, CURSOR_ROW_ID)
                return int(row.last_processed_block) if row is not None else 0
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to read cursor: {e}") from e

    def set(self, block_number: int) -> None:
        if block_number < 0:
            raise ValueError("Cursor must be non-negative")
        try:
            with self._session_factory() as session:
                session.merge(MonitorState(
                    id=CURSOR_ROW_ID,
                    last_processed_block=block_number,
                    updated_at=datetime.now(),
                ))
                session.commit()
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to persist cursor {block_number}: {e}") from e


class ArchivedBlobRepository:
    """CRUD for the archived_blobs table. No archival decisions live here."""

    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    def save(self, blob: ArchivedBlob) -> None:
        """Insert or replace the row for `blob.blob_hash`."""
        try:
            with self._session_factory() as session:
                session.merge(blob)
                session.commit()
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to record archived blob {blob.blob_hash}: {e}") from e

    def find_by_blob_hash(self, blob_hash: str) -> Optional[ArchivedBlob]:
        with self._session_factory() as session:
            return session.get(ArchivedBlob, blob_hash)

    def find_by_location(self, location: str) -> Optional[ArchivedBlob]:
        with self._session_factory() as session:
            return session.scalars(
                select(ArchivedBlob).where(ArchivedBlob.location == location)
            ).first()

    def find_by_block_range(self, from_block: int, to_block: int, limit: int = 100) -> List[ArchivedBlob]:
        with self._session_factory() as session:
            return list(session.scalars(
                select(ArchivedBlob)
                .where(ArchivedBlob.l1_block_number >= from_block)
                .where(ArchivedBlob.l1_block_number <= to_block)
                .order_by(ArchivedBlob.l1_block_number.desc())
                .limit(limit)
            ))

    def increment_retrieval_count(self, blob_hash: str) -> None:
        try:
            with self._session_factory() as session:
                session.execute(
                    update(ArchivedBlob)
                    .where(ArchivedBlob.blob_hash == blob_hash)
                    .values(retrieval_count=ArchivedBlob.retrieval_count + 1)
                )
                session.commit()
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to update retrieval count for {blob_hash}: {e}") from e

    def mark_verified(self, blob_hash: str) -> None:
        try:
            with self._session_factory() as session:
                session.execute(
                    update(ArchivedBlob)
                    .where(ArchivedBlob.blob_hash == blob_hash)
                    .values(last_verified_at=datetime.now())
                )
                session.commit()
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to mark {blob_hash} verified: {e}") from e

    def count(self) -> int:
        with self._session_factory() as session:
            return session.query(ArchivedBlob).count()
