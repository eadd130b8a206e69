#!/usr/bin/env python3
# core/history.py
"""
Durable history of render jobs.

Every job accepted by the avatar provider gets one row, keyed by the provider's
video id. Rows are written before polling starts and updated once the job
reaches a terminal status, so an interrupted run can be picked up again.
"""

import sqlite3
import logging
import threading
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from .errors import DuplicateIdError, NotFoundError, StoreError
from .models import JobStatus, RenderJob, VoiceMode

# Configure logging
logger = logging.getLogger(__name__)

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)

# Only the outcome of a job may change after creation
MUTABLE_FIELDS = ("status", "result_url", "thumbnail_url", "duration_seconds")

_COLUMNS = (
    "id", "status", "created_at", "result_url", "thumbnail_url", "duration_seconds",
    "persona_label", "persona_id", "voice_label", "voice_mode", "transcript_text",
)


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _sort_key(value: datetime) -> int:
    """Microseconds since the epoch, exact for ordering."""
    return (_as_utc(value) - _EPOCH) // timedelta(microseconds=1)


class JobHistoryStore:
    """SQLite-backed store of RenderJob records."""

    def __init__(self, db_path: str = ":memory:"):
        """
        Open (and create if needed) the history database.

        Args:
            db_path: Path to the SQLite file, or ":memory:" for a throwaway store
        """
        self.db_path = db_path
        if db_path != ":memory:":
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()
        self._conn = sqlite3.connect(db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._ensure_db()

    def _ensure_db(self) -> None:
        """Create tables and indexes if they don't exist."""
        with self._lock, self._conn:
            self._conn.execute("""
                CREATE TABLE IF NOT EXISTS render_jobs (
                    id TEXT PRIMARY KEY,
                    status TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    created_order INTEGER NOT NULL,
                    result_url TEXT,
                    thumbnail_url TEXT,
                    duration_seconds REAL,
                    persona_label TEXT,
                    persona_id TEXT,
                    voice_label TEXT,
                    voice_mode TEXT,
                    transcript_text TEXT
                )
            """)
            self._conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_render_jobs_created
                ON render_jobs(created_order)
            """)

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    @staticmethod
    def _to_job(row: sqlite3.Row) -> RenderJob:
        data = {column: row[column] for column in _COLUMNS}
        data["created_at"] = datetime.fromisoformat(data["created_at"])
        return RenderJob(**data)

    def create(self, job: RenderJob) -> None:
        """
        Insert a new job record.

        Raises:
            DuplicateIdError: If a record with the same id already exists
        """
        created_at = _as_utc(job.created_at)
        values = (
            job.id,
            JobStatus(job.status).value,
            created_at.isoformat(),
            _sort_key(created_at),
            job.result_url,
            job.thumbnail_url,
            job.duration_seconds,
            job.persona_label,
            job.persona_id,
            job.voice_label,
            VoiceMode(job.voice_mode).value if job.voice_mode else None,
            job.transcript_text,
        )
        try:
            with self._lock, self._conn:
                self._conn.execute(
                    """
                    INSERT INTO render_jobs (
                        id, status, created_at, created_order, result_url, thumbnail_url,
                        duration_seconds, persona_label, persona_id, voice_label,
                        voice_mode, transcript_text
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    values,
                )
        except sqlite3.IntegrityError as e:
            raise DuplicateIdError(job.id) from e
        except sqlite3.Error as e:
            raise StoreError(f"Failed to save job {job.id}: {e}") from e

        logger.info(f"Job {job.id} added to history ({job.status})")

    def update(self, job_id: str, **fields: Any) -> None:
        """
        Change the outcome fields of an existing job.

        Applying the same update twice leaves the record as a single call would.

        Args:
            job_id: Provider video id
            **fields: Any of status, result_url, thumbnail_url, duration_seconds

        Raises:
            NotFoundError: If no record has this id
            StoreError: If a field is unknown or immutable
        """
        if not fields:
            raise StoreError("update() called without fields")
        rejected = sorted(set(fields) - set(MUTABLE_FIELDS))
        if rejected:
            raise StoreError(f"Cannot update fields: {', '.join(rejected)}")

        updates: Dict[str, Any] = dict(fields)
        if "status" in updates:
            try:
                updates["status"] = JobStatus(updates["status"]).value
            except ValueError as e:
                raise StoreError(f"Invalid status: {updates['status']}") from e

        assignments = ", ".join(f"{name} = ?" for name in updates)
        try:
            with self._lock, self._conn:
                cursor = self._conn.execute(
                    f"UPDATE render_jobs SET {assignments} WHERE id = ?",
                    (*updates.values(), job_id),
                )
                if cursor.rowcount == 0:
                    raise NotFoundError(job_id)
        except sqlite3.Error as e:
            raise StoreError(f"Failed to update job {job_id}: {e}") from e

        logger.info(f"Job {job_id} updated: {updates}")

    def get_by_id(self, job_id: str) -> Optional[RenderJob]:
        with self._lock:
            row = self._conn.execute(
                "SELECT * FROM render_jobs WHERE id = ?", (job_id,)
            ).fetchone()
        return self._to_job(row) if row else None

    def list_all(self) -> List[RenderJob]:
        """Return all jobs, newest first."""
        with self._lock:
            rows = self._conn.execute(
                "SELECT * FROM render_jobs ORDER BY created_order DESC, rowid DESC"
            ).fetchall()
        return [self._to_job(row) for row in rows]

    def list_pending(self) -> List[RenderJob]:
        """Return jobs still marked as processing, oldest first."""
        with self._lock:
            rows = self._conn.execute(
                "SELECT * FROM render_jobs WHERE status = ? ORDER BY created_order, rowid",
                (JobStatus.PROCESSING.value,),
            ).fetchall()
        return [self._to_job(row) for row in rows]

    def delete(self, job_id: str) -> bool:
        """Remove one job. Returns False when there was nothing to delete."""
        with self._lock, self._conn:
            cursor = self._conn.execute("DELETE FROM render_jobs WHERE id = ?", (job_id,))
        deleted = cursor.rowcount > 0
        if deleted:
            logger.info(f"Job {job_id} deleted from history")
        return deleted

    def clear(self) -> None:
        with self._lock, self._conn:
            self._conn.execute("DELETE FROM render_jobs")
        logger.info("Job history cleared")
