"""
Local job store for NAMDRunner.

Each job record is kept as one JSON document keyed by job id, with the
status and timestamps mirrored into columns for filtering. The JSON form
is the same one written to the remote ``job_info.json``.
"""

import logging
import sqlite3
import threading
from pathlib import Path
from typing import Dict, Iterable, List, Optional

from pydantic import ValidationError as PydanticValidationError

from ..models import JobInfo, JobStatus
from .exceptions import DatabaseError

logger = logging.getLogger(__name__)


class SQLiteJobStore:
    """SQLite-backed ``JobStore``."""

    SCHEMA = """
    CREATE TABLE IF NOT EXISTS jobs (
        job_id TEXT PRIMARY KEY,
        status TEXT NOT NULL,
        created_at TEXT NOT NULL,
        updated_at TEXT,
        data TEXT NOT NULL
    );

    CREATE INDEX IF NOT EXISTS idx_jobs_status ON jobs(status);
    CREATE INDEX IF NOT EXISTS idx_jobs_created ON jobs(created_at DESC);
    """

    def __init__(self, db_path: Path):
        """
        Open (and create if needed) the store.

        Args:
            db_path: SQLite file path, or ":memory:"
        """
        self.db_path = db_path
        if str(db_path) != ":memory:":
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._write_lock = threading.Lock()
        try:
            self.conn = sqlite3.connect(str(db_path), check_same_thread=False, timeout=5.0)
            self.conn.row_factory = sqlite3.Row
            self.conn.execute("PRAGMA busy_timeout=5000")
            if str(db_path) != ":memory:":
                self.conn.execute("PRAGMA journal_mode=WAL")
            with self.conn:
                self.conn.executescript(self.SCHEMA)
        except sqlite3.Error as e:
            raise DatabaseError(
                f"Could not open job database at {db_path}", operation="load", details=str(e)
            ) from e

    def close(self) -> None:
        self.conn.close()

    def save(self, job: JobInfo) -> None:
        """Insert or replace a job record."""
        with self._write_lock:
            try:
                with self.conn:
                    self.conn.execute(
                        """
                        INSERT INTO jobs (job_id, status, created_at, updated_at, data)
                        VALUES (?, ?, ?, ?, ?)
                        ON CONFLICT(job_id) DO UPDATE SET
                            status = excluded.status,
                            updated_at = excluded.updated_at,
                            data = excluded.data
                        """,
                        (
                            job.job_id,
                            job.status.value,
                            job.created_at.isoformat(),
                            job.updated_at.isoformat() if job.updated_at else None,
                            job.model_dump_json(),
                        ),
                    )
            except sqlite3.Error as e:
                raise DatabaseError(
                    f"Failed to save job {job.job_id}",
                    operation="save",
                    target=job.job_id,
                    details=str(e),
                ) from e
        logger.debug(f"Saved job {job.job_id} ({job.status.value})")

    def load(self, job_id: str) -> Optional[JobInfo]:
        try:
            row = self.conn.execute(
                "SELECT data FROM jobs WHERE job_id = ?", (job_id,)
            ).fetchone()
        except sqlite3.Error as e:
            raise DatabaseError(
                f"Failed to load job {job_id}", operation="load", target=job_id, details=str(e)
            ) from e
        return self._row_to_job(row) if row else None

    def load_all(self) -> List[JobInfo]:
        return self._query("SELECT data FROM jobs ORDER BY created_at DESC", ())

    def load_by_status(self, statuses: Iterable[JobStatus]) -> List[JobInfo]:
        """Records whose status is one of ``statuses``."""
        values = [s.value for s in statuses]
        if not values:
            return []
        placeholders = ",".join("?" * len(values))
        return self._query(
            f"SELECT data FROM jobs WHERE status IN ({placeholders}) ORDER BY created_at DESC",
            values,
        )

    def delete(self, job_id: str) -> bool:
        with self._write_lock:
            try:
                with self.conn:
                    cursor = self.conn.execute("DELETE FROM jobs WHERE job_id = ?", (job_id,))
            except sqlite3.Error as e:
                raise DatabaseError(
                    f"Failed to delete job {job_id}",
                    operation="delete",
                    target=job_id,
                    details=str(e),
                ) from e
        return cursor.rowcount > 0

    def _query(self, sql: str, params) -> List[JobInfo]:
        try:
            rows = self.conn.execute(sql, params).fetchall()
        except sqlite3.Error as e:
            raise DatabaseError("Failed to query jobs", operation="load", details=str(e)) from e
        return [self._row_to_job(row) for row in rows]

    @staticmethod
    def _row_to_job(row: sqlite3.Row) -> JobInfo:
        try:
            return JobInfo.model_validate_json(row["data"])
        except PydanticValidationError as e:
            raise DatabaseError(
                "Stored job record is corrupted", operation="load", details=str(e)
            ) from e


class InMemoryJobStore:
    """Dict-backed ``JobStore`` for tests and dry runs."""

    def __init__(self, jobs: Optional[Iterable[JobInfo]] = None):
        self._jobs: Dict[str, str] = {}
        self._lock = threading.Lock()
        for job in jobs or ():
            self.save(job)

    def save(self, job: JobInfo) -> None:
        with self._lock:
            self._jobs[job.job_id] = job.model_dump_json()

    def load(self, job_id: str) -> Optional[JobInfo]:
        data = self._jobs.get(job_id)
        return JobInfo.model_validate_json(data) if data else None

    def load_all(self) -> List[JobInfo]:
        jobs = [JobInfo.model_validate_json(d) for d in self._jobs.values()]
        return sorted(jobs, key=lambda j: j.created_at, reverse=True)

    def load_by_status(self, statuses: Iterable[JobStatus]) -> List[JobInfo]:
        wanted = set(statuses)
        return [j for j in self.load_all() if j.status in wanted]

    def delete(self, job_id: str) -> bool:
        with self._lock:
            return self._jobs.pop(job_id, None) is not None


def load_jobs_by_status(store, statuses: Iterable[JobStatus]) -> List[JobInfo]:
    """Filter a store by status, using its own index when it has one."""
    statuses = list(statuses)
    if hasattr(store, "load_by_status"):
        return store.load_by_status(statuses)
    wanted = set(statuses)
    return [job for job in store.load_all() if job.status in wanted]
