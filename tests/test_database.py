"""
Tests for the local job stores.
"""

import sqlite3
from datetime import datetime, timedelta, timezone

import pytest

from namdrunner.core.database import InMemoryJobStore, SQLiteJobStore, load_jobs_by_status
from namdrunner.core.exceptions import DatabaseError
from namdrunner.models import JobStatus
from namdrunner.protocols import JobStore


@pytest.fixture(params=["sqlite", "memory"])
def job_store(request, tmp_path):
    if request.param == "sqlite":
        store = SQLiteJobStore(tmp_path / "jobs.db")
        yield store
        store.close()
    else:
        yield InMemoryJobStore()


class TestJobStores:
    """Behaviour shared by both store implementations."""

    def test_implements_protocol(self, job_store):
        assert isinstance(job_store, JobStore)

    def test_save_and_load(self, job_store, make_job):
        job = make_job(template_values={"steps": 10})
        job_store.save(job)

        loaded = job_store.load(job.job_id)

        assert loaded == job
        assert job_store.load("missing") is None

    def test_save_is_upsert(self, job_store, make_job):
        job = make_job()
        job_store.save(job)
        job.transition_to(JobStatus.PENDING)
        job.slurm_job_id = "99"
        job_store.save(job)

        assert len(job_store.load_all()) == 1
        assert job_store.load(job.job_id).slurm_job_id == "99"

    def test_load_all_newest_first(self, job_store, make_job):
        base = datetime(2025, 1, 1, tzinfo=timezone.utc)
        for i in range(3):
            job_store.save(make_job(f"job_{i}", created_at=base + timedelta(hours=i)))

        assert [j.job_id for j in job_store.load_all()] == ["job_2", "job_1", "job_0"]

    def test_load_by_status(self, job_store, make_job):
        job_store.save(make_job("a", JobStatus.PENDING))
        job_store.save(make_job("b", JobStatus.RUNNING))
        job_store.save(make_job("c", JobStatus.COMPLETED))

        active = load_jobs_by_status(job_store, [JobStatus.PENDING, JobStatus.RUNNING])

        assert sorted(j.job_id for j in active) == ["a", "b"]
        assert load_jobs_by_status(job_store, []) == []

    def test_delete(self, job_store, make_job):
        job_store.save(make_job("a"))
        assert job_store.delete("a") is True
        assert job_store.delete("a") is False
        assert job_store.load("a") is None


class TestSQLiteJobStore:
    """SQLite-specific behaviour."""

    def test_persists_across_instances(self, tmp_path, make_job):
        path = tmp_path / "nested" / "jobs.db"
        first = SQLiteJobStore(path)
        first.save(make_job("a", JobStatus.RUNNING))
        first.close()

        second = SQLiteJobStore(path)
        assert second.load("a").status == JobStatus.RUNNING
        second.close()

    def test_corrupted_record(self, tmp_path, make_job):
        store = SQLiteJobStore(tmp_path / "jobs.db")
        store.save(make_job("a"))
        with store.conn:
            store.conn.execute("UPDATE jobs SET data = '{not json' WHERE job_id = 'a'")

        with pytest.raises(DatabaseError) as exc_info:
            store.load("a")
        assert exc_info.value.operation == "load"
        store.close()

    def test_closed_connection_raises_database_error(self, tmp_path, make_job):
        store = SQLiteJobStore(tmp_path / "jobs.db")
        store.close()

        with pytest.raises(DatabaseError) as exc_info:
            store.save(make_job("a"))
        assert isinstance(exc_info.value.__cause__, sqlite3.Error)
        assert "writable" in exc_info.value.user_message()

    def test_in_memory_database(self, make_job):
        store = SQLiteJobStore(":memory:")
        store.save(make_job("a"))
        assert store.load("a") is not None
        store.close()
