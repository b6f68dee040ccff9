"""
Tests for remote job metadata and progress callbacks.
"""

import logging

import pytest

from namdrunner.automations.progress import (
    CollectingProgressCallback,
    LoggingProgressCallback,
    NullProgressCallback,
)
from namdrunner.core.exceptions import FileOperationError, FileTransferError, NetworkError
from namdrunner.core.metadata import discover_jobs_from_server, upload_job_metadata
from namdrunner.models import FileInfo, JobInfo
from namdrunner.protocols import ProgressCallback

ROOT = "/projects/testuser/namdrunner_jobs"


class TestUploadJobMetadata:
    """Test writing job_info.json."""

    @pytest.mark.asyncio
    async def test_writes_full_record(self, mock_connection, make_job):
        job = make_job()

        remote = await upload_job_metadata(mock_connection, job)

        assert remote == f"{job.project_dir}/job_info.json"
        data, path = mock_connection.upload_bytes.call_args.args
        assert path == remote
        assert JobInfo.from_json(data.decode("utf-8")) == job

    @pytest.mark.asyncio
    async def test_requires_project_dir(self, mock_connection, make_job):
        with pytest.raises(FileOperationError):
            await upload_job_metadata(mock_connection, make_job(project_dir=None))
        mock_connection.upload_bytes.assert_not_called()

    @pytest.mark.asyncio
    async def test_transport_failure_is_wrapped(self, mock_connection, make_job):
        mock_connection.upload_bytes.side_effect = FileTransferError("quota exceeded")
        with pytest.raises(FileOperationError) as exc_info:
            await upload_job_metadata(mock_connection, make_job())
        assert exc_info.value.operation == "upload"


class TestDiscoverJobs:
    """Test rebuilding records from the server."""

    @pytest.mark.asyncio
    async def test_missing_root_means_no_jobs(self, mock_connection):
        mock_connection.list_files.side_effect = FileTransferError("not found", retryable=False)
        assert await discover_jobs_from_server(mock_connection, "testuser", "/projects") == []

    @pytest.mark.asyncio
    async def test_transient_listing_failure_propagates(self, mock_connection):
        mock_connection.list_files.side_effect = NetworkError("reset")
        with pytest.raises(NetworkError):
            await discover_jobs_from_server(mock_connection, "testuser", "/projects")

    @pytest.mark.asyncio
    async def test_skips_unreadable_and_invalid_metadata(self, mock_connection, make_job):
        good = make_job("good_job", project_dir=f"{ROOT}/good_job")
        mock_connection.list_files.return_value = [
            FileInfo(name="good_job", path=f"{ROOT}/good_job", size=0, is_directory=True),
            FileInfo(name="no_meta", path=f"{ROOT}/no_meta", size=0, is_directory=True),
            FileInfo(name="garbage", path=f"{ROOT}/garbage", size=0, is_directory=True),
        ]
        mock_connection.read_file.side_effect = [
            good.to_json(),
            FileTransferError("not found", retryable=False),
            "{ not json",
        ]

        jobs = await discover_jobs_from_server(mock_connection, "testuser", "/projects")

        assert [j.job_id for j in jobs] == ["good_job"]
        assert mock_connection.read_file.call_args_list[0].args[0] == f"{ROOT}/good_job/job_info.json"


class TestProgressCallbacks:
    """Test the bundled progress callbacks."""

    def test_callbacks_satisfy_protocol(self):
        for callback in (NullProgressCallback(), CollectingProgressCallback(), LoggingProgressCallback()):
            assert isinstance(callback, ProgressCallback)

    def test_collecting(self):
        callback = CollectingProgressCallback()
        callback.on_progress("one")
        callback.on_progress("two")
        assert callback.messages == ["one", "two"]

    def test_logging(self, caplog):
        callback = LoggingProgressCallback(level=logging.WARNING)
        with caplog.at_level(logging.WARNING):
            callback.on_progress("uploading x.pdb")
        assert "uploading x.pdb" in caplog.text
