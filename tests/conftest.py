"""Shared fixtures for NAMDRunner tests."""

from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock, Mock

import pytest

from namdrunner.automations.common import AutomationContext
from namdrunner.automations.progress import CollectingProgressCallback
from namdrunner.core.config import Settings, Timeouts
from namdrunner.core.connection_manager import ConnectionManager
from namdrunner.core.database import InMemoryJobStore
from namdrunner.core.templates import Template, TemplateRegistry
from namdrunner.models import CommandResult, JobInfo, JobStatus, SessionInfo, SlurmConfig


def command_result(stdout: str = "", stderr: str = "", exit_code: int = 0) -> CommandResult:
    return CommandResult(stdout=stdout, stderr=stderr, exit_code=exit_code, duration_ms=5)


def make_ssh_connection():
    """Create a mock asyncssh connection."""
    conn = MagicMock()
    conn.is_closed.return_value = False
    conn.run = AsyncMock(return_value=MagicMock(exit_status=0, stdout="ok\n", stderr=""))
    conn.close = MagicMock()
    conn.wait_closed = AsyncMock()
    return conn


def attach_sftp(conn):
    """Give a mock connection an SFTP client; returns (sftp, remote_file)."""
    remote_file = MagicMock()
    remote_file.write = AsyncMock()
    remote_file.read = AsyncMock(return_value=b"")

    file_cm = MagicMock()
    file_cm.__aenter__ = AsyncMock(return_value=remote_file)
    file_cm.__aexit__ = AsyncMock(return_value=False)

    sftp = MagicMock()
    sftp.open = MagicMock(return_value=file_cm)
    sftp.stat = AsyncMock()
    sftp.readdir = AsyncMock(return_value=[])

    sftp_cm = MagicMock()
    sftp_cm.__aenter__ = AsyncMock(return_value=sftp)
    sftp_cm.__aexit__ = AsyncMock(return_value=False)
    conn.start_sftp_client = AsyncMock(return_value=sftp_cm)
    return sftp, remote_file


def connected_manager(conn=None, username: str = "testuser") -> ConnectionManager:
    """A ConnectionManager holding a mock live session."""
    manager = ConnectionManager()
    manager._conn = conn or make_ssh_connection()
    manager._info = SessionInfo(
        host="login.example.edu",
        port=22,
        username=username,
        connected_at=datetime.now(timezone.utc),
    )
    return manager


@pytest.fixture
def mock_connection():
    """Mock ConnectionManager for automation tests."""
    manager = Mock(spec=ConnectionManager)
    manager.timeouts = Timeouts()
    manager.is_connected = Mock(return_value=True)
    manager.get_username = Mock(return_value="testuser")
    manager.execute_command = AsyncMock(return_value=command_result())
    manager.create_directory = AsyncMock()
    manager.delete_directory = AsyncMock()
    manager.upload_file = AsyncMock(return_value=1024)
    manager.upload_bytes = AsyncMock(return_value=256)
    manager.sync_directory_mirror = AsyncMock(return_value=command_result())
    manager.list_files = AsyncMock(return_value=[])
    manager.read_file = AsyncMock(return_value="")
    manager.file_exists = AsyncMock(return_value=True)
    manager.download_file = AsyncMock(return_value=2048)
    return manager


@pytest.fixture
def single_file_template():
    return Template.from_dict(
        {
            "id": "single_file",
            "name": "Single file",
            "variables": {
                "coordinates": {"type": "file", "extensions": [".pdb"]},
                "steps": {"type": "number", "default": 1000, "min": 1},
            },
            "config_template": "coordinates {{ coordinates }}\nrun {{ steps }}\n",
        }
    )


@pytest.fixture
def store():
    return InMemoryJobStore()


@pytest.fixture
def progress():
    return CollectingProgressCallback()


@pytest.fixture
def ctx(mock_connection, store, single_file_template):
    registry = TemplateRegistry(include_builtin=False)
    registry.register(single_file_template)
    return AutomationContext(
        connection=mock_connection, store=store, templates=registry, settings=Settings()
    )


@pytest.fixture
def make_job():
    """Factory for stored job records in a given state."""

    def _make(job_id: str = "alpha_20250101_120000_000001", status: JobStatus = JobStatus.CREATED, **kwargs):
        defaults = dict(
            job_id=job_id,
            job_name="alpha",
            status=status,
            project_dir=f"/projects/testuser/namdrunner_jobs/{job_id}",
            template_id="single_file",
            slurm_config=SlurmConfig(cores=4, memory="8GB", walltime="01:00:00"),
        )
        defaults.update(kwargs)
        return JobInfo(**defaults)

    return _make
