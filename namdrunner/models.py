"""
Data models for NAMDRunner job orchestration.

The persisted job record (``JobInfo``) and its substructures are pydantic
models so the same schema drives the local store and the remote
``job_info.json`` metadata file. Transport-level results produced by the
connection manager are plain dataclasses.

Schema notes:
- Field names use snake_case
- Timestamps are timezone-aware UTC, serialized as ISO-8601
- Optional fields serialize as null (not omitted)
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


class JobStatus(str, Enum):
    """
    Canonical job lifecycle state.

    Created -> Pending -> Running -> {Completed | Failed | Cancelled}
    """

    CREATED = "CREATED"
    PENDING = "PENDING"
    RUNNING = "RUNNING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES

    @property
    def is_active(self) -> bool:
        """True while the scheduler owns the job (queued or running)."""
        return self in ACTIVE_STATUSES

    @property
    def can_submit(self) -> bool:
        return self in SUBMITTABLE_STATUSES

    @property
    def rank(self) -> int:
        """Position along the lifecycle; terminal states share the last rank."""
        return _STATUS_RANK[self]


TERMINAL_STATUSES = frozenset(
    {JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED}
)
ACTIVE_STATUSES = frozenset({JobStatus.PENDING, JobStatus.RUNNING})
SUBMITTABLE_STATUSES = frozenset({JobStatus.CREATED, JobStatus.FAILED})

_STATUS_RANK: Dict[JobStatus, int] = {
    JobStatus.CREATED: 0,
    JobStatus.PENDING: 1,
    JobStatus.RUNNING: 2,
    JobStatus.COMPLETED: 3,
    JobStatus.FAILED: 3,
    JobStatus.CANCELLED: 3,
}


def is_forward_transition(current: JobStatus, new: JobStatus) -> bool:
    """
    Check whether moving from ``current`` to ``new`` respects the lifecycle.

    Staying in place is allowed. Resubmitting a failed job restarts the
    cycle at Pending, which is the only permitted backward step.
    """
    if current == new:
        return True
    if current == JobStatus.FAILED and new == JobStatus.PENDING:
        return True
    if current.is_terminal:
        return False
    return new.rank > current.rank


class SlurmConfig(BaseModel):
    """Resource request for a SLURM job."""

    model_config = ConfigDict(extra="forbid")

    cores: int = Field(default=24, ge=1, le=4096, description="Cores per node")
    memory: str = Field(default="16GB", description="Memory request (e.g. 16GB, 512M)")
    walltime: str = Field(default="24:00:00", description="Wall time limit (HH:MM:SS)")
    partition: Optional[str] = Field(default=None, description="SLURM partition")
    qos: Optional[str] = Field(default=None, description="SLURM quality of service")


class InputFile(BaseModel):
    """An input file declared by a job, relative to ``input_files/``."""

    model_config = ConfigDict(extra="forbid")

    name: str
    local_path: Optional[str] = None
    remote_name: Optional[str] = None
    size: Optional[int] = None

    @field_validator("name")
    @classmethod
    def name_is_bare(cls, v: str) -> str:
        if not v or "/" in v or "\\" in v or v in (".", ".."):
            raise ValueError(f"input file name must be a bare filename, got '{v}'")
        return v


class OutputFile(BaseModel):
    """A file found under ``outputs/`` after completion."""

    model_config = ConfigDict(extra="forbid")

    name: str
    size: int = 0
    modified_at: Optional[datetime] = None


class JobInfo(BaseModel):
    """
    Durable record of one job.

    Serialized as-is into the local store and into the remote
    ``{project_dir}/job_info.json`` metadata file.
    """

    model_config = ConfigDict(extra="forbid", validate_assignment=True)

    job_id: str = Field(..., min_length=1, max_length=64)
    job_name: str
    status: JobStatus = JobStatus.CREATED
    slurm_job_id: Optional[str] = None

    created_at: datetime = Field(default_factory=utc_now)
    updated_at: Optional[datetime] = None
    submitted_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    project_dir: Optional[str] = None
    scratch_dir: Optional[str] = None

    template_id: str = ""
    template_values: Dict[str, Any] = Field(default_factory=dict)
    slurm_config: SlurmConfig = Field(default_factory=SlurmConfig)
    input_files: List[InputFile] = Field(default_factory=list)
    output_files: List[OutputFile] = Field(default_factory=list)

    slurm_stdout: Optional[str] = None
    slurm_stderr: Optional[str] = None
    error_info: Optional[str] = None

    def transition_to(self, new_status: JobStatus, now: Optional[datetime] = None) -> None:
        """
        Move the job to ``new_status``, stamping ``updated_at`` and, for
        terminal states, ``completed_at``.

        Raises:
            ValueError: If the transition would move the job backward.
        """
        if not is_forward_transition(self.status, new_status):
            raise ValueError(
                f"Invalid status transition for job {self.job_id}: "
                f"{self.status.value} -> {new_status.value}"
            )
        now = now or utc_now()
        self.status = new_status
        self.updated_at = now
        if new_status.is_terminal:
            self.completed_at = now
        elif new_status == JobStatus.PENDING:
            self.completed_at = None

    def to_json(self) -> str:
        """Serialize to the metadata-file JSON form."""
        return self.model_dump_json(indent=2)

    @classmethod
    def from_json(cls, data: str) -> "JobInfo":
        return cls.model_validate_json(data)


# ========== Transport results ==========


@dataclass
class SessionInfo:
    """Details about the live remote session."""

    host: str
    port: int
    username: str
    connected_at: datetime


@dataclass
class CommandResult:
    """Outcome of a remote command. A non-zero exit code is not an error."""

    stdout: str
    stderr: str
    exit_code: int
    duration_ms: int
    timed_out: bool = False

    @property
    def ok(self) -> bool:
        return self.exit_code == 0 and not self.timed_out


@dataclass
class FileInfo:
    """Remote directory entry."""

    name: str
    path: str
    size: int
    is_directory: bool
    modified_at: Optional[datetime] = None
    permissions: Optional[int] = None


@dataclass
class TransferProgress:
    """Cumulative progress of a single file transfer."""

    bytes_transferred: int
    total_bytes: int
    elapsed_seconds: float

    @property
    def percentage(self) -> float:
        if self.total_bytes <= 0:
            return 100.0
        return min(100.0, self.bytes_transferred * 100.0 / self.total_bytes)

    @property
    def bytes_per_second(self) -> float:
        if self.elapsed_seconds <= 0:
            return 0.0
        return self.bytes_transferred / self.elapsed_seconds
