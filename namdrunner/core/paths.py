"""Remote directory layout for jobs."""

import posixpath
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from .config import (
    CONFIG_FILENAME,
    INPUT_FILES_DIR,
    JOB_ROOT_MARKER,
    JOB_SUBDIRECTORIES,
    METADATA_FILENAME,
    OUTPUTS_DIR,
    PathSettings,
    SBATCH_FILENAME,
    SCRIPTS_DIR,
)
from .validation import MAX_JOB_ID_LENGTH, sanitize_job_id, sanitize_job_name, sanitize_username

_TIMESTAMP_FORMAT = "%Y%m%d_%H%M%S_%f"


def ensure_trailing_slash(path: str) -> str:
    """Mirroring source form: copy the *contents* of ``path``."""
    return path if path.endswith("/") else path + "/"


def generate_job_id(name: str, now: Optional[datetime] = None) -> str:
    """
    Build a unique job id from a display name and a microsecond timestamp.

    The name stem is truncated so the result fits the 64-character limit.
    """
    stem = sanitize_job_name(name)
    stamp = (now or datetime.now()).strftime(_TIMESTAMP_FORMAT)
    room = MAX_JOB_ID_LENGTH - len(stamp) - 1
    stem = stem[:room].rstrip("_-") or "job"
    return sanitize_job_id(f"{stem}_{stamp}")


@dataclass(frozen=True)
class JobPaths:
    """Paths for one job on one cluster account."""

    username: str
    job_id: str
    project_base: str = "/projects"
    scratch_base: str = "/scratch/alpine"

    def __post_init__(self) -> None:
        sanitize_username(self.username)
        sanitize_job_id(self.job_id)

    @classmethod
    def from_settings(cls, username: str, job_id: str, paths: PathSettings) -> "JobPaths":
        return cls(
            username=username,
            job_id=job_id,
            project_base=paths.project_base,
            scratch_base=paths.scratch_base,
        )

    @property
    def project_root(self) -> str:
        return project_jobs_root(self.project_base, self.username)

    @property
    def project_dir(self) -> str:
        return posixpath.join(self.project_root, self.job_id)

    @property
    def scratch_dir(self) -> str:
        return posixpath.join(
            self.scratch_base.rstrip("/"), self.username, JOB_ROOT_MARKER, self.job_id
        )

    def project_subdirectories(self) -> list[str]:
        return [posixpath.join(self.project_dir, d) for d in JOB_SUBDIRECTORIES]


def project_jobs_root(project_base: str, username: str) -> str:
    """``{project_base}/{user}/namdrunner_jobs``"""
    return posixpath.join(project_base.rstrip("/"), username, JOB_ROOT_MARKER)


def input_file_path(job_dir: str, filename: str) -> str:
    return posixpath.join(job_dir, INPUT_FILES_DIR, filename)


def input_file_reference(filename: str) -> str:
    """How a config file refers to an uploaded input, relative to the job root."""
    return f"{INPUT_FILES_DIR}/{filename}"


def script_path(job_dir: str) -> str:
    return posixpath.join(job_dir, SCRIPTS_DIR, SBATCH_FILENAME)


def config_path(job_dir: str) -> str:
    return posixpath.join(job_dir, SCRIPTS_DIR, CONFIG_FILENAME)


def metadata_path(job_dir: str) -> str:
    return posixpath.join(job_dir, METADATA_FILENAME)


def outputs_dir(job_dir: str) -> str:
    return posixpath.join(job_dir, OUTPUTS_DIR)


def slurm_log_paths(job_dir: str, job_name: str, slurm_job_id: str) -> tuple[str, str]:
    """(stdout, stderr) log paths as written by ``--output=<name>_%j.out``."""
    base = posixpath.join(job_dir, f"{job_name}_{slurm_job_id}")
    return f"{base}.out", f"{base}.err"
