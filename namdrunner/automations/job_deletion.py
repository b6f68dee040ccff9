"""
Delete automation.

Order matters: cancel the SLURM job first, then delete remote directories,
and remove the local record last so a crash part-way through never loses
track of remote resources.
"""

import logging
import posixpath
from dataclasses import dataclass, field
from typing import List

from ..core.exceptions import FileOperationError, SlurmError, ValidationError
from ..core.validation import validate_deletion_path
from ..models import JobInfo, JobStatus
from ..protocols import ProgressCallback
from .common import AutomationContext, load_job, remote_step, require_username

logger = logging.getLogger(__name__)


@dataclass
class DeleteJobResult:
    job_id: str
    cancelled: bool = False
    deleted_directories: List[str] = field(default_factory=list)


def gate_job_directories(job: JobInfo) -> List[str]:
    """
    Validate every remote directory of ``job`` before any of them is deleted.

    Each path must pass ``validate_deletion_path`` and end in the job's own id.
    """
    approved = []
    for label, path in (("project", job.project_dir), ("scratch", job.scratch_dir)):
        if not path:
            continue
        normalized = validate_deletion_path(path)
        if posixpath.basename(normalized) != job.job_id:
            raise ValidationError(
                f"Refusing to delete {label} directory {path}: it does not belong to job {job.job_id}",
                operation="delete",
                target=path,
            )
        approved.append(normalized)
    return approved


async def delete_job(
    ctx: AutomationContext,
    job_id: str,
    delete_remote_files: bool,
    progress: ProgressCallback,
) -> DeleteJobResult:
    """
    Delete a job, optionally with its remote directories.

    Raises:
        SlurmError: Cancelling an active job failed; nothing was deleted
        ValidationError: A directory failed the safety gate; nothing was deleted
        FileOperationError: A remote delete failed; the local record is kept
    """
    progress.on_progress(f"Loading job {job_id}")
    job = load_job(ctx, job_id)
    result = DeleteJobResult(job_id=job_id)

    if job.status.is_active and job.slurm_job_id:
        require_username(ctx)
        progress.on_progress(f"Cancelling SLURM job {job.slurm_job_id}")
        with remote_step(SlurmError, "Failed to cancel SLURM job", "cancel", job.slurm_job_id):
            await ctx.slurm.cancel(job.slurm_job_id)
        job.transition_to(JobStatus.CANCELLED)
        ctx.store.save(job)
        result.cancelled = True

    if delete_remote_files:
        directories = gate_job_directories(job)
        if directories:
            require_username(ctx)
        for directory in directories:
            progress.on_progress(f"Deleting {directory}")
            with remote_step(FileOperationError, "Failed to delete remote directory", "delete", directory):
                await ctx.connection.delete_directory(directory)
            result.deleted_directories.append(directory)

    progress.on_progress("Removing local job record")
    ctx.store.delete(job.job_id)
    logger.info(
        f"Deleted job {job_id} (cancelled={result.cancelled}, "
        f"remote directories removed={len(result.deleted_directories)})"
    )
    progress.on_progress(f"Job {job_id} deleted")
    return result
