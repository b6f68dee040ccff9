"""Submit automation: mirror project to a fresh scratch directory and sbatch."""

import logging
import posixpath
from dataclasses import dataclass

from ..core.config import SBATCH_FILENAME, SCRIPTS_DIR
from ..core.exceptions import FileOperationError, SlurmError, ValidationError
from ..core.metadata import upload_job_metadata
from ..core.paths import JobPaths
from ..models import JobInfo, JobStatus, utc_now
from ..protocols import ProgressCallback
from .common import AutomationContext, load_job, remote_step, require_username

logger = logging.getLogger(__name__)

SCRIPT_RELATIVE_PATH = posixpath.join(SCRIPTS_DIR, SBATCH_FILENAME)


@dataclass
class SubmitJobResult:
    job: JobInfo
    slurm_job_id: str


async def submit_job(
    ctx: AutomationContext, job_id: str, progress: ProgressCallback
) -> SubmitJobResult:
    """
    Submit a CREATED or FAILED job to SLURM.

    Any other status is rejected before anything is touched, which is what
    prevents a job from being queued twice.

    Raises:
        ValidationError: Wrong status, missing project directory, or no session
        FileOperationError: Mirroring to scratch failed
        SlurmError: sbatch failed or returned no job id
    """
    progress.on_progress(f"Loading job {job_id}")
    job = load_job(ctx, job_id)
    if not job.status.can_submit:
        raise ValidationError(
            f"Job {job_id} cannot be submitted from status {job.status.value}",
            operation="status",
            target=job_id,
        )
    if not job.project_dir:
        raise ValidationError(
            f"Job {job_id} has no project directory", operation="project_dir", target=job_id
        )

    progress.on_progress("Checking cluster connection")
    username = require_username(ctx)
    scratch_dir = JobPaths.from_settings(username, job.job_id, ctx.settings.paths).scratch_dir

    progress.on_progress(f"Copying job files to scratch ({scratch_dir})")
    with remote_step(FileOperationError, "Failed to copy job to scratch", "copy", scratch_dir):
        await ctx.connection.sync_directory_mirror(job.project_dir, scratch_dir)

    progress.on_progress("Submitting to SLURM")
    with remote_step(SlurmError, "Job submission failed", "submit", job_id):
        slurm_job_id = await ctx.slurm.submit(scratch_dir, SCRIPT_RELATIVE_PATH)

    now = utc_now()
    job.scratch_dir = scratch_dir
    job.slurm_job_id = slurm_job_id
    job.submitted_at = now
    job.error_info = None
    job.slurm_stdout = None
    job.slurm_stderr = None
    job.output_files = []
    job.transition_to(JobStatus.PENDING, now)

    progress.on_progress("Saving job record")
    ctx.store.save(job)

    progress.on_progress("Uploading metadata")
    await upload_job_metadata(ctx.connection, job)

    logger.info(f"Job {job_id} submitted as SLURM job {slurm_job_id}")
    progress.on_progress(f"Job {job_id} submitted (SLURM id {slurm_job_id})")
    return SubmitJobResult(job=job, slurm_job_id=slurm_job_id)
