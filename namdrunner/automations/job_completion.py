"""Complete automation: preserve results from scratch into the project directory."""

import logging
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

from ..core.connection_manager import ConnectionManager
from ..core.exceptions import FileOperationError, FileTransferError, NamdRunnerError, ValidationError
from ..core.metadata import upload_job_metadata
from ..core.paths import outputs_dir, slurm_log_paths
from ..models import JobInfo, OutputFile, utc_now
from ..protocols import ProgressCallback
from ..slurm.script_generator import slurm_job_name
from .common import AutomationContext, load_job, remote_step, require_username

logger = logging.getLogger(__name__)

# Cached logs keep only the tail of very long files
MAX_CACHED_LOG_CHARS = 256 * 1024


@dataclass
class CompleteJobResult:
    job: JobInfo
    output_files: List[str] = field(default_factory=list)
    logs_fetched: bool = False


async def complete_job(
    ctx: AutomationContext, job_id: str, progress: ProgressCallback
) -> CompleteJobResult:
    """
    Copy a finished job's scratch directory back into its project directory.

    Raises:
        ValidationError: Job not finished, directories unknown, or no session
        FileOperationError: The scratch-to-project copy or metadata upload failed
    """
    progress.on_progress(f"Loading job {job_id}")
    job = load_job(ctx, job_id)
    if not job.status.is_terminal:
        raise ValidationError(
            f"Job {job_id} has not finished (status {job.status.value})",
            operation="status",
            target=job_id,
        )

    progress.on_progress("Checking cluster connection")
    require_username(ctx)
    if not job.project_dir or not job.scratch_dir:
        raise ValidationError(
            f"Job {job_id} has no project or scratch directory recorded",
            operation="scratch_dir",
            target=job_id,
        )

    logs_fetched = await collect_job_results(ctx, job, progress)

    job.updated_at = utc_now()
    progress.on_progress("Saving job record")
    ctx.store.save(job)
    await upload_job_metadata(ctx.connection, job)

    logger.info(f"Completed job {job_id}: {len(job.output_files)} output files")
    progress.on_progress(f"Results for job {job_id} saved to {job.project_dir}")
    return CompleteJobResult(
        job=job, output_files=[f.name for f in job.output_files], logs_fetched=logs_fetched
    )


async def collect_job_results(
    ctx: AutomationContext, job: JobInfo, progress: ProgressCallback
) -> bool:
    """
    Mirror scratch into the project directory, then cache logs and list outputs.

    Updates ``job`` in place without saving it. Only the mirror is fatal;
    log and output lookups fail with a warning.

    Returns:
        True if at least one SLURM log was newly cached
    """
    progress.on_progress("Copying results from scratch to project directory")
    with remote_step(FileOperationError, "Failed to copy results", "copy", job.project_dir or ""):
        await ctx.connection.sync_directory_mirror(job.scratch_dir, job.project_dir)

    logs_fetched = False
    if job.slurm_job_id and (job.slurm_stdout is None or job.slurm_stderr is None):
        progress.on_progress("Fetching SLURM logs")
        try:
            stdout, stderr = await fetch_slurm_logs(ctx.connection, job)
        except NamdRunnerError as e:
            logger.warning(f"Could not fetch SLURM logs for job {job.job_id}: {e}")
        else:
            job.slurm_stdout = job.slurm_stdout if job.slurm_stdout is not None else stdout
            job.slurm_stderr = job.slurm_stderr if job.slurm_stderr is not None else stderr
            logs_fetched = stdout is not None or stderr is not None

    progress.on_progress("Listing output files")
    try:
        entries = await ctx.connection.list_files(outputs_dir(job.project_dir))
    except NamdRunnerError as e:
        logger.warning(f"Could not list outputs for job {job.job_id}: {e}")
    else:
        job.output_files = [
            OutputFile(name=entry.name, size=entry.size, modified_at=entry.modified_at)
            for entry in entries
            if not entry.is_directory
        ]
    return logs_fetched


async def refetch_slurm_logs(
    ctx: AutomationContext, job_id: str, progress: ProgressCallback
) -> JobInfo:
    """
    Re-read a job's SLURM logs from the cluster, replacing the cached copies.

    A log that is missing on the cluster is cached as an empty string.

    Raises:
        ValidationError: Job unknown, never submitted, or no session
        FileOperationError: The logs could not be read
    """
    job = load_job(ctx, job_id)
    require_username(ctx)
    if not job.project_dir or not job.slurm_job_id:
        raise ValidationError(
            f"Job {job_id} has no SLURM logs to fetch (never submitted)",
            operation="slurm_job_id",
            target=job_id,
        )

    progress.on_progress(f"Refetching SLURM logs for job {job_id}")
    with remote_step(FileOperationError, "Failed to read SLURM logs", "download", job.project_dir):
        stdout, stderr = await fetch_slurm_logs(ctx.connection, job)

    job.slurm_stdout = stdout or ""
    job.slurm_stderr = stderr or ""
    job.updated_at = utc_now()
    ctx.store.save(job)
    logger.info(
        f"Refetched logs for job {job_id} "
        f"({len(job.slurm_stdout)} bytes stdout, {len(job.slurm_stderr)} bytes stderr)"
    )
    return job


async def fetch_slurm_logs(
    connection: ConnectionManager, job: JobInfo
) -> Tuple[Optional[str], Optional[str]]:
    """
    Read ``{name}_{slurm_id}.out`` and ``.err`` from the project directory.

    A log that does not exist yet comes back as None.
    """
    if not job.project_dir or not job.slurm_job_id:
        return None, None
    out_path, err_path = slurm_log_paths(job.project_dir, slurm_job_name(job), job.slurm_job_id)
    return await _read_optional(connection, out_path), await _read_optional(connection, err_path)


async def _read_optional(connection: ConnectionManager, path: str) -> Optional[str]:
    try:
        text = await connection.read_file(path)
    except FileTransferError as e:
        if e.retryable:
            raise
        return None
    return text[-MAX_CACHED_LOG_CHARS:]
