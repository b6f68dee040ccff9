"""File automation: fetch individual files from a job's project directory."""

import logging
import posixpath
from dataclasses import dataclass
from pathlib import Path
from typing import Union

from ..core.exceptions import FileOperationError, ValidationError
from ..core.validation import validate_relative_file_path, validate_remote_path
from ..protocols import ProgressCallback
from .common import AutomationContext, load_job, remote_step, require_username

logger = logging.getLogger(__name__)


@dataclass
class DownloadJobFileResult:
    remote_path: str
    saved_to: Path
    size: int


async def download_job_file(
    ctx: AutomationContext,
    job_id: str,
    file_path: str,
    local_destination: Union[str, Path],
    progress: ProgressCallback,
) -> DownloadJobFileResult:
    """
    Download one file from a job's project directory.

    Args:
        file_path: Path relative to the project directory, e.g.
            ``outputs/run.dcd`` or ``my_run_123.out``
        local_destination: Local file to write

    Raises:
        ValidationError: Bad path, unknown job, or no session
        FileOperationError: The file does not exist or the transfer failed
    """
    relative = validate_relative_file_path(file_path)
    job = load_job(ctx, job_id)
    require_username(ctx)
    if not job.project_dir:
        raise ValidationError(
            f"Job {job_id} has no project directory recorded",
            operation="project_dir",
            target=job_id,
        )

    remote_path = validate_remote_path(posixpath.join(job.project_dir, relative))
    local = Path(local_destination)

    progress.on_progress(f"Checking {relative} exists")
    with remote_step(FileOperationError, f"Failed to check {relative}", "download", remote_path):
        exists = await ctx.connection.file_exists(remote_path)
    if not exists:
        raise FileOperationError(
            f"File '{relative}' not found in job {job_id}",
            operation="download",
            target=remote_path,
        )

    progress.on_progress(f"Downloading {relative}")
    with remote_step(FileOperationError, f"Failed to download {relative}", "download", remote_path):
        size = await ctx.connection.download_file(remote_path, local)

    logger.info(f"Downloaded {remote_path} to {local} ({size} bytes)")
    progress.on_progress(f"Saved {relative} to {local}")
    return DownloadJobFileResult(remote_path=remote_path, saved_to=local, size=size)
