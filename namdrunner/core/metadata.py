"""
Remote ``job_info.json`` handling.

The metadata file is a full JSON copy of the job record, written to the
project directory whenever an automation changes the job. It lets a fresh
client rebuild its local store from the server.
"""

import logging
from typing import List

from pydantic import ValidationError as PydanticValidationError

from ..models import JobInfo
from .config import METADATA_FILENAME
from .connection_manager import ConnectionManager
from .exceptions import FileOperationError, FileTransferError, NamdRunnerError
from .paths import metadata_path, project_jobs_root

logger = logging.getLogger(__name__)


async def upload_job_metadata(connection: ConnectionManager, job: JobInfo) -> str:
    """
    Write ``job_info.json`` into the job's project directory.

    Returns:
        Remote path written

    Raises:
        FileOperationError: Job has no project directory or the upload failed
    """
    if not job.project_dir:
        raise FileOperationError(
            f"Job {job.job_id} has no project directory",
            operation="upload",
            target=job.job_id,
        )
    remote = metadata_path(job.project_dir)
    try:
        await connection.upload_bytes(job.to_json().encode("utf-8"), remote)
    except NamdRunnerError as e:
        raise FileOperationError(
            f"Failed to upload metadata for job {job.job_id}",
            operation="upload",
            target=remote,
            details=str(e),
        ) from e
    logger.debug(f"Uploaded metadata for {job.job_id} to {remote}")
    return remote


async def discover_jobs_from_server(
    connection: ConnectionManager, username: str, project_base: str
) -> List[JobInfo]:
    """
    Rebuild job records from ``job_info.json`` files on the server.

    Directories without a readable, valid metadata file are logged and
    skipped.
    """
    root = project_jobs_root(project_base, username)
    try:
        entries = await connection.list_files(root)
    except FileTransferError as e:
        if not e.retryable:
            logger.info(f"No job directory on server yet ({root})")
            return []
        raise

    jobs = []
    for entry in entries:
        if not entry.is_directory:
            continue
        try:
            content = await connection.read_file(metadata_path(entry.path))
            job = JobInfo.from_json(content)
        except (NamdRunnerError, PydanticValidationError) as e:
            logger.warning(f"Skipping {entry.path}: no usable {METADATA_FILENAME} ({e})")
            continue
        if job.job_id != entry.name:
            logger.warning(
                f"Skipping {entry.path}: metadata job_id {job.job_id!r} does not match directory"
            )
            continue
        jobs.append(job)

    logger.info(f"Discovered {len(jobs)} jobs under {root}")
    return jobs
