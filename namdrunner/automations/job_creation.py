"""
Create automation.

Builds the project directory on the cluster, uploads the input files,
renders the NAMD config and SLURM script, and records the job as
``CREATED``. The scratch directory is left unset; it is computed fresh at
each submission.

A failure part-way through leaves whatever was already uploaded in place.
Re-running create makes a new job id, so the stale directory can be
removed with ``delete_job`` or by hand.
"""

import logging
import re
from dataclasses import dataclass, field
from pathlib import PurePath
from typing import Any, Dict, List

from ..core.exceptions import FileOperationError, ValidationError
from ..core.metadata import upload_job_metadata
from ..core.paths import JobPaths, config_path, generate_job_id, input_file_path, script_path
from ..core.templates import file_basename
from ..core.validation import sanitize_job_name
from ..models import InputFile, JobInfo, JobStatus, SlurmConfig, utc_now
from ..protocols import ProgressCallback
from ..slurm.script_generator import SlurmScriptGenerator
from .common import AutomationContext, remote_step, require_username

logger = logging.getLogger(__name__)

_UPLOAD_NAME_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]*$", re.ASCII)


@dataclass
class CreateJobParams:
    job_name: str
    template_id: str
    template_values: Dict[str, Any] = field(default_factory=dict)
    slurm_config: SlurmConfig = field(default_factory=SlurmConfig)


@dataclass
class CreateJobResult:
    job: JobInfo
    uploaded_files: List[str] = field(default_factory=list)


async def create_job(
    ctx: AutomationContext, params: CreateJobParams, progress: ProgressCallback
) -> CreateJobResult:
    """
    Create a job on the cluster and in the local store.

    Raises:
        ValidationError: Bad name, template, values or resources, or no session
        FileOperationError: Directory creation or an upload failed
        DatabaseError: The local store could not save the record
    """
    progress.on_progress("Validating job name")
    sanitize_job_name(params.job_name)

    progress.on_progress("Checking cluster connection")
    username = require_username(ctx)

    job_id = generate_job_id(params.job_name)
    if ctx.store.load(job_id) is not None:
        raise ValidationError(f"Job id {job_id} already exists", operation="job_id", target=job_id)
    paths = JobPaths.from_settings(username, job_id, ctx.settings.paths)
    project_dir = paths.project_dir

    template = ctx.templates.get(params.template_id)
    values = {
        key: str(value) if isinstance(value, PurePath) else value
        for key, value in params.template_values.items()
    }
    errors = template.validate_values(values)
    script_generator = SlurmScriptGenerator(ctx.settings.slurm)
    errors.extend(script_generator.validate(params.slurm_config))
    if errors:
        raise ValidationError(
            f"Invalid job parameters: {'; '.join(errors)}",
            operation="template_values",
            target=params.template_id,
        )

    uploads = _plan_uploads(template.file_variables(), values)

    progress.on_progress(f"Creating project directory {project_dir}")
    with remote_step(FileOperationError, "Failed to create project directory", "copy", project_dir):
        await ctx.connection.create_directory(project_dir)
        for subdir in paths.project_subdirectories():
            await ctx.connection.create_directory(subdir)

    input_files = []
    for local_path, filename in uploads:
        progress.on_progress(f"Uploading {filename}")
        remote = input_file_path(project_dir, filename)
        with remote_step(FileOperationError, f"Failed to upload {filename}", "upload", local_path):
            size = await ctx.connection.upload_file(local_path, remote)
        input_files.append(
            InputFile(name=filename, local_path=local_path, remote_name=filename, size=size)
        )

    progress.on_progress("Rendering NAMD configuration")
    config_text = template.render(values)

    now = utc_now()
    job = JobInfo(
        job_id=job_id,
        job_name=params.job_name,
        status=JobStatus.CREATED,
        created_at=now,
        updated_at=now,
        project_dir=project_dir,
        scratch_dir=None,
        template_id=template.id,
        template_values=values,
        slurm_config=params.slurm_config,
        input_files=input_files,
    )

    progress.on_progress("Saving job record")
    ctx.store.save(job)

    progress.on_progress("Uploading job script and metadata")
    script = script_generator.generate(job)
    with remote_step(FileOperationError, "Failed to upload job files", "upload", project_dir):
        await ctx.connection.upload_bytes(config_text.encode("utf-8"), config_path(project_dir))
        await ctx.connection.upload_bytes(script.encode("utf-8"), script_path(project_dir))
    await upload_job_metadata(ctx.connection, job)

    logger.info(f"Created job {job_id} in {project_dir}")
    progress.on_progress(f"Job {job_id} created")
    return CreateJobResult(job=job, uploaded_files=[f.name for f in input_files])


def _plan_uploads(file_variables, values: Dict[str, Any]) -> List[tuple]:
    """(local path, remote filename) for every bound file variable."""
    uploads = []
    seen: Dict[str, str] = {}
    for var in file_variables:
        local = values.get(var.key)
        if not local:
            continue
        filename = file_basename(local)
        if not _UPLOAD_NAME_PATTERN.match(filename):
            raise ValidationError(
                f"Input file name {filename!r} may only contain letters, digits, '.', '_' and '-'",
                operation=var.key,
                target=str(local),
            )
        if filename in seen:
            raise ValidationError(
                f"Variables '{seen[filename]}' and '{var.key}' both upload {filename}",
                operation=var.key,
                target=filename,
            )
        seen[filename] = var.key
        uploads.append((str(local), filename))
    return uploads
