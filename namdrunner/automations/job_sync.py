"""
Sync automation: reconcile local job status with SLURM.

One batched status query covers every active job. Each job is then
reconciled on its own; a failure for one job is recorded in the report
and never stops the others. Jobs that reach a terminal state have their
results copied back from scratch. Result collection and metadata re-upload
are best-effort.
"""

import logging
from dataclasses import dataclass, field
from typing import List, Tuple

from ..core.database import load_jobs_by_status
from ..core.exceptions import NamdRunnerError, SlurmError, ValidationError
from ..core.metadata import discover_jobs_from_server, upload_job_metadata
from ..models import ACTIVE_STATUSES, JobInfo, JobStatus, is_forward_transition
from ..protocols import ProgressCallback
from ..slurm.commands import validate_slurm_job_id
from .common import AutomationContext, remote_step, require_username
from .job_completion import collect_job_results

logger = logging.getLogger(__name__)


@dataclass
class JobStatusChange:
    job_id: str
    old_status: JobStatus
    new_status: JobStatus


@dataclass
class JobSyncFailure:
    job_id: str
    message: str


@dataclass
class SyncReport:
    """Per-job outcome of a sync run."""

    checked: int = 0
    discovered: int = 0
    changes: List[JobStatusChange] = field(default_factory=list)
    failures: List[JobSyncFailure] = field(default_factory=list)
    metadata_failures: List[str] = field(default_factory=list)
    completed: List[str] = field(default_factory=list)
    completion_failures: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failures


async def sync_all_jobs(ctx: AutomationContext, progress: ProgressCallback) -> SyncReport:
    """
    Refresh the status of every PENDING or RUNNING job.

    When the local store is empty, jobs are first imported from the
    server's ``job_info.json`` files.

    Raises:
        ValidationError: No session
        SlurmError: The batched squeue/sacct query itself failed
    """
    report = SyncReport()
    username = require_username(ctx)

    if not ctx.store.load_all():
        progress.on_progress("Local job list is empty, scanning server for jobs")
        with remote_step(SlurmError, "Job discovery failed", "status"):
            discovered = await discover_jobs_from_server(
                ctx.connection, username, ctx.settings.paths.project_base
            )
        for job in discovered:
            ctx.store.save(job)
        report.discovered = len(discovered)
        if discovered:
            progress.on_progress(f"Imported {len(discovered)} jobs from server")

    active = load_jobs_by_status(ctx.store, ACTIVE_STATUSES)
    if not active:
        progress.on_progress("No active jobs to sync")
        return report

    trackable: List[Tuple[JobInfo, str]] = []
    for job in active:
        if not job.slurm_job_id:
            report.failures.append(JobSyncFailure(job.job_id, "Job is active but has no SLURM id"))
            continue
        try:
            trackable.append((job, validate_slurm_job_id(job.slurm_job_id)))
        except ValidationError as e:
            logger.warning(f"Skipping job {job.job_id}: {e.message}")
            report.failures.append(JobSyncFailure(job.job_id, e.message))
    if not trackable:
        return report

    progress.on_progress(f"Checking status of {len(trackable)} jobs")
    with remote_step(SlurmError, "SLURM status query failed", "status"):
        statuses = await ctx.slurm.query_statuses([slurm_id for _, slurm_id in trackable])
    report.checked = len(trackable)

    for job, slurm_id in trackable:
        await _reconcile(ctx, job, statuses.get(slurm_id), report, progress)

    progress.on_progress(
        f"Sync complete: {len(report.changes)} updated, {len(report.failures)} failed"
    )
    return report


async def _reconcile(
    ctx: AutomationContext,
    job: JobInfo,
    result,
    report: SyncReport,
    progress: ProgressCallback,
) -> None:
    if result is None or isinstance(result, Exception):
        message = str(result) if result is not None else "No status returned"
        logger.warning(f"Could not sync job {job.job_id}: {message}")
        report.failures.append(JobSyncFailure(job.job_id, message))
        return

    new_status: JobStatus = result
    if new_status == job.status:
        return
    if not is_forward_transition(job.status, new_status):
        logger.info(
            f"Ignoring backward status {new_status.value} for job {job.job_id} "
            f"(currently {job.status.value})"
        )
        return

    old_status = job.status
    job.transition_to(new_status)
    if new_status.is_terminal:
        await _collect_finished(ctx, job, report, progress)
    try:
        ctx.store.save(job)
    except NamdRunnerError as e:
        logger.error(f"Failed to save job {job.job_id}: {e}")
        report.failures.append(JobSyncFailure(job.job_id, e.user_message()))
        return

    report.changes.append(JobStatusChange(job.job_id, old_status, new_status))
    progress.on_progress(f"{job.job_id}: {old_status.value} -> {new_status.value}")
    logger.info(f"Job {job.job_id} status {old_status.value} -> {new_status.value}")

    try:
        await upload_job_metadata(ctx.connection, job)
    except NamdRunnerError as e:
        logger.warning(f"Metadata upload failed for job {job.job_id}: {e}")
        report.metadata_failures.append(job.job_id)


async def _collect_finished(
    ctx: AutomationContext, job: JobInfo, report: SyncReport, progress: ProgressCallback
) -> None:
    # Results are copied back as soon as a job finishes; `complete` can redo this
    if not job.project_dir or not job.scratch_dir:
        logger.warning(f"Job {job.job_id} finished but has no scratch or project directory")
        report.completion_failures.append(job.job_id)
        return
    try:
        await collect_job_results(ctx, job, progress)
    except NamdRunnerError as e:
        logger.error(f"Automatic completion failed for job {job.job_id}: {e}")
        report.completion_failures.append(job.job_id)
    else:
        report.completed.append(job.job_id)
        logger.info(f"Collected results for finished job {job.job_id}")
