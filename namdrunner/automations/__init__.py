"""Job lifecycle automations: create, submit, sync, complete, delete."""

from .common import AutomationContext
from .job_completion import (
    CompleteJobResult,
    collect_job_results,
    complete_job,
    fetch_slurm_logs,
    refetch_slurm_logs,
)
from .job_creation import CreateJobParams, CreateJobResult, create_job
from .job_deletion import DeleteJobResult, delete_job
from .job_files import DownloadJobFileResult, download_job_file
from .job_submission import SubmitJobResult, submit_job
from .job_sync import SyncReport, sync_all_jobs

__all__ = [
    'AutomationContext',
    'CompleteJobResult',
    'CreateJobParams',
    'CreateJobResult',
    'DeleteJobResult',
    'DownloadJobFileResult',
    'SubmitJobResult',
    'SyncReport',
    'collect_job_results',
    'complete_job',
    'create_job',
    'delete_job',
    'download_job_file',
    'fetch_slurm_logs',
    'refetch_slurm_logs',
    'submit_job',
    'sync_all_jobs',
]
