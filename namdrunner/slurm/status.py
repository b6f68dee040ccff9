"""
SLURM status synchronization.

SLURM reports state through two surfaces: ``squeue`` for jobs still in the
active queue and ``sacct`` for jobs that have left it. ``query_statuses``
asks ``squeue`` about every id in one round-trip, then asks ``sacct`` only
about the ids squeue did not know, so a sync costs at most two remote
commands however many jobs are tracked.
"""

import logging
from typing import Dict, Iterable, List, Union

from ..core.connection_manager import ConnectionManager
from ..core.exceptions import JobNotFoundError, SlurmError
from ..core.retry import RetryConfig
from ..models import JobStatus
from .commands import (
    SUBMIT_ACK,
    cancel_command,
    parse_sbatch_output,
    parse_status_lines,
    sacct_batch_command,
    squeue_batch_command,
    submit_command,
    validate_slurm_job_id,
)

logger = logging.getLogger(__name__)

StatusResult = Union[JobStatus, SlurmError, JobNotFoundError]

_STATUS_MAP: Dict[str, JobStatus] = {
    "PD": JobStatus.PENDING,
    "PENDING": JobStatus.PENDING,
    "QUEUED": JobStatus.PENDING,
    "R": JobStatus.RUNNING,
    "RUNNING": JobStatus.RUNNING,
    "CG": JobStatus.RUNNING,
    "COMPLETING": JobStatus.RUNNING,
    "CD": JobStatus.COMPLETED,
    "COMPLETED": JobStatus.COMPLETED,
    "CA": JobStatus.CANCELLED,
    "CANCELLED": JobStatus.CANCELLED,
    "F": JobStatus.FAILED,
    "FAILED": JobStatus.FAILED,
    "TO": JobStatus.FAILED,
    "TIMEOUT": JobStatus.FAILED,
    "NF": JobStatus.FAILED,
    "NODE_FAIL": JobStatus.FAILED,
    "PR": JobStatus.FAILED,
    "PREEMPTED": JobStatus.FAILED,
    "OOM": JobStatus.FAILED,
    "OUT_OF_MEMORY": JobStatus.FAILED,
    "BF": JobStatus.FAILED,
    "BOOT_FAIL": JobStatus.FAILED,
    "DL": JobStatus.FAILED,
    "DEADLINE": JobStatus.FAILED,
}

KNOWN_SLURM_CODES = frozenset(_STATUS_MAP)


def parse_slurm_status(code: str) -> JobStatus:
    """
    Map a SLURM state code (short or long form, any case) to a JobStatus.

    Raises:
        SlurmError: For codes outside the known set
    """
    normalized = code.upper().strip()
    status = _STATUS_MAP.get(normalized)
    if status is None:
        logger.error(f"Unknown SLURM state code: {code!r}")
        raise SlurmError(
            f"Unknown SLURM state: {code}", operation="status", target=code
        )
    return status


class SlurmStatusSync:
    """Batched status queries, submission and cancellation against SLURM."""

    def __init__(self, connection: ConnectionManager):
        self.connection = connection

    async def query_statuses(self, slurm_job_ids: Iterable[str]) -> Dict[str, StatusResult]:
        """
        Look up many jobs in at most two remote commands.

        Args:
            slurm_job_ids: SLURM job ids to query

        Returns:
            Mapping of id to a JobStatus, or to the error for that id
            (``JobNotFoundError`` when neither squeue nor sacct reports it,
            ``SlurmError`` for an unrecognized state)

        Raises:
            SlurmError: If squeue or sacct itself fails
        """
        ids = list(dict.fromkeys(validate_slurm_job_id(i) for i in slurm_job_ids))
        results: Dict[str, StatusResult] = {}
        if not ids:
            return results

        active = await self._run_query(squeue_batch_command(ids), "squeue", allow_invalid_id=True)
        self._collect(active, ids, results)

        residual = [i for i in ids if i not in results]
        if residual:
            history = await self._run_query(sacct_batch_command(residual), "sacct")
            self._collect(history, residual, results)

        for slurm_id in ids:
            if slurm_id not in results:
                results[slurm_id] = JobNotFoundError(
                    slurm_id, f"SLURM job {slurm_id} not found in squeue or sacct"
                )

        logger.debug(
            f"Queried {len(ids)} SLURM jobs ({len(ids) - len(residual)} active, "
            f"{len(residual)} from history)"
        )
        return results

    async def check_job_status(self, slurm_job_id: str) -> JobStatus:
        """Single-job convenience wrapper; raises the per-id error if any."""
        result = (await self.query_statuses([slurm_job_id]))[validate_slurm_job_id(slurm_job_id)]
        if isinstance(result, Exception):
            raise result
        return result

    async def _run_query(self, command: str, tool: str, allow_invalid_id: bool = False) -> str:
        result = await self.connection.execute_command(
            command, timeout=self.connection.timeouts.slurm_operation
        )
        if result.exit_code != 0:
            # squeue exits non-zero when every requested id has left the queue
            if allow_invalid_id and "invalid job id" in result.stderr.lower():
                return ""
            raise SlurmError(
                f"{tool} failed with exit code {result.exit_code}",
                operation="status",
                details=result.stderr.strip(),
            )
        return result.stdout

    @staticmethod
    def _collect(output: str, wanted: List[str], results: Dict[str, StatusResult]) -> None:
        wanted_set = set(wanted)
        for slurm_id, state in parse_status_lines(output):
            if slurm_id not in wanted_set or slurm_id in results:
                continue
            try:
                results[slurm_id] = parse_slurm_status(state)
            except SlurmError as e:
                results[slurm_id] = e

    async def submit(self, scratch_dir: str, script_relative: str) -> str:
        """
        Run sbatch from ``scratch_dir`` and return the new SLURM job id.

        sbatch is not retried: a retry after a dropped connection could
        queue the job twice.

        Raises:
            SlurmError: sbatch failed or its output had no job id
        """
        command = submit_command(scratch_dir, script_relative)
        result = await self.connection.execute_command(
            command,
            timeout=self.connection.timeouts.slurm_operation,
            retry_config=RetryConfig(max_attempts=1),
        )
        if result.exit_code != 0:
            raise SlurmError(
                f"sbatch failed: {result.stderr.strip() or 'exit code ' + str(result.exit_code)}",
                operation="submit",
                target=scratch_dir,
                details=result.stderr.strip(),
            )
        slurm_job_id = parse_sbatch_output(result.stdout)
        if slurm_job_id is None:
            raise SlurmError(
                f"Could not find '{SUBMIT_ACK} <id>' in sbatch output",
                operation="submit",
                target=scratch_dir,
                details=result.stdout.strip(),
            )
        logger.info(f"Submitted SLURM job {slurm_job_id} from {scratch_dir}")
        return slurm_job_id

    async def cancel(self, slurm_job_id: str) -> None:
        """
        Cancel a job with scancel.

        Raises:
            SlurmError: scancel exited non-zero (message includes stderr)
        """
        result = await self.connection.execute_command(
            cancel_command(slurm_job_id), timeout=self.connection.timeouts.slurm_operation
        )
        if result.exit_code != 0:
            stderr = result.stderr.strip()
            raise SlurmError(
                f"Failed to cancel SLURM job {slurm_job_id}: {stderr}",
                operation="cancel",
                target=slurm_job_id,
                details=stderr,
            )
        logger.info(f"Cancelled SLURM job {slurm_job_id}")
