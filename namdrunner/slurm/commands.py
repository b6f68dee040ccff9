"""
SLURM command builders and output parsers.

All ids and paths are validated and shell-quoted before they are placed
in a command line.
"""

import re
import shlex
from typing import Iterable, List, Optional

from ..core.exceptions import ValidationError
from ..core.validation import validate_remote_path

_SLURM_JOB_ID_PATTERN = re.compile(r"^[0-9]+$")
SUBMIT_ACK = "Submitted batch job"


def validate_slurm_job_id(slurm_job_id: str) -> str:
    slurm_job_id = str(slurm_job_id).strip()
    if not _SLURM_JOB_ID_PATTERN.match(slurm_job_id):
        raise ValidationError(
            f"Invalid SLURM job id: {slurm_job_id!r}",
            operation="slurm_job_id",
            target=slurm_job_id,
        )
    return slurm_job_id


def _id_list(slurm_job_ids: Iterable[str]) -> str:
    ids = [validate_slurm_job_id(i) for i in slurm_job_ids]
    if not ids:
        raise ValidationError("At least one SLURM job id is required", operation="slurm_job_id")
    return ",".join(ids)


def submit_command(scratch_dir: str, script_relative: str) -> str:
    """``cd <scratch> && sbatch <script>``; logs land in the submit directory."""
    validate_remote_path(scratch_dir)
    return f"cd {shlex.quote(scratch_dir)} && sbatch {shlex.quote(script_relative)}"


def squeue_batch_command(slurm_job_ids: Iterable[str]) -> str:
    """Active-queue query, one ``id|STATE`` line per job."""
    return f"squeue -j {_id_list(slurm_job_ids)} --format='%i|%T' --noheader"


def sacct_batch_command(slurm_job_ids: Iterable[str]) -> str:
    """History query, one ``id|STATE`` line per job and job step."""
    return f"sacct -j {_id_list(slurm_job_ids)} --format=JobID,State --parsable2 --noheader"


def cancel_command(slurm_job_id: str) -> str:
    return f"scancel {validate_slurm_job_id(slurm_job_id)}"


def parse_sbatch_output(output: str) -> Optional[str]:
    """
    Extract the job id from sbatch output.

    Expected format: "Submitted batch job 12345"

    Returns:
        Job id as string if found, None otherwise
    """
    for line in output.splitlines():
        line = line.strip()
        if line.startswith(SUBMIT_ACK):
            tokens = line.split()
            if tokens and _SLURM_JOB_ID_PATTERN.match(tokens[-1]):
                return tokens[-1]
    return None


def parse_status_lines(output: str) -> List[tuple]:
    """
    Split ``id|STATE`` output into (id, state) pairs.

    Blank and malformed lines are dropped. sacct step rows such as
    ``123.batch`` are skipped in favour of the parent row, and decorated
    states like ``CANCELLED by 1000`` are reduced to their first word.
    """
    pairs = []
    for raw in output.splitlines():
        line = raw.strip()
        if not line or "|" not in line:
            continue
        job_id, state = (part.strip() for part in line.split("|", 1))
        if not job_id or "." in job_id or not state:
            continue
        state = state.split()[0].rstrip("+")
        pairs.append((job_id, state))
    return pairs
