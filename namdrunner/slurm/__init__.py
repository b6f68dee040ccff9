"""SLURM command building, status mapping and script generation."""

from .commands import parse_sbatch_output
from .script_generator import SlurmScriptGenerator
from .status import SlurmStatusSync, parse_slurm_status

__all__ = [
    'SlurmScriptGenerator',
    'SlurmStatusSync',
    'parse_sbatch_output',
    'parse_slurm_status',
]
