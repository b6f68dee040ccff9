"""
NAMDRunner: NAMD job orchestration for SLURM clusters over SSH.

The package keeps a local record of each job consistent with the cluster:
it creates job directories, submits with sbatch, reconciles status from
squeue/sacct and copies results back from scratch.
"""

from namdrunner.models import (
    CommandResult,
    FileInfo,
    InputFile,
    JobInfo,
    JobStatus,
    OutputFile,
    SessionInfo,
    SlurmConfig,
    TransferProgress,
)

__version__ = "0.1.0"
__all__ = [
    "CommandResult",
    "FileInfo",
    "InputFile",
    "JobInfo",
    "JobStatus",
    "OutputFile",
    "SessionInfo",
    "SlurmConfig",
    "TransferProgress",
]
