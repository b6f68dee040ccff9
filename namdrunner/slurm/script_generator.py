"""
SLURM batch script generation for NAMD jobs.

Security features:
- All resource values are validated before template rendering
- SandboxedEnvironment prevents code injection from template content
"""

import logging
import re
from pathlib import Path
from typing import Any, Dict, List, Optional

from jinja2 import FileSystemLoader, StrictUndefined, TemplateError
from jinja2.sandbox import SandboxedEnvironment

from ..core.config import CONFIG_FILENAME, SCRIPTS_DIR, SlurmSettings
from ..core.exceptions import ValidationError
from ..core.templates import BUILTIN_TEMPLATE_DIR
from ..core.validation import sanitize_job_name
from ..models import JobInfo, SlurmConfig

logger = logging.getLogger(__name__)

SCRIPT_TEMPLATE_NAME = "job.sbatch.j2"


def slurm_job_name(job: JobInfo) -> str:
    """Name passed to ``--job-name`` and embedded in the log file names."""
    return sanitize_job_name(job.job_name)


class SlurmScriptGenerator:
    """
    Render ``job.sbatch`` for a job.

    Usage:
        generator = SlurmScriptGenerator(settings.slurm)
        script = generator.generate(job)
    """

    # Validation patterns (compiled once)
    _MEMORY_PATTERN = re.compile(r"^\d+(\.\d+)?\s*([KMGT]B?)?$", re.IGNORECASE | re.ASCII)
    _TIME_PATTERN = re.compile(r"^(\d+-)?(\d{1,2}:)?\d{1,2}:\d{2}$|^\d+$", re.ASCII)
    _PARTITION_PATTERN = re.compile(r"^[a-zA-Z0-9_-]+$")
    _QOS_PATTERN = re.compile(r"^[a-zA-Z0-9_-]+$")
    _MODULE_PATTERN = re.compile(r"^[a-zA-Z0-9/_.+-]+$")

    def __init__(self, settings: Optional[SlurmSettings] = None, template_dir: Optional[Path] = None):
        self.settings = settings or SlurmSettings()
        self._env = SandboxedEnvironment(
            loader=FileSystemLoader(str(template_dir or BUILTIN_TEMPLATE_DIR)),
            undefined=StrictUndefined,
            autoescape=False,
            trim_blocks=True,
            lstrip_blocks=True,
            keep_trailing_newline=True,
        )

    def validate(self, config: SlurmConfig) -> List[str]:
        """Return validation errors for a resource request (empty if valid)."""
        errors = []
        if config.cores < 1:
            errors.append("cores must be at least 1")
        if not self._MEMORY_PATTERN.match(config.memory.strip()):
            errors.append(f"Invalid memory format: {config.memory!r} (expected e.g. 16GB)")
        if not self._TIME_PATTERN.match(config.walltime.strip()):
            errors.append(f"Invalid walltime format: {config.walltime!r} (expected HH:MM:SS)")
        if config.partition and not self._PARTITION_PATTERN.match(config.partition):
            errors.append(f"Invalid partition name: {config.partition!r}")
        if config.qos and not self._QOS_PATTERN.match(config.qos):
            errors.append(f"Invalid QoS name: {config.qos!r}")
        return errors

    def build_context(self, job: JobInfo) -> Dict[str, Any]:
        config = job.slurm_config
        errors = self.validate(config)
        modules = list(self.settings.modules) + [self.settings.namd_module]
        for module in modules:
            if not self._MODULE_PATTERN.match(module):
                errors.append(f"Invalid module name: {module!r}")
        if errors:
            raise ValidationError(
                f"Invalid SLURM settings for job {job.job_id}: {'; '.join(errors)}",
                operation="slurm_config",
                target=job.job_id,
            )
        return {
            "job_id": job.job_id,
            "job_name": slurm_job_name(job),
            "cores": config.cores,
            "memory": _normalize_memory(config.memory),
            "walltime": config.walltime.strip(),
            "partition": config.partition or self.settings.partition,
            "qos": config.qos or self.settings.qos,
            "modules": modules,
            "config_file": f"{SCRIPTS_DIR}/{CONFIG_FILENAME}",
        }

    def generate(self, job: JobInfo) -> str:
        """
        Render the batch script.

        Raises:
            ValidationError: Invalid resource values or template failure
        """
        context = self.build_context(job)
        try:
            script = self._env.get_template(SCRIPT_TEMPLATE_NAME).render(**context)
        except TemplateError as e:
            raise ValidationError(
                f"Could not render SLURM script: {e}", operation="slurm_config", target=job.job_id
            ) from e
        logger.debug(f"Generated SLURM script for {job.job_id}")
        return script


def _normalize_memory(memory: str) -> str:
    """``16GB`` -> ``16G``; SLURM wants a single-letter unit."""
    value = memory.strip().upper().replace(" ", "")
    if value.endswith("B") and len(value) > 1 and value[-2] in "KMGT":
        value = value[:-1]
    return value
