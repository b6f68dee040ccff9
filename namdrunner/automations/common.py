"""Shared plumbing for the job lifecycle automations."""

import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Iterator, Type

from ..core.config import Settings
from ..core.connection_manager import ConnectionManager
from ..core.exceptions import (
    AutomationError,
    JobNotFoundError,
    NamdRunnerError,
    ValidationError,
)
from ..core.templates import TemplateRegistry
from ..core.validation import sanitize_job_id, sanitize_username
from ..models import JobInfo
from ..protocols import JobStore
from ..slurm.status import SlurmStatusSync

logger = logging.getLogger(__name__)


@dataclass
class AutomationContext:
    """Collaborators an automation runs against."""

    connection: ConnectionManager
    store: JobStore
    templates: TemplateRegistry = field(default_factory=TemplateRegistry)
    settings: Settings = field(default_factory=Settings)

    @property
    def slurm(self) -> SlurmStatusSync:
        return SlurmStatusSync(self.connection)


def require_username(ctx: AutomationContext) -> str:
    """Check the session is live and return its (validated) username."""
    if not ctx.connection.is_connected():
        raise ValidationError(
            "Not connected to cluster. Connect before running this operation.",
            operation="connection",
        )
    return sanitize_username(ctx.connection.get_username())


def load_job(ctx: AutomationContext, job_id: str) -> JobInfo:
    sanitize_job_id(job_id)
    job = ctx.store.load(job_id)
    if job is None:
        raise JobNotFoundError(job_id)
    return job


@contextmanager
def remote_step(
    error_cls: Type[AutomationError], message: str, operation: str, target: str = ""
) -> Iterator[None]:
    """
    Re-raise transport errors from the enclosed step as ``error_cls``.

    Automation errors pass through unchanged.
    """
    try:
        yield
    except AutomationError:
        raise
    except NamdRunnerError as e:
        logger.error(f"{message}: {e.message} {e.details}".rstrip())
        raise error_cls(
            f"{message}: {e.message}",
            operation=operation,
            target=target,
            details=e.details or str(e),
        ) from e
