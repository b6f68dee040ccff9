"""
Protocol definitions for NAMDRunner collaborators.

The automations depend only on these interfaces:

- ``JobStore``: durable key-value store of job records, keyed by job id
- ``ProgressCallback``: receives one human-readable line per automation step

Implementations live in ``namdrunner.core.database`` and
``namdrunner.automations.progress``.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, List, Optional, Protocol, runtime_checkable

if TYPE_CHECKING:
    from .models import JobInfo


@runtime_checkable
class JobStore(Protocol):
    """
    Protocol for the local job record store.

    Writes for the same job id must be serialized by the implementation.
    """

    def save(self, job: "JobInfo") -> None:
        """Insert or replace the record for ``job.job_id``."""
        ...

    def load(self, job_id: str) -> Optional["JobInfo"]:
        """Return the record, or None if unknown."""
        ...

    def load_all(self) -> List["JobInfo"]:
        """Return every record, newest first."""
        ...

    def delete(self, job_id: str) -> bool:
        """Remove the record; True if it existed."""
        ...


@runtime_checkable
class ProgressCallback(Protocol):
    """
    Protocol for automation progress reporting.

    Calls are synchronous and fire-and-forget; implementations must not
    raise.
    """

    def on_progress(self, message: str) -> None:
        ...
