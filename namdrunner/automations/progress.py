"""Progress callbacks for automations.

Example:
    from namdrunner.automations.progress import ConsoleProgressCallback

    await submit_job(ctx, job_id, ConsoleProgressCallback())
"""

from __future__ import annotations

import logging
from typing import List, Optional

from rich.console import Console

logger = logging.getLogger(__name__)

__all__ = [
    "CollectingProgressCallback",
    "ConsoleProgressCallback",
    "LoggingProgressCallback",
    "NullProgressCallback",
]


class NullProgressCallback:
    """Discards progress messages."""

    def on_progress(self, message: str) -> None:
        pass


class LoggingProgressCallback:
    """Progress callback that writes to the Python logger."""

    def __init__(self, level: int = logging.INFO, log: Optional[logging.Logger] = None) -> None:
        """Initialize logging progress callback.

        Args:
            level: Log level for progress messages
            log: Logger to use (defaults to this module's logger)
        """
        self._level = level
        self._logger = log or logger

    def on_progress(self, message: str) -> None:
        self._logger.log(self._level, message)


class ConsoleProgressCallback:
    """Prints each step with rich, one line per step."""

    def __init__(self, console: Optional[Console] = None) -> None:
        self._console = console or Console(stderr=True)

    def on_progress(self, message: str) -> None:
        self._console.print(f"[dim]•[/dim] {message}", highlight=False)


class CollectingProgressCallback:
    """Keeps every message; handy in tests."""

    def __init__(self) -> None:
        self.messages: List[str] = []

    def on_progress(self, message: str) -> None:
        self.messages.append(message)
