"""
Exception hierarchy for NAMDRunner.

Two families live here:

- ``RemoteError`` subclasses describe failures of the SSH/SFTP transport.
  Each carries a stable error code, a ``retryable`` flag consulted by the
  retry engine, and a list of user-facing suggestions.
- ``AutomationError`` subclasses describe failures of a job lifecycle step.
  Each carries the operation name and target, plus a recovery suggestion
  derived from the operation.

Technical detail goes into ``details`` (for logs); ``user_message()`` is
what a person should see.
"""

from typing import Any, List, Optional


class NamdRunnerError(Exception):
    """
    Base exception for all NAMDRunner errors.

    Catch this at the application boundary (CLI) to report any
    library failure.
    """

    def __init__(self, message: str, details: str = ""):
        super().__init__(message)
        self.message = message
        self.details = details

    def user_message(self) -> str:
        return self.message


# ========== Remote / transport errors ==========


class RemoteError(NamdRunnerError):
    """
    Raised when a remote (SSH/SFTP) operation fails.

    Attributes:
        code: Stable error code (e.g. ``NET_001``)
        retryable: Whether the retry engine may repeat the operation
        suggestions: Actionable hints for the user
        details: Underlying library error text
    """

    code = "REM_000"
    category = "Remote"
    retryable = False
    default_suggestions: List[str] = []

    def __init__(
        self,
        message: str,
        details: str = "",
        suggestions: Optional[List[str]] = None,
        retryable: Optional[bool] = None,
    ):
        super().__init__(message, details)
        self.suggestions = list(suggestions) if suggestions else list(self.default_suggestions)
        if retryable is not None:
            self.retryable = retryable

    def user_message(self) -> str:
        if not self.suggestions:
            return f"[{self.code}] {self.message}"
        return f"[{self.code}] {self.message}\nSuggestion: {self.suggestions[0]}"


class NetworkError(RemoteError):
    """Host unreachable, connection reset, DNS failure."""

    code = "NET_001"
    category = "Network"
    retryable = True
    default_suggestions = [
        "Check your network connection",
        "Verify the cluster hostname is correct",
        "If off campus, make sure your VPN is connected",
    ]


class OperationTimeoutError(RemoteError):
    """
    Raised when a remote operation exceeds its timeout.

    Attributes:
        timeout_seconds: The limit that was exceeded
        operation: Description of what timed out
        result: Partial CommandResult when a command timed out
    """

    code = "NET_002"
    category = "Timeout"
    retryable = True
    default_suggestions = [
        "The cluster may be under heavy load, try again shortly",
        "Large transfers may need a longer file-transfer timeout",
    ]

    def __init__(
        self,
        message: str,
        timeout_seconds: float = 0.0,
        operation: str = "",
        details: str = "",
        result: Optional[Any] = None,
    ):
        super().__init__(message, details)
        self.timeout_seconds = timeout_seconds
        self.operation = operation
        self.result = result


class HandshakeError(RemoteError):
    """SSH protocol negotiation failed."""

    code = "NET_003"
    category = "Handshake"
    retryable = True
    default_suggestions = [
        "The SSH server may be temporarily overloaded, try again",
        "Check that the host key in known_hosts is current",
    ]


class SessionError(RemoteError):
    """
    The SSH session is missing, expired, or was dropped mid-operation.

    A "not connected" session error is not retryable: the manager never
    reconnects on its own.
    """

    code = "AUTH_002"
    category = "Session"
    retryable = True
    default_suggestions = ["Reconnect to the cluster"]

    @classmethod
    def not_connected(cls) -> "SessionError":
        return cls(
            "Not connected to cluster",
            suggestions=["Connect to the cluster before running remote operations"],
            retryable=False,
        )


class AuthenticationError(RemoteError):
    """Bad credentials or rejected key."""

    code = "AUTH_001"
    category = "Authentication"
    retryable = False
    default_suggestions = [
        "Check your username and password",
        "Your password may have expired, try logging in interactively",
    ]


class PermissionDeniedError(RemoteError):
    """Remote filesystem or scheduler refused the operation."""

    code = "PERM_001"
    category = "Permission"
    retryable = False
    default_suggestions = ["Check that you own the target directory on the cluster"]


class ConfigurationError(RemoteError):
    """
    Local configuration is invalid or incomplete.

    Attributes:
        config_key: The setting that is invalid
    """

    code = "CFG_001"
    category = "Configuration"
    retryable = False
    default_suggestions = ["Review your namdrunner configuration file"]

    def __init__(self, message: str, config_key: str = "", details: str = ""):
        super().__init__(message, details)
        self.config_key = config_key


class CommandError(RemoteError):
    """
    A remote command could not be run or returned an unusable result.

    Attributes:
        command: The command line that failed
        exit_code: Remote exit status if known
        stderr: Remote standard error text
    """

    code = "VAL_001"
    category = "Command"
    retryable = False
    default_suggestions = ["Check the command arguments and remote environment"]

    def __init__(
        self,
        message: str,
        command: str = "",
        exit_code: Optional[int] = None,
        stderr: str = "",
        retryable: Optional[bool] = None,
    ):
        super().__init__(message, details=stderr, retryable=retryable)
        self.command = command
        self.exit_code = exit_code
        self.stderr = stderr


class FileTransferError(RemoteError):
    """
    SFTP upload or download failed.

    Attributes:
        local_path: Local side of the transfer
        remote_path: Remote side of the transfer
    """

    code = "FILE_002"
    category = "FileTransfer"
    retryable = True
    default_suggestions = [
        "Check available disk quota on the cluster",
        "Retry the transfer; partial files will be overwritten",
    ]

    def __init__(
        self,
        message: str,
        local_path: str = "",
        remote_path: str = "",
        details: str = "",
        retryable: Optional[bool] = None,
    ):
        super().__init__(message, details, retryable=retryable)
        self.local_path = local_path
        self.remote_path = remote_path


# ========== Automation errors ==========


_RECOVERY_SUGGESTIONS = {
    "FileOperation": {
        "upload": "Check the local file exists and that you have write access to the project directory",
        "download": "Check the remote file exists and that you have local disk space",
        "copy": "Check both directories exist and that you have enough quota",
        "delete": "Check permissions on the remote directory",
    },
    "Database": {
        "save": "Check that the local database file is writable",
        "load": "The local database may be corrupted; try syncing from the server",
        "delete": "Retry the delete; the record may be locked by another process",
    },
    "Slurm": {
        "submit": "Check the job script and your SLURM account or partition limits",
        "status": "The scheduler may be busy; try syncing again shortly",
        "cancel": "The job may have already finished; sync to refresh its status",
    },
}

_DEFAULT_SUGGESTIONS = {
    "FileOperation": "Check file permissions and the remote connection",
    "Database": "Check the local database configuration",
    "Validation": "Correct the highlighted value and try again",
    "Slurm": "Check SLURM availability on the cluster",
    "Progress": "Retry the operation",
}


class AutomationError(NamdRunnerError):
    """
    Base exception for job lifecycle automation failures.

    Attributes:
        operation: The step that failed (e.g. ``upload``, ``submit``, a field name)
        target: What the step acted on (job id, path)
        details: Technical detail for logs
    """

    category = "Automation"

    def __init__(self, message: str, operation: str = "", target: str = "", details: str = ""):
        super().__init__(message, details)
        self.operation = operation
        self.target = target

    @property
    def recovery_suggestion(self) -> str:
        by_op = _RECOVERY_SUGGESTIONS.get(self.category, {})
        if self.operation in by_op:
            return by_op[self.operation]
        if self.category == "Validation" and self.operation:
            return f"Check the value of '{self.operation}' and try again"
        return _DEFAULT_SUGGESTIONS.get(self.category, "Retry the operation")

    def user_message(self) -> str:
        return f"{self.message}\nSuggestion: {self.recovery_suggestion}"


class FileOperationError(AutomationError):
    category = "FileOperation"


class DatabaseError(AutomationError):
    category = "Database"


class ValidationError(AutomationError):
    """Raised when input or a precondition check fails."""

    category = "Validation"


class JobNotFoundError(ValidationError):
    """Raised when a job id is unknown locally or to the scheduler."""

    def __init__(self, job_id: str, message: str = ""):
        super().__init__(message or f"Job not found: {job_id}", operation="job_id", target=job_id)
        self.job_id = job_id


class SlurmError(AutomationError):
    """Scheduler interaction failed (submit, status, cancel)."""

    category = "Slurm"


class ProgressError(AutomationError):
    category = "Progress"
