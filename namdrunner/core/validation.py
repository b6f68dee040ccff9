"""
Input sanitization for values that end up in remote paths and commands.

Every value interpolated into a shell command is also passed through
``shlex.quote`` by its caller; the checks here reject anything that could
escape the job directory tree in the first place.
"""

import logging
import re

from .config import JOB_ROOT_MARKER
from .exceptions import ValidationError

logger = logging.getLogger(__name__)

MAX_JOB_ID_LENGTH = 64
MAX_USERNAME_LENGTH = 64

_JOB_ID_PATTERN = re.compile(r"^[A-Za-z0-9_-]+$", re.ASCII)
_USERNAME_PATTERN = re.compile(r"^[A-Za-z0-9._-]+$", re.ASCII)
_NAME_INVALID_CHARS = re.compile(r"[^A-Za-z0-9_-]+", re.ASCII)
_SHELL_METACHARACTERS = frozenset(";|&$`<>(){}[]*?!~'\"\\\n\r\t")
_FORBIDDEN_DELETE_PREFIXES = ("/etc", "/usr", "/bin", "/sbin", "/lib", "/boot", "/var", "/root")


def _reject_common(value: str, field: str, max_length: int) -> None:
    if not value:
        raise ValidationError(f"{field} cannot be empty", operation=field)
    if len(value) > max_length:
        raise ValidationError(
            f"{field} is too long ({len(value)} > {max_length} characters)",
            operation=field,
            target=value[:max_length],
        )
    if "\x00" in value:
        raise ValidationError(f"{field} contains a null byte", operation=field)
    if not value.isascii():
        raise ValidationError(f"{field} must be ASCII", operation=field, target=value)
    if ".." in value:
        raise ValidationError(f"{field} cannot contain '..'", operation=field, target=value)
    if value[0] in "/\\":
        raise ValidationError(
            f"{field} cannot start with a path separator", operation=field, target=value
        )


def sanitize_job_id(job_id: str) -> str:
    """
    Validate a job id.

    Valid ids (1-64 ASCII alphanumerics, ``_`` or ``-``) are returned
    unchanged; anything else raises.

    Raises:
        ValidationError: If the id is empty, too long, or has a forbidden character
    """
    _reject_common(job_id, "job_id", MAX_JOB_ID_LENGTH)
    if not _JOB_ID_PATTERN.match(job_id):
        raise ValidationError(
            "job_id may only contain letters, digits, '_' and '-'",
            operation="job_id",
            target=job_id,
        )
    return job_id


def sanitize_username(username: str) -> str:
    """Validate a cluster username; like job ids but ``.`` is also allowed."""
    _reject_common(username, "username", MAX_USERNAME_LENGTH)
    if any(ch in _SHELL_METACHARACTERS for ch in username):
        raise ValidationError(
            "username contains shell metacharacters", operation="username", target=username
        )
    if not _USERNAME_PATTERN.match(username):
        raise ValidationError(
            "username may only contain letters, digits, '.', '_' and '-'",
            operation="username",
            target=username,
        )
    return username


def sanitize_job_name(name: str) -> str:
    """
    Turn a display name into a job id stem.

    Whitespace runs become ``_``; other disallowed characters are dropped.

    >>> sanitize_job_name("My Protein Run!")
    'My_Protein_Run'
    """
    if name is None or not name.strip():
        raise ValidationError("Job name cannot be empty", operation="job_name")
    if "\x00" in name:
        raise ValidationError("Job name contains a null byte", operation="job_name")

    stem = re.sub(r"\s+", "_", name.strip())
    stem = _NAME_INVALID_CHARS.sub("", stem)
    stem = re.sub(r"_{2,}", "_", stem).strip("_-")
    if not stem:
        raise ValidationError(
            f"Job name '{name}' has no usable characters", operation="job_name", target=name
        )
    return stem


def validate_remote_path(path: str) -> str:
    """
    Check a remote path is absolute and free of traversal or shell tricks.

    Raises:
        ValidationError: On relative paths, ``..`` segments, null bytes or
            control/shell characters
    """
    if not path:
        raise ValidationError("Remote path cannot be empty", operation="path")
    if "\x00" in path:
        raise ValidationError("Remote path contains a null byte", operation="path", target=path)
    if not path.startswith("/"):
        raise ValidationError("Remote path must be absolute", operation="path", target=path)
    if ".." in path.split("/"):
        raise ValidationError(
            "Remote path cannot contain '..' segments", operation="path", target=path
        )
    if any(ch in _SHELL_METACHARACTERS for ch in path):
        raise ValidationError(
            "Remote path contains shell metacharacters", operation="path", target=path
        )
    return path


def validate_relative_file_path(path: str) -> str:
    """
    Check a path meant to be joined under a job's project directory.

    Raises:
        ValidationError: On empty or absolute paths, ``..`` segments,
            backslashes or null bytes
    """
    if not path or not path.strip():
        raise ValidationError("File path cannot be empty", operation="path")
    if "\x00" in path:
        raise ValidationError("File path contains a null byte", operation="path", target=path)
    if path.startswith("/"):
        raise ValidationError(
            "File path must be relative to the job directory", operation="path", target=path
        )
    if "\\" in path or ".." in path.split("/"):
        raise ValidationError(
            "File path cannot leave the job directory", operation="path", target=path
        )
    return path.strip("/")


def validate_deletion_path(path: str) -> str:
    """
    Gate a path before a recursive remote delete.

    The path must lie strictly inside a ``namdrunner_jobs`` tree and must
    not contain ``..`` anywhere, or point at the filesystem root or a
    system directory.

    Raises:
        ValidationError: If the path fails any check
    """
    if not path or "\x00" in path:
        raise ValidationError("Refusing to delete an empty path", operation="delete", target=path)
    if ".." in path:
        raise ValidationError(
            f"Refusing to delete path containing '..': {path}", operation="delete", target=path
        )

    normalized = path.rstrip("/")
    if normalized == "" or path.strip() == "/":
        raise ValidationError("Refusing to delete the filesystem root", operation="delete", target=path)
    for prefix in _FORBIDDEN_DELETE_PREFIXES:
        if normalized == prefix or normalized.startswith(prefix + "/"):
            raise ValidationError(
                f"Refusing to delete system path: {path}", operation="delete", target=path
            )

    segments = [s for s in normalized.split("/") if s]
    if JOB_ROOT_MARKER not in segments:
        raise ValidationError(
            f"Refusing to delete path outside the {JOB_ROOT_MARKER} tree: {path}",
            operation="delete",
            target=path,
        )
    if segments[-1] == JOB_ROOT_MARKER:
        raise ValidationError(
            f"Refusing to delete the {JOB_ROOT_MARKER} root itself: {path}",
            operation="delete",
            target=path,
        )

    validate_remote_path(normalized)
    return normalized
