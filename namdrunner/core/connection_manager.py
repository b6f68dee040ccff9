"""
Connection Manager for the single NAMDRunner SSH session.

Provides:
- One authenticated asyncssh session, replaced on every connect
- Command execution with per-call timeouts
- Chunked SFTP upload/download with progress reporting
- Remote directory listing, creation, deletion and rsync mirroring
- Password storage in the system keyring

All remote I/O is serialized through one ``asyncio.Lock``. Each public
method wraps a single-attempt private method in ``retry_with_backoff``;
the lock is held per attempt and released between retries.
"""

import asyncio
import logging
import posixpath
import shlex
import stat
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, List, Optional, Tuple, Union

import asyncssh
import keyring
from keyring.errors import PasswordDeleteError

from ..models import CommandResult, FileInfo, SessionInfo, TransferProgress, utc_now
from .config import KEYRING_SERVICE, Timeouts
from .exceptions import (
    AuthenticationError,
    CommandError,
    FileTransferError,
    HandshakeError,
    NetworkError,
    OperationTimeoutError,
    PermissionDeniedError,
    SessionError,
)
from .paths import ensure_trailing_slash
from .retry import RetryConfig, retry_with_backoff
from .validation import sanitize_username, validate_remote_path

logger = logging.getLogger(__name__)

ProgressSink = Callable[[TransferProgress], None]

_NOT_FOUND_MARKERS = ("no such file", "not found", "does not exist")
# rsync exit codes for socket/protocol/timeout trouble
_RSYNC_TRANSIENT_EXIT_CODES = frozenset({10, 12, 30, 35})
_SFTP_TYPE_DIRECTORY = 2


class ConnectionManager:
    """Owns the one live SSH session and every remote operation on it."""

    KEYRING_SERVICE = KEYRING_SERVICE
    CHUNK_SIZE = 32 * 1024

    def __init__(
        self,
        timeouts: Optional[Timeouts] = None,
        known_hosts_file: Optional[Path] = None,
    ):
        """
        Initialize the connection manager.

        Args:
            timeouts: Per-operation timeouts (defaults from config)
            known_hosts_file: Custom known_hosts path. An empty ``Path()``
                disables host key checking (NOT RECOMMENDED).
        """
        self.timeouts = timeouts or Timeouts()
        self.known_hosts_file = known_hosts_file
        self._conn: Optional[asyncssh.SSHClientConnection] = None
        self._info: Optional[SessionInfo] = None
        self._lock = asyncio.Lock()
        self._io_timeout = self.timeouts.command

    # Credentials

    @staticmethod
    def _keyring_key(host: str, username: str) -> str:
        return f"{username}@{host}"

    def set_password(self, host: str, username: str, password: str) -> None:
        """Store a cluster password in the system keyring."""
        keyring.set_password(self.KEYRING_SERVICE, self._keyring_key(host, username), password)
        logger.info(f"Stored password for {username}@{host}")

    def get_password(self, host: str, username: str) -> Optional[str]:
        return keyring.get_password(self.KEYRING_SERVICE, self._keyring_key(host, username))

    def delete_password(self, host: str, username: str) -> bool:
        """Remove a stored password; False if there was none."""
        try:
            keyring.delete_password(self.KEYRING_SERVICE, self._keyring_key(host, username))
        except PasswordDeleteError:
            logger.warning(f"No password stored for {username}@{host}")
            return False
        logger.info(f"Deleted password for {username}@{host}")
        return True

    # Session lifecycle

    async def connect(
        self,
        host: str,
        port: int,
        username: str,
        password: Optional[str] = None,
    ) -> SessionInfo:
        """
        Open a new session, closing any existing one first.

        Args:
            host: SSH hostname
            port: SSH port
            username: Cluster username
            password: Password; looked up in the keyring when omitted

        Returns:
            SessionInfo for the new session

        Raises:
            AuthenticationError: Credentials rejected (not retried)
            NetworkError: Host unreachable after retries
            OperationTimeoutError: Connect timed out after retries
            HandshakeError: SSH negotiation failed
        """
        sanitize_username(username)
        if password is None:
            password = self.get_password(host, username)

        async def attempt() -> SessionInfo:
            return await self._connect_once(host, port, username, password)

        return await retry_with_backoff(
            attempt, RetryConfig.QUICK, description=f"connect {username}@{host}"
        )

    async def _connect_once(
        self, host: str, port: int, username: str, password: Optional[str]
    ) -> SessionInfo:
        async with self._lock:
            await self._close_locked()

            connect_kwargs = {
                "host": host,
                "port": port,
                "username": username,
                "known_hosts": self._get_known_hosts(),
            }
            if password:
                connect_kwargs["password"] = password

            logger.info(f"Connecting to {username}@{host}:{port}")
            try:
                conn = await asyncio.wait_for(
                    asyncssh.connect(**connect_kwargs), timeout=self.timeouts.connect
                )
            except asyncio.TimeoutError as e:
                raise OperationTimeoutError(
                    f"Connection to {host} timed out",
                    timeout_seconds=self.timeouts.connect,
                    operation="connect",
                ) from e
            except asyncssh.PermissionDenied as e:
                logger.error(f"Authentication failed for {username}@{host}")
                raise AuthenticationError(
                    f"Authentication failed for {username}@{host}", details=str(e)
                ) from e
            except asyncssh.HostKeyNotVerifiable as e:
                raise HandshakeError(
                    f"Host key verification failed for {host}",
                    details=str(e),
                    suggestions=[
                        f"Add the host key with: ssh-keyscan -H {host} >> ~/.ssh/known_hosts"
                    ],
                    retryable=False,
                ) from e
            except asyncssh.Error as e:
                raise HandshakeError(f"SSH handshake with {host} failed", details=str(e)) from e
            except OSError as e:
                raise NetworkError(f"Cannot reach {host}:{port}", details=str(e)) from e

            self._conn = conn
            self._info = SessionInfo(
                host=host, port=port, username=username, connected_at=utc_now()
            )
            self._io_timeout = self.timeouts.command
            logger.info(f"Connected to {username}@{host}:{port}")
            return self._info

    def _get_known_hosts(self) -> Union[str, Tuple[()], None]:
        """Custom file, empty Path() to disable, else ~/.ssh/known_hosts if present."""
        if self.known_hosts_file is not None:
            if self.known_hosts_file.parts == ():
                return ()
            return str(self.known_hosts_file.expanduser())
        default_known_hosts = Path.home() / ".ssh" / "known_hosts"
        return str(default_known_hosts) if default_known_hosts.exists() else None

    async def disconnect(self) -> None:
        async with self._lock:
            await self._close_locked()

    async def _close_locked(self) -> None:
        if self._conn is None:
            return
        info = self._info
        conn = self._conn
        self._conn = None
        self._info = None
        try:
            conn.close()
            await conn.wait_closed()
        except (OSError, asyncssh.Error) as e:
            logger.debug(f"Error while closing session: {e}")
        if info:
            logger.info(f"Disconnected from {info.username}@{info.host}")

    def is_connected(self) -> bool:
        return self._conn is not None and not self._conn.is_closed()

    def get_connection_info(self) -> Optional[SessionInfo]:
        return self._info if self.is_connected() else None

    def get_username(self) -> str:
        """Username of the live session."""
        info = self.get_connection_info()
        if info is None:
            raise SessionError.not_connected()
        return info.username

    def _require_connection(self) -> asyncssh.SSHClientConnection:
        if not self.is_connected():
            raise SessionError.not_connected()
        return self._conn

    @property
    def current_io_timeout(self) -> float:
        """Timeout applied to SFTP I/O right now."""
        return self._io_timeout

    def _begin_transfer(self) -> None:
        self._io_timeout = self.timeouts.file_transfer

    def _end_transfer(self) -> None:
        self._io_timeout = self.timeouts.command

    # Commands

    async def execute_command(
        self,
        command: str,
        timeout: Optional[float] = None,
        retry_config: RetryConfig = RetryConfig.NETWORK,
    ) -> CommandResult:
        """
        Run a command on the cluster.

        A non-zero exit code is returned in the result, not raised.

        Args:
            command: Shell command line (callers quote their arguments)
            timeout: Override for the command timeout in seconds
            retry_config: Backoff preset; pass ``RetryConfig(max_attempts=1)``
                for commands that must not run twice

        Raises:
            SessionError: No live session
            OperationTimeoutError: The command exceeded its timeout
            NetworkError: Transport failure
        """
        self._require_connection()

        async def attempt() -> CommandResult:
            return await self._execute_once(command, timeout)

        return await retry_with_backoff(
            attempt, retry_config, description=f"command '{command.split(' ', 1)[0]}'"
        )

    async def _execute_once(self, command: str, timeout: Optional[float]) -> CommandResult:
        limit = timeout if timeout is not None else self.timeouts.command
        async with self._lock:
            conn = self._require_connection()
            logger.debug(f"Executing: {command}")
            started = time.monotonic()
            try:
                result = await conn.run(command, check=False, timeout=limit)
            except asyncssh.TimeoutError as e:
                partial = CommandResult(
                    stdout=e.stdout or "",
                    stderr=e.stderr or "",
                    exit_code=-1,
                    duration_ms=int((time.monotonic() - started) * 1000),
                    timed_out=True,
                )
                raise OperationTimeoutError(
                    f"Command timed out after {limit:g}s",
                    timeout_seconds=limit,
                    operation=command,
                    result=partial,
                ) from e
            except asyncio.TimeoutError as e:
                raise OperationTimeoutError(
                    f"Command timed out after {limit:g}s", timeout_seconds=limit, operation=command
                ) from e
            except asyncssh.ChannelOpenError as e:
                raise SessionError("Could not open a channel on the session", details=str(e)) from e
            except asyncssh.DisconnectError as e:
                raise SessionError("Session dropped while running command", details=str(e)) from e
            except (OSError, asyncssh.Error) as e:
                raise NetworkError("Transport failure while running command", details=str(e)) from e

            exit_code = result.exit_status if result.exit_status is not None else -1
            return CommandResult(
                stdout=result.stdout or "",
                stderr=result.stderr or "",
                exit_code=exit_code,
                duration_ms=int((time.monotonic() - started) * 1000),
            )

    # File transfer

    async def upload_file(
        self,
        local_path: Union[str, Path],
        remote_path: str,
        progress: Optional[ProgressSink] = None,
    ) -> int:
        """
        Upload a local file in chunks, overwriting the remote file.

        Args:
            local_path: Source file
            remote_path: Absolute destination path
            progress: Called with cumulative TransferProgress after every chunk

        Returns:
            Number of bytes uploaded

        Raises:
            FileTransferError: Local file missing or transfer failed after retries
        """
        local = Path(local_path)
        if not local.is_file():
            raise FileTransferError(
                f"Local file not found: {local}",
                local_path=str(local),
                remote_path=remote_path,
                retryable=False,
            )
        self._require_connection()

        async def attempt() -> int:
            with open(local, "rb") as src:
                return await self._write_remote_once(
                    src.read, local.stat().st_size, remote_path, progress, str(local)
                )

        return await retry_with_backoff(
            attempt, RetryConfig.PATIENT, description=f"upload {local.name}"
        )

    async def upload_bytes(self, data: bytes, remote_path: str) -> int:
        """Write ``data`` to a remote file (scripts, metadata)."""
        self._require_connection()

        async def attempt() -> int:
            offset = 0

            def read(size: int) -> bytes:
                nonlocal offset
                chunk = data[offset:offset + size]
                offset += len(chunk)
                return chunk

            return await self._write_remote_once(read, len(data), remote_path, None, "<memory>")

        return await retry_with_backoff(
            attempt, RetryConfig.PATIENT, description=f"upload {posixpath.basename(remote_path)}"
        )

    async def _write_remote_once(
        self,
        read: Callable[[int], bytes],
        total: int,
        remote_path: str,
        progress: Optional[ProgressSink],
        source_label: str,
    ) -> int:
        async with self._lock:
            conn = self._require_connection()
            self._begin_transfer()
            started = time.monotonic()
            sent = 0
            try:
                async with await conn.start_sftp_client() as sftp:
                    async with sftp.open(remote_path, "wb") as dst:
                        while True:
                            chunk = read(self.CHUNK_SIZE)
                            if not chunk:
                                break
                            await asyncio.wait_for(dst.write(chunk), timeout=self._io_timeout)
                            sent += len(chunk)
                            if progress:
                                progress(TransferProgress(sent, total, time.monotonic() - started))
                if progress and total == 0:
                    progress(TransferProgress(0, 0, time.monotonic() - started))
            except Exception as e:
                raise self._translate_transfer_error(e, source_label, remote_path) from e
            finally:
                self._end_transfer()

            logger.debug(f"Uploaded {sent} bytes to {remote_path}")
            return sent

    async def download_file(
        self,
        remote_path: str,
        local_path: Union[str, Path],
        progress: Optional[ProgressSink] = None,
    ) -> int:
        """
        Download a remote file in chunks.

        Returns:
            Number of bytes downloaded
        """
        self._require_connection()
        local = Path(local_path)

        async def attempt() -> int:
            return await self._download_once(remote_path, local, progress)

        return await retry_with_backoff(
            attempt, RetryConfig.PATIENT, description=f"download {posixpath.basename(remote_path)}"
        )

    async def _download_once(
        self, remote_path: str, local: Path, progress: Optional[ProgressSink]
    ) -> int:
        async with self._lock:
            conn = self._require_connection()
            self._begin_transfer()
            started = time.monotonic()
            received = 0
            try:
                local.parent.mkdir(parents=True, exist_ok=True)
                async with await conn.start_sftp_client() as sftp:
                    attrs = await asyncio.wait_for(sftp.stat(remote_path), timeout=self._io_timeout)
                    total = attrs.size or 0
                    async with sftp.open(remote_path, "rb") as src:
                        with open(local, "wb") as dst:
                            while True:
                                chunk = await asyncio.wait_for(
                                    src.read(self.CHUNK_SIZE), timeout=self._io_timeout
                                )
                                if not chunk:
                                    break
                                dst.write(chunk)
                                received += len(chunk)
                                if progress:
                                    progress(
                                        TransferProgress(received, total, time.monotonic() - started)
                                    )
            except Exception as e:
                raise self._translate_transfer_error(e, str(local), remote_path) from e
            finally:
                self._end_transfer()

            logger.debug(f"Downloaded {received} bytes from {remote_path}")
            return received

    async def read_file(self, remote_path: str) -> str:
        """Read a small remote text file (metadata, scheduler logs)."""
        self._require_connection()

        async def attempt() -> str:
            async with self._lock:
                conn = self._require_connection()
                try:
                    async with await conn.start_sftp_client() as sftp:
                        async with sftp.open(remote_path, "rb") as src:
                            data = await asyncio.wait_for(src.read(), timeout=self._io_timeout)
                except Exception as e:
                    raise self._translate_transfer_error(e, "<memory>", remote_path) from e
            return data.decode("utf-8", errors="replace")

        return await retry_with_backoff(
            attempt, RetryConfig.NETWORK, description=f"read {posixpath.basename(remote_path)}"
        )

    def _translate_transfer_error(
        self, error: BaseException, local_path: str, remote_path: str
    ) -> Exception:
        if isinstance(error, asyncssh.SFTPNoSuchFile):
            return FileTransferError(
                f"Remote path not found: {remote_path}",
                local_path=local_path,
                remote_path=remote_path,
                details=str(error),
                retryable=False,
            )
        if isinstance(error, asyncssh.SFTPPermissionDenied):
            return PermissionDeniedError(f"Permission denied: {remote_path}", details=str(error))
        if isinstance(error, asyncio.TimeoutError):
            return OperationTimeoutError(
                f"Transfer of {remote_path} stalled",
                timeout_seconds=self._io_timeout,
                operation="transfer",
            )
        if isinstance(error, asyncssh.DisconnectError):
            return SessionError("Session dropped during transfer", details=str(error))
        if isinstance(error, asyncssh.SFTPError):
            return FileTransferError(
                f"Transfer failed: {remote_path}",
                local_path=local_path,
                remote_path=remote_path,
                details=str(error),
            )
        if isinstance(error, OSError):
            return FileTransferError(
                f"Local I/O error during transfer: {local_path}",
                local_path=local_path,
                remote_path=remote_path,
                details=str(error),
                retryable=False,
            )
        if isinstance(error, asyncssh.Error):
            return NetworkError("Transport failure during transfer", details=str(error))
        return FileTransferError(
            f"Transfer failed: {remote_path}",
            local_path=local_path,
            remote_path=remote_path,
            details=str(error),
            retryable=False,
        )

    # Directories

    async def list_files(self, path: str) -> List[FileInfo]:
        """List a remote directory, skipping ``.`` and ``..``."""
        self._require_connection()

        async def attempt() -> List[FileInfo]:
            async with self._lock:
                conn = self._require_connection()
                try:
                    async with await conn.start_sftp_client() as sftp:
                        entries = await asyncio.wait_for(sftp.readdir(path), timeout=self._io_timeout)
                except Exception as e:
                    raise self._translate_transfer_error(e, "", path) from e

            files = []
            for entry in entries:
                if entry.filename in (".", ".."):
                    continue
                attrs = entry.attrs
                if attrs.permissions is not None:
                    is_dir = stat.S_ISDIR(attrs.permissions)
                else:
                    is_dir = attrs.type == _SFTP_TYPE_DIRECTORY
                files.append(
                    FileInfo(
                        name=entry.filename,
                        path=posixpath.join(path, entry.filename),
                        size=attrs.size or 0,
                        is_directory=is_dir,
                        modified_at=(
                            datetime.fromtimestamp(attrs.mtime, tz=timezone.utc)
                            if attrs.mtime is not None
                            else None
                        ),
                        permissions=attrs.permissions,
                    )
                )
            return files

        return await retry_with_backoff(attempt, RetryConfig.NETWORK, description=f"list {path}")

    async def create_directory(self, path: str) -> None:
        """``mkdir -p``; succeeds if the directory already exists."""
        validate_remote_path(path)
        result = await self.execute_command(f"mkdir -p -m 0755 {shlex.quote(path)}")
        if result.exit_code != 0:
            self._raise_for_command(result, f"create directory {path}")

    async def delete_directory(self, path: str) -> None:
        """
        ``rm -rf`` a remote directory.

        Callers must gate ``path`` with ``validate_deletion_path`` first.
        """
        validate_remote_path(path)
        logger.info(f"Deleting remote directory {path}")
        result = await self.execute_command(f"rm -rf {shlex.quote(path)}")
        if result.exit_code != 0:
            self._raise_for_command(result, f"delete directory {path}")

    async def file_exists(self, path: str) -> bool:
        """True if ``path`` exists; "not found" errors mean False."""
        self._require_connection()

        async def attempt() -> bool:
            async with self._lock:
                conn = self._require_connection()
                try:
                    async with await conn.start_sftp_client() as sftp:
                        await asyncio.wait_for(sftp.stat(path), timeout=self._io_timeout)
                    return True
                except asyncssh.SFTPNoSuchFile:
                    return False
                except asyncssh.SFTPError as e:
                    if any(marker in str(e).lower() for marker in _NOT_FOUND_MARKERS):
                        return False
                    raise self._translate_transfer_error(e, "", path) from e
                except Exception as e:
                    raise self._translate_transfer_error(e, "", path) from e

        return await retry_with_backoff(attempt, RetryConfig.QUICK, description=f"stat {path}")

    async def sync_directory_mirror(self, source: str, destination: str) -> CommandResult:
        """
        Mirror the contents of ``source`` into ``destination`` with rsync.

        Only changed files are copied. ``source`` always gets a trailing
        slash so its contents land in ``destination`` rather than a nested
        directory.

        Raises:
            CommandError: rsync exited non-zero
        """
        validate_remote_path(source)
        validate_remote_path(destination)
        self._require_connection()
        src = ensure_trailing_slash(source)
        command = (
            f"mkdir -p {shlex.quote(destination)} && "
            f"rsync -az {shlex.quote(src)} {shlex.quote(destination)}"
        )
        logger.info(f"Mirroring {src} -> {destination}")

        async def attempt() -> CommandResult:
            result = await self._execute_once(command, self.timeouts.file_transfer)
            if result.exit_code != 0:
                raise CommandError(
                    f"rsync from {src} to {destination} failed with exit code {result.exit_code}",
                    command=command,
                    exit_code=result.exit_code,
                    stderr=result.stderr.strip(),
                    retryable=result.exit_code in _RSYNC_TRANSIENT_EXIT_CODES,
                )
            return result

        return await retry_with_backoff(attempt, RetryConfig.PATIENT, description=f"rsync {src}")

    @staticmethod
    def _raise_for_command(result: CommandResult, action: str) -> None:
        stderr = result.stderr.strip()
        if "permission denied" in stderr.lower():
            raise PermissionDeniedError(f"Permission denied: could not {action}", details=stderr)
        raise CommandError(
            f"Could not {action} (exit code {result.exit_code})",
            exit_code=result.exit_code,
            stderr=stderr,
        )


_manager: Optional[ConnectionManager] = None


def get_connection_manager() -> ConnectionManager:
    """Process-wide connection manager."""
    global _manager
    if _manager is None:
        _manager = ConnectionManager()
    return _manager


def set_connection_manager(manager: Optional[ConnectionManager]) -> None:
    """Replace the process-wide manager (tests, custom timeouts)."""
    global _manager
    _manager = manager
