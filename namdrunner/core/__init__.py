"""Connection, retry, storage and configuration layers."""

from .config import Settings, Timeouts, load_settings
from .connection_manager import ConnectionManager, get_connection_manager, set_connection_manager
from .database import InMemoryJobStore, SQLiteJobStore
from .exceptions import (
    # Base exception
    NamdRunnerError,
    # Transport errors
    RemoteError,
    NetworkError,
    OperationTimeoutError,
    HandshakeError,
    SessionError,
    AuthenticationError,
    PermissionDeniedError,
    ConfigurationError,
    CommandError,
    FileTransferError,
    # Automation errors
    AutomationError,
    FileOperationError,
    DatabaseError,
    ValidationError,
    JobNotFoundError,
    SlurmError,
    ProgressError,
)
from .retry import RetryConfig, is_retryable_error, retry_with_backoff
from .templates import Template, TemplateRegistry, VariableDefinition, VariableType

__all__ = [
    'Settings',
    'Timeouts',
    'load_settings',
    'ConnectionManager',
    'get_connection_manager',
    'set_connection_manager',
    'InMemoryJobStore',
    'SQLiteJobStore',
    'NamdRunnerError',
    'RemoteError',
    'NetworkError',
    'OperationTimeoutError',
    'HandshakeError',
    'SessionError',
    'AuthenticationError',
    'PermissionDeniedError',
    'ConfigurationError',
    'CommandError',
    'FileTransferError',
    'AutomationError',
    'FileOperationError',
    'DatabaseError',
    'ValidationError',
    'JobNotFoundError',
    'SlurmError',
    'ProgressError',
    'RetryConfig',
    'is_retryable_error',
    'retry_with_backoff',
    'Template',
    'TemplateRegistry',
    'VariableDefinition',
    'VariableType',
]
