"""Utility modules for logging, error handling and retries."""

from dr_reconciler.utils.retry import BackoffPolicy, RetryStrategy
from dr_reconciler.utils.errors import (
    ErrorCategory,
    ErrorSeverity,
    ErrorContext,
    ReconcileError,
    ConfigurationError,
    CredentialError,
    AccessDeniedError,
    NetworkError,
    CommandError,
    ResourceNotFoundError,
    CancelledError,
    ErrorHandler,
    error_handler
)
from dr_reconciler.utils.logging import get_logger, setup_logging, LogContext

__all__ = [
    # Retry
    'BackoffPolicy',
    'RetryStrategy',

    # Errors
    'ErrorCategory',
    'ErrorSeverity',
    'ErrorContext',
    'ReconcileError',
    'ConfigurationError',
    'CredentialError',
    'AccessDeniedError',
    'NetworkError',
    'CommandError',
    'ResourceNotFoundError',
    'CancelledError',
    'ErrorHandler',
    'error_handler',

    # Logging
    'get_logger',
    'setup_logging',
    'LogContext',
]
