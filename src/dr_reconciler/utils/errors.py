"""Error handling framework for reconciliation runs."""

import re
import subprocess
from typing import Optional, Dict, Any, List
from enum import Enum
from dataclasses import dataclass
from botocore.exceptions import ClientError, NoCredentialsError, PartialCredentialsError
from dr_reconciler.utils.logging import get_logger

logger = get_logger(__name__)


class ErrorCategory(Enum):
    """Categories of errors that can occur during a run."""
    CONFIGURATION = "configuration"
    CLUSTER_API = "cluster_api"
    CLOUD_API = "cloud_api"
    NETWORK = "network"
    CREDENTIAL = "credential"
    PERMISSION = "permission"
    NOT_FOUND = "not_found"
    VALIDATION = "validation"
    CANCELLED = "cancelled"
    UNKNOWN = "unknown"


class ErrorSeverity(Enum):
    """Severity levels for errors."""
    CRITICAL = "critical"  # Run cannot continue
    ERROR = "error"  # Check or remediation failed but the run continues
    WARNING = "warning"  # Non-fatal issue
    INFO = "info"  # Informational message


@dataclass
class ErrorContext:
    """Context information for an error."""
    cluster: Optional[str] = None
    resource_kind: Optional[str] = None
    namespace: Optional[str] = None
    name: Optional[str] = None
    operation: Optional[str] = None
    command: Optional[str] = None
    request_id: Optional[str] = None
    additional_info: Optional[Dict[str, Any]] = None

    def describe_resource(self) -> Optional[str]:
        """Render kind/namespace/name as a single reference, if known."""
        if not self.resource_kind:
            return None
        ref = self.resource_kind
        if self.namespace:
            ref = f"{ref} {self.namespace}/{self.name}" if self.name else f"{ref} in {self.namespace}"
        elif self.name:
            ref = f"{ref} {self.name}"
        return ref


class ReconcileError(Exception):
    """Base exception for reconciliation errors."""

    # Categories the scheduler may simply retry on its next attempt
    TRANSIENT_CATEGORIES = {ErrorCategory.NETWORK}
    # Categories that must stop the run immediately
    TERMINAL_CATEGORIES = {ErrorCategory.PERMISSION, ErrorCategory.CREDENTIAL}

    def __init__(
        self,
        message: str,
        category: ErrorCategory = ErrorCategory.UNKNOWN,
        severity: ErrorSeverity = ErrorSeverity.ERROR,
        context: Optional[ErrorContext] = None,
        cause: Optional[Exception] = None,
        suggestions: Optional[List[str]] = None
    ):
        """Initialize reconciliation error.

        Args:
            message: Human-readable error message
            category: Error category
            severity: Error severity
            context: Additional context about the error
            cause: Original exception that caused this error
            suggestions: List of suggested fixes
        """
        super().__init__(message)
        self.message = message
        self.category = category
        self.severity = severity
        self.context = context or ErrorContext()
        self.cause = cause
        self.suggestions = suggestions or []

    @property
    def is_transient(self) -> bool:
        return self.category in self.TRANSIENT_CATEGORIES

    @property
    def is_terminal(self) -> bool:
        return self.category in self.TERMINAL_CATEGORIES

    def to_user_message(self) -> str:
        """Convert error to user-friendly message.

        Returns:
            Formatted error message for display to user
        """
        lines = [f"{self.severity.value.upper()}: {self.message}"]

        if self.context.cluster:
            lines.append(f"   Cluster: {self.context.cluster}")
        resource = self.context.describe_resource()
        if resource:
            lines.append(f"   Resource: {resource}")
        if self.context.operation:
            lines.append(f"   Operation: {self.context.operation}")

        if self.cause:
            lines.append(f"   Cause: {str(self.cause)}")

        if self.suggestions:
            lines.append("\nSuggested fixes:")
            for i, suggestion in enumerate(self.suggestions, 1):
                lines.append(f"   {i}. {suggestion}")

        return "\n".join(lines)

    def to_dict(self) -> Dict[str, Any]:
        """Convert error to dictionary for logging/serialization.

        Returns:
            Dictionary representation of the error
        """
        return {
            'message': self.message,
            'category': self.category.value,
            'severity': self.severity.value,
            'context': {
                'cluster': self.context.cluster,
                'resource_kind': self.context.resource_kind,
                'namespace': self.context.namespace,
                'name': self.context.name,
                'operation': self.context.operation,
                'command': self.context.command,
                'request_id': self.context.request_id,
                'additional_info': self.context.additional_info
            },
            'cause': str(self.cause) if self.cause else None,
            'suggestions': self.suggestions
        }


class ConfigurationError(ReconcileError):
    """Error in configuration file or environment."""

    def __init__(self, message: str, **kwargs):
        super().__init__(
            message,
            category=ErrorCategory.CONFIGURATION,
            severity=ErrorSeverity.CRITICAL,
            **kwargs
        )


class CredentialError(ReconcileError):
    """Credentials for a cluster or cloud account are missing or rejected."""

    def __init__(self, message: str, **kwargs):
        kwargs.setdefault('suggestions', [
            'Verify the kubeconfig / cloud credential secret for this cluster exists',
            'Check that the credential has not expired or been rotated',
        ])
        super().__init__(
            message,
            category=ErrorCategory.CREDENTIAL,
            severity=ErrorSeverity.CRITICAL,
            **kwargs
        )


class AccessDeniedError(ReconcileError):
    """Authenticated, but not authorized for the operation."""

    def __init__(self, message: str, **kwargs):
        kwargs.setdefault('suggestions', [
            'Grant the service account the RBAC verbs this job needs (get/list/patch/create/delete)',
            'For cloud calls, check the IAM policy attached to the cluster credentials',
        ])
        super().__init__(
            message,
            category=ErrorCategory.PERMISSION,
            severity=ErrorSeverity.CRITICAL,
            **kwargs
        )


class NetworkError(ReconcileError):
    """Transient connectivity problem."""

    def __init__(self, message: str, **kwargs):
        super().__init__(
            message,
            category=ErrorCategory.NETWORK,
            severity=ErrorSeverity.ERROR,
            **kwargs
        )


class CommandError(ReconcileError):
    """A remote command or API call failed for a non-classified reason."""

    def __init__(self, message: str, category: ErrorCategory = ErrorCategory.CLUSTER_API, **kwargs):
        super().__init__(
            message,
            category=category,
            severity=ErrorSeverity.ERROR,
            **kwargs
        )


class ResourceNotFoundError(ReconcileError):
    """A resource that had to exist is missing."""

    def __init__(self, message: str, **kwargs):
        super().__init__(
            message,
            category=ErrorCategory.NOT_FOUND,
            severity=ErrorSeverity.ERROR,
            **kwargs
        )


class CancelledError(ReconcileError):
    """The run was cancelled."""

    def __init__(self, message: str = "Run cancelled", **kwargs):
        super().__init__(
            message,
            category=ErrorCategory.CANCELLED,
            severity=ErrorSeverity.WARNING,
            **kwargs
        )


class ErrorHandler:
    """Handles and categorizes errors from the cluster CLI, AWS and other sources."""

    # Mapping of AWS error codes to error categories and suggestions
    AWS_ERROR_MAPPING = {
        'AuthFailure': {
            'category': ErrorCategory.CREDENTIAL,
            'message': 'AWS credentials were rejected',
            'suggestions': [
                'Check the <cluster>-cluster-aws-creds secret on the hub',
                'Rotate the access key if it was revoked',
            ]
        },
        'InvalidClientTokenId': {
            'category': ErrorCategory.CREDENTIAL,
            'message': 'AWS credentials are invalid or expired',
            'suggestions': [
                'Check the <cluster>-cluster-aws-creds secret on the hub',
                'Update credentials if they have expired',
            ]
        },
        'SignatureDoesNotMatch': {
            'category': ErrorCategory.CREDENTIAL,
            'message': 'AWS credential signature is invalid',
            'suggestions': [
                'Verify the secret access key stored for this cluster',
            ]
        },
        'UnauthorizedOperation': {
            'category': ErrorCategory.PERMISSION,
            'message': 'Operation not authorized',
            'suggestions': [
                'Allow ec2:DescribeSecurityGroups, ec2:DescribeTags and ec2:CreateTags',
                'Verify you are operating in the correct AWS region',
            ]
        },
        'AccessDenied': {
            'category': ErrorCategory.PERMISSION,
            'message': 'Access denied - insufficient permissions',
            'suggestions': [
                'Check IAM policies attached to the cluster credentials',
            ]
        },
        'RequestLimitExceeded': {
            'category': ErrorCategory.NETWORK,
            'message': 'API rate limit exceeded',
            'suggestions': ['The next attempt will retry automatically']
        },
        'RequestTimeout': {
            'category': ErrorCategory.NETWORK,
            'message': 'Request timed out',
            'suggestions': ['Check network connectivity to the AWS endpoint']
        },
        'ServiceUnavailable': {
            'category': ErrorCategory.NETWORK,
            'message': 'AWS service temporarily unavailable',
            'suggestions': ['The next attempt will retry automatically']
        },
    }

    # Patterns in oc/kubectl stderr, checked in order
    COMMAND_ERROR_PATTERNS = [
        (re.compile(r'\(NotFound\)|not found', re.IGNORECASE), ErrorCategory.NOT_FOUND),
        (re.compile(r'\(Forbidden\)|forbidden', re.IGNORECASE), ErrorCategory.PERMISSION),
        (re.compile(r'\(Unauthorized\)|must be logged in|provide credentials', re.IGNORECASE),
         ErrorCategory.CREDENTIAL),
        (re.compile(r'connection refused|i/o timeout|no such host|timed out|'
                    r'TLS handshake timeout|unable to connect|ServiceUnavailable|'
                    r'the server is currently unable', re.IGNORECASE),
         ErrorCategory.NETWORK),
    ]

    def __init__(self):
        """Initialize error handler."""
        self.logger = get_logger(__name__)

    def handle_exception(
        self,
        error: Exception,
        context: Optional[ErrorContext] = None
    ) -> ReconcileError:
        """Handle an exception and convert to ReconcileError.

        Args:
            error: The exception to handle
            context: Additional context about where the error occurred

        Returns:
            ReconcileError with categorization and suggestions
        """
        context = context or ErrorContext()

        if isinstance(error, ReconcileError):
            return error

        if isinstance(error, ClientError):
            return self._handle_aws_error(error, context)

        if isinstance(error, (NoCredentialsError, PartialCredentialsError)):
            return CredentialError(
                message=f'AWS credentials are missing or incomplete: {error}',
                context=context,
                cause=error
            )

        if isinstance(error, subprocess.TimeoutExpired):
            return NetworkError(
                message=f'Command timed out after {error.timeout}s',
                context=context,
                cause=error,
                suggestions=['Check connectivity to the cluster API server']
            )

        if isinstance(error, FileNotFoundError):
            return ConfigurationError(
                message=f'Required executable or file not found: {error.filename or error}',
                context=context,
                cause=error,
                suggestions=['Ensure the oc CLI is installed and on PATH']
            )

        if isinstance(error, (ConnectionError, TimeoutError)):
            return NetworkError(
                message=f'Network error: {str(error)}',
                context=context,
                cause=error,
                suggestions=['The next attempt will retry automatically']
            )

        return ReconcileError(
            message=str(error),
            category=ErrorCategory.UNKNOWN,
            severity=ErrorSeverity.ERROR,
            context=context,
            cause=error,
            suggestions=['Check logs for more details']
        )

    def classify_command_failure(
        self,
        stderr: str,
        context: Optional[ErrorContext] = None
    ) -> ReconcileError:
        """Classify a failed cluster CLI invocation from its stderr.

        Args:
            stderr: Standard error of the failed command
            context: Error context

        Returns:
            ReconcileError of the matching category
        """
        context = context or ErrorContext()
        text = (stderr or '').strip() or 'command failed without output'

        for pattern, category in self.COMMAND_ERROR_PATTERNS:
            if not pattern.search(text):
                continue
            if category == ErrorCategory.NOT_FOUND:
                return ResourceNotFoundError(text, context=context)
            if category == ErrorCategory.PERMISSION:
                return AccessDeniedError(text, context=context)
            if category == ErrorCategory.CREDENTIAL:
                return CredentialError(text, context=context)
            if category == ErrorCategory.NETWORK:
                return NetworkError(text, context=context)

        return CommandError(text, context=context)

    def _handle_aws_error(
        self,
        error: ClientError,
        context: ErrorContext
    ) -> ReconcileError:
        """Handle AWS ClientError.

        Args:
            error: The ClientError
            context: Error context

        Returns:
            Categorized ReconcileError
        """
        error_code = error.response.get('Error', {}).get('Code', 'Unknown')
        error_message = error.response.get('Error', {}).get('Message', str(error))
        context.request_id = error.response.get('ResponseMetadata', {}).get('RequestId')

        error_info = self.AWS_ERROR_MAPPING.get(error_code)

        if error_info:
            message = f"{error_info['message']}: {error_message}"
            category = error_info['category']
            suggestions = error_info['suggestions']
            if category == ErrorCategory.PERMISSION:
                return AccessDeniedError(message, context=context, cause=error, suggestions=suggestions)
            if category == ErrorCategory.CREDENTIAL:
                return CredentialError(message, context=context, cause=error, suggestions=suggestions)
            if category == ErrorCategory.NETWORK:
                return NetworkError(message, context=context, cause=error, suggestions=suggestions)

        return CommandError(
            f"AWS Error ({error_code}): {error_message}",
            category=ErrorCategory.CLOUD_API,
            context=context,
            cause=error,
            suggestions=[f'AWS Request ID: {context.request_id}']
        )


# Global error handler instance
error_handler = ErrorHandler()
