"""
Error taxonomy and logging utilities for the portal sync pipeline.
"""

import logging
import traceback
from datetime import datetime
from typing import Dict, Any, List, Optional, Union


# Portal-specific logger for structured error records
portal_logger = logging.getLogger('portal_integration')


class SyncErrorSeverity:
    """Error severity levels for sync operations."""
    LOW = "low"           # Single record skipped, batch continues
    MEDIUM = "medium"     # One page type degraded to empty results
    HIGH = "high"         # Pipeline halted before scraping
    CRITICAL = "critical" # Unexpected failure caught at the scheduler boundary


class SyncErrorCategory:
    """Error categories for better classification."""
    AUTHENTICATION = "authentication"
    NAVIGATION = "navigation"
    PARSE = "parse"
    CONCURRENCY = "concurrency"
    CONFIGURATION = "configuration"
    UNKNOWN = "unknown"


class SyncError(Exception):
    """Base exception for sync pipeline errors with enhanced metadata."""

    def __init__(
        self,
        message: str,
        category: str = SyncErrorCategory.UNKNOWN,
        severity: str = SyncErrorSeverity.MEDIUM,
        operation_type: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        retryable: bool = False,
        original_exception: Optional[Exception] = None
    ):
        super().__init__(message)
        self.message = message
        self.category = category
        self.severity = severity
        self.operation_type = operation_type
        self.details = details or {}
        self.retryable = retryable
        self.original_exception = original_exception
        self.timestamp = datetime.utcnow()

    def to_dict(self) -> Dict[str, Any]:
        """Convert error to dictionary for logging/storage."""
        return {
            'message': self.message,
            'category': self.category,
            'severity': self.severity,
            'operation_type': self.operation_type,
            'details': self.details,
            'retryable': self.retryable,
            'timestamp': self.timestamp.isoformat(),
            'traceback': traceback.format_exc() if self.original_exception else None
        }


class AuthenticationFailure(SyncError):
    """The portal rejected the login."""

    def __init__(self, message: str, **kwargs):
        super().__init__(
            message,
            category=SyncErrorCategory.AUTHENTICATION,
            severity=SyncErrorSeverity.HIGH,
            **kwargs
        )


class NotAuthenticated(SyncError):
    """No valid session and no stored credentials to renew it."""

    def __init__(self, message: str = "No stored credentials found", **kwargs):
        super().__init__(
            message,
            category=SyncErrorCategory.AUTHENTICATION,
            severity=SyncErrorSeverity.HIGH,
            **kwargs
        )


class NavigationFailure(SyncError):
    """A portal page could not be reached or did not render in time."""

    def __init__(self, message: str, url: Optional[str] = None, **kwargs):
        details = kwargs.pop('details', {})
        details['url'] = url
        super().__init__(
            message,
            category=SyncErrorCategory.NAVIGATION,
            severity=SyncErrorSeverity.MEDIUM,
            details=details,
            **kwargs
        )


class ParseFailure(SyncError):
    """A single record could not be parsed."""

    def __init__(self, message: str, **kwargs):
        super().__init__(
            message,
            category=SyncErrorCategory.PARSE,
            severity=SyncErrorSeverity.LOW,
            **kwargs
        )


class ConcurrentSyncRejected(SyncError):
    """A sync was requested while another one is running."""

    def __init__(self, message: str = "Sync already in progress", **kwargs):
        super().__init__(
            message,
            category=SyncErrorCategory.CONCURRENCY,
            severity=SyncErrorSeverity.LOW,
            **kwargs
        )


def log_sync_error(
    error: Union[SyncError, Exception],
    context: Optional[Dict[str, Any]] = None
) -> Dict[str, Any]:
    """
    Log an error with full context.

    Args:
        error: The error to log
        context: Additional context information

    Returns:
        The structured record that was logged
    """
    if isinstance(error, SyncError):
        error_dict = error.to_dict()
    else:
        error_dict = {
            'message': str(error),
            'category': SyncErrorCategory.UNKNOWN,
            'severity': SyncErrorSeverity.CRITICAL,
            'timestamp': datetime.utcnow().isoformat(),
            'traceback': traceback.format_exc()
        }

    if context:
        error_dict.update(context)

    severity = error_dict.get('severity', SyncErrorSeverity.MEDIUM)
    log_message = f"Sync Error [{severity.upper()}]: {error_dict['message']}"

    if severity == SyncErrorSeverity.CRITICAL:
        portal_logger.critical(log_message, extra={'sync_error': error_dict})
    elif severity == SyncErrorSeverity.HIGH:
        portal_logger.error(log_message, extra={'sync_error': error_dict})
    elif severity == SyncErrorSeverity.MEDIUM:
        portal_logger.warning(log_message, extra={'sync_error': error_dict})
    else:
        portal_logger.info(log_message, extra={'sync_error': error_dict})

    return error_dict


def collect_warning(warnings: List[str], message: str, logger: Optional[logging.Logger] = None) -> None:
    """Record a recoverable problem in a warnings list and the log."""
    (logger or portal_logger).warning(message)
    warnings.append(message)
