"""
Error handling framework for Visitor Analytics.

This module provides:
- Hierarchical exception classes
- Error context preservation
- A tagged Result outcome for best-effort operations
- Structured error payloads
"""

from typing import Optional, Dict, Any, Generic, TypeVar
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from contextlib import contextmanager


T = TypeVar('T')


class ErrorSeverity(Enum):
    """Error severity levels."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class ErrorCategory(Enum):
    """Error categories for classification."""
    CONFIGURATION = "configuration"
    STORAGE = "storage"
    TRACKING = "tracking"
    PRIVACY = "privacy"
    RETENTION = "retention"
    UNKNOWN = "unknown"


@dataclass
class ErrorContext:
    """Context information for an error."""
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    component: Optional[str] = None
    operation: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


class AnalyticsError(Exception):
    """Base exception for all Visitor Analytics errors."""

    code: str = "ANALYTICS_ERROR"
    default_message: str = "An analytics error occurred"
    severity: ErrorSeverity = ErrorSeverity.ERROR
    category: ErrorCategory = ErrorCategory.UNKNOWN

    def __init__(
        self,
        message: Optional[str] = None,
        context: Optional[ErrorContext] = None,
        cause: Optional[Exception] = None,
    ):
        self.message = message or self.default_message
        self.context = context or ErrorContext()
        self.cause = cause
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "error": {
                "code": self.code,
                "message": self.message,
                "severity": self.severity.value,
                "category": self.category.value,
                "cause": type(self.cause).__name__ if self.cause else None,
                "context": {
                    "timestamp": self.context.timestamp.isoformat(),
                    "component": self.context.component,
                    "operation": self.context.operation,
                    "metadata": self.context.metadata
                }
            }
        }


class ConfigurationError(AnalyticsError):
    """Configuration errors."""
    code = "CONFIG_ERROR"
    default_message = "Configuration error"
    category = ErrorCategory.CONFIGURATION


class StorageError(AnalyticsError):
    """Persistence layer errors."""
    code = "STORAGE_ERROR"
    default_message = "Analytics storage error"
    category = ErrorCategory.STORAGE


class TrackingError(AnalyticsError):
    """Soft failures on the tracking write path."""
    code = "TRACKING_ERROR"
    default_message = "Tracking failed"
    category = ErrorCategory.TRACKING
    severity = ErrorSeverity.WARNING


class PrivacyError(AnalyticsError):
    """Export or erasure failures."""
    code = "PRIVACY_ERROR"
    default_message = "Privacy operation failed"
    category = ErrorCategory.PRIVACY


class RetentionError(AnalyticsError):
    """Retention cleanup failures."""
    code = "RETENTION_ERROR"
    default_message = "Retention cleanup failed"
    category = ErrorCategory.RETENTION


@dataclass(frozen=True)
class Result(Generic[T]):
    """Outcome of a best-effort operation: a value or an error, never both."""
    value: Optional[T] = None
    error: Optional[AnalyticsError] = None

    @classmethod
    def ok(cls, value: Optional[T] = None) -> "Result[T]":
        return cls(value=value)

    @classmethod
    def fail(cls, error: AnalyticsError) -> "Result[T]":
        return cls(error=error)

    @property
    def is_ok(self) -> bool:
        return self.error is None

    def __bool__(self) -> bool:
        return self.is_ok


@contextmanager
def error_context(
    component: str,
    operation: str,
    error_class: type = AnalyticsError,
    **metadata
):
    """
    Wrap unexpected exceptions raised in the block into an AnalyticsError.

    Args:
        component: Component name
        operation: Operation name
        error_class: AnalyticsError subclass used for wrapping
        **metadata: Additional context metadata
    """
    context = ErrorContext(
        component=component,
        operation=operation,
        metadata=metadata
    )

    try:
        yield context
    except AnalyticsError as e:
        e.context.component = e.context.component or component
        e.context.operation = e.context.operation or operation
        e.context.metadata.update(metadata)
        raise
    except Exception as e:
        raise error_class(message=str(e), context=context, cause=e) from e


__all__ = [
    'AnalyticsError',
    'ErrorContext',
    'ErrorSeverity',
    'ErrorCategory',
    'ConfigurationError',
    'StorageError',
    'TrackingError',
    'PrivacyError',
    'RetentionError',
    'Result',
    'error_context',
]
