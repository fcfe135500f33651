"""
Error taxonomy and user feedback for the media plan builder.

This module defines the exceptions raised by the store and the planning
services, and turns them into structured, user-friendly notifications
for the Streamlit workspace.
"""

import logging
from typing import Dict, Any, List, Optional
from enum import Enum
from dataclasses import dataclass
from datetime import datetime, timedelta

# Set up logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


class MediaPlanError(Exception):
    """Base class for all media plan errors."""
    pass


class NotFoundError(MediaPlanError):
    """Raised when a referenced entity id does not exist."""

    def __init__(self, entity_type: str, entity_id: Any):
        self.entity_type = entity_type
        self.entity_id = entity_id
        super().__init__(f"{entity_type} with id {entity_id} not found")


class ValidationError(MediaPlanError):
    """Raised for malformed create/update input. Carries every issue found."""

    def __init__(self, issues):
        if isinstance(issues, str):
            issues = [issues]
        self.issues: List[str] = list(issues)
        super().__init__("Validation failed: " + "; ".join(self.issues))


class ReferenceInUseError(MediaPlanError):
    """Raised when deleting an entity that other records still reference."""

    def __init__(self, entity_type: str, entity_id: Any, dependents: int):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.dependents = dependents
        super().__init__(
            f"{entity_type} with id {entity_id} is referenced by {dependents} line item(s)"
        )


class AggregationInconsistencyError(MediaPlanError):
    """Stored version totals disagree with the line items. Recoverable by repair."""

    def __init__(self, plan_version_id: int, details: str = ""):
        self.plan_version_id = plan_version_id
        message = f"Totals for plan version {plan_version_id} are out of date"
        if details:
            message = f"{message}: {details}"
        super().__init__(message)


class ErrorSeverity(Enum):
    """Error severity levels."""
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class ErrorCategory(Enum):
    """Error categories for better classification."""
    NOT_FOUND = "not_found"
    VALIDATION_ERROR = "validation_error"
    CONFLICT = "conflict"
    AGGREGATION_ERROR = "aggregation_error"
    DATA_ERROR = "data_error"
    SYSTEM_ERROR = "system_error"


@dataclass
class ErrorInfo:
    """Structured error information."""
    category: ErrorCategory
    severity: ErrorSeverity
    message: str
    user_message: str
    technical_details: Optional[str] = None
    suggested_action: Optional[str] = None
    retry_possible: bool = False
    timestamp: datetime = None

    def __post_init__(self):
        if self.timestamp is None:
            self.timestamp = datetime.now()


class ErrorHandler:
    """
    Centralized error classification and user feedback.

    Maps exceptions raised by the planning services to ErrorInfo records,
    logs them, and builds notifications for display.
    """

    def __init__(self, history_limit: int = 100):
        self.error_history: List[ErrorInfo] = []
        self.history_limit = history_limit

    def classify_error(self, error: Exception, context: str = "") -> ErrorInfo:
        """
        Classify an error and return appropriate ErrorInfo.

        Args:
            error: The exception to classify
            context: Additional context about the operation

        Returns:
            ErrorInfo object with structured error information
        """
        if isinstance(error, NotFoundError):
            return ErrorInfo(
                category=ErrorCategory.NOT_FOUND,
                severity=ErrorSeverity.ERROR,
                message=f"Not found in {context}: {error}",
                user_message=f"The requested {error.entity_type.lower()} no longer exists.",
                suggested_action="Refresh the page and select another item.",
                retry_possible=False
            )

        if isinstance(error, ValidationError):
            return ErrorInfo(
                category=ErrorCategory.VALIDATION_ERROR,
                severity=ErrorSeverity.WARNING,
                message=f"Validation error in {context}: {error}",
                user_message="; ".join(error.issues),
                suggested_action="Please correct the highlighted issues and try again.",
                retry_possible=False
            )

        if isinstance(error, ReferenceInUseError):
            return ErrorInfo(
                category=ErrorCategory.CONFLICT,
                severity=ErrorSeverity.WARNING,
                message=f"Conflict in {context}: {error}",
                user_message=f"This {error.entity_type.lower()} is used by {error.dependents} line item(s) and cannot be deleted.",
                suggested_action="Remove the line items that use it first.",
                retry_possible=False
            )

        if isinstance(error, AggregationInconsistencyError):
            return ErrorInfo(
                category=ErrorCategory.AGGREGATION_ERROR,
                severity=ErrorSeverity.WARNING,
                message=f"Aggregation inconsistency in {context}: {error}",
                user_message="Plan totals were out of date.",
                suggested_action="Recalculate the plan totals.",
                retry_possible=True
            )

        if isinstance(error, (FileNotFoundError, PermissionError, ValueError)):
            return ErrorInfo(
                category=ErrorCategory.DATA_ERROR,
                severity=ErrorSeverity.ERROR,
                message=f"Data processing error in {context}: {error}",
                user_message="An error occurred while processing the uploaded data.",
                technical_details=str(error),
                suggested_action="Check the file format and try again.",
                retry_possible=False
            )

        return ErrorInfo(
            category=ErrorCategory.SYSTEM_ERROR,
            severity=ErrorSeverity.ERROR,
            message=f"Unexpected error in {context}: {error}",
            user_message="An unexpected error occurred. Please try again or contact support.",
            technical_details=str(error),
            suggested_action="Try again. If the problem persists, contact support with the error details.",
            retry_possible=True
        )

    def create_user_notification(self, error_info: ErrorInfo) -> Dict[str, Any]:
        """
        Create a user-friendly notification from error information.

        Args:
            error_info: Structured error information

        Returns:
            Dictionary with notification data for UI display
        """
        notification_type_map = {
            ErrorSeverity.INFO: "info",
            ErrorSeverity.WARNING: "warning",
            ErrorSeverity.ERROR: "error",
            ErrorSeverity.CRITICAL: "error"
        }

        notification = {
            'type': notification_type_map[error_info.severity],
            'title': self._get_error_title(error_info),
            'message': error_info.user_message,
            'timestamp': error_info.timestamp.isoformat(),
            'dismissible': error_info.severity in [ErrorSeverity.INFO, ErrorSeverity.WARNING],
            'retry_possible': error_info.retry_possible
        }

        if error_info.suggested_action:
            notification['action'] = error_info.suggested_action

        if error_info.technical_details and error_info.severity == ErrorSeverity.CRITICAL:
            notification['technical_details'] = error_info.technical_details

        return notification

    def _get_error_title(self, error_info: ErrorInfo) -> str:
        """Get appropriate title for error notification."""
        title_map = {
            ErrorCategory.NOT_FOUND: "Not Found",
            ErrorCategory.VALIDATION_ERROR: "Input Validation Error",
            ErrorCategory.CONFLICT: "Cannot Delete",
            ErrorCategory.AGGREGATION_ERROR: "Totals Out of Date",
            ErrorCategory.DATA_ERROR: "Data Error",
            ErrorCategory.SYSTEM_ERROR: "System Error"
        }

        return title_map.get(error_info.category, "Error")

    def log_error(self, error_info: ErrorInfo, context: str = ""):
        """
        Log error information for monitoring and debugging.

        Args:
            error_info: Structured error information
            context: Additional context
        """
        self.error_history.append(error_info)

        if len(self.error_history) > self.history_limit:
            self.error_history = self.error_history[-self.history_limit:]

        log_message = f"{context}: {error_info.message}"

        if error_info.severity == ErrorSeverity.CRITICAL:
            logger.critical(log_message)
        elif error_info.severity == ErrorSeverity.ERROR:
            logger.error(log_message)
        elif error_info.severity == ErrorSeverity.WARNING:
            logger.warning(log_message)
        else:
            logger.info(log_message)

    def handle(self, error: Exception, context: str = "") -> Dict[str, Any]:
        """Classify, log and build a notification in one step."""
        error_info = self.classify_error(error, context)
        self.log_error(error_info, context)
        return self.create_user_notification(error_info)

    def get_error_statistics(self) -> Dict[str, Any]:
        """
        Get error statistics for monitoring.

        Returns:
            Dictionary with error statistics
        """
        if not self.error_history:
            return {'total_errors': 0}

        category_counts = {}
        severity_counts = {}

        recent_errors = [
            err for err in self.error_history
            if err.timestamp > datetime.now() - timedelta(hours=24)
        ]

        for error in recent_errors:
            category_counts[error.category.value] = category_counts.get(error.category.value, 0) + 1
            severity_counts[error.severity.value] = severity_counts.get(error.severity.value, 0) + 1

        return {
            'total_errors': len(self.error_history),
            'recent_errors_24h': len(recent_errors),
            'category_breakdown': category_counts,
            'severity_breakdown': severity_counts
        }


# Global error handler instance
error_handler = ErrorHandler()
