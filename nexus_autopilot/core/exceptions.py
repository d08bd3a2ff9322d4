"""
EventNexus Autopilot - Custom Exceptions
Exception hierarchy for the autonomous operations engine.
"""

from typing import Dict, Any, Optional
from datetime import datetime
from enum import Enum
import traceback
import json


class ErrorSeverity(Enum):
    """Error severity levels."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ErrorCategory(Enum):
    """Error categories for classification."""
    VALIDATION = "validation"
    EXTERNAL_API = "external_api"
    DATABASE = "database"
    CONFIGURATION = "configuration"
    BUSINESS_LOGIC = "business_logic"
    INTERNAL = "internal"


class AutopilotException(Exception):
    """
    Base exception for all Autopilot errors.

    Attributes:
        message: Human-readable error message
        error_code: Machine-readable error code (e.g., 'DB_002')
        category: Error category for classification
        severity: Error severity level
        details: Additional error details
        retry_after: Seconds to wait before retry (if applicable)
        timestamp: When the error occurred
    """

    def __init__(
        self,
        message: str,
        error_code: str = "AP_ERR_001",
        category: ErrorCategory = ErrorCategory.INTERNAL,
        severity: ErrorSeverity = ErrorSeverity.MEDIUM,
        details: Optional[Dict[str, Any]] = None,
        retry_after: Optional[int] = None,
        cause: Optional[Exception] = None
    ):
        self.message = message
        self.error_code = error_code
        self.category = category
        self.severity = severity
        self.details = details or {}
        self.retry_after = retry_after
        self.timestamp = datetime.utcnow()
        self.cause = cause

        full_message = message
        if cause:
            full_message = f"{message} (caused by: {type(cause).__name__}: {cause})"

        super().__init__(full_message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for JSON serialization."""
        result = {
            "error": self.error_code,
            "message": self.message,
            "category": self.category.value,
            "severity": self.severity.value,
            "timestamp": self.timestamp.isoformat(),
        }

        if self.details:
            result["details"] = self.details

        if self.retry_after:
            result["retry_after"] = self.retry_after

        return result

    def to_json(self) -> str:
        """Convert exception to JSON string."""
        return json.dumps(self.to_dict(), default=str)

    @property
    def is_retryable(self) -> bool:
        """Check if this error is retryable."""
        return self.retry_after is not None or self.category in [
            ErrorCategory.EXTERNAL_API,
            ErrorCategory.DATABASE,
        ]


# =============================================================================
# VALIDATION ERRORS
# =============================================================================

class ValidationException(AutopilotException):
    """Data validation error."""

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        value: Any = None,
        **kwargs
    ):
        details = kwargs.pop("details", {})
        if field:
            details["field"] = field
        if value is not None:
            details["value"] = str(value)[:100]

        kwargs.setdefault("error_code", "VAL_001")
        super().__init__(
            message=message,
            category=ErrorCategory.VALIDATION,
            severity=ErrorSeverity.LOW,
            details=details,
            **kwargs
        )


class InvalidStatusTransitionException(ValidationException):
    """A record was asked to move to a status its lifecycle forbids."""

    def __init__(
        self,
        resource_type: str,
        resource_id: str,
        current: str,
        requested: str,
        **kwargs
    ):
        super().__init__(
            message=f"{resource_type} '{resource_id}' cannot move from '{current}' to '{requested}'",
            field="status",
            value=requested,
            error_code="VAL_002",
            **kwargs
        )
        self.details["resource_type"] = resource_type
        self.details["resource_id"] = resource_id
        self.details["current_status"] = current


# =============================================================================
# DATABASE ERRORS
# =============================================================================

class DatabaseException(AutopilotException):
    """Storage operation error."""

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        table: Optional[str] = None,
        **kwargs
    ):
        details = kwargs.pop("details", {})
        if operation:
            details["operation"] = operation
        if table:
            details["table"] = table

        kwargs.setdefault("error_code", "DB_001")
        kwargs.setdefault("retry_after", 5)
        super().__init__(
            message=message,
            category=ErrorCategory.DATABASE,
            severity=ErrorSeverity.HIGH,
            details=details,
            **kwargs
        )


class RecordNotFoundException(DatabaseException):
    """Record not found in storage."""

    def __init__(
        self,
        resource_type: str,
        resource_id: str,
        **kwargs
    ):
        kwargs.setdefault("error_code", "DB_002")
        super().__init__(
            message=f"{resource_type} with ID '{resource_id}' not found",
            operation="SELECT",
            retry_after=None,
            **kwargs
        )
        self.details["resource_type"] = resource_type
        self.details["resource_id"] = resource_id

    @property
    def is_retryable(self) -> bool:
        return False


class ActionNotFoundException(RecordNotFoundException):
    """Autonomous action not found."""

    def __init__(self, action_id: str, **kwargs):
        super().__init__("AutonomousAction", action_id, error_code="DB_003", **kwargs)


class OpportunityNotFoundException(RecordNotFoundException):
    """Optimization opportunity not found."""

    def __init__(self, opportunity_id: str, **kwargs):
        super().__init__("OptimizationOpportunity", opportunity_id, error_code="DB_004", **kwargs)


class RuleNotFoundException(RecordNotFoundException):
    """Autonomous rule not found."""

    def __init__(self, rule_id: str, **kwargs):
        super().__init__("AutonomousRule", rule_id, error_code="DB_005", **kwargs)


class StorageWriteException(DatabaseException):
    """A write against the backend failed."""

    def __init__(
        self,
        message: str,
        table: Optional[str] = None,
        **kwargs
    ):
        kwargs.setdefault("error_code", "DB_006")
        super().__init__(
            message=message,
            operation="WRITE",
            table=table,
            **kwargs
        )


# =============================================================================
# EXTERNAL API ERRORS
# =============================================================================

class PlatformAPIException(AutopilotException):
    """External platform API error."""

    def __init__(
        self,
        platform: str,
        message: str,
        status_code: Optional[int] = None,
        api_error_message: Optional[str] = None,
        retry_after: Optional[int] = None,
        **kwargs
    ):
        details = kwargs.pop("details", {})
        details["platform"] = platform
        if status_code:
            details["status_code"] = status_code
        if api_error_message:
            details["api_error_message"] = api_error_message

        kwargs.setdefault("error_code", "API_001")
        super().__init__(
            message=f"[{platform}] {message}",
            category=ErrorCategory.EXTERNAL_API,
            severity=ErrorSeverity.MEDIUM,
            details=details,
            retry_after=retry_after,
            **kwargs
        )
        self.platform = platform
        self.status_code = status_code


class SocialPublishException(PlatformAPIException):
    """Social network post could not be published."""

    def __init__(self, platform: str, message: str, **kwargs):
        super().__init__(platform=platform, message=message, error_code="API_SOCIAL_001", **kwargs)


# =============================================================================
# CONFIGURATION ERRORS
# =============================================================================

class ConfigurationException(AutopilotException):
    """Configuration error."""

    def __init__(
        self,
        message: str,
        config_key: Optional[str] = None,
        **kwargs
    ):
        details = kwargs.pop("details", {})
        if config_key:
            details["config_key"] = config_key

        kwargs.setdefault("error_code", "CONFIG_001")
        super().__init__(
            message=message,
            category=ErrorCategory.CONFIGURATION,
            severity=ErrorSeverity.CRITICAL,
            details=details,
            **kwargs
        )


class InvalidConfigException(ConfigurationException):
    """Configuration value is invalid."""

    def __init__(
        self,
        config_key: str,
        value: Any,
        reason: str,
        **kwargs
    ):
        super().__init__(
            message=f"Invalid configuration for '{config_key}': {reason}",
            config_key=config_key,
            error_code="CONFIG_002",
            **kwargs
        )
        self.details["value"] = str(value)[:100]
        self.details["reason"] = reason


# =============================================================================
# BUSINESS LOGIC ERRORS
# =============================================================================

class BusinessLogicException(AutopilotException):
    """Business logic error."""

    def __init__(
        self,
        message: str,
        **kwargs
    ):
        kwargs.setdefault("error_code", "BIZ_001")
        kwargs.setdefault("severity", ErrorSeverity.MEDIUM)
        super().__init__(
            message=message,
            category=ErrorCategory.BUSINESS_LOGIC,
            **kwargs
        )


class BudgetChangeRejectedException(BusinessLogicException):
    """Proposed budget change failed the safety checks."""

    def __init__(
        self,
        campaign_id: str,
        current: float,
        proposed: float,
        reason: str,
        **kwargs
    ):
        super().__init__(
            message=f"Budget change for campaign '{campaign_id}' rejected: {reason}",
            error_code="BIZ_002",
            **kwargs
        )
        self.details["campaign_id"] = campaign_id
        self.details["current_budget"] = current
        self.details["proposed_budget"] = proposed


class RollbackException(BusinessLogicException):
    """Rollback of an autonomous action failed."""

    def __init__(
        self,
        message: str,
        action_id: str,
        **kwargs
    ):
        kwargs.setdefault("error_code", "BIZ_003")
        super().__init__(
            message=message,
            severity=ErrorSeverity.HIGH,
            **kwargs
        )
        self.details["action_id"] = action_id
        self.action_id = action_id


class InvalidActionStateException(RollbackException):
    """Action is not in a state that can be rolled back."""

    def __init__(self, action_id: str, status: str, **kwargs):
        super().__init__(
            message=f"Action '{action_id}' has status '{status}'; only executed actions can be rolled back",
            action_id=action_id,
            error_code="BIZ_004",
            **kwargs
        )
        self.details["status"] = status


class CampaignMissingException(RollbackException):
    """Campaign targeted by an action no longer exists."""

    def __init__(self, action_id: str, campaign_id: str, **kwargs):
        super().__init__(
            message=f"Campaign '{campaign_id}' referenced by action '{action_id}' no longer exists",
            action_id=action_id,
            error_code="BIZ_005",
            **kwargs
        )
        self.details["campaign_id"] = campaign_id


class PostRetryRefusedException(BusinessLogicException):
    """Cross-posts of an action cannot be retried."""

    def __init__(self, action_id: str, reason: str, **kwargs):
        super().__init__(
            message=f"Cannot retry posts for action '{action_id}': {reason}",
            error_code="BIZ_007",
            **kwargs
        )
        self.details["action_id"] = action_id
        self.details["reason"] = reason


class CycleTimeoutException(BusinessLogicException):
    """A campaign did not finish before the cycle's wall-clock budget ran out."""

    def __init__(self, campaign_id: str, timeout_seconds: float, **kwargs):
        super().__init__(
            message=f"Campaign '{campaign_id}' interrupted after cycle budget of {timeout_seconds:g}s",
            error_code="BIZ_006",
            severity=ErrorSeverity.HIGH,
            **kwargs
        )
        self.details["campaign_id"] = campaign_id
        self.details["timeout_seconds"] = timeout_seconds


# =============================================================================
# HELPER FUNCTIONS
# =============================================================================

def is_retryable_exception(exc: Exception) -> bool:
    """Check if an exception is retryable."""
    if isinstance(exc, AutopilotException):
        return exc.is_retryable

    retryable_types = (
        ConnectionError,
        TimeoutError,
        OSError,
    )

    return isinstance(exc, retryable_types)


def get_retry_after(exc: Exception) -> Optional[int]:
    """Get retry-after value from exception."""
    if isinstance(exc, AutopilotException):
        return exc.retry_after
    return None


def exception_to_http_status(exc: AutopilotException) -> int:
    """Map exception to HTTP status code."""
    if isinstance(exc, RecordNotFoundException):
        return 404
    if isinstance(exc, (RollbackException, InvalidStatusTransitionException, PostRetryRefusedException)):
        return 409

    status_map = {
        ErrorCategory.VALIDATION: 422,
        ErrorCategory.EXTERNAL_API: 502,
        ErrorCategory.DATABASE: 503,
        ErrorCategory.CONFIGURATION: 500,
        ErrorCategory.BUSINESS_LOGIC: 422,
        ErrorCategory.INTERNAL: 500,
    }
    return status_map.get(exc.category, 500)


def format_exception_for_logging(exc: Exception) -> Dict[str, Any]:
    """Format exception for structured logging."""
    if isinstance(exc, AutopilotException):
        return {
            "exception_type": type(exc).__name__,
            "error_code": exc.error_code,
            "error_message": exc.message,
            "category": exc.category.value,
            "severity": exc.severity.value,
            "details": exc.details,
            "traceback": traceback.format_exc()
        }

    return {
        "exception_type": type(exc).__name__,
        "error_message": str(exc),
        "traceback": traceback.format_exc()
    }
