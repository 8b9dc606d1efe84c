"""Review Automations Error Hierarchy.

All custom errors inherit from AutomationError for consistent handling.
"""

from __future__ import annotations

from typing import Any


class AutomationError(Exception):
    """Base exception for all review automation errors."""

    def __init__(
        self,
        message: str,
        *,
        code: str | None = None,
        details: dict[str, Any] | None = None,
        cause: Exception | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or self.__class__.__name__
        self.details = details or {}
        self.cause = cause


# Rule configuration errors
class InvalidAutomationError(AutomationError):
    """Automation payload does not satisfy the schema for its trigger/action type."""

    def __init__(
        self,
        automation_id: str | None,
        reason: str,
        errors: list[dict[str, Any]] | None = None,
    ) -> None:
        super().__init__(
            f"Invalid automation {automation_id or '<new>'}: {reason}",
            code="INVALID_AUTOMATION",
            details={
                "automation_id": automation_id,
                "reason": reason,
                "validation_errors": errors or [],
            },
        )
        self.automation_id = automation_id


class ConditionEvaluationError(AutomationError):
    """Malformed trigger conditions. Logged and treated as no match."""

    def __init__(self, trigger_type: str, reason: str) -> None:
        super().__init__(
            f"Cannot evaluate '{trigger_type}' trigger: {reason}",
            code="CONDITION_EVALUATION_ERROR",
            details={"trigger_type": trigger_type, "reason": reason},
        )
        self.trigger_type = trigger_type


# Action errors
class ActionExecutionError(AutomationError):
    """An action executor could not deliver.

    Transient errors (timeouts, 5xx) and permanent ones (4xx, invalid
    recipients) both become a failed DeliveryRecord; the flag only informs
    an external retry sweep.
    """

    def __init__(
        self,
        action_type: str,
        message: str,
        *,
        transient: bool = False,
        status_code: int | None = None,
        cause: Exception | None = None,
    ) -> None:
        super().__init__(
            f"{action_type} failed: {message}",
            code="ACTION_EXECUTION_ERROR",
            details={
                "action_type": action_type,
                "transient": transient,
                "status_code": status_code,
            },
            cause=cause,
        )
        self.action_type = action_type
        self.transient = transient
        self.status_code = status_code


class ReviewNotFoundError(AutomationError):
    """Target review no longer exists in the review store."""

    def __init__(self, review_id: str) -> None:
        super().__init__(
            f"Review '{review_id}' not found",
            code="REVIEW_NOT_FOUND",
            details={"review_id": review_id},
        )
        self.review_id = review_id


class InvalidAssigneeError(AutomationError):
    """Assignee is not a member of the review's tenant."""

    def __init__(self, user_id: str, tenant_id: str) -> None:
        super().__init__(
            f"User '{user_id}' is not a member of tenant '{tenant_id}'",
            code="INVALID_ASSIGNEE",
            details={"user_id": user_id, "tenant_id": tenant_id},
        )


# Integration errors
class IntegrationError(AutomationError):
    """External integration failed."""

    pass


class APIError(IntegrationError):
    """External API call failed."""

    def __init__(
        self,
        service: str,
        status_code: int | None = None,
        message: str | None = None,
    ) -> None:
        super().__init__(
            f"API error from {service}" + (f": {message}" if message else ""),
            code="API_ERROR",
            details={
                "service": service,
                "status_code": status_code,
            },
        )
        self.status_code = status_code


class SendGridError(APIError):
    """SendGrid integration error."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__("SendGrid", status_code=status_code, message=message)


# Ingestion errors
class InvalidEventError(AutomationError):
    """Inbound review-sync notification cannot be normalized into an Event."""

    def __init__(self, reason: str, kind: str | None = None) -> None:
        super().__init__(
            f"Invalid review event: {reason}",
            code="INVALID_EVENT",
            details={"reason": reason, "kind": kind},
        )


# Persistence errors
class RepositoryError(AutomationError):
    """Loading automations or updating counters failed."""

    def __init__(self, operation: str, cause: Exception | None = None) -> None:
        super().__init__(
            f"Repository operation '{operation}' failed"
            + (f": {cause}" if cause else ""),
            code="REPOSITORY_ERROR",
            details={"operation": operation},
            cause=cause,
        )
        self.operation = operation


# Engine lifecycle errors
class EngineNotRunningError(AutomationError):
    """Event published while the engine is stopped or shutting down."""

    def __init__(self) -> None:
        super().__init__(
            "Automation engine is not accepting events",
            code="ENGINE_NOT_RUNNING",
        )


# Configuration errors
class ConfigurationError(AutomationError):
    """Configuration error."""

    pass


class MissingAPIKeyError(ConfigurationError):
    """Required API key not configured."""

    def __init__(self, key_name: str) -> None:
        super().__init__(
            f"Missing required API key: {key_name}. "
            "Please set it in your .env file or environment variables.",
            code="MISSING_API_KEY",
            details={"key_name": key_name},
        )
