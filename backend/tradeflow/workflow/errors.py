"""Domain exception hierarchy for the order and assignment workflow.

Services raise these before any write. ``main.py`` registers one handler
for ``WorkflowError`` that renders the JSON error envelope using
``status_code`` and ``code``.
"""

from typing import Any


class WorkflowError(Exception):
    """Base class for workflow failures surfaced to API callers."""

    status_code = 400

    def __init__(self, message: str, code: str = "WORKFLOW_ERROR", details: dict[str, Any] | None = None):
        self.message = message
        self.code = code
        self.details = details or {}
        super().__init__(self.message)


class AuthorizationError(WorkflowError):
    """Wrong role or not the owner of the resource."""

    status_code = 403

    def __init__(self, message: str = "Access denied", details: dict[str, Any] | None = None):
        super().__init__(message, "AUTHORIZATION_ERROR", details)


class StateError(WorkflowError):
    """Operation is not valid for the resource's current status."""

    def __init__(self, message: str, current_status: str | None = None, details: dict[str, Any] | None = None):
        details = dict(details or {})
        if current_status is not None:
            details["current_status"] = current_status
        super().__init__(message, "STATE_ERROR", details)


class WorkflowValidationError(WorkflowError):
    """Missing or malformed input."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message, "VALIDATION_ERROR", details)


class NotFoundError(WorkflowError):
    status_code = 404

    def __init__(self, resource: str, resource_id: Any = None):
        message = f"{resource} not found"
        details = {"resource": resource}
        if resource_id is not None:
            details["id"] = str(resource_id)
        super().__init__(message, "NOT_FOUND", details)


class BusinessRuleError(WorkflowError):
    """Well-formed request that cannot be satisfied by the current data."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message, "BUSINESS_RULE_ERROR", details)
