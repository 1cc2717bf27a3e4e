"""
Engine-wide exception hierarchy.

Services raise these types; the launch blueprint registers one handler per
type so every endpoint maps them to the same HTTP status codes.

Usage:
    from app.core.exceptions import NotFoundError, ValidationError

    raise NotFoundError(resource="LaunchTask", resource_id=42)
    raise ValidationError("Gate blockers remain", details={"blocking_task_ids": [3, 7]})
"""


class NotFoundError(Exception):
    """Raised when an entity id has no matching row.

    Surfaced to the caller as-is; never retried.

    Args:
        resource: Human-readable entity name (e.g. "ClinicLaunch", "LaunchTask").
        resource_id: The PK that was looked up.
    """

    def __init__(self, resource: str, resource_id: int | str | None = None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        msg += " not found"
        super().__init__(msg)


class ValidationError(Exception):
    """Raised when well-formed input violates a business rule.

    Examples: unknown enum value, illegal phase transition, gate pass with
    incomplete blockers, backward phase advancement.

    Maps to HTTP 422 in blueprint error handlers.

    Args:
        message: Human-readable explanation of what failed.
        details: Optional structured breakdown (field errors, blocking ids).
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class ConflictError(Exception):
    """Raised when an insert would duplicate a unique value (HTTP 409).

    Args:
        resource: Model name.
        field: The unique field that would be duplicated.
        value: The conflicting value.
    """

    def __init__(self, resource: str, field: str, value: str | None = None) -> None:
        self.resource = resource
        self.field = field
        self.value = value
        msg = f"{resource} with {field}={value!r} already exists"
        super().__init__(msg)


class StoreError(Exception):
    """Raised when the underlying store rejects a read or write.

    The session has already been rolled back when this is raised. Operations
    are not retried: a repeated read-then-write may double-apply.

    Args:
        operation: Short label of what was being written (e.g. "update_task").
        cause: The original driver/ORM exception.
    """

    def __init__(self, operation: str, cause: Exception | None = None) -> None:
        self.operation = operation
        self.cause = cause
        msg = f"Store failure during {operation}"
        if cause is not None:
            msg += f": {cause.__class__.__name__}"
        super().__init__(msg)
