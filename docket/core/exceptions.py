"""
Service-wide exception hierarchy.

Services raise these types; blueprints register handlers against them once
(see ``docket.utils.errors.register_error_handlers``) and get consistent HTTP
status codes everywhere.

Usage:
    from docket.core.exceptions import NotFoundError, InvalidPhaseError

    raise NotFoundError(resource="CaseTimeline", resource_id=42)
    raise InvalidPhaseError(42, 3, "phase 3 is not the active phase")
"""


class NotFoundError(Exception):
    """Raised when a requested resource does not exist.

    Args:
        resource: Human-readable model/entity name (e.g. "CaseTimeline").
        resource_id: The key that was looked up.
    """

    def __init__(self, resource: str, resource_id: int | str | None = None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        msg += " not found"
        super().__init__(msg)


class TemplateNotFoundError(NotFoundError):
    """Raised when no timeline template is registered for a case type."""

    def __init__(self, case_type: str | None) -> None:
        super().__init__(resource="TimelineTemplate", resource_id=case_type)
        self.case_type = case_type


class ValidationError(Exception):
    """Raised when input fails business-rule validation in the service layer.

    Distinct from HTTP 400 (malformed input, caught in the blueprint): the data
    was well-formed but violated a business rule.

    Args:
        message: Human-readable explanation of what failed.
        details: Optional field-level breakdown for structured API responses.
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class InvalidPhaseError(ValidationError):
    """Raised when a phase order is outside the template or not transitionable.

    Covers both "phase 9 does not exist in a 5-phase template" and "phase 2
    is already COMPLETED / is not the active phase".
    """

    def __init__(self, case_id: int, phase_order: int | None, reason: str) -> None:
        self.case_id = case_id
        self.phase_order = phase_order
        self.reason = reason
        super().__init__(
            f"Invalid phase {phase_order} for case {case_id}: {reason}",
            details={"case_id": case_id, "phase_order": phase_order},
        )


class ConflictError(Exception):
    """Raised when an operation would duplicate a unique resource.

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


class AlreadyInitializedError(ConflictError):
    """Raised by a non-idempotent initialize when the case already has a timeline."""

    def __init__(self, case_id: int) -> None:
        super().__init__(resource="CaseTimeline", field="case_id", value=str(case_id))
        self.case_id = case_id


class ConcurrentModificationError(Exception):
    """Raised when a transition lost its race against another writer.

    The caller may retry: the timeline is left exactly as the winning
    writer stored it.
    """

    def __init__(self, case_id: int, attempts: int | None = None) -> None:
        self.case_id = case_id
        self.attempts = attempts
        msg = f"Timeline for case {case_id} was modified concurrently"
        if attempts is not None:
            msg += f" (gave up after {attempts} attempt(s))"
        super().__init__(msg)


class TemplateConfigError(Exception):
    """Raised when a timeline template catalog fails validation at load time."""

    def __init__(self, message: str, source: str | None = None) -> None:
        self.source = source
        if source:
            message = f"{source}: {message}"
        super().__init__(message)
