"""
Platform-wide exception hierarchy.

Services raise these types; blueprints register handlers against them once
(see ``atlas.utils.errors.register_error_handlers``) and get consistent HTTP
status codes everywhere.

Usage:
    from atlas.core.exceptions import NotFoundError, ValidationError

    raise NotFoundError(resource="GovernanceBoard", resource_id=42)
    raise ValidationError("criteria must be a non-empty array")
    raise ConflictError("Only draft versions can be edited")
"""


class NotFoundError(Exception):
    """Raised when a requested resource does not exist.

    Args:
        resource: Human-readable model/entity name (e.g. "GovernanceBoard").
        resource_id: The PK that was looked up. Included in logs, not in HTTP response.
    """

    def __init__(self, resource: str, resource_id: int | str | None = None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        msg += " not found"
        super().__init__(msg)

    @property
    def public_message(self) -> str:
        return f"{self.resource} not found"


class ValidationError(Exception):
    """Raised when input is malformed or violates a business rule.

    Maps to HTTP 400 in blueprint error handlers.

    Args:
        message: Human-readable explanation of what failed.
        details: Optional field-level breakdown for structured API responses.
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class ForbiddenError(Exception):
    """Raised when the principal lacks a capability or board eligibility.

    ``advisory=True`` marks the "visible but not actionable" case: the caller
    may see the review (e.g. an eligible non-chair member) but cannot act.

    Maps to HTTP 403.
    """

    def __init__(self, message: str, advisory: bool = False) -> None:
        self.advisory = advisory
        super().__init__(message)


class ConflictError(Exception):
    """Raised when the current state disallows the requested transition.

    Also used for duplicate unique values. Maps to HTTP 409.

    Args:
        message: Which rule blocked the request.
        details: Optional structured context (current status, expected status, ...).
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class UnavailableError(Exception):
    """Raised when the governance schema is not provisioned.

    Maps to HTTP 503. Callers on the intake path treat this as "continue on
    the legacy non-governed flow", never as a reason to abort.
    """

    def __init__(self, message: str | None = None) -> None:
        super().__init__(
            message
            or "Governance schema not installed. Run the governance migrations: flask db upgrade"
        )
