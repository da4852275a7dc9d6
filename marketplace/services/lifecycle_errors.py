from __future__ import annotations

from typing import Any


class LifecycleError(Exception):
    """Base class for every typed lifecycle failure.

    Carries enough context for the HTTP layer to render a structured body
    without inspecting the message text.
    """

    code = "LIFECYCLE_ERROR"
    status_code = 400

    def __init__(
        self,
        message: str,
        *,
        entity_type: str | None = None,
        entity_id: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.details = details or {}

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}(code={self.code!r}, entity_type={self.entity_type!r}, "
            f"entity_id={self.entity_id!r}, message={self.message!r})"
        )


class UnknownTransition(LifecycleError):
    code = "UNKNOWN_TRANSITION"
    status_code = 400


class IllegalFromState(LifecycleError):
    code = "ILLEGAL_FROM_STATE"
    status_code = 409


class RoleNotPermitted(LifecycleError):
    code = "ROLE_NOT_PERMITTED"
    status_code = 403


class PreconditionFailed(LifecycleError):
    code = "PRECONDITION_FAILED"
    status_code = 409


class NotOwner(LifecycleError):
    code = "NOT_OWNER"
    status_code = 403


class NotArchived(LifecycleError):
    code = "NOT_ARCHIVED"
    status_code = 409


class AlreadyArchived(LifecycleError):
    code = "ALREADY_ARCHIVED"
    status_code = 409


class DuplicateCreation(LifecycleError):
    """The at-most-once guard fired but the winning row is not visible.

    This is an operational bug (isolation/replication problem), not a user error.
    """

    code = "DUPLICATE_CREATION"
    status_code = 500


class EntityNotFound(LifecycleError):
    code = "NOT_FOUND"
    status_code = 404


DENIAL_ERRORS: dict[str, type[LifecycleError]] = {
    cls.__name__: cls
    for cls in (UnknownTransition, IllegalFromState, RoleNotPermitted, PreconditionFailed)
}
