"""
Error kinds raised by the Agility core.

The HTTP layer maps each kind to a status code; nothing in the core
decides status codes itself.
"""
import enum
from typing import Optional


class AgilityError(Exception):
    """Base class for every error the core surfaces to callers."""

    kind = "error"

    def __init__(self, message: str = ""):
        super().__init__(message)
        self.message = message


class AuthError(AgilityError):
    """Identity token missing, malformed, expired or for another audience."""

    kind = "auth_error"


class NotFound(AgilityError):
    """A well-formed id with no matching document."""

    kind = "not_found"

    def __init__(self, resource: str, resource_id: str):
        super().__init__(f"{resource} not found: {resource_id}")
        self.resource = resource
        self.resource_id = resource_id


class InvalidID(AgilityError):
    """An id that is not a valid key for the store."""

    kind = "invalid_id"

    def __init__(self, resource: str, resource_id):
        super().__init__(f"Invalid {resource} id: {resource_id!r}")
        self.resource = resource
        self.resource_id = resource_id


class Conflict(AgilityError):
    """A write that would duplicate or break a uniqueness rule."""

    kind = "conflict"


class DenyReason(str, enum.Enum):
    """Why an authorization check refused an action."""
    NOT_SIGNED_IN = "NotSignedIn"
    NO_MEMBERSHIP = "NoMembership"
    INSUFFICIENT_ROLE = "InsufficientRole"


class Denied(AgilityError):
    """Authorization refusal. Raised before any mutation is attempted."""

    kind = "denied"

    def __init__(self, reason: DenyReason, detail: Optional[str] = None):
        super().__init__(detail or reason.value)
        self.reason = reason


class StoreError(AgilityError):
    """Underlying datastore failure, not further classified."""

    kind = "store_error"
