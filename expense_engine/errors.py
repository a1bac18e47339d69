"""Engine error taxonomy.

Every error carries a machine-readable code and the context (entity id,
offending value) needed to render a specific message to the user.
"""

from typing import Any, Dict


class EngineError(Exception):
    """Base engine error."""

    code = "engine_error"

    def __init__(self, message: str, **context: Any):
        """Initialize error."""
        self.message = message
        self.context = context
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        """Standardized error payload."""
        return {
            "error": {
                "code": self.code,
                "message": self.message,
                "context": {key: str(value) for key, value in self.context.items()},
            }
        }


class ValidationError(EngineError):
    """Bad input shape or range (negative amount, same lender and borrower, ...)."""

    code = "validation_error"


class InvalidStateError(EngineError):
    """Operation not legal for the entity's current lifecycle state."""

    code = "invalid_state"


class ImmutableError(InvalidStateError):
    """Entity is closed and can no longer be modified."""

    code = "immutable"


class ConcurrentModificationError(InvalidStateError):
    """A concurrent writer changed the entity between read and write."""

    code = "concurrent_modification"


class NotFoundError(EngineError):
    """Referenced entity does not exist."""

    code = "not_found"


class AllocationMismatchError(EngineError):
    """Allocation amounts or shares do not add up to the required total."""

    code = "allocation_mismatch"


class ExceedsBalanceError(EngineError):
    """Payment is larger than the remaining loan balance."""

    code = "exceeds_balance"


class InsufficientDataError(EngineError):
    """Not enough history to forecast."""

    code = "insufficient_data"


__all__ = [
    "EngineError",
    "ValidationError",
    "InvalidStateError",
    "ImmutableError",
    "ConcurrentModificationError",
    "NotFoundError",
    "AllocationMismatchError",
    "ExceedsBalanceError",
    "InsufficientDataError",
]
