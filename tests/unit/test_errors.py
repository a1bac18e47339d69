"""Tests for the engine error taxonomy."""

import pytest

from expense_engine.errors import (
    AllocationMismatchError,
    ConcurrentModificationError,
    EngineError,
    ExceedsBalanceError,
    ImmutableError,
    InsufficientDataError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)


class TestEngineErrors:
    """Test error codes, context and hierarchy."""

    @pytest.mark.parametrize(
        "error_class,code",
        [
            (ValidationError, "validation_error"),
            (InvalidStateError, "invalid_state"),
            (ImmutableError, "immutable"),
            (ConcurrentModificationError, "concurrent_modification"),
            (NotFoundError, "not_found"),
            (AllocationMismatchError, "allocation_mismatch"),
            (ExceedsBalanceError, "exceeds_balance"),
            (InsufficientDataError, "insufficient_data"),
        ],
    )
    def test_codes(self, error_class, code):
        error = error_class("boom")
        assert error.code == code
        assert isinstance(error, EngineError)

    def test_state_errors_are_invalid_state(self):
        """Callers catching InvalidStateError also see closed-bill and race errors."""
        assert issubclass(ImmutableError, InvalidStateError)
        assert issubclass(ConcurrentModificationError, InvalidStateError)

    def test_context_and_to_dict(self):
        error = ExceedsBalanceError("too much", loan_id=7, remaining="40.00")

        assert str(error) == "too much"
        assert error.context == {"loan_id": 7, "remaining": "40.00"}
        assert error.to_dict() == {
            "error": {
                "code": "exceeds_balance",
                "message": "too much",
                "context": {"loan_id": "7", "remaining": "40.00"},
            }
        }
