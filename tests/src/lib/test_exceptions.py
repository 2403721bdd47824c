"""
Tests for the exception hierarchy (src/lib/exceptions.py) and the error
response builder (src/lib/errors.py).
"""

from __future__ import annotations

import pytest

from src.lib.errors import (
    INTERNAL_ERROR,
    NOT_FOUND,
    STORE_UNAVAILABLE,
    VALIDATION_ERROR,
    build_error_response,
    get_error_message,
)
from src.lib.exceptions import (
    ConfigurationError,
    RecoveryEngineError,
    StoreError,
    ValidationError,
)

EXCEPTION_CLASSES = [ConfigurationError, StoreError, ValidationError]


class TestExceptionHierarchy:
    """Test the exception class hierarchy."""

    @pytest.mark.parametrize("exc_class", EXCEPTION_CLASSES)
    def test_all_are_recovery_engine_errors(self, exc_class: type[RecoveryEngineError]) -> None:
        assert issubclass(exc_class, RecoveryEngineError)
        assert issubclass(exc_class, Exception)

    def test_catch_all_by_base(self) -> None:
        with pytest.raises(RecoveryEngineError, match="disk full"):
            raise StoreError("disk full")


class TestErrorResponses:
    """Test build_error_response and the default messages."""

    @pytest.mark.parametrize("code", [NOT_FOUND, VALIDATION_ERROR, INTERNAL_ERROR, STORE_UNAVAILABLE])
    def test_every_code_has_a_message(self, code: str) -> None:
        assert get_error_message(code) != "An error occurred."

    def test_unknown_code_gets_generic_message(self) -> None:
        assert get_error_message("TEAPOT") == "An error occurred."

    def test_default_message_without_details(self) -> None:
        assert build_error_response(NOT_FOUND) == {
            "code": NOT_FOUND,
            "message": "The requested resource was not found.",
        }

    def test_override_message_and_details(self) -> None:
        error = build_error_response(VALIDATION_ERROR, "bad cohort", details={"field": "cohort"})

        assert error["message"] == "bad cohort"
        assert error["details"] == {"field": "cohort"}
