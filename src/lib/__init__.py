"""
Lib package for the Funnel Recovery Engine.

Contains shared utilities:
- exceptions.py: Exception hierarchy
- errors.py: Centralized error response builder
- logging.py: structlog configuration
- circuit_breaker.py: Per-channel circuit breaker for delivery calls
"""

from src.lib.circuit_breaker import BreakerBoard, CircuitBreaker, CircuitState
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

__all__ = [
    # Circuit breaker
    "BreakerBoard",
    "CircuitBreaker",
    "CircuitState",
    # Errors
    "INTERNAL_ERROR",
    "NOT_FOUND",
    "STORE_UNAVAILABLE",
    "VALIDATION_ERROR",
    "build_error_response",
    "get_error_message",
    # Exceptions
    "ConfigurationError",
    "RecoveryEngineError",
    "StoreError",
    "ValidationError",
]
