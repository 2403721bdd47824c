"""
Custom exception hierarchy for the Funnel Recovery Engine.

All exceptions inherit from RecoveryEngineError, enabling a catch-all
for engine errors at the API and scheduler boundaries while keeping the
ability to catch specific error types.
"""

from __future__ import annotations


class RecoveryEngineError(Exception):
    """Base exception for all Funnel Recovery Engine errors."""


class ConfigurationError(RecoveryEngineError):
    """Invalid environment values or inconsistent catalog tables."""


class StoreError(RecoveryEngineError):
    """Record store failures (connection lost, constraint errors, failed commits)."""


class ValidationError(RecoveryEngineError):
    """Inbound events or trigger requests missing required fields."""


__all__ = [
    "RecoveryEngineError",
    "ConfigurationError",
    "StoreError",
    "ValidationError",
]
