"""
Background workflows for the Funnel Recovery Engine.

The deadline sweep and the delivery dispatch run as periodic tasks inside
the API process.
"""

from src.workflows.scheduler import EngineScheduler, PeriodicTask

__all__ = [
    "EngineScheduler",
    "PeriodicTask",
]
