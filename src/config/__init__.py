"""
Configuration for the Funnel Recovery Engine.

- settings.py: runtime settings read from the environment
- catalog.py: treatment catalog (cohort value sets, templates, offers, timings)
- rules.py: event rules driving the journey tracker
"""

from src.config.catalog import (
    Channel,
    Cohort,
    CohortProfile,
    Lever,
    Offer,
    Timing,
    Tone,
    get_cohort_profile,
    validate_catalog,
)
from src.config.rules import (
    CONVERSION_EVENTS,
    EVENT_RULES,
    EventRule,
    ImmediateRule,
    WaitRule,
)
from src.config.settings import EngineSettings

__all__ = [
    "CONVERSION_EVENTS",
    "EVENT_RULES",
    "Channel",
    "Cohort",
    "CohortProfile",
    "EngineSettings",
    "EventRule",
    "ImmediateRule",
    "Lever",
    "Offer",
    "Timing",
    "Tone",
    "WaitRule",
    "get_cohort_profile",
    "validate_catalog",
]
