"""
Event rules for the journey tracker.

Each funnel event type maps to one rule:

- WaitRule: the event opens a journey that expects ``follow_up_event``
  within ``timeout``; without it the user lands in ``cohort_if_missing``.
- ImmediateRule: the event itself is the abandonment signal; an
  experiment for ``cohort`` is created right away.

CONVERSION_EVENTS are the events that close the loop: they mark the
user's most recent delivered experiment as converted.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta
from types import MappingProxyType
from typing import Mapping

from src.config.catalog import Cohort


@dataclass(frozen=True)
class WaitRule:
    """Wait for a follow-up event before deciding the user abandoned."""

    follow_up_event: str
    timeout: timedelta
    cohort_if_missing: str


@dataclass(frozen=True)
class ImmediateRule:
    """Create an experiment as soon as the event arrives."""

    cohort: str


EventRule = WaitRule | ImmediateRule


EVENT_RULES: Mapping[str, EventRule] = MappingProxyType({
    "trial_paywall_view": WaitRule(
        follow_up_event="trial_initiated",
        timeout=timedelta(minutes=30),
        cohort_if_missing=Cohort.PAYWALL_BOUNCERS,
    ),
    "trial_initiated": WaitRule(
        follow_up_event="trial_activated",
        timeout=timedelta(minutes=10),
        cohort_if_missing=Cohort.CHECKOUT_ABANDONERS,
    ),
    "payment_failed": ImmediateRule(cohort=Cohort.PAYMENT_FAILED),
})

CONVERSION_EVENTS: frozenset[str] = frozenset({"trial_activated"})


def follow_up_targets(rules: Mapping[str, EventRule]) -> frozenset[str]:
    """Event types some WaitRule is waiting for."""
    return frozenset(
        rule.follow_up_event for rule in rules.values() if isinstance(rule, WaitRule)
    )


__all__ = [
    "CONVERSION_EVENTS",
    "EVENT_RULES",
    "EventRule",
    "ImmediateRule",
    "WaitRule",
    "follow_up_targets",
]
