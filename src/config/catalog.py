"""
Treatment catalog for the Funnel Recovery Engine.

A treatment (combination) is the tuple (timing, channel, lever, offer, tone).
This module holds the immutable lookup tables the selector, composer and
experiment factory read from:

- COHORT_PROFILES: which values each cohort may be offered
- LEVER_TEMPLATES: message templates per persuasion lever
- OFFER_CALLS_TO_ACTION: call-to-action text per offer
- TIMING_OFFSETS / DAY_PART_TIMES: how a timing value becomes a send time

Unknown keys are resolved through explicit fallbacks (DEFAULT_COHORT,
GENERIC_TEMPLATES, GENERIC_CALL_TO_ACTION, FALLBACK_SEND_DELAY), never by
silent absence. Call validate_catalog() once at startup.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import time, timedelta
from enum import StrEnum
from types import MappingProxyType
from typing import Mapping

from src.lib.exceptions import ConfigurationError


class Timing(StrEnum):
    """When to send, relative to experiment creation."""

    TWO_MINUTES = "2min"
    FIVE_MINUTES = "5min"
    THIRTY_MINUTES = "30min"
    ONE_HOUR = "1hr"
    TWO_HOURS = "2hr"
    FOUR_HOURS = "4hr"
    NEXT_MORNING = "next_morning"
    NEXT_EVENING = "next_evening"
    PAYDAY = "payday"  # no schedule yet, falls back to FALLBACK_SEND_DELAY


class Channel(StrEnum):
    """Delivery channels supported by the delivery adapters."""

    PUSH = "push"
    WHATSAPP = "whatsapp"
    SMS = "sms"


class Lever(StrEnum):
    """Persuasion technique used in the message."""

    SCARCITY = "scarcity"
    FOMO = "fomo"
    SOCIAL_PROOF = "social_proof"
    FREE_VALUE = "free_value"
    RECIPROCITY = "reciprocity"
    CLIFFHANGER = "cliffhanger"
    PERSONALIZATION = "personalization"
    LOSS_AVERSION = "loss_aversion"  # no templates, uses GENERIC_TEMPLATES


class Offer(StrEnum):
    """Commercial offer attached to the message."""

    FREE_EPISODE = "free_episode"
    DISCOUNT_50 = "discount_50"
    RUPEE_1_TRIAL = "rupee_1_trial"
    PAYTM_CASHBACK = "paytm_cashback"
    NO_OFFER = "no_offer"
    EXTENDED_PREVIEW = "extended_preview"  # no CTA, uses GENERIC_CALL_TO_ACTION


class Tone(StrEnum):
    """Stylistic wrapper applied by the composer. Not part of the stats key."""

    URGENT = "urgent"
    FRIENDLY = "friendly"
    CURIOUS = "curious"
    PERSONAL = "personal"
    REGIONAL = "regional"


class Cohort(StrEnum):
    """User segments defined by the funnel step they failed to complete."""

    CHECKOUT_ABANDONERS = "checkout_abandoners"
    PAYMENT_FAILED = "payment_failed"
    PAYWALL_BOUNCERS = "paywall_bouncers"


@dataclass(frozen=True)
class CohortProfile:
    """Allowed values per combination dimension for one cohort."""

    timing: tuple[Timing, ...]
    channel: tuple[Channel, ...]
    lever: tuple[Lever, ...]
    offer: tuple[Offer, ...]
    tone: tuple[Tone, ...]


# =============================================================================
# Cohort value sets
# =============================================================================

COHORT_PROFILES: Mapping[Cohort, CohortProfile] = MappingProxyType({
    Cohort.CHECKOUT_ABANDONERS: CohortProfile(
        timing=(Timing.TWO_MINUTES, Timing.ONE_HOUR, Timing.TWO_HOURS),
        channel=(Channel.WHATSAPP, Channel.PUSH),
        lever=(Lever.SCARCITY, Lever.FOMO, Lever.LOSS_AVERSION),
        offer=(Offer.DISCOUNT_50, Offer.RUPEE_1_TRIAL, Offer.FREE_EPISODE),
        tone=(Tone.URGENT, Tone.CURIOUS),
    ),
    Cohort.PAYMENT_FAILED: CohortProfile(
        timing=(Timing.TWO_MINUTES, Timing.FIVE_MINUTES, Timing.THIRTY_MINUTES),
        channel=(Channel.WHATSAPP, Channel.SMS),
        lever=(Lever.RECIPROCITY, Lever.PERSONALIZATION, Lever.FREE_VALUE),
        offer=(Offer.RUPEE_1_TRIAL, Offer.PAYTM_CASHBACK),
        tone=(Tone.FRIENDLY, Tone.PERSONAL),
    ),
    Cohort.PAYWALL_BOUNCERS: CohortProfile(
        timing=(Timing.ONE_HOUR, Timing.TWO_HOURS, Timing.NEXT_EVENING),
        channel=(Channel.PUSH, Channel.WHATSAPP),
        lever=(Lever.FREE_VALUE, Lever.SOCIAL_PROOF, Lever.CLIFFHANGER),
        offer=(Offer.FREE_EPISODE, Offer.EXTENDED_PREVIEW),
        tone=(Tone.CURIOUS, Tone.FRIENDLY),
    ),
})

DEFAULT_COHORT = Cohort.CHECKOUT_ABANDONERS


def get_cohort_profile(cohort: str) -> CohortProfile:
    """
    Get the value sets for a cohort.

    Unknown cohorts (e.g. from the manual trigger) use DEFAULT_COHORT.
    """
    try:
        return COHORT_PROFILES[Cohort(cohort)]
    except ValueError:
        return COHORT_PROFILES[DEFAULT_COHORT]


# =============================================================================
# Message content
# =============================================================================

LEVER_TEMPLATES: Mapping[Lever, tuple[str, ...]] = MappingProxyType({
    Lever.SCARCITY: ("Only {hours} hours left!", "Offer expires soon", "Limited time only"),
    Lever.FOMO: (
        "{count} people watching right now",
        "Trending in {region}",
        "Everyone's talking about this",
    ),
    Lever.SOCIAL_PROOF: (
        "Rated 4.8 by 10K viewers",
        "Join 1 lakh+ subscribers",
        "Top rated in {region}",
    ),
    Lever.FREE_VALUE: (
        "FREE episode waiting",
        "On us - no strings attached",
        "Your free gift inside",
    ),
    Lever.RECIPROCITY: (
        "We saved your spot",
        "Your show is waiting",
        "We kept it ready for you",
    ),
    Lever.CLIFFHANGER: (
        "Did she find out the truth?",
        "You won't believe what happens next",
        "The twist is coming",
    ),
    Lever.PERSONALIZATION: (
        "Picked just for you, {name}",
        "Based on what you love",
        "Your personalized pick",
    ),
})

GENERIC_TEMPLATES: tuple[str, ...] = ("Check out Stage",)

OFFER_CALLS_TO_ACTION: Mapping[Offer, str] = MappingProxyType({
    Offer.FREE_EPISODE: "Watch Episode 1 FREE",
    Offer.DISCOUNT_50: "50% OFF today only",
    Offer.RUPEE_1_TRIAL: "Just ₹1 to start",
    Offer.PAYTM_CASHBACK: "Get ₹50 Paytm cashback",
    Offer.NO_OFFER: "Continue your journey",
})

GENERIC_CALL_TO_ACTION = "Start watching"

# Placeholder defaults when the user attributes do not carry a value
DEFAULT_NAME = "there"
DEFAULT_REGION = "your city"

# Cosmetic placeholder ranges (inclusive)
VIEWER_COUNT_RANGE = (1000, 5999)
HOURS_LEFT_RANGE = (2, 5)


# =============================================================================
# Send-time rules
# =============================================================================

TIMING_OFFSETS: Mapping[Timing, timedelta] = MappingProxyType({
    Timing.TWO_MINUTES: timedelta(minutes=2),
    Timing.FIVE_MINUTES: timedelta(minutes=5),
    Timing.THIRTY_MINUTES: timedelta(minutes=30),
    Timing.ONE_HOUR: timedelta(hours=1),
    Timing.TWO_HOURS: timedelta(hours=2),
    Timing.FOUR_HOURS: timedelta(hours=4),
})

DAY_PART_TIMES: Mapping[Timing, time] = MappingProxyType({
    Timing.NEXT_MORNING: time(8, 0),
    Timing.NEXT_EVENING: time(19, 0),
})

FALLBACK_SEND_DELAY = timedelta(minutes=1)


# =============================================================================
# Validation
# =============================================================================


def validate_catalog() -> None:
    """
    Check catalog consistency at startup.

    Raises:
        ConfigurationError: If a cohort has an empty value set, the default
            cohort is missing, or a lever template set is empty.
    """
    if DEFAULT_COHORT not in COHORT_PROFILES:
        raise ConfigurationError(f"Default cohort '{DEFAULT_COHORT}' has no profile")

    for cohort, profile in COHORT_PROFILES.items():
        for dimension in ("timing", "channel", "lever", "offer", "tone"):
            values = getattr(profile, dimension)
            if not values:
                raise ConfigurationError(
                    f"Cohort '{cohort}' has no allowed values for '{dimension}'"
                )
        deliverable = {channel.value for channel in Channel}
        unknown_channels = [c for c in profile.channel if str(c) not in deliverable]
        if unknown_channels:
            raise ConfigurationError(
                f"Cohort '{cohort}' uses undeliverable channels: {unknown_channels}"
            )

    for lever, templates in LEVER_TEMPLATES.items():
        if not templates:
            raise ConfigurationError(f"Lever '{lever}' has an empty template set")

    overlap = set(TIMING_OFFSETS) & set(DAY_PART_TIMES)
    if overlap:
        raise ConfigurationError(f"Timings mapped twice: {sorted(overlap)}")


__all__ = [
    "COHORT_PROFILES",
    "DAY_PART_TIMES",
    "DEFAULT_COHORT",
    "DEFAULT_NAME",
    "DEFAULT_REGION",
    "FALLBACK_SEND_DELAY",
    "GENERIC_CALL_TO_ACTION",
    "GENERIC_TEMPLATES",
    "HOURS_LEFT_RANGE",
    "LEVER_TEMPLATES",
    "OFFER_CALLS_TO_ACTION",
    "TIMING_OFFSETS",
    "VIEWER_COUNT_RANGE",
    "Channel",
    "Cohort",
    "CohortProfile",
    "Lever",
    "Offer",
    "Timing",
    "Tone",
    "get_cohort_profile",
    "validate_catalog",
]
