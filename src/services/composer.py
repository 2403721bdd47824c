"""
Message Composer for the Funnel Recovery Engine.

Renders the text for a combination:

1. a template chosen at random from the lever's template set
2. placeholders filled from user attributes or defaults
3. the offer's call to action
4. a tone-specific wrapper

Pure: no I/O, randomness comes from the injected generator.
"""

from __future__ import annotations

import random
from collections.abc import Mapping
from typing import Any

from src.config.catalog import (
    DEFAULT_NAME,
    DEFAULT_REGION,
    GENERIC_CALL_TO_ACTION,
    GENERIC_TEMPLATES,
    HOURS_LEFT_RANGE,
    LEVER_TEMPLATES,
    OFFER_CALLS_TO_ACTION,
    VIEWER_COUNT_RANGE,
    Lever,
    Offer,
    Tone,
)
from src.models.experiment import Combination


class MessageComposer:
    """Turns a combination plus user attributes into message text."""

    def __init__(self, rng: random.Random | None = None) -> None:
        self._rng = rng or random.Random()

    def compose(
        self,
        combination: Combination,
        user_attributes: Mapping[str, Any] | None = None,
    ) -> str:
        attributes = user_attributes or {}
        name = str(attributes.get("name") or DEFAULT_NAME)
        region = str(attributes.get("region") or DEFAULT_REGION)

        template = self._rng.choice(self._templates_for(combination.lever))
        body = self._fill(template, name=name, region=region)
        cta = self._call_to_action(combination.offer)

        return self._apply_tone(combination.tone, body, cta, name)

    @staticmethod
    def _templates_for(lever: str) -> tuple[str, ...]:
        try:
            return LEVER_TEMPLATES[Lever(lever)]
        except (ValueError, KeyError):
            return GENERIC_TEMPLATES

    @staticmethod
    def _call_to_action(offer: str) -> str:
        try:
            return OFFER_CALLS_TO_ACTION[Offer(offer)]
        except (ValueError, KeyError):
            return GENERIC_CALL_TO_ACTION

    def _fill(self, template: str, name: str, region: str) -> str:
        # str.replace rather than str.format: templates are copy, not code
        return (
            template
            .replace("{name}", name)
            .replace("{region}", region)
            .replace("{count}", str(self._rng.randint(*VIEWER_COUNT_RANGE)))
            .replace("{hours}", str(self._rng.randint(*HOURS_LEFT_RANGE)))
        )

    @staticmethod
    def _apply_tone(tone: str, body: str, cta: str, name: str) -> str:
        if tone == Tone.URGENT:
            return f"⏰ {body}! {cta} - hurry!"
        if tone == Tone.FRIENDLY:
            return f"Hey! 👋 {body}. {cta}"
        if tone == Tone.CURIOUS:
            return f"🤔 {body}... {cta}"
        if tone == Tone.PERSONAL:
            return f"{name}, {body}. {cta}"
        if tone == Tone.REGIONAL:
            return f"🎬 Apne liye kuch khaas! {cta}"
        return f"{body}. {cta}"


__all__ = ["MessageComposer"]
