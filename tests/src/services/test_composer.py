"""
Tests for MessageComposer (src/services/composer.py).

Tests cover tone wrappers, placeholder filling, defaults when attributes
are missing, and the generic fallbacks for levers and offers without copy.
"""

from __future__ import annotations

import random
import re

import pytest

from src.config.catalog import LEVER_TEMPLATES, Lever
from src.models.experiment import Combination
from src.services.composer import MessageComposer


def _combo(lever: str = "reciprocity", offer: str = "free_episode", tone: str = "plain") -> Combination:
    return Combination(timing="2min", channel="push", lever=lever, offer=offer, tone=tone)


@pytest.fixture()
def composer() -> MessageComposer:
    return MessageComposer(rng=random.Random(21))


class TestToneWrappers:
    """One template per lever keeps the body predictable."""

    @pytest.mark.parametrize(
        ("tone", "pattern"),
        [
            ("urgent", r"^⏰ .+! Watch Episode 1 FREE - hurry!$"),
            ("friendly", r"^Hey! 👋 .+\. Watch Episode 1 FREE$"),
            ("curious", r"^🤔 .+\.\.\. Watch Episode 1 FREE$"),
            ("regional", r"^🎬 Apne liye kuch khaas! Watch Episode 1 FREE$"),
            ("personal", r"^Asha, .+\. Watch Episode 1 FREE$"),
            ("deadpan", r"^.+\. Watch Episode 1 FREE$"),
        ],
    )
    def test_tone_shapes_message(self, composer: MessageComposer, tone: str, pattern: str) -> None:
        """Test every tone wraps body and call to action as documented."""
        message = composer.compose(_combo(tone=tone), {"name": "Asha"})
        assert re.match(pattern, message), message

    def test_regional_drops_body(self, composer: MessageComposer) -> None:
        """Test the regional wrapper replaces the body entirely."""
        message = composer.compose(_combo(lever="reciprocity", tone="regional"))
        for template in LEVER_TEMPLATES[Lever.RECIPROCITY]:
            assert template not in message


class TestPlaceholders:
    """Tests for placeholder filling."""

    def test_name_and_region_from_attributes(self, composer: MessageComposer) -> None:
        """Test {name} and {region} come from user attributes when present."""
        messages = {
            composer.compose(_combo(lever="personalization"), {"name": "Ravi"})
            for _ in range(40)
        }
        assert "Picked just for you, Ravi. Watch Episode 1 FREE" in messages

        regional = {
            composer.compose(_combo(lever="social_proof"), {"region": "Jaipur"})
            for _ in range(40)
        }
        assert "Top rated in Jaipur. Watch Episode 1 FREE" in regional

    def test_defaults_when_attributes_missing(self, composer: MessageComposer) -> None:
        """Test missing name/region fall back to 'there' / 'your city'."""
        messages = {composer.compose(_combo(lever="personalization")) for _ in range(40)}
        assert "Picked just for you, there. Watch Episode 1 FREE" in messages

        fomo = {composer.compose(_combo(lever="fomo")) for _ in range(40)}
        assert "Trending in your city. Watch Episode 1 FREE" in fomo

    def test_count_and_hours_are_in_range(self, composer: MessageComposer) -> None:
        """Test {count} is 1000..5999 and {hours} is 2..5."""
        for _ in range(60):
            message = composer.compose(_combo(lever="fomo"))
            match = re.match(r"^(\d+) people watching right now", message)
            if match:
                assert 1000 <= int(match.group(1)) <= 5999

            message = composer.compose(_combo(lever="scarcity"))
            match = re.match(r"^Only (\d+) hours left!", message)
            if match:
                assert 2 <= int(match.group(1)) <= 5

    def test_no_unfilled_placeholders(self, composer: MessageComposer) -> None:
        """Test no template leaves a {placeholder} behind."""
        for lever in Lever:
            for _ in range(10):
                assert "{" not in composer.compose(_combo(lever=lever))


class TestFallbacks:
    """Tests for levers and offers without copy."""

    def test_lever_without_templates_uses_generic(self, composer: MessageComposer) -> None:
        """Test loss_aversion has no templates and renders the generic body."""
        assert composer.compose(_combo(lever="loss_aversion")) == "Check out Stage. Watch Episode 1 FREE"

    def test_unknown_lever_uses_generic(self, composer: MessageComposer) -> None:
        """Test a lever outside the catalog renders the generic body."""
        assert composer.compose(_combo(lever="guilt_trip")) == "Check out Stage. Watch Episode 1 FREE"

    def test_offer_without_copy_uses_generic_cta(self, composer: MessageComposer) -> None:
        """Test extended_preview has no call to action and uses 'Start watching'."""
        message = composer.compose(_combo(lever="loss_aversion", offer="extended_preview"))
        assert message == "Check out Stage. Start watching"

    def test_unknown_offer_uses_generic_cta(self, composer: MessageComposer) -> None:
        """Test an offer outside the catalog uses 'Start watching'."""
        message = composer.compose(_combo(lever="loss_aversion", offer="mystery_box", tone="urgent"))
        assert message == "⏰ Check out Stage! Start watching - hurry!"
