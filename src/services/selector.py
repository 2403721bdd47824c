"""
Combination Selector for the Funnel Recovery Engine.

Epsilon-greedy choice of a treatment combination:

- explore (probability epsilon, or when no statistic is eligible): draw
  timing, channel, lever and offer independently and uniformly from the
  cohort's value sets
- exploit: rank eligible combinations (sent_count >= min_samples) by
  conversion rate and pick uniformly among the top K

Tone is never exploited: it is always drawn from the cohort's tone set,
because it only styles the message and is not part of the stats key.

The selector is a pure function of the statistics it is handed and its
random generator; reading statistics from the store is the caller's job.
"""

from __future__ import annotations

import random
from collections.abc import Mapping, Sequence
from typing import Any

from src.config.catalog import CohortProfile, get_cohort_profile
from src.models.experiment import Combination, ComboStat


class ComboSelector:
    """
    Epsilon-greedy treatment selector.

    Args:
        epsilon: Exploration probability in [0, 1]
        min_samples: Deliveries a combination needs before it is trusted
        top_k: Size of the exploitation pool
        rng: Random generator (seed it in tests)
    """

    def __init__(
        self,
        epsilon: float = 0.2,
        min_samples: int = 5,
        top_k: int = 5,
        rng: random.Random | None = None,
    ) -> None:
        self.epsilon = epsilon
        self.min_samples = min_samples
        self.top_k = top_k
        self._rng = rng or random.Random()

    def rank(self, stats: Sequence[ComboStat]) -> list[ComboStat]:
        """Eligible statistics ordered by conversion rate, best first."""
        eligible = [s for s in stats if s.sent_count >= self.min_samples]
        # sorted() is stable, so ties keep the store's order
        return sorted(eligible, key=lambda s: s.converted_count / s.sent_count, reverse=True)

    def select(
        self,
        cohort: str,
        stats: Sequence[ComboStat],
        user_attributes: Mapping[str, Any] | None = None,
    ) -> Combination:
        """
        Pick a combination for a user in ``cohort``.

        Args:
            cohort: Cohort name; unknown cohorts use the default profile
            stats: Current combination statistics
            user_attributes: Reserved for attribute-aware policies; unused

        Returns:
            The selected Combination
        """
        profile = get_cohort_profile(cohort)
        ranked = self.rank(stats)

        explore = self._rng.random() < self.epsilon
        if explore or not ranked:
            combination = self._explore(profile)
        else:
            chosen = self._rng.choice(ranked[: self.top_k])
            combination = {
                "timing": chosen.timing,
                "channel": chosen.channel,
                "lever": chosen.lever,
                "offer": chosen.offer,
            }

        return Combination(tone=str(self._rng.choice(profile.tone)), **combination)

    def _explore(self, profile: CohortProfile) -> dict[str, str]:
        return {
            "timing": str(self._rng.choice(profile.timing)),
            "channel": str(self._rng.choice(profile.channel)),
            "lever": str(self._rng.choice(profile.lever)),
            "offer": str(self._rng.choice(profile.offer)),
        }


__all__ = ["ComboSelector"]
