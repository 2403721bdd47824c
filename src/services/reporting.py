"""
Reporting for the Funnel Recovery Engine.

Read-only views over the record store for the stats and experiments
endpoints.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from src.models.experiment import DELIVERED_STATUSES, ComboStat, Experiment, ExperimentStatus
from src.services.record_store import RecordStore


@dataclass
class EngineReport:
    """Snapshot of experiment outcomes and backlog."""

    total_experiments: int = 0
    total_sent: int = 0
    total_opened: int = 0
    total_converted: int = 0
    conversion_rate: float = 0.0
    pending_journey_checks: int = 0
    dead_lettered_sends: int = 0
    top_combos: list[dict[str, Any]] = field(default_factory=list)
    worst_combos: list[dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "totals": {
                "experiments": self.total_experiments,
                "sent": self.total_sent,
                "opened": self.total_opened,
                "converted": self.total_converted,
            },
            "conversion_rate": self.conversion_rate,
            "pending_journey_checks": self.pending_journey_checks,
            "dead_lettered_sends": self.dead_lettered_sends,
            "top_combos": self.top_combos,
            "worst_combos": self.worst_combos,
        }


class ReportService:
    """Builds reports from the record store."""

    def __init__(self, store: RecordStore) -> None:
        self.store = store

    async def build_report(self, min_samples: int = 5, top_n: int = 10, worst_n: int = 5) -> EngineReport:
        """
        Summarize outcomes.

        Args:
            min_samples: Deliveries a combination needs to be ranked
            top_n: Best combinations to include
            worst_n: Worst combinations to include
        """
        async with self.store.transaction() as records:
            by_status = await records.count_experiments_by_status()
            pending_checks = await records.count_open_journeys()
            dead_lettered = await records.count_failed_sends()
            stats = await records.eligible_combo_stats(min_samples)

        converted = by_status.get(ExperimentStatus.CONVERTED, 0)
        opened = by_status.get(ExperimentStatus.OPENED, 0) + converted
        sent = sum(by_status.get(status, 0) for status in DELIVERED_STATUSES)

        return EngineReport(
            total_experiments=sum(by_status.values()),
            total_sent=sent,
            total_opened=opened,
            total_converted=converted,
            conversion_rate=converted / sent if sent else 0.0,
            pending_journey_checks=pending_checks,
            dead_lettered_sends=dead_lettered,
            top_combos=[s.to_dict() for s in _ranked(stats, best_first=True)[:top_n]],
            worst_combos=[s.to_dict() for s in _ranked(stats, best_first=False)[:worst_n]],
        )

    async def list_experiments(self, limit: int = 50) -> list[Experiment]:
        """Newest experiments first."""
        async with self.store.transaction() as records:
            return await records.list_experiments(limit)


def _ranked(stats: list[ComboStat], best_first: bool) -> list[ComboStat]:
    return sorted(
        stats,
        key=lambda s: (s.conversion_rate, s.sent_count) if best_first else (-s.conversion_rate, s.sent_count),
        reverse=True,
    )


__all__ = ["EngineReport", "ReportService"]
