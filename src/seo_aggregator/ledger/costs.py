"""Cost extraction from provider responses and read-side ledger aggregates."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from typing import Any

from seo_aggregator.provider.models import ProviderResponse
from seo_aggregator.storage.base import SeoStorage
from seo_aggregator.storage.models import CostEntry, CostSummary


def extract_task_costs(
    response: ProviderResponse,
    *,
    user_id: int,
    endpoint: str,
    task_type: str,
    created_at: datetime,
) -> list[CostEntry]:
    """One ledger entry per task carrying an id, a cost and a status code."""
    entries: list[CostEntry] = []
    for task in response.tasks:
        if not task.id or task.cost is None or task.status_code is None:
            continue
        entries.append(
            CostEntry(
                user_id=user_id,
                task_id=task.id,
                task_type=task_type,
                cost=task.cost,
                api_endpoint=endpoint,
                status_code=task.status_code,
                created_at=created_at,
            )
        )
    return entries


def utc_day_bounds(now: datetime) -> tuple[datetime, datetime]:
    start = now.astimezone(UTC).replace(hour=0, minute=0, second=0, microsecond=0)
    return start, start + timedelta(days=1) - timedelta(microseconds=1)


class CostLedger:
    """Pure read-side aggregates over the append-only ledger."""

    def __init__(self, storage: SeoStorage) -> None:
        self.storage = storage

    def user_total_cost(
        self,
        user_id: int,
        *,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> float:
        # A range only applies when both bounds are present.
        if start is None or end is None:
            start = end = None
        return self.storage.cost_summary(user_id, start=start, end=end).total_cost

    def costs_by_type(self, user_id: int) -> list[dict[str, Any]]:
        return [
            {
                "task_type": item.key,
                "total_cost": item.total_cost,
                "task_count": item.task_count,
                "average_cost": item.total_cost / item.task_count if item.task_count else 0.0,
            }
            for item in self.storage.costs_by_type(user_id)
        ]

    def today(self, user_id: int, *, now: datetime) -> CostSummary:
        start, end = utc_day_bounds(now)
        return self.storage.cost_summary(user_id, start=start, end=end)

    def today_cost(self, user_id: int, *, now: datetime) -> float:
        return self.today(user_id, now=now).total_cost
