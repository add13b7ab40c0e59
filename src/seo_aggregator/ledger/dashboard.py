"""Dashboard statistics assembled from the ledger and the task tables."""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

from seo_aggregator.ledger.costs import CostLedger, utc_day_bounds
from seo_aggregator.storage.base import SeoStorage
from seo_aggregator.tasks.kinds import KINDS, TaskKind


def utc_month_start(now: datetime) -> datetime:
    return now.astimezone(UTC).replace(day=1, hour=0, minute=0, second=0, microsecond=0)


def shift_month(month_start: datetime, delta: int) -> datetime:
    index = month_start.year * 12 + month_start.month - 1 + delta
    return month_start.replace(year=index // 12, month=index % 12 + 1)


class DashboardService:
    def __init__(
        self,
        storage: SeoStorage,
        *,
        kinds: dict[str, TaskKind] | None = None,
        recent_limit: int = 10,
        endpoint_limit: int = 5,
    ) -> None:
        self.storage = storage
        self.ledger = CostLedger(storage)
        self.kinds = kinds or KINDS
        self.recent_limit = recent_limit
        self.endpoint_limit = endpoint_limit

    def stats(self, user_id: int, *, now: datetime) -> dict[str, Any]:
        return {
            "user_id": user_id,
            "overview": self.overview(user_id, now=now),
            "tasks_by_kind": self.tasks_by_kind(user_id),
            "costs_by_type": self.ledger.costs_by_type(user_id),
            "recent_activity": self.recent_activity(user_id),
            "top_endpoints": self.top_endpoints(user_id),
            "monthly_trend": self.monthly_trend(user_id, now=now),
        }

    def overview(self, user_id: int, *, now: datetime) -> dict[str, Any]:
        total = self.storage.cost_summary(user_id)
        today = self.ledger.today(user_id, now=now)
        _, end_of_day = utc_day_bounds(now)
        month = self.storage.cost_summary(user_id, start=utc_month_start(now), end=end_of_day)
        return {
            "total_api_calls": total.count,
            "total_cost": total.total_cost,
            "today_api_calls": today.count,
            "today_cost": today.total_cost,
            "this_month_api_calls": month.count,
            "this_month_cost": month.total_cost,
            "avg_cost_per_task": total.total_cost / total.count if total.count else 0.0,
            "last_api_call": total.last_at,
        }

    def tasks_by_kind(self, user_id: int) -> dict[str, int]:
        counts: dict[str, int] = {}
        for name, kind in self.kinds.items():
            if kind.path_marker is None:
                counts[name] = self.storage.count_tasks(kind.table, user_id=user_id)
            else:
                records = self.storage.list_tasks(kind.table, user_id=user_id)
                counts[name] = sum(1 for record in records if kind.owns(record.path))
        return counts

    def recent_activity(self, user_id: int) -> list[dict[str, Any]]:
        return [
            {
                "task_id": entry.task_id,
                "task_type": entry.task_type,
                "cost": entry.cost,
                "endpoint": entry.api_endpoint,
                "created_at": entry.created_at,
            }
            for entry in self.storage.recent_costs(user_id, limit=self.recent_limit)
        ]

    def top_endpoints(self, user_id: int) -> list[dict[str, Any]]:
        return [
            {
                "endpoint": item.key,
                "call_count": item.task_count,
                "total_cost": item.total_cost,
            }
            for item in self.storage.costs_by_endpoint(user_id, limit=self.endpoint_limit)
        ]

    def monthly_trend(
        self, user_id: int, *, now: datetime, months: int = 6
    ) -> list[dict[str, Any]]:
        """Calls and cost per UTC month, oldest first, including empty months."""
        labels = [shift_month(utc_month_start(now), -offset) for offset in range(months)]
        labels.reverse()
        totals = {
            item.key: item
            for item in self.storage.costs_by_month(user_id, start=labels[0])
        }
        trend = []
        for month_start in labels:
            key = month_start.strftime("%Y-%m")
            item = totals.get(key)
            trend.append(
                {
                    "month": key,
                    "api_calls": item.task_count if item else 0,
                    "cost": item.total_cost if item else 0.0,
                }
            )
        return trend

    def summary(self, user_id: int, *, now: datetime) -> dict[str, Any]:
        rollup = self.storage.get_dashboard_rollup(user_id)
        today = self.ledger.today(user_id, now=now)
        return {
            "user_id": user_id,
            "total_api_calls": rollup.total_api_calls if rollup else 0,
            "total_cost": rollup.total_cost if rollup else 0.0,
            "last_api_call": rollup.last_api_call if rollup else None,
            "today_api_calls": today.count,
            "today_cost": today.total_cost,
        }
