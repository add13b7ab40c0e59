"""In-memory storage backend for tests only."""

from __future__ import annotations

import math
import threading
from collections.abc import Iterable
from datetime import UTC, datetime
from typing import Any

from seo_aggregator.storage.models import (
    TASK_TABLES,
    CostEntry,
    CostGroupTotal,
    CostSummary,
    Credentials,
    DashboardRollup,
    DeadLetter,
    RequestSlot,
    TaskRecord,
    UsageSnapshot,
)

STATUS_FIELDS = frozenset({"status_code", "status_message", "time", "cost", "result_count"})


class InMemorySeoStorage:
    """Simple in-memory implementation mirroring PostgresSeoStorage semantics."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._tasks: dict[str, dict[str, TaskRecord]] = {table: {} for table in TASK_TABLES}
        self._credentials: dict[int, Credentials] = {}
        self._costs: list[CostEntry] = []
        self._dead_letters: list[DeadLetter] = []
        self._rollups: dict[int, DashboardRollup] = {}
        self._usage: dict[tuple[int, str], UsageSnapshot] = {}
        self._active: dict[int, int] = {}
        self._next_cost_id = 1

    def migrate(self) -> None:
        return None

    def insert_task(self, table: str, record: TaskRecord) -> bool:
        rows = self._table(table)
        with self._lock:
            if record.id in rows:
                return False
            rows[record.id] = record.model_copy(deep=True)
        return True

    def get_task(self, table: str, task_id: str, *, user_id: int) -> TaskRecord | None:
        with self._lock:
            record = self._table(table).get(task_id)
        if record is None or record.user_id != user_id:
            return None
        return record.model_copy(deep=True)

    def list_tasks(
        self,
        table: str,
        *,
        user_id: int,
        created_from: datetime | None = None,
        created_to: datetime | None = None,
    ) -> list[TaskRecord]:
        with self._lock:
            rows = [
                record.model_copy(deep=True)
                for record in self._table(table).values()
                if record.user_id == user_id
                and (created_from is None or record.created_at >= created_from)
                and (created_to is None or record.created_at < created_to)
            ]
        rows.sort(key=lambda record: record.created_at, reverse=True)
        return rows

    def count_tasks(self, table: str, *, user_id: int) -> int:
        with self._lock:
            return sum(1 for record in self._table(table).values() if record.user_id == user_id)

    def mark_task_ready(
        self,
        table: str,
        task_id: str,
        *,
        user_id: int,
        fields: dict[str, Any],
    ) -> bool:
        return self._update_task(table, task_id, user_id=user_id, fields=fields)

    def store_task_result(
        self,
        table: str,
        task_id: str,
        *,
        user_id: int,
        result: list[Any],
        fields: dict[str, Any],
    ) -> bool:
        return self._update_task(
            table, task_id, user_id=user_id, fields=fields, result=list(result)
        )

    def delete_tasks(self, table: str, *, user_id: int, task_ids: Iterable[str]) -> int:
        rows = self._table(table)
        deleted = 0
        with self._lock:
            for task_id in set(task_ids):
                record = rows.get(task_id)
                if record is None or record.user_id != user_id:
                    continue
                del rows[task_id]
                deleted += 1
        return deleted

    def get_credentials(self, user_id: int) -> Credentials | None:
        with self._lock:
            credentials = self._credentials.get(user_id)
        return credentials.model_copy() if credentials else None

    def upsert_credentials(self, user_id: int, login: str, password: str) -> Credentials:
        now = datetime.now(UTC)
        with self._lock:
            current = self._credentials.get(user_id)
            credentials = Credentials(
                user_id=user_id,
                login=login,
                password=password,
                created_at=current.created_at if current else now,
                updated_at=now,
            )
            self._credentials[user_id] = credentials
        return credentials.model_copy()

    def append_cost(self, entry: CostEntry) -> CostEntry:
        with self._lock:
            stored = entry.model_copy(update={"id": self._next_cost_id})
            self._next_cost_id += 1
            self._costs.append(stored)
        return stored

    def cost_summary(
        self,
        user_id: int,
        *,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> CostSummary:
        entries = [
            entry
            for entry in self._user_costs(user_id)
            if (start is None or entry.created_at >= start)
            and (end is None or entry.created_at <= end)
        ]
        if not entries:
            return CostSummary()
        return CostSummary(
            count=len(entries),
            total_cost=math.fsum(entry.cost for entry in entries),
            last_at=max(entry.created_at for entry in entries),
        )

    def costs_by_type(self, user_id: int) -> list[CostGroupTotal]:
        return self._group_costs(user_id, key=lambda entry: entry.task_type)

    def costs_by_endpoint(self, user_id: int, *, limit: int) -> list[CostGroupTotal]:
        totals = self._group_costs(user_id, key=lambda entry: entry.api_endpoint)
        totals.sort(key=lambda item: (-item.task_count, -item.total_cost, item.key))
        return totals[:limit]

    def costs_by_month(self, user_id: int, *, start: datetime) -> list[CostGroupTotal]:
        entries = [entry for entry in self._user_costs(user_id) if entry.created_at >= start]
        buckets: dict[str, list[float]] = {}
        for entry in entries:
            month = entry.created_at.astimezone(UTC).strftime("%Y-%m")
            buckets.setdefault(month, []).append(entry.cost)
        return [
            CostGroupTotal(key=month, total_cost=math.fsum(costs), task_count=len(costs))
            for month, costs in sorted(buckets.items())
        ]

    def recent_costs(self, user_id: int, *, limit: int) -> list[CostEntry]:
        entries = self._user_costs(user_id)
        entries.sort(key=lambda entry: (entry.created_at, entry.id or 0), reverse=True)
        return entries[:limit]

    def record_dead_letter(self, entry: CostEntry, *, error: str, attempts: int) -> None:
        with self._lock:
            self._dead_letters.append(
                DeadLetter(
                    entry=entry.model_copy(),
                    error=error,
                    attempts=attempts,
                    created_at=datetime.now(UTC),
                )
            )

    def list_dead_letters(
        self, *, user_id: int | None = None, limit: int = 100
    ) -> list[DeadLetter]:
        with self._lock:
            items = [
                item.model_copy(deep=True)
                for item in self._dead_letters
                if user_id is None or item.entry.user_id == user_id
            ]
        return items[-limit:]

    def bump_dashboard_rollup(self, entry: CostEntry) -> None:
        with self._lock:
            current = self._rollups.get(entry.user_id) or DashboardRollup(user_id=entry.user_id)
            last_call = current.last_api_call
            self._rollups[entry.user_id] = DashboardRollup(
                user_id=entry.user_id,
                total_api_calls=current.total_api_calls + 1,
                total_cost=current.total_cost + entry.cost,
                last_api_call=(
                    entry.created_at
                    if last_call is None or entry.created_at > last_call
                    else last_call
                ),
                updated_at=datetime.now(UTC),
            )

    def get_dashboard_rollup(self, user_id: int) -> DashboardRollup | None:
        with self._lock:
            rollup = self._rollups.get(user_id)
        return rollup.model_copy() if rollup else None

    def increment_usage(
        self,
        user_id: int,
        api_name: str,
        *,
        quota_limit: int,
        now: datetime,
        next_reset: datetime,
    ) -> UsageSnapshot:
        key = (user_id, api_name)
        with self._lock:
            current = self._usage.get(key)
            if current is None or current.reset_at <= now:
                usage_count, reset_at = 1, next_reset
            else:
                usage_count, reset_at = current.usage_count + 1, current.reset_at
            snapshot = UsageSnapshot(
                user_id=user_id,
                api_name=api_name,
                usage_count=usage_count,
                quota_limit=quota_limit,
                reset_at=reset_at,
            )
            self._usage[key] = snapshot
        return snapshot.model_copy()

    def acquire_request_slot(self, user_id: int, *, limit: int) -> RequestSlot:
        with self._lock:
            active = self._active.get(user_id, 0)
            acquired = active < limit
            if acquired:
                active += 1
                self._active[user_id] = active
        return RequestSlot(user_id=user_id, active=active, limit=limit, acquired=acquired)

    def release_request_slot(self, user_id: int) -> None:
        with self._lock:
            active = self._active.get(user_id, 0) - 1
            if active <= 0:
                self._active.pop(user_id, None)
            else:
                self._active[user_id] = active

    def _table(self, table: str) -> dict[str, TaskRecord]:
        rows = self._tasks.get(table)
        if rows is None:
            raise ValueError(f"Unknown task table: {table}")
        return rows

    def _update_task(
        self,
        table: str,
        task_id: str,
        *,
        user_id: int,
        fields: dict[str, Any],
        result: list[Any] | None = None,
    ) -> bool:
        rows = self._table(table)
        update = {key: value for key, value in fields.items() if key in STATUS_FIELDS}
        update["is_ready"] = True
        if result is not None:
            update["result"] = result
        with self._lock:
            current = rows.get(task_id)
            if current is None or current.user_id != user_id:
                return False
            rows[task_id] = current.model_copy(update=update, deep=True)
        return True

    def _user_costs(self, user_id: int) -> list[CostEntry]:
        with self._lock:
            return [entry.model_copy() for entry in self._costs if entry.user_id == user_id]

    def _group_costs(self, user_id: int, *, key: Any) -> list[CostGroupTotal]:
        buckets: dict[str, list[float]] = {}
        for entry in self._user_costs(user_id):
            buckets.setdefault(key(entry), []).append(entry.cost)
        return [
            CostGroupTotal(key=name, total_cost=math.fsum(costs), task_count=len(costs))
            for name, costs in sorted(buckets.items())
        ]
