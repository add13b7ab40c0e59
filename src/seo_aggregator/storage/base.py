"""Storage interfaces for task records, credentials, ledger and usage counters."""

from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime
from typing import Any, Protocol

from seo_aggregator.storage.models import (
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


class SeoStorage(Protocol):
    def migrate(self) -> None: ...

    # Task tables. Every read and write is scoped to the owning user.
    def insert_task(self, table: str, record: TaskRecord) -> bool: ...

    def get_task(self, table: str, task_id: str, *, user_id: int) -> TaskRecord | None: ...

    def list_tasks(
        self,
        table: str,
        *,
        user_id: int,
        created_from: datetime | None = None,
        created_to: datetime | None = None,
    ) -> list[TaskRecord]: ...

    def count_tasks(self, table: str, *, user_id: int) -> int: ...

    def mark_task_ready(
        self,
        table: str,
        task_id: str,
        *,
        user_id: int,
        fields: dict[str, Any],
    ) -> bool: ...

    def store_task_result(
        self,
        table: str,
        task_id: str,
        *,
        user_id: int,
        result: list[Any],
        fields: dict[str, Any],
    ) -> bool: ...

    def delete_tasks(self, table: str, *, user_id: int, task_ids: Iterable[str]) -> int: ...

    # Credentials.
    def get_credentials(self, user_id: int) -> Credentials | None: ...

    def upsert_credentials(self, user_id: int, login: str, password: str) -> Credentials: ...

    # Cost ledger.
    def append_cost(self, entry: CostEntry) -> CostEntry: ...

    def cost_summary(
        self,
        user_id: int,
        *,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> CostSummary: ...

    def costs_by_type(self, user_id: int) -> list[CostGroupTotal]: ...

    def costs_by_endpoint(self, user_id: int, *, limit: int) -> list[CostGroupTotal]: ...

    def costs_by_month(self, user_id: int, *, start: datetime) -> list[CostGroupTotal]: ...

    def recent_costs(self, user_id: int, *, limit: int) -> list[CostEntry]: ...

    def record_dead_letter(self, entry: CostEntry, *, error: str, attempts: int) -> None: ...

    def list_dead_letters(
        self, *, user_id: int | None = None, limit: int = 100
    ) -> list[DeadLetter]: ...

    def bump_dashboard_rollup(self, entry: CostEntry) -> None: ...

    def get_dashboard_rollup(self, user_id: int) -> DashboardRollup | None: ...

    # Usage quota counters.
    def increment_usage(
        self,
        user_id: int,
        api_name: str,
        *,
        quota_limit: int,
        now: datetime,
        next_reset: datetime,
    ) -> UsageSnapshot: ...

    # In-flight request slots, shared across workers.
    def acquire_request_slot(self, user_id: int, *, limit: int) -> RequestSlot: ...

    def release_request_slot(self, user_id: int) -> None: ...
