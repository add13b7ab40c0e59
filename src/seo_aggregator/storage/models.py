"""Storage models shared by services, API and persistence backends."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

# Every task-producing provider family persists into one of these tables.
TASK_TABLES: tuple[str, ...] = (
    "serp_tasks",
    "onpage_tasks",
    "keywords_for_keywords_tasks",
    "keywords_for_site_tasks",
    "domain_competitors_tasks",
    "domain_rank_overview_tasks",
    "content_analysis_summary_tasks",
    "related_keywords_tasks",
)


class TaskRecord(BaseModel):
    """One provider job owned by one user."""

    id: str
    user_id: int
    status_code: int | None = None
    status_message: str | None = None
    time: str | None = None
    cost: float | None = None
    result_count: int = 0
    path: list[str] = Field(default_factory=list)
    data: Any = None
    params: dict[str, Any] = Field(default_factory=dict)
    result: list[Any] | None = None
    is_ready: bool = False
    created_at: datetime


class Credentials(BaseModel):
    user_id: int
    login: str
    password: str
    created_at: datetime
    updated_at: datetime


class CostEntry(BaseModel):
    """Append-only ledger fact: one row per task per provider call."""

    user_id: int
    task_id: str
    task_type: str
    cost: float
    api_endpoint: str
    status_code: int
    created_at: datetime
    id: int | None = None


class CostSummary(BaseModel):
    count: int = 0
    total_cost: float = 0.0
    last_at: datetime | None = None


class CostGroupTotal(BaseModel):
    """Ledger aggregate for one task type or one endpoint."""

    key: str
    total_cost: float
    task_count: int


class UsageSnapshot(BaseModel):
    user_id: int
    api_name: str
    usage_count: int
    quota_limit: int
    reset_at: datetime

    @property
    def exceeded(self) -> bool:
        return self.usage_count > self.quota_limit

    @property
    def remaining(self) -> int:
        return max(0, self.quota_limit - self.usage_count)


class DashboardRollup(BaseModel):
    user_id: int
    total_api_calls: int = 0
    total_cost: float = 0.0
    last_api_call: datetime | None = None
    updated_at: datetime | None = None


class DeadLetter(BaseModel):
    entry: CostEntry
    error: str
    attempts: int
    created_at: datetime


class RequestSlot(BaseModel):
    """Outcome of claiming one in-flight request slot for a user."""

    user_id: int
    active: int
    limit: int
    acquired: bool
