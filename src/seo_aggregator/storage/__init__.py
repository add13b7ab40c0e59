"""Storage backends and models."""

from seo_aggregator.storage.base import SeoStorage
from seo_aggregator.storage.memory import InMemorySeoStorage
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
from seo_aggregator.storage.postgres import PostgresSeoStorage

__all__ = [
    "TASK_TABLES",
    "CostEntry",
    "CostGroupTotal",
    "CostSummary",
    "Credentials",
    "DashboardRollup",
    "DeadLetter",
    "InMemorySeoStorage",
    "PostgresSeoStorage",
    "RequestSlot",
    "SeoStorage",
    "TaskRecord",
    "UsageSnapshot",
]
