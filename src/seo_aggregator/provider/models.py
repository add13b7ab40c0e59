"""Pydantic schemas for DataForSEO response envelopes."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from seo_aggregator.errors import ProviderError

TASK_COMPLETE = 20000
PROVIDER_ERROR_FLOOR = 40000


class ProviderModel(BaseModel):
    """Base model tolerating the provider's extra fields."""

    model_config = ConfigDict(extra="allow")


class ProviderTask(ProviderModel):
    id: str | None = None
    status_code: int | None = None
    status_message: str | None = None
    time: str | None = None
    cost: float | None = None
    result_count: int | None = None
    path: list[str] = Field(default_factory=list)
    data: Any = None
    result: list[Any] | None = None

    @property
    def is_complete(self) -> bool:
        return self.status_code == TASK_COMPLETE

    def status_fields(self) -> dict[str, Any]:
        fields = {
            "status_code": self.status_code,
            "status_message": self.status_message,
            "time": self.time,
            "cost": self.cost,
            "result_count": self.result_count,
        }
        return {key: value for key, value in fields.items() if value is not None}


class ReadyEntry(ProviderModel):
    """One item of a `tasks_ready` listing; never carries result rows."""

    id: str
    status_code: int | None = None
    status_message: str | None = None
    cost: float | None = None
    result_count: int | None = None
    endpoint: str | None = None
    tag: str | None = None

    def status_fields(self) -> dict[str, Any]:
        fields = {
            "status_code": self.status_code,
            "status_message": self.status_message,
            "cost": self.cost,
            "result_count": self.result_count,
        }
        return {key: value for key, value in fields.items() if value is not None}


class ProviderResponse(ProviderModel):
    version: str | None = None
    status_code: int
    status_message: str = ""
    time: str | None = None
    cost: float | None = None
    tasks_count: int | None = None
    tasks_error: int | None = None
    tasks: list[ProviderTask] = Field(default_factory=list)

    def ready_entries(self) -> list[ReadyEntry]:
        entries: list[ReadyEntry] = []
        for task in self.tasks:
            for item in task.result or []:
                if isinstance(item, dict) and item.get("id"):
                    try:
                        entries.append(ReadyEntry.model_validate(item))
                    except ValidationError as exc:
                        raise ProviderError(
                            "Provider returned a malformed tasks_ready entry"
                        ) from exc
        return entries
