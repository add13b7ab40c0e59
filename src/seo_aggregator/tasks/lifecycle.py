"""Submit, poll and reconcile provider tasks for one user."""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any

from seo_aggregator.credentials import CredentialResolver
from seo_aggregator.errors import TaskNotFoundError
from seo_aggregator.ledger.costs import extract_task_costs
from seo_aggregator.ledger.writer import CostLedgerWriter
from seo_aggregator.provider.client import DataForSeoClient
from seo_aggregator.provider.models import ProviderResponse, ProviderTask
from seo_aggregator.storage.base import SeoStorage
from seo_aggregator.storage.models import TaskRecord
from seo_aggregator.tasks.kinds import TaskKind
from seo_aggregator.tasks.params import TaskParams

logger = logging.getLogger(__name__)


def utc_now() -> datetime:
    return datetime.now(tz=UTC)


class TaskLifecycle:
    """Provider task flow: queued submission, live submission, readiness poll, reconcile."""

    def __init__(
        self,
        *,
        storage: SeoStorage,
        provider: DataForSeoClient,
        credentials: CredentialResolver,
        ledger: CostLedgerWriter,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.storage = storage
        self.provider = provider
        self.credentials = credentials
        self.ledger = ledger
        self.clock = clock

    def submit(self, kind: TaskKind, user_id: int, params: TaskParams) -> list[TaskRecord]:
        creds = self.credentials.resolve(user_id)
        payload = params.to_provider()
        response = self.provider.task_post(creds, kind.endpoint, payload)
        action_path = kind.request_path("task_post")
        records = self._persist(
            kind, user_id, response, params=payload, default_path=action_path, ready=False
        )
        self._record_costs(kind, user_id, response, endpoint="/".join(action_path))
        logger.info(
            "event=tasks_submitted kind=%s user_id=%s count=%s",
            kind.name,
            user_id,
            len(records),
        )
        return records

    def live(
        self, kind: TaskKind, user_id: int, params: TaskParams
    ) -> tuple[ProviderResponse, list[TaskRecord]]:
        creds = self.credentials.resolve(user_id)
        payload = params.to_provider()
        response = self.provider.live(creds, kind.endpoint, payload, suffix=kind.live_suffix)
        action_path = kind.request_path(kind.live_suffix)
        records = self._persist(
            kind, user_id, response, params=payload, default_path=action_path, ready=True
        )
        self._record_costs(kind, user_id, response, endpoint="/".join(action_path))
        logger.info(
            "event=live_completed kind=%s user_id=%s count=%s",
            kind.name,
            user_id,
            len(records),
        )
        return response, records

    def poll_ready(self, kind: TaskKind, user_id: int) -> dict[str, Any]:
        creds = self.credentials.resolve(user_id)
        response = self.provider.tasks_ready(creds, kind.endpoint)
        entries = response.ready_entries()
        marked: list[str] = []
        for entry in entries:
            if self.storage.mark_task_ready(
                kind.table, entry.id, user_id=user_id, fields=entry.status_fields()
            ):
                marked.append(entry.id)
        logger.info(
            "event=tasks_ready_polled kind=%s user_id=%s reported=%s marked=%s",
            kind.name,
            user_id,
            len(entries),
            len(marked),
        )
        return {
            "reported": [entry.id for entry in entries],
            "marked_ready": marked,
            "response": response,
        }

    def reconcile(self, kind: TaskKind, user_id: int, task_id: str) -> dict[str, Any]:
        creds = self.credentials.resolve(user_id)
        response = self.provider.task_get(
            creds, kind.endpoint, task_id, suffix=kind.task_get_suffix
        )
        provider_task = next((task for task in response.tasks if task.id == task_id), None)

        updated = False
        if provider_task is not None and provider_task.is_complete and provider_task.result is not None:
            updated = self.storage.store_task_result(
                kind.table,
                task_id,
                user_id=user_id,
                result=provider_task.result,
                fields=provider_task.status_fields(),
            )
        logger.info(
            "event=task_reconciled kind=%s user_id=%s task_id=%s updated=%s",
            kind.name,
            user_id,
            task_id,
            updated,
        )
        return {
            "task_id": task_id,
            "complete": bool(provider_task and provider_task.is_complete),
            "updated": updated,
            "response": response,
        }

    def get_task(self, kind: TaskKind, user_id: int, task_id: str) -> TaskRecord:
        record = self.storage.get_task(kind.table, task_id, user_id=user_id)
        if record is None or not kind.owns(record.path):
            raise TaskNotFoundError(task_id)
        return record

    def _persist(
        self,
        kind: TaskKind,
        user_id: int,
        response: ProviderResponse,
        *,
        params: dict[str, Any],
        default_path: list[str],
        ready: bool,
    ) -> list[TaskRecord]:
        created_at = self.clock()
        records: list[TaskRecord] = []
        for task in response.tasks:
            if not task.id:
                continue
            record = self._to_record(
                task,
                user_id=user_id,
                params=params,
                default_path=default_path,
                ready=ready,
                created_at=created_at,
            )
            if self.storage.insert_task(kind.table, record):
                records.append(record)
            else:
                logger.warning(
                    "event=task_duplicate kind=%s user_id=%s task_id=%s",
                    kind.name,
                    user_id,
                    task.id,
                )
        return records

    @staticmethod
    def _to_record(
        task: ProviderTask,
        *,
        user_id: int,
        params: dict[str, Any],
        default_path: list[str],
        ready: bool,
        created_at: datetime,
    ) -> TaskRecord:
        return TaskRecord(
            id=str(task.id),
            user_id=user_id,
            status_code=task.status_code,
            status_message=task.status_message,
            time=task.time,
            cost=task.cost,
            result_count=task.result_count or 0,
            path=task.path or list(default_path),
            data=task.data,
            params=params,
            result=list(task.result) if ready and task.result is not None else None,
            is_ready=ready,
            created_at=created_at,
        )

    def _record_costs(
        self,
        kind: TaskKind,
        user_id: int,
        response: ProviderResponse,
        *,
        endpoint: str,
    ) -> None:
        entries = extract_task_costs(
            response,
            user_id=user_id,
            endpoint=endpoint,
            task_type=kind.task_type,
            created_at=self.clock(),
        )
        if entries:
            self.ledger.submit(entries)
