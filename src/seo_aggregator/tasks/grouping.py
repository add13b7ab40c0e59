"""On-read grouping of task records into campaigns.

Records of one kind are grouped by the values of the kind's grouping fields
plus a five-minute time bucket (``floor(created_at_ms / 300000)``). Bucket
boundaries are hard cutoffs: two submissions seconds apart on either side of
a boundary land in different groups.

Group ids are the URL-safe base64 of a JSON document holding the structured
key, so lookups decode the exact key instead of parsing a delimited string.
"""

from __future__ import annotations

import base64
import binascii
import json
import math
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Any

from seo_aggregator.errors import (
    GroupNotFoundError,
    InvalidGroupIdError,
    ValidationFailedError,
)
from seo_aggregator.storage.base import SeoStorage
from seo_aggregator.storage.models import TaskRecord
from seo_aggregator.tasks.kinds import TaskKind

BUCKET = timedelta(minutes=5)
EPOCH = datetime(1970, 1, 1, tzinfo=UTC)
# Buckets whose whole window fits inside the datetime range.
MIN_BUCKET = (datetime.min.replace(tzinfo=UTC) - EPOCH) // BUCKET + 1
MAX_BUCKET = (datetime.max.replace(tzinfo=UTC) - EPOCH) // BUCKET - 1
DEFAULT_PAGE = 1
DEFAULT_LIMIT = 10
MAX_LIMIT = 100


@dataclass(frozen=True)
class GroupKey:
    kind: str
    values: tuple[Any, ...]
    bucket: int

    def window(self) -> tuple[datetime, datetime]:
        start = EPOCH + self.bucket * BUCKET
        return start, start + BUCKET


def bucket_of(created_at: datetime) -> int:
    if created_at.tzinfo is None:
        created_at = created_at.replace(tzinfo=UTC)
    return (created_at - EPOCH) // BUCKET


def _freeze(value: Any) -> Any:
    if isinstance(value, (list, tuple)):
        return tuple(_freeze(item) for item in value)
    if isinstance(value, dict):
        return tuple(sorted((str(key), _freeze(item)) for key, item in value.items()))
    return value


def _thaw(value: Any) -> Any:
    if isinstance(value, tuple):
        return [_thaw(item) for item in value]
    return value


def group_key(kind: TaskKind, record: TaskRecord) -> GroupKey:
    values = tuple(_freeze(record.params.get(field)) for field in kind.group_fields)
    return GroupKey(kind=kind.name, values=values, bucket=bucket_of(record.created_at))


def encode_group_id(key: GroupKey) -> str:
    document = {"k": key.kind, "v": [_thaw(value) for value in key.values], "b": key.bucket}
    raw = json.dumps(document, separators=(",", ":"), sort_keys=True).encode("utf-8")
    return base64.urlsafe_b64encode(raw).decode("ascii").rstrip("=")


def decode_group_id(group_id: str) -> GroupKey:
    padded = group_id + "=" * (-len(group_id) % 4)
    try:
        document = json.loads(base64.urlsafe_b64decode(padded.encode("ascii")))
    except (binascii.Error, UnicodeError, ValueError) as exc:
        raise InvalidGroupIdError(group_id) from exc

    if not isinstance(document, dict):
        raise InvalidGroupIdError(group_id)
    kind = document.get("k")
    values = document.get("v")
    bucket = document.get("b")
    if (
        not isinstance(kind, str)
        or not isinstance(values, list)
        or not isinstance(bucket, int)
        or isinstance(bucket, bool)
        or not MIN_BUCKET <= bucket <= MAX_BUCKET
    ):
        raise InvalidGroupIdError(group_id)
    return GroupKey(kind=kind, values=tuple(_freeze(value) for value in values), bucket=bucket)


@dataclass
class TaskGroup:
    key: GroupKey
    members: list[TaskRecord]

    @property
    def earliest(self) -> TaskRecord:
        return min(self.members, key=lambda record: record.created_at)

    def summary(self) -> dict[str, Any]:
        earliest = self.earliest
        return {
            "group_id": encode_group_id(self.key),
            "group_params": dict(earliest.params),
            "created_at": earliest.created_at,
            "tasks_count": len(self.members),
            "total_results": sum(record.result_count for record in self.members),
            "total_cost": math.fsum(record.cost or 0.0 for record in self.members),
        }


def fold_groups(kind: TaskKind, records: list[TaskRecord]) -> list[TaskGroup]:
    """Partition records into groups, newest group first."""
    groups: dict[GroupKey, TaskGroup] = {}
    for record in records:
        if not kind.owns(record.path):
            continue
        key = group_key(kind, record)
        group = groups.get(key)
        if group is None:
            groups[key] = TaskGroup(key=key, members=[record])
        else:
            group.members.append(record)
    ordered = list(groups.values())
    ordered.sort(key=lambda group: encode_group_id(group.key))
    ordered.sort(key=lambda group: group.earliest.created_at, reverse=True)
    return ordered


def paginate(total_items: int, *, page: int, limit: int) -> dict[str, Any]:
    total_pages = math.ceil(total_items / limit) if total_items else 0
    return {
        "current_page": page,
        "per_page": limit,
        "total_items": total_items,
        "total_pages": total_pages,
        "has_next_page": page < total_pages,
        "has_prev_page": page > 1,
    }


class GroupingEngine:
    def __init__(self, storage: SeoStorage) -> None:
        self.storage = storage

    def list_groups(
        self,
        kind: TaskKind,
        user_id: int,
        *,
        page: int = DEFAULT_PAGE,
        limit: int = DEFAULT_LIMIT,
    ) -> dict[str, Any]:
        if page < 1:
            raise ValidationFailedError("page must be >= 1", details={"page": page})
        if limit < 1 or limit > MAX_LIMIT:
            raise ValidationFailedError(
                f"limit must be between 1 and {MAX_LIMIT}", details={"limit": limit}
            )
        records = self.storage.list_tasks(kind.table, user_id=user_id)
        groups = fold_groups(kind, records)
        offset = (page - 1) * limit
        return {
            "groups": [group.summary() for group in groups[offset : offset + limit]],
            "pagination": paginate(len(groups), page=page, limit=limit),
        }

    def get_group(self, kind: TaskKind, user_id: int, group_id: str) -> dict[str, Any]:
        group = self._load(kind, user_id, group_id)
        members = sorted(group.members, key=lambda record: record.created_at)
        return {
            **group.summary(),
            "tasks": [record.model_dump(mode="json") for record in members],
        }

    def delete_group(self, kind: TaskKind, user_id: int, group_id: str) -> dict[str, Any]:
        group = self._load(kind, user_id, group_id)
        deleted = self.storage.delete_tasks(
            kind.table,
            user_id=user_id,
            task_ids=[record.id for record in group.members],
        )
        return {"group_id": group_id, "deleted_count": deleted}

    def _load(self, kind: TaskKind, user_id: int, group_id: str) -> TaskGroup:
        key = decode_group_id(group_id)
        if key.kind != kind.name or len(key.values) != len(kind.group_fields):
            raise GroupNotFoundError()
        start, end = key.window()
        records = self.storage.list_tasks(
            kind.table, user_id=user_id, created_from=start, created_to=end
        )
        members = [
            record
            for record in records
            if kind.owns(record.path) and group_key(kind, record) == key
        ]
        if not members:
            raise GroupNotFoundError()
        return TaskGroup(key=key, members=members)
