"""Provider task kinds, lifecycle and grouping."""

from seo_aggregator.tasks.grouping import GroupingEngine, GroupKey, decode_group_id, encode_group_id
from seo_aggregator.tasks.kinds import KINDS, TaskKind
from seo_aggregator.tasks.lifecycle import TaskLifecycle

__all__ = [
    "KINDS",
    "GroupKey",
    "GroupingEngine",
    "TaskKind",
    "TaskLifecycle",
    "decode_group_id",
    "encode_group_id",
]
