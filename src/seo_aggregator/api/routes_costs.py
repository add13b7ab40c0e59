"""Cost ledger reporting routes."""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

from fastapi import APIRouter, Depends, Query, Request

from seo_aggregator.api.auth import get_current_user_id
from seo_aggregator.errors import ValidationFailedError
from seo_aggregator.ledger.costs import CostLedger

router = APIRouter(prefix="/api/task-costs", tags=["task-costs"])


def _parse_bound(name: str, raw: str | None) -> datetime | None:
    if raw is None or not raw.strip():
        return None
    try:
        parsed = datetime.fromisoformat(raw.strip())
    except ValueError as exc:
        raise ValidationFailedError(
            f"{name} must be an ISO-8601 date or datetime", details={name: raw}
        ) from exc
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


@router.get("/total")
def total_cost(
    request: Request,
    start_date: str | None = None,
    end_date: str | None = None,
    user_id: int = Depends(get_current_user_id),
) -> dict[str, Any]:
    start = _parse_bound("start_date", start_date)
    end = _parse_bound("end_date", end_date)
    ledger: CostLedger = request.app.state.cost_ledger
    return {
        "success": True,
        "data": {
            "total_cost": ledger.user_total_cost(user_id, start=start, end=end),
            "user_id": user_id,
            "start_date": start,
            "end_date": end,
        },
    }


@router.get("/by-type")
def costs_by_type(
    request: Request,
    user_id: int = Depends(get_current_user_id),
) -> dict[str, Any]:
    ledger: CostLedger = request.app.state.cost_ledger
    return {
        "success": True,
        "data": {"costs_by_type": ledger.costs_by_type(user_id), "user_id": user_id},
    }


@router.get("/today")
def today_cost(
    request: Request,
    user_id: int = Depends(get_current_user_id),
) -> dict[str, Any]:
    ledger: CostLedger = request.app.state.cost_ledger
    now = request.app.state.clock()
    summary = ledger.today(user_id, now=now)
    return {
        "success": True,
        "data": {
            "today_cost": summary.total_cost,
            "task_count": summary.count,
            "user_id": user_id,
            "date": now.astimezone(UTC).date().isoformat(),
        },
    }


@router.get("/dead-letters")
def dead_letters(
    request: Request,
    limit: int = Query(default=50, ge=1, le=100),
    user_id: int = Depends(get_current_user_id),
) -> dict[str, Any]:
    items = request.app.state.storage.list_dead_letters(user_id=user_id, limit=limit)
    return {
        "success": True,
        "data": {
            "dead_letters": [item.model_dump(mode="json") for item in items],
            "user_id": user_id,
        },
    }
