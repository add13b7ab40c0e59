"""Dashboard statistics routes."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Request

from seo_aggregator.api.auth import get_current_user_id
from seo_aggregator.ledger.dashboard import DashboardService

router = APIRouter(prefix="/api/dashboard", tags=["dashboard"])


@router.get("/stats")
def dashboard_stats(
    request: Request,
    user_id: int = Depends(get_current_user_id),
) -> dict[str, Any]:
    dashboard: DashboardService = request.app.state.dashboard
    return {"success": True, "data": dashboard.stats(user_id, now=request.app.state.clock())}


@router.get("/summary")
def dashboard_summary(
    request: Request,
    user_id: int = Depends(get_current_user_id),
) -> dict[str, Any]:
    dashboard: DashboardService = request.app.state.dashboard
    return {"success": True, "data": dashboard.summary(user_id, now=request.app.state.clock())}
