"""Routes for one provider task kind: submission, polling, reconcile and groups."""

from typing import Any

from fastapi import APIRouter, Depends, Request

from seo_aggregator.api.auth import get_current_user_id
from seo_aggregator.api.quota import concurrency_guard, quota_guard
from seo_aggregator.tasks.grouping import DEFAULT_LIMIT, DEFAULT_PAGE, GroupingEngine
from seo_aggregator.tasks.kinds import TaskKind
from seo_aggregator.tasks.lifecycle import TaskLifecycle


def _lifecycle(request: Request) -> TaskLifecycle:
    return request.app.state.lifecycle


def _grouping(request: Request) -> GroupingEngine:
    return request.app.state.grouping


def build_task_router(kind: TaskKind) -> APIRouter:
    router = APIRouter(prefix=f"/api/{kind.name}", tags=[kind.name])
    metered = [Depends(concurrency_guard), Depends(quota_guard(kind.quota_family))]
    params_model = kind.params_model

    if kind.supports_queue:

        @router.post("/task_post", dependencies=metered)
        def task_post(
            params: params_model,  # type: ignore[valid-type]
            request: Request,
            user_id: int = Depends(get_current_user_id),
        ) -> dict[str, Any]:
            records = _lifecycle(request).submit(kind, user_id, params)
            return {
                "success": True,
                "data": {
                    "tasks_count": len(records),
                    "tasks": [record.model_dump(mode="json") for record in records],
                },
            }

        @router.get("/tasks_ready", dependencies=metered)
        def tasks_ready(
            request: Request,
            user_id: int = Depends(get_current_user_id),
        ) -> dict[str, Any]:
            outcome = _lifecycle(request).poll_ready(kind, user_id)
            return {
                "success": True,
                "data": {
                    "reported": outcome["reported"],
                    "marked_ready": outcome["marked_ready"],
                    "tasks": outcome["response"].model_dump(mode="json")["tasks"],
                },
            }

        @router.get("/task_get/{task_id}", dependencies=metered)
        def task_get(
            task_id: str,
            request: Request,
            user_id: int = Depends(get_current_user_id),
        ) -> dict[str, Any]:
            outcome = _lifecycle(request).reconcile(kind, user_id, task_id)
            return {
                "success": True,
                "data": {
                    "task_id": task_id,
                    "complete": outcome["complete"],
                    "updated": outcome["updated"],
                    "tasks": outcome["response"].model_dump(mode="json")["tasks"],
                },
            }

    if kind.supports_live:

        @router.post("/live", dependencies=metered)
        def live(
            params: params_model,  # type: ignore[valid-type]
            request: Request,
            user_id: int = Depends(get_current_user_id),
        ) -> dict[str, Any]:
            response, records = _lifecycle(request).live(kind, user_id, params)
            return {
                "success": True,
                "data": response.model_dump(mode="json", exclude_none=True),
                "saved": len(records),
            }

    @router.get("/tasks/{task_id}")
    def get_task(
        task_id: str,
        request: Request,
        user_id: int = Depends(get_current_user_id),
    ) -> dict[str, Any]:
        record = _lifecycle(request).get_task(kind, user_id, task_id)
        return {"success": True, "data": record.model_dump(mode="json")}

    @router.get("/groups")
    def list_groups(
        request: Request,
        page: int = DEFAULT_PAGE,
        limit: int = DEFAULT_LIMIT,
        user_id: int = Depends(get_current_user_id),
    ) -> dict[str, Any]:
        listing = _grouping(request).list_groups(kind, user_id, page=page, limit=limit)
        return {"success": True, "data": listing}

    @router.get("/groups/{group_id}")
    def get_group(
        group_id: str,
        request: Request,
        user_id: int = Depends(get_current_user_id),
    ) -> dict[str, Any]:
        return {"success": True, "data": _grouping(request).get_group(kind, user_id, group_id)}

    @router.delete("/groups/{group_id}")
    def delete_group(
        group_id: str,
        request: Request,
        user_id: int = Depends(get_current_user_id),
    ) -> dict[str, Any]:
        return {"success": True, "data": _grouping(request).delete_group(kind, user_id, group_id)}

    return router
