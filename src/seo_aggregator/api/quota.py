"""Per-user daily quota enforcement backed by the shared store."""

from __future__ import annotations

import logging
import math
from collections.abc import Callable, Iterator
from datetime import UTC, datetime, timedelta

from fastapi import Depends, Request, Response

from seo_aggregator.api.auth import get_current_user_id
from seo_aggregator.errors import ConcurrencyLimitError, QuotaExceededError
from seo_aggregator.storage.models import UsageSnapshot
from seo_aggregator.tasks.kinds import DEFAULT_DAILY_QUOTAS

logger = logging.getLogger(__name__)


def next_utc_midnight(now: datetime) -> datetime:
    start = now.astimezone(UTC).replace(hour=0, minute=0, second=0, microsecond=0)
    return start + timedelta(days=1)


def rate_limit_headers(snapshot: UsageSnapshot) -> dict[str, str]:
    return {
        "X-RateLimit-Limit": str(snapshot.quota_limit),
        "X-RateLimit-Remaining": str(snapshot.remaining),
        "X-RateLimit-Reset": str(math.ceil(snapshot.reset_at.timestamp())),
        "X-RateLimit-Used": str(snapshot.usage_count),
    }


def quota_guard(api_name: str) -> Callable[..., None]:
    """Dependency counting one call against ``api_name`` for the current user."""

    def _enforce(
        request: Request,
        response: Response,
        user_id: int = Depends(get_current_user_id),
    ) -> None:
        if not request.app.state.settings.quota_enabled:
            return
        quota_limit = request.app.state.quotas.get(api_name, DEFAULT_DAILY_QUOTAS[api_name])
        now = request.app.state.clock()
        snapshot = request.app.state.storage.increment_usage(
            user_id,
            api_name,
            quota_limit=quota_limit,
            now=now,
            next_reset=next_utc_midnight(now),
        )
        headers = rate_limit_headers(snapshot)
        if snapshot.exceeded:
            logger.warning(
                "event=quota_exceeded user_id=%s api=%s used=%s limit=%s",
                user_id,
                api_name,
                snapshot.usage_count,
                snapshot.quota_limit,
            )
            retry_after = max(0, math.ceil((snapshot.reset_at - now).total_seconds()))
            raise QuotaExceededError(
                f"Daily quota exceeded for {api_name}. Limit: {snapshot.quota_limit}",
                headers={**headers, "Retry-After": str(retry_after)},
            )
        response.headers.update(headers)

    return _enforce


def concurrency_guard(
    request: Request,
    user_id: int = Depends(get_current_user_id),
) -> Iterator[None]:
    """Hold one in-flight slot for the user until the response is produced.

    A limit of 0 disables the cap.
    """
    limit = request.app.state.settings.max_concurrent_requests
    if limit == 0:
        yield
        return
    storage = request.app.state.storage
    slot = storage.acquire_request_slot(user_id, limit=limit)
    if not slot.acquired:
        logger.warning(
            "event=concurrency_limited user_id=%s active=%s limit=%s",
            user_id,
            slot.active,
            limit,
        )
        raise ConcurrencyLimitError(
            f"Maximum {limit} concurrent requests allowed",
            details={"current": slot.active, "limit": limit},
        )
    try:
        yield
    finally:
        storage.release_request_slot(user_id)
