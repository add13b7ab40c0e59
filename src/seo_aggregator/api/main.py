"""FastAPI app entrypoint for seo-aggregator."""

from __future__ import annotations

import logging
from collections.abc import Callable
from contextlib import asynccontextmanager
from datetime import datetime

from fastapi import FastAPI

from seo_aggregator.api.errors import register_exception_handlers
from seo_aggregator.api.routes_costs import router as costs_router
from seo_aggregator.api.routes_dashboard import router as dashboard_router
from seo_aggregator.api.routes_settings import router as settings_router
from seo_aggregator.api.routes_tasks import build_task_router
from seo_aggregator.config.settings import Settings, get_settings
from seo_aggregator.credentials import CredentialResolver
from seo_aggregator.ledger.costs import CostLedger
from seo_aggregator.ledger.dashboard import DashboardService
from seo_aggregator.ledger.writer import CostLedgerWriter
from seo_aggregator.provider.client import DataForSeoClient
from seo_aggregator.storage.base import SeoStorage
from seo_aggregator.storage.postgres import PostgresSeoStorage
from seo_aggregator.tasks.grouping import GroupingEngine
from seo_aggregator.tasks.kinds import DEFAULT_DAILY_QUOTAS, KINDS
from seo_aggregator.tasks.lifecycle import TaskLifecycle, utc_now

logger = logging.getLogger(__name__)


def _ensure_runtime_state(
    app: FastAPI,
    *,
    settings: Settings,
    storage_override: SeoStorage | None,
    provider_override: DataForSeoClient | None,
    clock: Callable[[], datetime],
) -> None:
    if not hasattr(app.state, "storage"):
        database_url = settings.resolved_database_url()
        if storage_override is None and not database_url:
            raise RuntimeError(
                "Missing database URL. Set SEO_AGGREGATOR_DATABASE_URL "
                "or DATABASE_URL before starting the app."
            )
        app.state.storage = storage_override or PostgresSeoStorage(database_url)
        app.state.storage.migrate()

    if not hasattr(app.state, "settings"):
        app.state.settings = settings

    if not hasattr(app.state, "clock"):
        app.state.clock = clock

    if not hasattr(app.state, "quotas"):
        app.state.quotas = dict(DEFAULT_DAILY_QUOTAS)

    if not hasattr(app.state, "ledger_writer"):
        app.state.ledger_writer = CostLedgerWriter(
            app.state.storage,
            queue_size=settings.ledger_queue_size,
            max_retries=settings.ledger_max_retries,
            backoff_s=settings.ledger_backoff_s,
        )
    app.state.ledger_writer.start()

    if not hasattr(app.state, "lifecycle"):
        provider = provider_override or DataForSeoClient(
            base_url=settings.provider_base_url,
            timeout_s=settings.provider_timeout_s,
            user_agent=settings.provider_user_agent,
        )
        app.state.provider = provider
        app.state.credentials = CredentialResolver(app.state.storage)
        app.state.lifecycle = TaskLifecycle(
            storage=app.state.storage,
            provider=provider,
            credentials=app.state.credentials,
            ledger=app.state.ledger_writer,
            clock=clock,
        )
        app.state.grouping = GroupingEngine(app.state.storage)
        app.state.cost_ledger = CostLedger(app.state.storage)
        app.state.dashboard = DashboardService(app.state.storage)


def create_app(
    *,
    storage: SeoStorage | None = None,
    provider: DataForSeoClient | None = None,
    settings_override: Settings | None = None,
    clock: Callable[[], datetime] | None = None,
) -> FastAPI:
    settings = settings_override or get_settings()
    if settings.insecure_for_production():
        raise RuntimeError(
            "Refusing to start in production with the default JWT secret. "
            "Set SEO_AGGREGATOR_JWT_SECRET."
        )
    logging.getLogger("seo_aggregator").setLevel(settings.log_level.upper())
    runtime_clock = clock or utc_now

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        _ensure_runtime_state(
            app,
            settings=settings,
            storage_override=storage,
            provider_override=provider,
            clock=runtime_clock,
        )
        yield
        app.state.ledger_writer.stop()

    app_lifespan = lifespan if storage is None else None
    app = FastAPI(title=settings.app_name, lifespan=app_lifespan)
    register_exception_handlers(app, settings=settings)

    # Keep test paths reliable when lifespan is not executed by the client.
    if storage is not None:
        _ensure_runtime_state(
            app,
            settings=settings,
            storage_override=storage,
            provider_override=provider,
            clock=runtime_clock,
        )

    @app.get("/health")
    def health() -> dict[str, str]:
        return {"status": "ok", "service": settings.app_name}

    app.include_router(settings_router)
    app.include_router(costs_router)
    app.include_router(dashboard_router)
    for kind in KINDS.values():
        app.include_router(build_task_router(kind))

    logger.info("event=app_created env=%s kinds=%s", settings.app_env, len(KINDS))
    return app


app = create_app()
