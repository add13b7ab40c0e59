from __future__ import annotations

from collections.abc import Iterator
from datetime import UTC, datetime, timedelta
from typing import Any

import pytest
from fastapi.testclient import TestClient

from seo_aggregator.api.auth import issue_token_pair
from seo_aggregator.api.main import create_app
from seo_aggregator.config.settings import Settings
from seo_aggregator.errors import ProviderError
from seo_aggregator.provider.models import ProviderResponse
from seo_aggregator.storage.memory import InMemorySeoStorage
from seo_aggregator.storage.models import Credentials

START = datetime(2025, 8, 20, 10, 0, 0, tzinfo=UTC)


class FixedClock:
    """Test clock; advance it explicitly between submissions."""

    def __init__(self, now: datetime = START) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now = self.now + timedelta(seconds=seconds)


def envelope(tasks: list[dict[str, Any]], *, status_code: int = 20000) -> ProviderResponse:
    return ProviderResponse.model_validate(
        {
            "version": "0.1.20250801",
            "status_code": status_code,
            "status_message": "Ok.",
            "time": "0.1 sec.",
            "cost": sum(task.get("cost") or 0 for task in tasks),
            "tasks_count": len(tasks),
            "tasks_error": 0,
            "tasks": tasks,
        }
    )


class FakeDataForSeoClient:
    """Test-only provider double that mirrors DataForSeoClient's interface."""

    def __init__(self) -> None:
        self.calls: list[tuple[str, str, Any]] = []
        self.error: ProviderError | None = None
        self.cost = 0.02
        self.ready_ids: list[str] = []
        self.results: dict[str, dict[str, Any]] = {}
        self.live_result: list[Any] = [{"keyword": "seo tools", "search_volume": 1300}]
        self.live_suffixes: list[str] = []
        self._next_id = 1

    def task_post(
        self, credentials: Credentials, endpoint: str, params: dict[str, Any]
    ) -> ProviderResponse:
        self._record("task_post", endpoint, params)
        return envelope(
            [
                {
                    "id": self._new_id(),
                    "status_code": 20100,
                    "status_message": "Task Created.",
                    "time": "0.01 sec.",
                    "cost": self.cost,
                    "result_count": 0,
                    "path": ["v3", *endpoint.split("/"), "task_post"],
                    "data": {"api": endpoint.split("/")[0], **params},
                    "result": None,
                }
            ]
        )

    def live(
        self,
        credentials: Credentials,
        endpoint: str,
        params: dict[str, Any],
        *,
        suffix: str = "live",
    ) -> ProviderResponse:
        self._record("live", endpoint, params)
        self.live_suffixes.append(suffix)
        return envelope(
            [
                {
                    "id": self._new_id(),
                    "status_code": 20000,
                    "status_message": "Ok.",
                    "time": "0.5 sec.",
                    "cost": self.cost,
                    "result_count": len(self.live_result),
                    "path": ["v3", *endpoint.split("/"), *suffix.split("/")],
                    "data": params,
                    "result": self.live_result,
                }
            ]
        )

    def user_data(self, credentials: Credentials) -> ProviderResponse:
        self._record("user_data", "appendix/user_data", {"login": credentials.login})
        return envelope(
            [
                {
                    "id": self._new_id(),
                    "status_code": 20000,
                    "status_message": "Ok.",
                    "cost": 0,
                    "result_count": 1,
                    "path": ["v3", "appendix", "user_data"],
                    "result": [{"login": credentials.login, "money": {"balance": 12.5}}],
                }
            ]
        )

    def tasks_ready(self, credentials: Credentials, endpoint: str) -> ProviderResponse:
        self._record("tasks_ready", endpoint, None)
        return envelope(
            [
                {
                    "id": "ready-listing",
                    "status_code": 20000,
                    "status_message": "Ok.",
                    "cost": 0,
                    "result_count": len(self.ready_ids),
                    "path": ["v3", *endpoint.split("/"), "tasks_ready"],
                    "result": [
                        {"id": task_id, "endpoint": f"/v3/{endpoint}/task_get/{task_id}"}
                        for task_id in self.ready_ids
                    ],
                }
            ]
        )

    def task_get(
        self,
        credentials: Credentials,
        endpoint: str,
        task_id: str,
        *,
        suffix: str = "task_get",
    ) -> ProviderResponse:
        self._record("task_get", endpoint, {"task_id": task_id, "suffix": suffix})
        task = self.results.get(
            task_id,
            {
                "id": task_id,
                "status_code": 40602,
                "status_message": "Task In Queue.",
                "result": None,
            },
        )
        return envelope([task])

    def complete(self, task_id: str, rows: list[Any], *, cost: float = 0.02) -> None:
        self.results[task_id] = {
            "id": task_id,
            "status_code": 20000,
            "status_message": "Ok.",
            "time": "1.2 sec.",
            "cost": cost,
            "result_count": len(rows),
            "result": rows,
        }

    def _record(self, method: str, endpoint: str, payload: Any) -> None:
        self.calls.append((method, endpoint, payload))
        if self.error is not None:
            raise self.error

    def _new_id(self) -> str:
        task_id = f"08201000-1535-0216-0000-{self._next_id:012d}"
        self._next_id += 1
        return task_id


@pytest.fixture
def settings() -> Settings:
    return Settings(
        app_env="test",
        jwt_secret="test-secret",
        ledger_backoff_s=0.0,
    )


@pytest.fixture
def storage() -> InMemorySeoStorage:
    store = InMemorySeoStorage()
    store.upsert_credentials(1, "owner@example.com", "s3cret-pass")
    store.upsert_credentials(2, "other@example.com", "other-pass")
    return store


@pytest.fixture
def provider() -> FakeDataForSeoClient:
    return FakeDataForSeoClient()


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock()


@pytest.fixture
def app(
    storage: InMemorySeoStorage,
    provider: FakeDataForSeoClient,
    settings: Settings,
    clock: FixedClock,
) -> Iterator[Any]:
    application = create_app(
        storage=storage,
        provider=provider,  # type: ignore[arg-type]
        settings_override=settings,
        clock=clock,
    )
    yield application
    application.state.ledger_writer.stop()


@pytest.fixture
def client(app: Any) -> TestClient:
    return TestClient(app)


def bearer(settings: Settings, user_id: int) -> dict[str, str]:
    tokens = issue_token_pair(settings, user_id=user_id, email=f"user{user_id}@example.com")
    return {"Authorization": f"Bearer {tokens['access_token']}"}


@pytest.fixture
def auth_headers(settings: Settings) -> dict[str, str]:
    return bearer(settings, 1)


@pytest.fixture
def other_headers(settings: Settings) -> dict[str, str]:
    return bearer(settings, 2)
