from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest
from fastapi.testclient import TestClient

from conftest import FakeDataForSeoClient, envelope
from seo_aggregator.ledger.costs import CostLedger, extract_task_costs
from seo_aggregator.ledger.dashboard import DashboardService
from seo_aggregator.ledger.writer import CostLedgerWriter
from seo_aggregator.storage.memory import InMemorySeoStorage
from seo_aggregator.storage.models import CostEntry

NOW = datetime(2025, 8, 20, 15, 30, tzinfo=UTC)


def _entry(task_id: str, cost: float, *, task_type: str = "onpage", at: datetime = NOW) -> CostEntry:
    return CostEntry(
        user_id=1,
        task_id=task_id,
        task_type=task_type,
        cost=cost,
        api_endpoint="v3/on_page/task_post",
        status_code=20100,
        created_at=at,
    )


class FlakyStorage(InMemorySeoStorage):
    def __init__(self, failures: int) -> None:
        super().__init__()
        self.failures = failures
        self.append_attempts = 0

    def append_cost(self, entry: CostEntry) -> CostEntry:
        self.append_attempts += 1
        if self.append_attempts <= self.failures:
            raise RuntimeError("connection reset")
        return super().append_cost(entry)


def test_extract_task_costs_skips_tasks_without_numeric_cost_or_status() -> None:
    response = envelope(
        [
            {"id": "a", "status_code": 20100, "cost": 0.02},
            {"id": "b", "status_code": 20100, "cost": None},
            {"id": None, "status_code": 20100, "cost": 0.01},
            {"id": "c", "status_code": None, "cost": 0.01},
        ]
    )

    entries = extract_task_costs(
        response,
        user_id=1,
        endpoint="v3/on_page/task_post",
        task_type="onpage",
        created_at=NOW,
    )

    assert [entry.task_id for entry in entries] == ["a"]
    assert entries[0].cost == 0.02


def test_user_total_cost_sums_ledger() -> None:
    storage = InMemorySeoStorage()
    for index, cost in enumerate((0.02, 0.05, 0.01)):
        storage.append_cost(_entry(f"t{index}", cost))

    assert CostLedger(storage).user_total_cost(1) == pytest.approx(0.08)


def test_total_cost_range_applies_only_with_both_bounds() -> None:
    storage = InMemorySeoStorage()
    storage.append_cost(_entry("old", 0.5, at=NOW - timedelta(days=10)))
    storage.append_cost(_entry("new", 0.25))
    ledger = CostLedger(storage)

    ranged = ledger.user_total_cost(1, start=NOW - timedelta(days=1), end=NOW + timedelta(days=1))
    open_ended = ledger.user_total_cost(1, start=NOW - timedelta(days=1))

    assert ranged == pytest.approx(0.25)
    assert open_ended == pytest.approx(0.75)


def test_costs_by_type_and_today() -> None:
    storage = InMemorySeoStorage()
    storage.append_cost(_entry("a", 0.02, task_type="serp"))
    storage.append_cost(_entry("b", 0.04, task_type="serp"))
    storage.append_cost(_entry("c", 0.1, task_type="onpage", at=NOW - timedelta(days=1)))
    ledger = CostLedger(storage)

    by_type = {item["task_type"]: item for item in ledger.costs_by_type(1)}

    assert by_type["serp"]["task_count"] == 2
    assert by_type["serp"]["total_cost"] == pytest.approx(0.06)
    assert by_type["serp"]["average_cost"] == pytest.approx(0.03)
    assert ledger.today_cost(1, now=NOW) == pytest.approx(0.06)


def test_writer_retries_then_appends_and_updates_rollup() -> None:
    storage = FlakyStorage(failures=2)
    writer = CostLedgerWriter(storage, max_retries=3, backoff_s=0.0)
    writer.start()
    try:
        writer.submit([_entry("a", 0.02)])
        assert writer.flush(timeout=5.0)
    finally:
        writer.stop()

    assert storage.append_attempts == 3
    assert writer.written == 1
    assert storage.list_dead_letters() == []
    rollup = storage.get_dashboard_rollup(1)
    assert rollup is not None
    assert rollup.total_api_calls == 1
    assert rollup.total_cost == pytest.approx(0.02)


def test_writer_dead_letters_after_exhausted_retries() -> None:
    storage = FlakyStorage(failures=100)
    writer = CostLedgerWriter(storage, max_retries=2, backoff_s=0.0)
    writer.start()
    try:
        writer.submit([_entry("a", 0.02)])
        assert writer.flush(timeout=5.0)
    finally:
        writer.stop()

    (dead,) = storage.list_dead_letters()
    assert dead.entry.task_id == "a"
    assert dead.attempts == 3
    assert dead.error == "connection reset"
    assert storage.recent_costs(1, limit=10) == []


def test_writer_dead_letters_when_queue_is_full() -> None:
    storage = InMemorySeoStorage()
    writer = CostLedgerWriter(storage, queue_size=1)

    accepted = writer.submit([_entry("a", 0.01), _entry("b", 0.02)])

    assert accepted == 1
    (dead,) = storage.list_dead_letters()
    assert dead.entry.task_id == "b"
    assert dead.attempts == 0

    writer.start()
    try:
        assert writer.flush(timeout=5.0)
    finally:
        writer.stop()
    assert [entry.task_id for entry in storage.recent_costs(1, limit=10)] == ["a"]


def test_rollup_failure_does_not_dead_letter() -> None:
    class BrokenRollupStorage(InMemorySeoStorage):
        def bump_dashboard_rollup(self, entry: CostEntry) -> None:
            raise RuntimeError("rollup table locked")

    storage = BrokenRollupStorage()
    writer = CostLedgerWriter(storage, backoff_s=0.0)
    writer.start()
    try:
        writer.submit([_entry("a", 0.02)])
        assert writer.flush(timeout=5.0)
    finally:
        writer.stop()

    assert len(storage.recent_costs(1, limit=10)) == 1
    assert storage.list_dead_letters() == []


def test_cost_routes_report_ledger_aggregates(
    app, client: TestClient, provider: FakeDataForSeoClient, auth_headers: dict[str, str]
) -> None:
    for cost in (0.02, 0.05, 0.01):
        provider.cost = cost
        response = client.post(
            "/api/onpage/task_post",
            json={"target": "example.com", "max_crawl_pages": 10},
            headers=auth_headers,
        )
        assert response.status_code == 200
    assert app.state.ledger_writer.flush(timeout=5.0)

    total = client.get("/api/task-costs/total", headers=auth_headers).json()["data"]
    by_type = client.get("/api/task-costs/by-type", headers=auth_headers).json()["data"]
    today = client.get("/api/task-costs/today", headers=auth_headers).json()["data"]

    assert total["total_cost"] == pytest.approx(0.08)
    assert by_type["costs_by_type"][0]["task_type"] == "onpage"
    assert by_type["costs_by_type"][0]["task_count"] == 3
    assert today["today_cost"] == pytest.approx(0.08)
    assert today["date"] == "2025-08-20"


def test_cost_total_rejects_malformed_dates(client: TestClient, auth_headers: dict[str, str]) -> None:
    response = client.get(
        "/api/task-costs/total?start_date=yesterday&end_date=2025-08-20",
        headers=auth_headers,
    )

    assert response.status_code == 400


def test_dashboard_stats_and_summary(
    app, client: TestClient, auth_headers: dict[str, str]
) -> None:
    client.post(
        "/api/onpage/task_post",
        json={"target": "example.com", "max_crawl_pages": 10},
        headers=auth_headers,
    )
    client.post(
        "/api/search-volume/live",
        json={"keywords": ["seo tools"], "location_code": 2840, "language_code": "en"},
        headers=auth_headers,
    )
    assert app.state.ledger_writer.flush(timeout=5.0)

    stats = client.get("/api/dashboard/stats", headers=auth_headers).json()["data"]
    summary = client.get("/api/dashboard/summary", headers=auth_headers).json()["data"]

    assert stats["overview"]["total_api_calls"] == 2
    assert stats["overview"]["today_api_calls"] == 2
    assert stats["tasks_by_kind"]["onpage"] == 1
    assert stats["tasks_by_kind"]["search-volume"] == 1
    assert stats["tasks_by_kind"]["keywords-for-keywords"] == 0
    assert len(stats["recent_activity"]) == 2
    assert stats["monthly_trend"][-1] == {
        "month": "2025-08",
        "api_calls": 2,
        "cost": pytest.approx(0.04),
    }
    assert summary["total_api_calls"] == 2
    assert summary["total_cost"] == pytest.approx(0.04)


def test_monthly_trend_covers_six_utc_months_oldest_first() -> None:
    storage = InMemorySeoStorage()
    storage.append_cost(_entry("t1", 0.5))
    storage.append_cost(_entry("t2", 0.25))
    storage.append_cost(_entry("t3", 1.0, at=datetime(2025, 6, 3, tzinfo=UTC)))
    storage.append_cost(_entry("t4", 9.0, at=datetime(2025, 2, 28, 23, 59, tzinfo=UTC)))

    trend = DashboardService(storage).monthly_trend(1, now=NOW)

    assert [item["month"] for item in trend] == [
        "2025-03",
        "2025-04",
        "2025-05",
        "2025-06",
        "2025-07",
        "2025-08",
    ]
    assert trend[3] == {"month": "2025-06", "api_calls": 1, "cost": pytest.approx(1.0)}
    assert trend[5]["api_calls"] == 2
    assert trend[5]["cost"] == pytest.approx(0.75)
    assert trend[0]["api_calls"] == 0


def test_monthly_trend_wraps_across_year_boundary() -> None:
    storage = InMemorySeoStorage()
    storage.append_cost(_entry("t1", 0.1, at=datetime(2024, 11, 5, tzinfo=UTC)))

    trend = DashboardService(storage).monthly_trend(1, now=datetime(2025, 2, 1, tzinfo=UTC))

    assert trend[0]["month"] == "2024-09"
    assert trend[2] == {"month": "2024-11", "api_calls": 1, "cost": pytest.approx(0.1)}
    assert trend[-1]["month"] == "2025-02"


def test_dead_letter_route_lists_only_own_entries(
    client: TestClient, storage: InMemorySeoStorage, auth_headers: dict[str, str]
) -> None:
    storage.record_dead_letter(_entry("mine", 0.3), error="connection reset", attempts=4)
    storage.record_dead_letter(
        _entry("theirs", 0.3).model_copy(update={"user_id": 2}), error="boom", attempts=4
    )

    response = client.get("/api/task-costs/dead-letters", headers=auth_headers)

    assert response.status_code == 200
    (item,) = response.json()["data"]["dead_letters"]
    assert item["entry"]["task_id"] == "mine"
    assert item["error"] == "connection reset"
    assert item["attempts"] == 4
