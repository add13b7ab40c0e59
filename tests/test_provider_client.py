from __future__ import annotations

import base64
import io
import json
from datetime import UTC, datetime
from typing import Any
from urllib import error

import pytest

import seo_aggregator.provider.client as client_module
from seo_aggregator.errors import ProviderError
from seo_aggregator.provider.client import DataForSeoClient
from seo_aggregator.storage.models import Credentials

CREDS = Credentials(
    user_id=1,
    login="api@example.com",
    password="secret",
    created_at=datetime(2025, 1, 1, tzinfo=UTC),
    updated_at=datetime(2025, 1, 1, tzinfo=UTC),
)


class _FakeResponse:
    def __init__(self, payload: str | bytes) -> None:
        self._payload = payload

    def read(self) -> bytes:
        if isinstance(self._payload, bytes):
            return self._payload
        return self._payload.encode("utf-8")

    def __enter__(self) -> "_FakeResponse":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        return None


def _client() -> DataForSeoClient:
    return DataForSeoClient(
        base_url="https://api.dataforseo.com/v3/",
        timeout_s=5.0,
        user_agent="seo-aggregator-tests",
    )


def _install(monkeypatch: pytest.MonkeyPatch, payload: Any, seen: list[Any]) -> None:
    raw = payload if isinstance(payload, (str, bytes)) else json.dumps(payload)

    def fake_urlopen(req, timeout: float):  # noqa: ANN001
        seen.append((req, timeout))
        return _FakeResponse(raw)

    monkeypatch.setattr(client_module.request, "urlopen", fake_urlopen)


def test_task_post_sends_basic_auth_and_json_array(monkeypatch: pytest.MonkeyPatch) -> None:
    seen: list[Any] = []
    _install(
        monkeypatch,
        {
            "status_code": 20000,
            "status_message": "Ok.",
            "tasks": [{"id": "abc", "status_code": 20100, "cost": 0.0125, "result": None}],
        },
        seen,
    )

    response = _client().task_post(CREDS, "on_page", {"target": "example.com"})

    req, timeout = seen[0]
    assert req.full_url == "https://api.dataforseo.com/v3/on_page/task_post"
    assert req.get_method() == "POST"
    assert json.loads(req.data) == [{"target": "example.com"}]
    expected = base64.b64encode(b"api@example.com:secret").decode("ascii")
    assert req.get_header("Authorization") == f"Basic {expected}"
    assert timeout == 5.0
    assert response.tasks[0].id == "abc"
    assert response.tasks[0].cost == 0.0125


def test_tasks_ready_is_a_get_and_exposes_ready_entries(monkeypatch: pytest.MonkeyPatch) -> None:
    seen: list[Any] = []
    _install(
        monkeypatch,
        {
            "status_code": 20000,
            "tasks": [
                {
                    "id": "listing",
                    "status_code": 20000,
                    "result": [{"id": "t1", "tag": "a"}, {"id": "t2"}],
                }
            ],
        },
        seen,
    )

    response = _client().tasks_ready(CREDS, "serp/google/organic")

    req, _ = seen[0]
    assert req.get_method() == "GET"
    assert req.full_url.endswith("/serp/google/organic/tasks_ready")
    assert [entry.id for entry in response.ready_entries()] == ["t1", "t2"]


def test_envelope_error_status_raises(monkeypatch: pytest.MonkeyPatch) -> None:
    _install(
        monkeypatch,
        {"status_code": 40100, "status_message": "You are not authorized", "tasks": []},
        [],
    )

    with pytest.raises(ProviderError) as excinfo:
        _client().task_get(CREDS, "on_page", "abc")

    assert excinfo.value.provider_status == 40100
    assert excinfo.value.message == "You are not authorized"


@pytest.mark.parametrize("payload", ["<html>gateway</html>", {"tasks": []}, {"status_code": "x"}])
def test_malformed_responses_are_rejected(monkeypatch: pytest.MonkeyPatch, payload: Any) -> None:
    _install(monkeypatch, payload, [])

    with pytest.raises(ProviderError):
        _client().tasks_ready(CREDS, "on_page")


def test_http_error_is_wrapped(monkeypatch: pytest.MonkeyPatch) -> None:
    def fake_urlopen(req, timeout: float):  # noqa: ANN001
        raise error.HTTPError(
            req.full_url, 500, "Server Error", {}, io.BytesIO(b"upstream exploded")
        )

    monkeypatch.setattr(client_module.request, "urlopen", fake_urlopen)

    with pytest.raises(ProviderError) as excinfo:
        _client().live(CREDS, "content_analysis/summary", {"keyword": "seo"})

    assert excinfo.value.provider_status == 500
    assert "upstream exploded" in excinfo.value.message


def test_network_error_is_wrapped(monkeypatch: pytest.MonkeyPatch) -> None:
    def fake_urlopen(req, timeout: float):  # noqa: ANN001
        raise error.URLError("connection refused")

    monkeypatch.setattr(client_module.request, "urlopen", fake_urlopen)

    with pytest.raises(ProviderError, match="connection refused"):
        _client().tasks_ready(CREDS, "on_page")


def test_undecodable_body_is_wrapped(monkeypatch: pytest.MonkeyPatch) -> None:
    _install(monkeypatch, b"\xff\xfe\x00broken", [])

    with pytest.raises(ProviderError, match="not valid UTF-8"):
        _client().tasks_ready(CREDS, "on_page")


def test_live_uses_the_given_suffix_and_user_data_is_a_get(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    seen: list[Any] = []
    _install(monkeypatch, {"status_code": 20000, "status_message": "Ok.", "tasks": []}, seen)

    _client().live(CREDS, "serp/google/organic", {"keyword": "seo"}, suffix="live/advanced")
    _client().user_data(CREDS)

    (live_req, _), (user_req, _) = seen
    assert live_req.full_url.endswith("/serp/google/organic/live/advanced")
    assert user_req.full_url == "https://api.dataforseo.com/v3/appendix/user_data"
    assert user_req.get_method() == "GET"


def test_malformed_ready_entry_is_a_provider_error(monkeypatch: pytest.MonkeyPatch) -> None:
    _install(
        monkeypatch,
        {
            "status_code": 20000,
            "status_message": "Ok.",
            "tasks": [{"id": "listing", "result": [{"id": "t1", "cost": "abc"}]}],
        },
        [],
    )
    response = _client().tasks_ready(CREDS, "on_page")

    with pytest.raises(ProviderError, match="malformed tasks_ready entry"):
        response.ready_entries()
