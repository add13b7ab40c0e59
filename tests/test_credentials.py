from __future__ import annotations

import pytest
from fastapi.testclient import TestClient
from pydantic import ValidationError

from conftest import FakeDataForSeoClient
from seo_aggregator.credentials import (
    CredentialResolver,
    CredentialsInput,
    mask_password,
)
from seo_aggregator.errors import MissingCredentialsError, ProviderError
from seo_aggregator.storage.memory import InMemorySeoStorage


def test_resolver_raises_when_user_has_no_credentials() -> None:
    resolver = CredentialResolver(InMemorySeoStorage())

    with pytest.raises(MissingCredentialsError):
        resolver.resolve(42)


def test_save_replaces_previous_credentials() -> None:
    storage = InMemorySeoStorage()
    resolver = CredentialResolver(storage)

    first = resolver.save(7, CredentialsInput(login="first@example.com", password="secret1"))
    second = resolver.save(7, CredentialsInput(login="second@example.com", password="secret2"))

    resolved = resolver.resolve(7)
    assert resolved.login == "second@example.com"
    assert resolved.password == "secret2"
    assert second.created_at == first.created_at


@pytest.mark.parametrize(
    ("login", "password"),
    [("ab", "secret1"), ("   abc   ", "12345"), ("  a  ", "secret1")],
)
def test_credentials_input_enforces_minimum_lengths(login: str, password: str) -> None:
    with pytest.raises(ValidationError):
        CredentialsInput(login=login, password=password)


def test_mask_password_keeps_only_edges() -> None:
    assert mask_password("secret-pass") == "s*********s"
    assert mask_password("ab") == "**"


def test_settings_routes_round_trip(client: TestClient, auth_headers: dict[str, str]) -> None:
    saved = client.put(
        "/api/settings/dataforseo",
        json={"login": "api@example.com", "password": "fresh-secret"},
        headers=auth_headers,
    )
    assert saved.status_code == 200

    current = client.get("/api/settings/dataforseo", headers=auth_headers).json()["data"]
    assert current["login"] == "api@example.com"
    assert current["password"] != "fresh-secret"
    assert current["password"].startswith("f")

    status = client.get("/api/settings/dataforseo/status", headers=auth_headers).json()["data"]
    assert status == {"configured": True}


def test_settings_put_validation_error(client: TestClient, auth_headers: dict[str, str]) -> None:
    response = client.put(
        "/api/settings/dataforseo",
        json={"login": "ab", "password": "123"},
        headers=auth_headers,
    )

    assert response.status_code == 400
    assert response.json()["error"] == "Validation error"
    assert response.json()["details"]


def test_status_reports_unconfigured_user(client: TestClient, settings) -> None:
    from conftest import bearer

    response = client.get("/api/settings/dataforseo/status", headers=bearer(settings, 555))

    assert response.json()["data"] == {"configured": False}


def test_credential_check_reports_valid_login_without_saving(
    client: TestClient,
    provider: FakeDataForSeoClient,
    storage: InMemorySeoStorage,
    auth_headers: dict[str, str],
) -> None:
    response = client.post(
        "/api/settings/dataforseo/test",
        json={"login": "new@example.com", "password": "candidate-pass"},
        headers=auth_headers,
    )

    assert response.status_code == 200
    assert response.json()["data"]["is_valid"] is True
    assert provider.calls[-1] == ("user_data", "appendix/user_data", {"login": "new@example.com"})
    assert storage.get_credentials(1).login == "owner@example.com"


def test_credential_check_maps_provider_rejection_to_invalid(
    client: TestClient, provider: FakeDataForSeoClient, auth_headers: dict[str, str]
) -> None:
    provider.error = ProviderError("Provider request failed with status 401", provider_status=401)

    response = client.post(
        "/api/settings/dataforseo/test",
        json={"login": "new@example.com", "password": "wrong-pass"},
        headers=auth_headers,
    )

    assert response.status_code == 200
    assert response.json()["data"]["is_valid"] is False


def test_credential_check_validates_input(
    client: TestClient, provider: FakeDataForSeoClient, auth_headers: dict[str, str]
) -> None:
    response = client.post(
        "/api/settings/dataforseo/test",
        json={"login": "ab", "password": "123"},
        headers=auth_headers,
    )

    assert response.status_code == 400
    assert provider.calls == []
