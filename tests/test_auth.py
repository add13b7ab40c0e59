from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest
from fastapi.testclient import TestClient
from jose import jwt

from seo_aggregator.api.auth import ALGORITHM, decode_access_token, issue_token_pair
from seo_aggregator.config.settings import Settings
from seo_aggregator.errors import AuthenticationError


def test_access_token_round_trip(settings: Settings) -> None:
    tokens = issue_token_pair(settings, user_id=5, email="five@example.com")

    claims = decode_access_token(settings, tokens["access_token"])

    assert claims["userId"] == 5
    assert claims["email"] == "five@example.com"
    assert claims["type"] == "access"


def test_expired_token_is_rejected(settings: Settings) -> None:
    issued = datetime.now(tz=UTC) - timedelta(seconds=settings.jwt_access_ttl_s + 60)
    token = issue_token_pair(settings, user_id=5, now=issued)["access_token"]

    with pytest.raises(AuthenticationError, match="Token expired"):
        decode_access_token(settings, token)


def test_refresh_token_cannot_authenticate(settings: Settings) -> None:
    token = issue_token_pair(settings, user_id=5)["refresh_token"]

    with pytest.raises(AuthenticationError, match="Invalid token type"):
        decode_access_token(settings, token)


@pytest.mark.parametrize(
    "overrides",
    [{"jwt_secret": "another-secret"}, {"jwt_audience": "someone-else"}, {"jwt_issuer": "rogue"}],
)
def test_token_from_other_issuer_is_invalid(settings: Settings, overrides: dict[str, str]) -> None:
    foreign = settings.model_copy(update=overrides)
    token = issue_token_pair(foreign, user_id=5)["access_token"]

    with pytest.raises(AuthenticationError, match="Invalid token"):
        decode_access_token(settings, token)


def test_non_integer_user_claim_is_rejected(client: TestClient, settings: Settings) -> None:
    now = datetime.now(tz=UTC)
    token = jwt.encode(
        {
            "userId": "5",
            "type": "access",
            "iss": settings.jwt_issuer,
            "aud": settings.jwt_audience,
            "iat": now,
            "exp": now + timedelta(minutes=5),
        },
        settings.jwt_secret,
        algorithm=ALGORITHM,
    )

    response = client.get("/api/dashboard/summary", headers={"Authorization": f"Bearer {token}"})

    assert response.status_code == 401
    assert response.json()["message"] == "Invalid token payload"
