"""Bearer token verification for `/api` routes."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from typing import Any

from fastapi import Request
from jose import ExpiredSignatureError, JWTError, jwt

from seo_aggregator.config.settings import Settings
from seo_aggregator.errors import AuthenticationError

ALGORITHM = "HS256"


def issue_token_pair(
    settings: Settings,
    *,
    user_id: int,
    email: str = "",
    now: datetime | None = None,
) -> dict[str, str]:
    issued_at = now or datetime.now(tz=UTC)
    return {
        "access_token": _encode(
            settings,
            {"userId": user_id, "email": email, "type": "access"},
            issued_at=issued_at,
            ttl_s=settings.jwt_access_ttl_s,
        ),
        "refresh_token": _encode(
            settings,
            {"userId": user_id, "type": "refresh"},
            issued_at=issued_at,
            ttl_s=settings.jwt_refresh_ttl_s,
        ),
    }


def decode_access_token(settings: Settings, token: str) -> dict[str, Any]:
    try:
        claims = jwt.decode(
            token,
            settings.jwt_secret,
            algorithms=[ALGORITHM],
            issuer=settings.jwt_issuer,
            audience=settings.jwt_audience,
        )
    except ExpiredSignatureError as exc:
        raise AuthenticationError("Token expired") from exc
    except JWTError as exc:
        raise AuthenticationError("Invalid token") from exc

    if claims.get("type", "access") != "access":
        raise AuthenticationError("Invalid token type")
    return claims


def get_current_user_id(request: Request) -> int:
    header = request.headers.get("Authorization", "")
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise AuthenticationError("Access token required")

    claims = decode_access_token(request.app.state.settings, token.strip())
    user_id = claims.get("userId")
    if isinstance(user_id, bool) or not isinstance(user_id, int):
        raise AuthenticationError("Invalid token payload")
    request.state.user_id = user_id
    return user_id


def _encode(
    settings: Settings,
    claims: dict[str, Any],
    *,
    issued_at: datetime,
    ttl_s: int,
) -> str:
    payload = {
        **claims,
        "iss": settings.jwt_issuer,
        "aud": settings.jwt_audience,
        "iat": issued_at,
        "exp": issued_at + timedelta(seconds=ttl_s),
    }
    return jwt.encode(payload, settings.jwt_secret, algorithm=ALGORITHM)
