"""Per-user provider credential lookup and maintenance."""

from __future__ import annotations

import logging
from datetime import UTC, datetime

from pydantic import BaseModel, Field, field_validator

from seo_aggregator.errors import MissingCredentialsError, ProviderError
from seo_aggregator.provider.client import DataForSeoClient
from seo_aggregator.storage.base import SeoStorage
from seo_aggregator.storage.models import Credentials

logger = logging.getLogger(__name__)


class CredentialsInput(BaseModel):
    login: str = Field(min_length=3)
    password: str = Field(min_length=6)

    @field_validator("login")
    @classmethod
    def _strip_login(cls, value: str) -> str:
        stripped = value.strip()
        if len(stripped) < 3:
            raise ValueError("login must be at least 3 characters")
        return stripped


class CredentialResolver:
    """Reads credentials straight from storage on every call."""

    def __init__(self, storage: SeoStorage) -> None:
        self.storage = storage

    def resolve(self, user_id: int) -> Credentials:
        credentials = self.storage.get_credentials(user_id)
        if credentials is None:
            logger.info("event=credentials_missing user_id=%s", user_id)
            raise MissingCredentialsError(user_id)
        return credentials

    def lookup(self, user_id: int) -> Credentials | None:
        return self.storage.get_credentials(user_id)

    def save(self, user_id: int, payload: CredentialsInput) -> Credentials:
        credentials = self.storage.upsert_credentials(user_id, payload.login, payload.password)
        logger.info("event=credentials_saved user_id=%s", user_id)
        return credentials


def mask_password(password: str) -> str:
    if len(password) <= 2:
        return "*" * len(password)
    return password[0] + "*" * (len(password) - 2) + password[-1]


def verify_credentials(
    provider: DataForSeoClient, user_id: int, payload: CredentialsInput
) -> bool:
    """Make one authenticated provider call with ``payload``; nothing is stored."""
    now = datetime.now(UTC)
    candidate = Credentials(
        user_id=user_id,
        login=payload.login,
        password=payload.password,
        created_at=now,
        updated_at=now,
    )
    try:
        provider.user_data(candidate)
    except ProviderError as exc:
        logger.info("event=credentials_rejected user_id=%s reason=%s", user_id, exc.message)
        return False
    return True
