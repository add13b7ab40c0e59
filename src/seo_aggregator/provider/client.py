"""HTTP client for the DataForSEO v3 API."""

from __future__ import annotations

import base64
import json
import logging
import socket
from typing import Any
from urllib import error, request

from pydantic import ValidationError

from seo_aggregator.errors import ProviderError
from seo_aggregator.provider.models import PROVIDER_ERROR_FLOOR, ProviderResponse
from seo_aggregator.storage.models import Credentials

logger = logging.getLogger(__name__)


class DataForSeoClient:
    """Blocking Basic-auth client; one call per method, no retries."""

    def __init__(
        self,
        *,
        base_url: str,
        timeout_s: float,
        user_agent: str,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout_s = timeout_s
        self.user_agent = user_agent

    def task_post(
        self,
        credentials: Credentials,
        endpoint: str,
        params: dict[str, Any],
    ) -> ProviderResponse:
        return self.call(credentials, f"{endpoint}/task_post", body=[params])

    def live(
        self,
        credentials: Credentials,
        endpoint: str,
        params: dict[str, Any],
        *,
        suffix: str = "live",
    ) -> ProviderResponse:
        return self.call(credentials, f"{endpoint}/{suffix}", body=[params])

    def user_data(self, credentials: Credentials) -> ProviderResponse:
        """Account details; a cheap authenticated call used to check credentials."""
        return self.call(credentials, "appendix/user_data")

    def tasks_ready(self, credentials: Credentials, endpoint: str) -> ProviderResponse:
        return self.call(credentials, f"{endpoint}/tasks_ready")

    def task_get(
        self,
        credentials: Credentials,
        endpoint: str,
        task_id: str,
        *,
        suffix: str = "task_get",
    ) -> ProviderResponse:
        return self.call(credentials, f"{endpoint}/{suffix}/{task_id}")

    def call(
        self,
        credentials: Credentials,
        path: str,
        *,
        body: list[dict[str, Any]] | None = None,
    ) -> ProviderResponse:
        url = f"{self.base_url}/{path.lstrip('/')}"
        method = "POST" if body is not None else "GET"
        raw = self._request(credentials, url=url, method=method, body=body)
        return self._parse(raw, path=path)

    def _request(
        self,
        credentials: Credentials,
        *,
        url: str,
        method: str,
        body: list[dict[str, Any]] | None,
    ) -> str:
        token = base64.b64encode(
            f"{credentials.login}:{credentials.password}".encode("utf-8")
        ).decode("ascii")
        req = request.Request(
            url=url,
            data=json.dumps(body).encode("utf-8") if body is not None else None,
            method=method,
            headers={
                "Authorization": f"Basic {token}",
                "Content-Type": "application/json",
                "User-Agent": self.user_agent,
            },
        )
        logger.debug("event=provider_request method=%s url=%s", method, url)
        try:
            with request.urlopen(req, timeout=self.timeout_s) as response:
                raw = response.read()
            return raw.decode("utf-8")
        except UnicodeDecodeError as exc:
            logger.warning("event=provider_undecodable url=%s", url)
            raise ProviderError("Provider returned a response that is not valid UTF-8") from exc
        except error.HTTPError as exc:
            message = exc.read().decode("utf-8", errors="replace")
            logger.warning(
                "event=provider_http_error url=%s status=%s", url, exc.code
            )
            raise ProviderError(
                f"Provider request failed with status {exc.code}: {message[:400]}",
                provider_status=exc.code,
            ) from exc
        except error.URLError as exc:
            logger.warning("event=provider_unreachable url=%s reason=%s", url, exc.reason)
            raise ProviderError(f"Provider request failed: {exc.reason}") from exc
        except (TimeoutError, socket.timeout) as exc:
            logger.warning("event=provider_timeout url=%s timeout_s=%s", url, self.timeout_s)
            raise ProviderError("Provider request timed out") from exc

    @staticmethod
    def _parse(raw: str, *, path: str) -> ProviderResponse:
        try:
            payload = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise ProviderError("Provider returned non-JSON response") from exc

        try:
            envelope = ProviderResponse.model_validate(payload)
        except ValidationError as exc:
            raise ProviderError(
                f"Provider returned a malformed response: {exc.error_count()} validation errors"
            ) from exc

        if envelope.status_code >= PROVIDER_ERROR_FLOOR:
            logger.warning(
                "event=provider_rejected path=%s status_code=%s", path, envelope.status_code
            )
            raise ProviderError(
                envelope.status_message or "Provider rejected the request",
                provider_status=envelope.status_code,
            )
        return envelope
