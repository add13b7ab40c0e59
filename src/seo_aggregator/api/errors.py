"""JSON error responses shared by every route."""

from __future__ import annotations

import logging
import traceback
from http import HTTPStatus
from typing import Any

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from seo_aggregator.config.settings import Settings
from seo_aggregator.errors import QuotaExceededError, SeoAggregatorError

logger = logging.getLogger(__name__)


def register_exception_handlers(app: FastAPI, *, settings: Settings) -> None:
    expose = settings.expose_error_details()

    def _body(
        error: str,
        message: str,
        *,
        details: Any = None,
        exc: Exception | None = None,
    ) -> dict[str, Any]:
        body: dict[str, Any] = {"error": error, "message": message}
        if expose and details is not None:
            body["details"] = details
        if expose and exc is not None:
            body["trace"] = traceback.format_exception(exc)
        return body

    @app.exception_handler(SeoAggregatorError)
    async def _domain_error(request: Request, exc: SeoAggregatorError) -> JSONResponse:
        if exc.status_code >= 500:
            logger.warning(
                "event=request_failed path=%s status=%s error=%s",
                request.url.path,
                exc.status_code,
                exc.message,
            )
        headers = exc.headers if isinstance(exc, QuotaExceededError) else None
        return JSONResponse(
            status_code=exc.status_code,
            content=_body(exc.error, exc.message, details=exc.details),
            headers=headers,
        )

    @app.exception_handler(RequestValidationError)
    async def _validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
        errors = [
            {
                "loc": [str(part) for part in item.get("loc", ())],
                "msg": str(item.get("msg", "")),
                "type": str(item.get("type", "")),
            }
            for item in exc.errors()
        ]
        message = "; ".join(f"{_location(error['loc'])}: {error['msg']}" for error in errors)
        return JSONResponse(
            status_code=400,
            content=_body("Validation error", message or "Invalid request", details=errors),
        )

    @app.exception_handler(StarletteHTTPException)
    async def _http_error(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        try:
            phrase = HTTPStatus(exc.status_code).phrase
        except ValueError:
            phrase = "HTTP error"
        return JSONResponse(
            status_code=exc.status_code,
            content=_body(phrase, str(exc.detail)),
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(Exception)
    async def _unexpected_error(request: Request, exc: Exception) -> JSONResponse:
        logger.exception(
            "event=request_crashed path=%s method=%s", request.url.path, request.method
        )
        return JSONResponse(
            status_code=500,
            content=_body("Internal server error", "An unexpected error occurred", exc=exc),
        )


def _location(loc: list[str]) -> str:
    # Drop the leading "body"/"query"/"path" marker when a field name follows.
    parts = loc[1:] if len(loc) > 1 else loc
    return ".".join(parts) or "request"
