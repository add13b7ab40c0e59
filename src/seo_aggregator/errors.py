"""Domain errors raised by services and mapped to HTTP responses by the API layer."""

from __future__ import annotations

from typing import Any


class SeoAggregatorError(Exception):
    """Base error carrying the HTTP status and the short error label."""

    status_code = 500
    error = "Internal server error"

    def __init__(self, message: str, *, details: Any = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details


class ValidationFailedError(SeoAggregatorError):
    status_code = 400
    error = "Validation error"


class InvalidGroupIdError(ValidationFailedError):
    def __init__(self, group_id: str) -> None:
        super().__init__("Invalid group ID format", details={"group_id": group_id})


class AuthenticationError(SeoAggregatorError):
    status_code = 401
    error = "Authentication error"


class MissingCredentialsError(SeoAggregatorError):
    status_code = 401
    error = "Missing credentials"

    def __init__(self, user_id: int) -> None:
        super().__init__("No DataForSEO credentials configured for this user")
        self.user_id = user_id


class NotFoundError(SeoAggregatorError):
    status_code = 404
    error = "Not found"


class GroupNotFoundError(NotFoundError):
    def __init__(self) -> None:
        super().__init__("Group not found")


class TaskNotFoundError(NotFoundError):
    def __init__(self, task_id: str) -> None:
        super().__init__(f"Task {task_id} not found")


class QuotaExceededError(SeoAggregatorError):
    status_code = 429
    error = "Rate limit exceeded"

    def __init__(self, message: str, *, headers: dict[str, str]) -> None:
        super().__init__(message)
        self.headers = headers


class ProviderError(SeoAggregatorError):
    """Provider call failed: HTTP error, network failure, or rejected envelope."""

    status_code = 502
    error = "Provider error"

    def __init__(self, message: str, *, provider_status: int | None = None) -> None:
        super().__init__(message, details={"provider_status": provider_status})
        self.provider_status = provider_status


class ConcurrencyLimitError(SeoAggregatorError):
    status_code = 429
    error = "Too many concurrent requests"
