"""Provider credential settings routes."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Request

from seo_aggregator.api.auth import get_current_user_id
from seo_aggregator.credentials import (
    CredentialResolver,
    CredentialsInput,
    mask_password,
    verify_credentials,
)

router = APIRouter(prefix="/api/settings", tags=["settings"])


@router.get("/dataforseo")
def get_dataforseo_settings(
    request: Request,
    user_id: int = Depends(get_current_user_id),
) -> dict[str, Any]:
    resolver: CredentialResolver = request.app.state.credentials
    credentials = resolver.lookup(user_id)
    if credentials is None:
        return {"success": True, "data": None}
    return {
        "success": True,
        "data": {
            "login": credentials.login,
            "password": mask_password(credentials.password),
            "updated_at": credentials.updated_at,
        },
    }


@router.put("/dataforseo")
def put_dataforseo_settings(
    payload: CredentialsInput,
    request: Request,
    user_id: int = Depends(get_current_user_id),
) -> dict[str, Any]:
    resolver: CredentialResolver = request.app.state.credentials
    credentials = resolver.save(user_id, payload)
    return {
        "success": True,
        "message": "DataForSEO credentials saved",
        "data": {"login": credentials.login, "updated_at": credentials.updated_at},
    }


@router.get("/dataforseo/status")
def dataforseo_status(
    request: Request,
    user_id: int = Depends(get_current_user_id),
) -> dict[str, Any]:
    resolver: CredentialResolver = request.app.state.credentials
    return {"success": True, "data": {"configured": resolver.lookup(user_id) is not None}}


@router.post("/dataforseo/test")
def check_dataforseo_credentials(
    payload: CredentialsInput,
    request: Request,
    user_id: int = Depends(get_current_user_id),
) -> dict[str, Any]:
    is_valid = verify_credentials(request.app.state.provider, user_id, payload)
    return {
        "success": True,
        "data": {
            "is_valid": is_valid,
            "message": "Credentials are valid" if is_valid else "Credentials were rejected",
        },
    }
