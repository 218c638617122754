"""Upstream model and checkpoint listing endpoints."""
from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Request

from tinker_studio.core.errors import CredentialRequiredError
from tinker_studio.dashboard.app import get_tinker_catalog
from tinker_studio.dashboard.auth import credential_from_request
from tinker_studio.dashboard.services.catalog import TinkerCatalog

router = APIRouter(tags=["Catalog"])


@router.get("/api/tinker/models")
async def list_models(
    request: Request,
    catalog: TinkerCatalog = Depends(get_tinker_catalog),
) -> dict[str, Any]:
    """List the base models the Tinker service can fine-tune.

    Raises:
        CredentialRequiredError: 401 without an API key header
        UpstreamError: 502 if the service could not be queried
    """
    credential = credential_from_request(request)
    if not credential:
        raise CredentialRequiredError(
            "API key is required to fetch models. "
            "Please configure your Tinker API key in settings."
        )
    models = await catalog.list_models(credential)
    return {"success": True, "data": {"models": models, "source": "tinker"}}


@router.get("/api/checkpoints/list")
async def list_checkpoints(
    request: Request,
    catalog: TinkerCatalog = Depends(get_tinker_catalog),
) -> dict[str, Any]:
    """List checkpoints saved under the caller's Tinker account."""
    credential = credential_from_request(request)
    if not credential:
        raise CredentialRequiredError("API key required")
    checkpoints = await catalog.list_checkpoints(credential)
    return {"success": True, "data": {"checkpoints": checkpoints}}
