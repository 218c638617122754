"""Upstream credential validation endpoint."""
from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from tinker_studio.core.constants import CREDENTIAL_MIN_LENGTH
from tinker_studio.core.errors import CredentialRejectedError, ValidationError
from tinker_studio.dashboard.app import get_credential_validator
from tinker_studio.dashboard.services.credential_check import CredentialValidator

router = APIRouter(prefix="/api/tinker", tags=["Credentials"])


class ValidateCredentialRequest(BaseModel):
    """Request to check an API key against the Tinker service."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    api_key: Any = None


@router.post("/validate")
async def validate_credential(
    body: ValidateCredentialRequest,
    validator: CredentialValidator = Depends(get_credential_validator),
) -> dict[str, Any]:
    """Check that an API key is accepted by the Tinker service.

    Raises:
        ValidationError: 400 if the key is missing or obviously too short
        CredentialRejectedError: 401 if the service rejects the key
    """
    if not isinstance(body.api_key, str) or not body.api_key:
        raise ValidationError("API key is required")
    api_key = body.api_key.strip()
    if len(api_key) < CREDENTIAL_MIN_LENGTH:
        raise ValidationError("API key appears to be too short")

    result = await validator.validate(api_key)
    if not result.valid:
        raise CredentialRejectedError(result.error or "Invalid API key")
    return {
        "success": True,
        "data": {"validated": True, "message": "API key verified with Tinker"},
    }
