"""Credential format checks and job ownership.

The upstream credential a caller supplies is used three ways: its format
is checked before anything is spawned, its SHA-256 digest is stored on the
job as the owner, and later requests for that job must present a
credential with the same digest.
"""

from __future__ import annotations

import hashlib
import hmac
import re

from fastapi import Request

from tinker_studio.core.config import CredentialPolicy
from tinker_studio.core.constants import CREDENTIAL_HEADERS
from tinker_studio.core.errors import CredentialFormatError, OwnershipError
from tinker_studio.training.models import Job


def hash_credential(credential: str) -> str:
    """SHA-256 hex digest of a credential."""
    return hashlib.sha256(credential.encode()).hexdigest()


def credential_from_request(request: Request) -> str | None:
    """Read the caller credential from the ``X-API-Key`` family of headers."""
    for header in CREDENTIAL_HEADERS:
        value = request.headers.get(header)
        if value:
            return value.strip()
    return None


class AuthorizationGuard:
    """Validates credentials and enforces job ownership.

    Args:
        policy: Length limits and character whitelist for credentials.
    """

    def __init__(self, policy: CredentialPolicy | None = None) -> None:
        self.policy = policy or CredentialPolicy()
        self._pattern = re.compile(self.policy.allowed_pattern)

    def is_valid_format(self, credential: str | None) -> bool:
        if not credential:
            return False
        if not self.policy.min_length <= len(credential) <= self.policy.max_length:
            return False
        return self._pattern.fullmatch(credential) is not None

    def validate_credential(self, credential: str | None) -> str:
        """Check a credential before it is used for anything.

        Args:
            credential: Raw value supplied by the caller.

        Returns:
            The credential unchanged.

        Raises:
            CredentialFormatError: If the credential is missing or malformed.
        """
        if not credential:
            raise CredentialFormatError("API key is required")
        if not self.is_valid_format(credential):
            raise CredentialFormatError("Invalid API key format")
        return credential

    def owner_token(self, credential: str) -> str:
        """Token stored on a job to identify its owner."""
        return hash_credential(self.validate_credential(credential))

    def is_owner(self, job: Job, credential: str | None) -> bool:
        if not credential:
            return False
        return hmac.compare_digest(hash_credential(credential), job.owner_credential)

    def authorize(self, job: Job, credential: str | None) -> None:
        """Ensure the caller owns ``job``.

        Raises:
            OwnershipError: If no credential was supplied or it does not
                match the one that started the job.
        """
        if not self.is_owner(job, credential):
            raise OwnershipError()
