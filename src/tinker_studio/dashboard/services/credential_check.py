"""Check an upstream credential against the Tinker service."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass

from tinker_studio.core import constants
from tinker_studio.core.errors import UpstreamError
from tinker_studio.core.logging import get_logger
from tinker_studio.core.sanitize import sanitize_error_message
from tinker_studio.dashboard.services.sdk_runner import (
    PYTHON_REQUIRED_MESSAGE,
    SDK_MISSING_MESSAGE,
    SdkScriptRunner,
    last_json_object,
)

_logger = get_logger("credential_check")

CHECK_SCRIPT = """\
import json

try:
    import tinker
    client = tinker.ServiceClient()
    client.get_server_capabilities()
    print(json.dumps({"valid": True}))
except ImportError:
    print(json.dumps({"valid": False, "error": "Tinker SDK not installed. Run: pip install tinker"}))
except Exception as e:
    message = str(e)
    lowered = message.lower()
    if "unauthorized" in lowered or "invalid" in lowered or "401" in message:
        print(json.dumps({"valid": False, "error": "Invalid API key"}))
    elif "connection" in lowered or "network" in lowered:
        print(json.dumps({"valid": False, "error": "Could not connect to Tinker API"}))
    else:
        print(json.dumps({"valid": False, "error": f"Validation failed: {message}"}))
"""

__all__ = [
    "CHECK_SCRIPT",
    "PYTHON_REQUIRED_MESSAGE",
    "SDK_MISSING_MESSAGE",
    "CredentialCheckResult",
    "CredentialValidator",
]


@dataclass(frozen=True)
class CredentialCheckResult:
    valid: bool
    error: str | None = None


class CredentialValidator:
    """Runs :data:`CHECK_SCRIPT` with a credential and interprets its answer.

    Args:
        python_executable: Interpreter that has (or lacks) the Tinker SDK.
        timeout_seconds: Upper bound on the whole check.
        base_env: Environment the credential is added to; defaults to the
            server's own.
        runner: Pre-built script runner; overrides the arguments above.
    """

    def __init__(
        self,
        python_executable: str = "python3",
        *,
        timeout_seconds: float = constants.CREDENTIAL_CHECK_TIMEOUT_SECONDS,
        base_env: Mapping[str, str] | None = None,
        runner: SdkScriptRunner | None = None,
    ) -> None:
        self._runner = runner or SdkScriptRunner(
            python_executable, timeout_seconds=timeout_seconds, base_env=base_env
        )

    async def validate(self, credential: str) -> CredentialCheckResult:
        try:
            output = await self._runner.run(
                "credential_check",
                CHECK_SCRIPT,
                credential,
                timeout_message="Validation timed out",
            )
        except UpstreamError as e:
            return CredentialCheckResult(False, e.message)

        result = self._parse(output.stdout)
        if result is not None:
            _logger.info("credential_checked", valid=result.valid)
            return result
        return CredentialCheckResult(False, output.failure_message("Validation failed"))

    @staticmethod
    def _parse(output: str) -> CredentialCheckResult | None:
        data = last_json_object(output, "valid")
        if data is None:
            return None
        error = data.get("error")
        return CredentialCheckResult(
            bool(data["valid"]),
            sanitize_error_message(str(error)) if error else None,
        )
