"""Run short Tinker SDK scripts in the worker interpreter.

The server never imports the SDK itself. Each upstream query runs a fixed
script in a child interpreter, the credential reaches the child only
through its environment, and the answer comes back as a JSON line on
stdout.
"""

from __future__ import annotations

import asyncio
import json
import os
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from tinker_studio.core import constants
from tinker_studio.core.errors import UpstreamError
from tinker_studio.core.logging import get_logger
from tinker_studio.core.sanitize import sanitize_error_message

_logger = get_logger("sdk_runner")

PYTHON_REQUIRED_MESSAGE = "Python 3 is required. Please install Python 3.9+"
SDK_MISSING_MESSAGE = "Tinker SDK not installed. Run: pip install tinker"


def last_json_object(output: str, key: str) -> dict[str, Any] | None:
    """Find the last stdout line that is a JSON object containing ``key``.

    SDKs print progress chatter; only the script's own answer line counts.
    """
    for line in reversed(output.strip().splitlines()):
        try:
            data = json.loads(line)
        except ValueError:
            continue
        if isinstance(data, dict) and key in data:
            return data
    return None


@dataclass(frozen=True)
class ScriptOutput:
    """Captured result of one script run."""

    stdout: str
    stderr: str
    returncode: int | None

    def answer(self, key: str) -> dict[str, Any] | None:
        return last_json_object(self.stdout, key)

    def failure_message(self, default: str) -> str:
        """Explain a run that produced no answer, from its stderr."""
        if self.returncode == 127 or "command not found" in self.stderr:
            return PYTHON_REQUIRED_MESSAGE
        if "No module named 'tinker'" in self.stderr:
            return SDK_MISSING_MESSAGE
        text = self.stderr.strip()
        return sanitize_error_message(text.splitlines()[-1] if text else default)


class SdkScriptRunner:
    """Runs fixed scripts with a credential in the child's environment.

    Args:
        python_executable: Interpreter that has (or lacks) the Tinker SDK.
        timeout_seconds: Upper bound on each run.
        base_env: Environment the credential is added to; defaults to the
            server's own.
    """

    def __init__(
        self,
        python_executable: str = "python3",
        *,
        timeout_seconds: float = constants.CREDENTIAL_CHECK_TIMEOUT_SECONDS,
        base_env: Mapping[str, str] | None = None,
    ) -> None:
        self.python_executable = python_executable
        self.timeout_seconds = timeout_seconds
        self._base_env = base_env

    def _environment(self, credential: str) -> dict[str, str]:
        env = dict(os.environ if self._base_env is None else self._base_env)
        env[constants.CREDENTIAL_ENV_VAR] = credential
        env["TINKER_TELEMETRY"] = "0"
        return env

    async def run(
        self,
        name: str,
        script: str,
        credential: str,
        *,
        timeout_message: str = "Request timed out",
    ) -> ScriptOutput:
        """Run ``script`` and capture its output.

        Args:
            name: Short label for logs.
            script: Program text; never contains the credential.
            credential: Placed in ``TINKER_API_KEY`` for the child.
            timeout_message: Error message used when the run times out.

        Raises:
            UpstreamError: If the interpreter cannot be started or the run
                exceeds the timeout.
        """
        try:
            process = await asyncio.create_subprocess_exec(
                self.python_executable,
                "-c",
                script,
                env=self._environment(credential),
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except FileNotFoundError as e:
            raise UpstreamError(PYTHON_REQUIRED_MESSAGE) from e
        except OSError as e:
            raise UpstreamError(sanitize_error_message(f"Failed to run Python: {e}")) from e

        try:
            stdout, stderr = await asyncio.wait_for(process.communicate(), self.timeout_seconds)
        except TimeoutError as e:
            if process.returncode is None:
                process.kill()
            await process.wait()
            _logger.warning("sdk_script_timeout", script=name, timeout=self.timeout_seconds)
            raise UpstreamError(timeout_message) from e

        _logger.debug("sdk_script_finished", script=name, exit_code=process.returncode)
        return ScriptOutput(
            stdout=stdout.decode("utf-8", errors="replace"),
            stderr=stderr.decode("utf-8", errors="replace"),
            returncode=process.returncode,
        )
