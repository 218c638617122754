"""List the base models and saved checkpoints available upstream."""

from __future__ import annotations

from typing import Any

from tinker_studio.core.errors import UpstreamError
from tinker_studio.core.logging import get_logger
from tinker_studio.core.sanitize import sanitize_error_message
from tinker_studio.dashboard.services.sdk_runner import SdkScriptRunner

_logger = get_logger("catalog")

MODELS_SCRIPT = """\
import json
import re

try:
    import tinker
    caps = tinker.ServiceClient().get_server_capabilities()
    models = []
    for model in getattr(caps, "supported_models", None) or []:
        model_name = model.model_name if hasattr(model, "model_name") else str(model)
        if not model_name:
            continue
        display_name = model_name.split("/")[-1]
        entry = {"id": model_name, "name": display_name.replace("-", " ")}
        size = re.search(r"(\\d+\\.?\\d*B)", display_name, re.IGNORECASE)
        if size:
            entry["params"] = size.group(1)
        models.append(entry)
    if models:
        print(json.dumps({"success": True, "models": models}))
    else:
        print(json.dumps({"success": False, "error": "No models available from Tinker API"}))
except ImportError:
    print(json.dumps({"success": False, "error": "Tinker SDK not installed. Run: pip install tinker"}))
except Exception as e:
    print(json.dumps({"success": False, "error": str(e)}))
"""

CHECKPOINTS_SCRIPT = """\
import json
import warnings

warnings.filterwarnings("ignore", category=UserWarning, module="pydantic")

try:
    import tinker
    rest_client = tinker.ServiceClient().create_rest_client()
    response = rest_client.list_user_checkpoints(limit=100).result()

    runs = {}
    checkpoints = []
    for ckpt in response.checkpoints:
        run_id = getattr(ckpt, "training_run_id", None)
        if run_id and run_id not in runs:
            try:
                info = rest_client.get_training_run(run_id).result()
                runs[run_id] = (
                    getattr(info, "base_model", "unknown"),
                    getattr(info, "lora_rank", None),
                )
            except Exception:
                runs[run_id] = ("unknown", None)
        base_model, lora_rank = runs.get(run_id, ("unknown", None))
        created = getattr(ckpt, "time", None)
        checkpoints.append({
            "name": getattr(ckpt, "checkpoint_id", "unknown"),
            "path": getattr(ckpt, "tinker_path", ""),
            "timestamp": int(created.timestamp()) if created else 0,
            "checkpointType": getattr(ckpt, "checkpoint_type", "training"),
            "sizeBytes": getattr(ckpt, "size_bytes", None),
            "public": getattr(ckpt, "public", False),
            "baseModel": base_model,
            "loraRank": lora_rank,
        })
    print(json.dumps({"success": True, "checkpoints": checkpoints}, default=str))
except ImportError:
    print(json.dumps({"success": False, "error": "Tinker SDK not installed. Run: pip install tinker"}))
except Exception as e:
    print(json.dumps({"success": False, "error": str(e)}))
"""


class TinkerCatalog:
    """Queries the Tinker service for models and checkpoints.

    Args:
        runner: Runs the listing scripts in the worker interpreter.
    """

    def __init__(self, runner: SdkScriptRunner) -> None:
        self._runner = runner

    async def list_models(self, credential: str) -> list[dict[str, Any]]:
        """Base models the service can fine-tune, as ``{id, name, params?}``.

        Raises:
            UpstreamError: If the listing fails or returns nothing.
        """
        return await self._query(
            "models", MODELS_SCRIPT, credential, "Failed to fetch models from Tinker"
        )

    async def list_checkpoints(self, credential: str) -> list[dict[str, Any]]:
        """Checkpoints saved under the credential's account.

        Raises:
            UpstreamError: If the listing fails.
        """
        return await self._query(
            "checkpoints", CHECKPOINTS_SCRIPT, credential, "Failed to list checkpoints"
        )

    async def _query(
        self, key: str, script: str, credential: str, default_error: str
    ) -> list[dict[str, Any]]:
        output = await self._runner.run(key, script, credential)
        answer = output.answer("success")
        if answer is None:
            raise UpstreamError(output.failure_message(default_error))
        if not answer["success"]:
            error = answer.get("error") or default_error
            _logger.warning("catalog_query_failed", catalog=key)
            raise UpstreamError(sanitize_error_message(str(error)))

        items = answer.get(key)
        if not isinstance(items, list):
            raise UpstreamError(default_error)
        _logger.info("catalog_listed", catalog=key, count=len(items))
        return items
