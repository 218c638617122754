"""Dashboard services module."""

from .broadcaster import KEEPALIVE_FRAME, SSEEvent, StreamBroadcaster, StreamViewer
from .catalog import TinkerCatalog
from .credential_check import CredentialCheckResult, CredentialValidator
from .sdk_runner import ScriptOutput, SdkScriptRunner
from .training import TrainingActionResult, TrainingService, TrainingStartResult

__all__ = [
    "CredentialCheckResult",
    "CredentialValidator",
    "KEEPALIVE_FRAME",
    "SSEEvent",
    "ScriptOutput",
    "SdkScriptRunner",
    "StreamBroadcaster",
    "StreamViewer",
    "TinkerCatalog",
    "TrainingActionResult",
    "TrainingService",
    "TrainingStartResult",
]
