"""Global constants for Tinker Studio.

Centralizes the limits, timeouts and wire-format markers shared by the
supervisor, the stream layer and the HTTP boundary.
"""

# =============================================================================
# Worker Process Limits
# =============================================================================

WORKER_MEMORY_LIMIT_MB = 1536
"""Virtual-memory ceiling (RLIMIT_AS) applied to every worker process."""

WORKER_SCRIPT_NAME = "training.py"
"""File name of the generated program inside a job's working directory."""

WORKSPACE_DIR_NAME = "tinker-studio"
"""Directory under the system temp dir that holds per-job working directories."""

STOP_GRACE_SECONDS = 10.0
"""Delay between SIGTERM and SIGKILL when stopping a job."""

EVICTION_GRACE_SECONDS = 60.0
"""How long a terminal job stays visible before it is deleted from the registry."""

INTERPRETER_PROBE_TIMEOUT_SECONDS = 5.0
"""Timeout for the ``python --version`` availability probe."""

CREDENTIAL_CHECK_TIMEOUT_SECONDS = 30.0
"""Timeout for the upstream credential validation script."""

# =============================================================================
# Job Log Messages
# =============================================================================

MSG_COMPLETED = "Training completed successfully!"
MSG_FAILED_EXIT_CODE = "Training failed with exit code {code}"
MSG_STOP_REQUESTED = "Training stop requested..."
MSG_FORCE_KILLED = "Training forcefully terminated"

PYTHON_UNAVAILABLE_MESSAGE = (
    "Python runtime not available. To run training:\n\n"
    "1. Install Python 3.9+\n"
    "2. Run: pip install tinker datasets transformers\n"
    "3. Download the generated code and run locally"
)

ERROR_MARKER = "[ERROR]"
"""Marker prepended to stderr lines and launch failures in the job log."""

# =============================================================================
# Worker Output Protocol
# =============================================================================

METRIC_PREFIX = "METRIC::"
"""Prefix of a metric line followed by a JSON payload."""

CHECKPOINT_SAMPLE_PREFIX = "CHECKPOINT_SAMPLE::"
"""Prefix of a checkpoint sample line followed by a JSON payload."""

# =============================================================================
# Stream Settings
# =============================================================================

STREAM_HEARTBEAT_SECONDS = 15.0
"""Keep-alive interval for idle SSE streams."""

STREAM_MAX_VIEWERS = 100
"""Maximum number of concurrently open stream viewers across all jobs."""

JOB_MISSING_MESSAGE = "Job no longer exists"

# =============================================================================
# Credentials
# =============================================================================

CREDENTIAL_MIN_LENGTH = 20
CREDENTIAL_MAX_LENGTH = 200
CREDENTIAL_ENV_VAR = "TINKER_API_KEY"
"""Environment variable through which the worker receives the credential."""

CREDENTIAL_HEADERS = ("x-api-key", "x-tinker-api-key")
"""Request headers that may carry the caller credential."""

# =============================================================================
# Rate Limiting
# =============================================================================

RATE_LIMIT_API_REQUESTS = 100
RATE_LIMIT_TRAINING_START_REQUESTS = 10
RATE_LIMIT_VALIDATION_REQUESTS = 20
RATE_LIMIT_WINDOW_SECONDS = 60.0
RATE_LIMIT_SWEEP_INTERVAL_SECONDS = 300.0
"""How often empty rate-limit windows are dropped."""

RATE_LIMITED_PATH_PREFIXES = ("/api/tinker/", "/api/training/", "/api/checkpoints/")
TRAINING_START_PATH = "/api/training/start"
CREDENTIAL_VALIDATION_PATH = "/api/tinker/validate"

# =============================================================================
# Duration Formatting
# =============================================================================

SECONDS_PER_MINUTE = 60
SECONDS_PER_HOUR = 3600
ETA_UNKNOWN = "--"