"""
Identity Platform service endpoints, timeouts, and client defaults.

This is the AUTHORITATIVE source for service configuration.
src/identity_client/config.py and src/evaluation/config.py import from
here; do not maintain parallel copies.

Values may be overridden through environment variables or a ``.env`` file
in the project root (loaded with python-dotenv on import).

ENVIRONMENT VARIABLES (all optional):
    IDENTITY_API_KEY            - credential used when none is persisted
    LIVENESS_API_URL            - passive-liveness evaluation URL
    PROBE_TIMEOUT_SECONDS       - endpoint health probe timeout
    IDENTITY_CLIENT_STATE_DIR   - directory holding the persisted state
    MAX_CONCURRENCY             - batch pipeline concurrency bound
    LOG_LEVEL                   - DEBUG / INFO / WARNING / ERROR / CRITICAL
    LOG_JSON                    - "true" for JSON log lines
"""

from __future__ import annotations

import os
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()

# Resolve from this file: config/service_config.py → config → root
PROJECT_ROOT = Path(__file__).resolve().parents[1]

# ---------------------------------------------------------------------------
# External evaluation API
# ---------------------------------------------------------------------------

LIVENESS_API_URL: str = os.getenv(
    "LIVENESS_API_URL",
    "https://api.identity-platform.io/services/evaluatePassiveLivenessToken",
)

# Header carrying the credential on every evaluation request
API_KEY_HEADER: str = "x-api-key"

# Environment variable consulted when no credential has been persisted
API_KEY_ENV: str = "IDENTITY_API_KEY"

REQUEST_TIMEOUT_SECONDS: int = 30

# ---------------------------------------------------------------------------
# Service instances (user endpoints)
# ---------------------------------------------------------------------------

MAX_ENDPOINTS: int = 3

HEALTH_PATH: str = "/liveness"
PROBE_TIMEOUT_SECONDS: float = float(os.getenv("PROBE_TIMEOUT_SECONDS", "5"))

# Passive-liveness route exposed by self-hosted SDK instances
SDK_EVALUATE_PATH: str = "/api/v1/selphid/passive-liveness/evaluate"
SDK_TIMEOUT_SECONDS: int = 10

# Seed used on first start, or when the persisted record is unreadable
DEFAULT_ENDPOINT_TAG: str = "Development"
DEFAULT_ENDPOINT_URL: str = "http://localhost:7777"

# ---------------------------------------------------------------------------
# Persistence
# ---------------------------------------------------------------------------

STATE_DIR: Path = Path(
    os.getenv("IDENTITY_CLIENT_STATE_DIR", str(PROJECT_ROOT / ".state"))
)
STORAGE_KEY: str = "endpoint-storage"

# ---------------------------------------------------------------------------
# Batch pipeline
# ---------------------------------------------------------------------------

# Items are evaluated one at a time unless explicitly raised
MAX_CONCURRENCY: int = int(os.getenv("MAX_CONCURRENCY", "1"))

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO").upper()
LOG_JSON: bool = os.getenv("LOG_JSON", "false").lower() == "true"


def validate_configuration() -> bool:
    """
    Validate the current configuration settings.

    Returns:
        ``True`` when every setting is usable.

    Raises:
        ValueError: Listing every invalid setting found.
    """
    errors = []

    if not LIVENESS_API_URL.startswith(("http://", "https://")):
        errors.append(f"LIVENESS_API_URL must be an http(s) URL, got '{LIVENESS_API_URL}'")

    if PROBE_TIMEOUT_SECONDS <= 0:
        errors.append("PROBE_TIMEOUT_SECONDS must be positive")

    if MAX_CONCURRENCY < 1:
        errors.append("MAX_CONCURRENCY must be at least 1")

    valid_log_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
    if LOG_LEVEL not in valid_log_levels:
        errors.append(f"LOG_LEVEL must be one of {valid_log_levels}")

    if errors:
        raise ValueError(
            "Configuration validation failed:\n"
            + "\n".join(f"- {error}" for error in errors)
        )

    return True
