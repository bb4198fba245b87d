"""
Service endpoints, timeouts, and persistence constants for the client layer.

Everything here is re-exported from config/service_config.py so that
configuration is separated from logic; edit values there (or override them
through the environment), not here.
"""

from __future__ import annotations

from config.service_config import (  # noqa: F401  (re-exported)
    API_KEY_ENV,
    API_KEY_HEADER,
    DEFAULT_ENDPOINT_TAG,
    DEFAULT_ENDPOINT_URL,
    HEALTH_PATH,
    LIVENESS_API_URL,
    LOG_JSON,
    LOG_LEVEL,
    MAX_ENDPOINTS,
    PROBE_TIMEOUT_SECONDS,
    REQUEST_TIMEOUT_SECONDS,
    SDK_EVALUATE_PATH,
    SDK_TIMEOUT_SECONDS,
    STATE_DIR,
    STORAGE_KEY,
)

# ---------------------------------------------------------------------------
# Endpoint updates and request headers
# ---------------------------------------------------------------------------

# Endpoint attributes that callers may change through EndpointRegistry.update
UPDATABLE_ENDPOINT_FIELDS: frozenset[str] = frozenset(
    {"tag", "url", "is_active", "is_selected"}
)

# Request headers shared by every JSON call
JSON_HEADERS: dict[str, str] = {"Content-Type": "application/json"}
