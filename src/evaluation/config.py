"""
Batch evaluation constants: accepted inputs, diagnostic texts, export layout.

The concurrency bound comes from config/service_config.py; everything else
is specific to the pipeline and kept here.
"""

from __future__ import annotations

from config.service_config import MAX_CONCURRENCY  # noqa: F401  (re-exported)

# ---------------------------------------------------------------------------
# Accepted inputs
# ---------------------------------------------------------------------------

# Compared case-insensitively against the file suffix
SUPPORTED_IMAGE_EXTENSIONS: frozenset[str] = frozenset(
    {".jpg", ".jpeg", ".png", ".bmp", ".gif", ".webp"}
)

# Base64 inputs carry no file name; previews and metadata assume JPEG
BASE64_DEFAULT_MIME = "image/jpeg"
BASE64_TITLE_TEMPLATE = "Base64_{n}"
BASE64_SOURCE_TEMPLATE = "base64_image_{n}.jpg"

# ---------------------------------------------------------------------------
# Item diagnostics (shown verbatim in the results table)
# ---------------------------------------------------------------------------

NOT_AVAILABLE = "N/A"
DIAGNOSTIC_PROCESSING_ERROR = "Error al procesar"
DIAGNOSTIC_BASE64_PROCESSING_ERROR = "Error al procesar base64"
DIAGNOSTIC_MISSING_CREDENTIAL = (
    "Error: API key no configurada. "
    "Configure la API key con el comando 'credential set'."
)
DIAGNOSTIC_NO_RESULT_LOG = "Sin diagnóstico disponible"
DIAGNOSTIC_ERROR_PREFIX = "Error: "
DIAGNOSTIC_PENDING = "Pendiente"

# ---------------------------------------------------------------------------
# Results export
# ---------------------------------------------------------------------------

# Column order of the CSV export; SDK columns are appended per endpoint tag
EXPORT_COLUMNS: list[str] = [
    "Title",
    "Source",
    "Resolution",
    "Size",
    "Diagnostic",
    "Error",
]
SDK_COLUMN_TEMPLATE = "SDK {tag}"
