"""
Passive-liveness evaluation calls.

Two callers share the request-building helpers here:

- :class:`LivenessClient` - the Identity Platform SaaS API.  Each call is a
  single authenticated POST with a 30-second timeout.  Failures are raised
  as :class:`ApiError` with a kind; there are no retries at this layer.
- :class:`SdkEndpointClient` - self-hosted SDK instances from the endpoint
  registry.  Failures are folded into the returned diagnostic and never
  raised, so one unreachable instance cannot disturb the others.
"""

from __future__ import annotations

import time
from dataclasses import dataclass

import requests
import structlog

from .config import (
    API_KEY_HEADER,
    JSON_HEADERS,
    LIVENESS_API_URL,
    REQUEST_TIMEOUT_SECONDS,
    SDK_EVALUATE_PATH,
    SDK_TIMEOUT_SECONDS,
)
from .errors import ApiError, ApiErrorKind
from .registry import Endpoint

logger = structlog.get_logger(__name__)


# ---------------------------------------------------------------------------
# Request construction
# ---------------------------------------------------------------------------

def build_request_headers(credential: str) -> dict:
    """
    Construct the headers for an evaluation call.

    Args:
        credential: API key sent in the ``x-api-key`` header.

    Returns:
        Dict of HTTP header name → value pairs.
    """
    headers = dict(JSON_HEADERS)
    headers[API_KEY_HEADER] = credential
    return headers


def build_request_payload(image_payload: str, **tracking) -> dict:
    """
    Construct the JSON body for an evaluation call.

    Optional tracking fields (e.g. ``trackingId``) are passed through
    unchanged; ``None`` values are dropped.

    Args:
        image_payload: Base64 image without any ``data:`` prefix.
        **tracking: Extra top-level fields accepted by the provider.

    Returns:
        Dict suitable for the ``json=`` argument of ``requests.post()``.
    """
    payload: dict = {"imageBuffer": image_payload}
    payload.update({k: v for k, v in tracking.items() if v is not None})
    return payload


def extract_provider_message(response: requests.Response) -> str | None:
    """Return the ``message`` field of a JSON error body, if there is one."""
    try:
        body = response.json()
    except ValueError:
        return None
    if isinstance(body, dict) and body.get("message"):
        return str(body["message"])
    return None


# ---------------------------------------------------------------------------
# SaaS evaluation
# ---------------------------------------------------------------------------

class LivenessClient:
    """
    Stateless wrapper around the passive-liveness evaluation endpoint.

    Args:
        url: Evaluation URL.
        timeout: Request timeout in seconds.
    """

    def __init__(
        self,
        url: str = LIVENESS_API_URL,
        timeout: float = REQUEST_TIMEOUT_SECONDS,
    ) -> None:
        self.url = url
        self.timeout = timeout

    def evaluate(self, image_payload: str, credential: str, **tracking) -> dict:
        """
        Evaluate one base64 image.

        Args:
            image_payload: Base64-encoded image (no ``data:`` prefix).
            credential: API key; must be non-empty after trimming.
            **tracking: Optional tracking fields forwarded in the body.

        Returns:
            The provider's JSON response, including ``serviceResultLog``.

        Raises:
            ApiError: ``MISSING_CREDENTIAL`` / ``MISSING_PAYLOAD`` before any
                request; ``NETWORK`` on timeout or transport failure;
                ``HTTP`` on a non-2xx status; ``INVALID_RESPONSE`` when a 2xx
                body is not a JSON object.
        """
        credential = (credential or "").strip()
        if not credential:
            raise ApiError(ApiErrorKind.MISSING_CREDENTIAL, "API key is required")
        if not image_payload:
            raise ApiError(ApiErrorKind.MISSING_PAYLOAD, "imageBuffer is required")

        start = time.monotonic()
        try:
            response = requests.post(
                self.url,
                headers=build_request_headers(credential),
                json=build_request_payload(image_payload, **tracking),
                timeout=self.timeout,
            )
        except requests.Timeout as exc:
            raise ApiError(
                ApiErrorKind.NETWORK,
                f"API request failed: timeout of {self.timeout:g}s exceeded",
            ) from exc
        except requests.RequestException as exc:
            raise ApiError(ApiErrorKind.NETWORK, f"Network error: {exc}") from exc

        latency = round(time.monotonic() - start, 3)

        if not 200 <= response.status_code < 300:
            provider_message = extract_provider_message(response)
            detail = provider_message or (
                f"Request failed with status code {response.status_code}"
            )
            logger.warning(
                "liveness_http_error",
                http_status=response.status_code,
                latency_seconds=latency,
            )
            raise ApiError(
                ApiErrorKind.HTTP,
                f"API request failed: {detail}",
                status=response.status_code,
                provider_message=provider_message,
            )

        try:
            body = response.json()
        except ValueError as exc:
            raise ApiError(
                ApiErrorKind.INVALID_RESPONSE,
                "API request failed: response body is not valid JSON",
                status=response.status_code,
            ) from exc
        if not isinstance(body, dict):
            raise ApiError(
                ApiErrorKind.INVALID_RESPONSE,
                "API request failed: response body is not a JSON object",
                status=response.status_code,
            )

        logger.debug("liveness_evaluated", latency_seconds=latency)
        return body


# ---------------------------------------------------------------------------
# Self-hosted SDK evaluation
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class SdkEvaluation:
    """Outcome of one SDK call: a display diagnostic and the raw body, if any."""

    diagnostic: str
    raw_response: dict | None = None


class SdkEndpointClient:
    """Evaluates images against the passive-liveness route of an SDK instance."""

    def __init__(self, timeout: float = SDK_TIMEOUT_SECONDS) -> None:
        self.timeout = timeout

    def evaluate(self, image_payload: str, endpoint: Endpoint) -> SdkEvaluation:
        """
        POST ``{"image": <base64>}`` to ``<endpoint.url>`` + the SDK route.

        Never raises; every failure becomes the diagnostic text.
        """
        url = f"{endpoint.url}{SDK_EVALUATE_PATH}"
        try:
            response = requests.post(
                url,
                headers=JSON_HEADERS,
                json={"image": image_payload},
                timeout=self.timeout,
            )
        except requests.Timeout:
            return SdkEvaluation(f"Timeout: {endpoint.tag} not responding")
        except requests.RequestException as exc:
            return SdkEvaluation(f"Connection error: {exc}")

        if not 200 <= response.status_code < 300:
            return SdkEvaluation(f"Error {response.status_code}: {response.reason}")

        try:
            body = response.json()
        except ValueError:
            return SdkEvaluation(f"Error: invalid response from {endpoint.tag}")

        if not isinstance(body, dict):
            return SdkEvaluation(f"Evaluated with {endpoint.tag}")
        return SdkEvaluation(
            diagnostic=str(body.get("diagnostic") or f"Evaluated with {endpoint.tag}"),
            raw_response=body,
        )
