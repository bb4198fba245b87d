"""
Exception hierarchy for the identity client and the evaluation pipeline.

Registry and credential errors are raised synchronously to the caller and
never leave the registry partially mutated.  ``ApiError`` carries the
category of an evaluation-call failure so the pipeline can record it on the
item without re-parsing messages.
"""

from __future__ import annotations

from typing import Any


class IdentityClientError(Exception):
    """
    Base class for every error raised by this project.

    Args:
        message: Human-readable error message.
        context: Extra key/value details for structured logging.
        error_code: Stable code for programmatic handling.
    """

    def __init__(
        self,
        message: str,
        context: dict[str, Any] | None = None,
        error_code: str | None = None,
    ) -> None:
        self.message = message
        self.context = context or {}
        self.error_code = error_code
        super().__init__(self.message)

    def __str__(self) -> str:
        parts = [self.message]
        if self.error_code:
            parts.append(f"[Error Code: {self.error_code}]")
        if self.context:
            context_str = ", ".join(f"{k}={v}" for k, v in self.context.items())
            parts.append(f"[Context: {context_str}]")
        return " ".join(parts)

    def to_dict(self) -> dict[str, Any]:
        """Return the error as a dict suitable for structured log fields."""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "error_code": self.error_code,
            "context": self.context,
        }


# ---------------------------------------------------------------------------
# Endpoint registry
# ---------------------------------------------------------------------------

class EndpointRegistryError(IdentityClientError):
    """Raised when a registry operation would break a registry invariant."""


class CapacityExceededError(EndpointRegistryError):
    """Raised by ``add`` when the registry already holds the maximum."""

    def __init__(self, limit: int) -> None:
        super().__init__(
            f"Cannot add endpoint: the maximum of {limit} endpoints is reached",
            context={"limit": limit},
            error_code="REGISTRY_001",
        )


class LastEndpointError(EndpointRegistryError):
    """Raised by ``remove`` when only one endpoint is left."""

    def __init__(self, endpoint_id: str) -> None:
        super().__init__(
            "Cannot remove the last remaining endpoint",
            context={"endpoint_id": endpoint_id},
            error_code="REGISTRY_002",
        )


class EndpointNotFoundError(EndpointRegistryError):
    """Raised when an endpoint id is not in the registry."""

    def __init__(self, endpoint_id: str) -> None:
        super().__init__(
            f"Endpoint not found: {endpoint_id}",
            context={"endpoint_id": endpoint_id},
            error_code="REGISTRY_003",
        )


# ---------------------------------------------------------------------------
# Persistence
# ---------------------------------------------------------------------------

class StorageError(IdentityClientError):
    """Raised by a storage adapter when a record cannot be read or written."""

    def __init__(self, message: str, key: str, **kwargs) -> None:
        context = kwargs.get("context", {})
        context["key"] = key
        super().__init__(message, context, kwargs.get("error_code", "STORAGE_001"))


# ---------------------------------------------------------------------------
# Evaluation API
# ---------------------------------------------------------------------------

class ApiErrorKind:
    """
    Category constants for evaluation-call failures.

    ``MISSING_CREDENTIAL`` and ``MISSING_PAYLOAD`` are precondition failures
    detected before any request is sent.
    """

    MISSING_CREDENTIAL = "missing_credential"
    MISSING_PAYLOAD = "missing_payload"
    NETWORK = "network"
    HTTP = "http"
    INVALID_RESPONSE = "invalid_response"


class ApiError(IdentityClientError):
    """
    Failure of one call to the external evaluation API.

    Args:
        kind: One of the :class:`ApiErrorKind` constants.
        message: Human-readable message (already merged with the provider's
            message when one was returned).
        status: HTTP status code, for ``HTTP`` failures.
        provider_message: The ``message`` field of the provider's error body.
    """

    def __init__(
        self,
        kind: str,
        message: str,
        status: int | None = None,
        provider_message: str | None = None,
    ) -> None:
        context: dict[str, Any] = {"kind": kind}
        if status is not None:
            context["status"] = status
        super().__init__(message, context=context, error_code=f"API_{kind.upper()}")
        self.kind = kind
        self.status = status
        self.provider_message = provider_message

    def __str__(self) -> str:
        return self.message


# ---------------------------------------------------------------------------
# Batch pipeline
# ---------------------------------------------------------------------------

class PipelineError(IdentityClientError):
    """Job-level failure of the batch evaluation pipeline."""


class NoValidFilesError(PipelineError):
    """Raised when a batch contains no input the pipeline can process."""

    def __init__(self, received: int) -> None:
        super().__init__(
            "No valid image files found",
            context={"received": received},
            error_code="PIPELINE_001",
        )
