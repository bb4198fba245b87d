"""
src/identity_client: endpoint, credential and evaluation-API layer.

Module layout
-------------
config.py          - re-exported service settings, updatable fields, headers
errors.py          - exception hierarchy (registry, storage, API, pipeline)
storage.py         - key-based JSON storage (file-backed and in-memory)
registry.py        - EndpointRegistry: up to 3 endpoints, one selected, probes
credential.py      - CredentialStore: the API key
liveness.py        - LivenessClient (SaaS API) and SdkEndpointClient
session.py         - IdentityClientState: owns registry + credential, init()
logging_config.py  - structlog configuration

Public interface
----------------
Build and hydrate the process-wide state:
    state = IdentityClientState().init()

Manage endpoints:
    state.registry.add(tag, url) / update / remove / select / probe

Evaluate one image:
    LivenessClient().evaluate(image_base64, state.credential.get())
"""

from .credential import CredentialStore
from .errors import (
    ApiError,
    ApiErrorKind,
    CapacityExceededError,
    EndpointNotFoundError,
    IdentityClientError,
    LastEndpointError,
    NoValidFilesError,
    StorageError,
)
from .liveness import LivenessClient, SdkEndpointClient, SdkEvaluation
from .registry import Endpoint, EndpointRegistry, EndpointStatus
from .session import IdentityClientState
from .storage import JsonFileStorage, MemoryStorage

__all__ = [
    # State
    "IdentityClientState",
    "EndpointRegistry",
    "Endpoint",
    "EndpointStatus",
    "CredentialStore",
    # Storage
    "JsonFileStorage",
    "MemoryStorage",
    # API clients
    "LivenessClient",
    "SdkEndpointClient",
    "SdkEvaluation",
    # Errors
    "IdentityClientError",
    "CapacityExceededError",
    "LastEndpointError",
    "EndpointNotFoundError",
    "StorageError",
    "ApiError",
    "ApiErrorKind",
    "NoValidFilesError",
]
