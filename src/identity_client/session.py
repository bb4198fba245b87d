"""
Process-wide client state: the endpoint registry plus the credential.

Built once at start-up and passed to whatever needs it.  Nothing is read
from storage until :meth:`IdentityClientState.init` runs; until then
``hydrated`` is ``False`` so callers can tell "not loaded yet" apart from
"loaded and empty".

Both the registry and the credential live in one durable record::

    {"selectedEndpoint": "<url>", "credential": "<key>", "endpoints": [...]}

Writes are best-effort: a storage failure is logged and the in-memory state
is kept as is.
"""

from __future__ import annotations

import os
import uuid
from dataclasses import replace

import structlog

from .config import (
    API_KEY_ENV,
    DEFAULT_ENDPOINT_TAG,
    DEFAULT_ENDPOINT_URL,
    MAX_ENDPOINTS,
    STORAGE_KEY,
)
from .credential import CredentialStore
from .errors import StorageError
from .registry import Endpoint, EndpointRegistry
from .storage import JsonFileStorage, MemoryStorage

logger = structlog.get_logger(__name__)


def default_endpoints() -> list[Endpoint]:
    """Seed used on first start: one selected development endpoint."""
    return [
        Endpoint(
            id=str(uuid.uuid4()),
            tag=DEFAULT_ENDPOINT_TAG,
            url=DEFAULT_ENDPOINT_URL,
            is_active=False,
            is_selected=True,
        )
    ]


class IdentityClientState:
    """
    Owner of the :class:`EndpointRegistry` and :class:`CredentialStore`.

    Args:
        storage: Any object with ``load(key)`` / ``save(key, record)``;
            defaults to :class:`JsonFileStorage` under ``STATE_DIR``.
        storage_key: Key of the durable record.
    """

    def __init__(
        self,
        storage: JsonFileStorage | MemoryStorage | None = None,
        storage_key: str = STORAGE_KEY,
    ) -> None:
        self.storage = storage if storage is not None else JsonFileStorage()
        self.storage_key = storage_key
        self.hydrated = False
        self.registry = EndpointRegistry(default_endpoints(), on_change=self.persist)
        self.credential = CredentialStore(on_change=self.persist)

    def init(self) -> "IdentityClientState":
        """
        Rehydrate from storage (once) and mark the state as hydrated.

        A missing record seeds the defaults, with the credential taken from
        the ``IDENTITY_API_KEY`` environment variable when set.  An unreadable
        or malformed record is logged and replaced by the defaults in memory;
        the stored record is left alone until the next mutation.

        Returns:
            ``self``, for chaining.
        """
        if self.hydrated:
            return self

        try:
            record = self.storage.load(self.storage_key)
        except StorageError as exc:
            logger.warning("state_load_failed", **exc.to_dict())
            record = None
            loaded_ok = False
        else:
            loaded_ok = True

        endpoints, credential = self._parse_record(record)
        if record is None and loaded_ok:
            credential = os.getenv(API_KEY_ENV, "")

        # Build fresh stores so hydration itself does not trigger writes
        self.registry = EndpointRegistry(endpoints, on_change=self.persist)
        self.credential = CredentialStore(credential, on_change=self.persist)
        self.hydrated = True

        logger.info(
            "state_hydrated",
            endpoints=len(self.registry),
            credential_configured=self.credential.is_configured(),
            from_storage=record is not None,
        )
        return self

    def snapshot(self) -> dict:
        """Return the durable record for the current state."""
        selected = self.registry.selected()
        return {
            "selectedEndpoint": selected.url if selected else "",
            "credential": self.credential.get(),
            "endpoints": [e.to_record() for e in self.registry.list()],
        }

    def persist(self) -> bool:
        """
        Write the current state; failures are logged, never raised.

        Returns:
            ``True`` if the record was written.
        """
        try:
            self.storage.save(self.storage_key, self.snapshot())
        except StorageError as exc:
            logger.warning("state_persist_failed", **exc.to_dict())
            return False
        return True

    @staticmethod
    def _parse_record(record: dict | None) -> tuple[list[Endpoint], str]:
        if record is None:
            return default_endpoints(), ""

        credential = record.get("credential")
        if not isinstance(credential, str):
            credential = ""

        endpoints: list[Endpoint] = []
        raw_endpoints = record.get("endpoints")
        if isinstance(raw_endpoints, list):
            for raw in raw_endpoints[:MAX_ENDPOINTS]:
                try:
                    endpoints.append(Endpoint.from_record(raw))
                except (KeyError, TypeError, AttributeError) as exc:
                    logger.warning("endpoint_record_skipped", error=str(exc))

        if not endpoints:
            endpoints = default_endpoints()
        elif not any(e.is_selected for e in endpoints):
            # Older records only stored the selected URL
            selected_url = record.get("selectedEndpoint")
            for i, endpoint in enumerate(endpoints):
                if endpoint.url == selected_url:
                    endpoints[i] = replace(endpoint, is_selected=True)
                    break

        return endpoints, credential
