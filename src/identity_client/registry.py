"""
Configured service instances ("endpoints") and the single active selection.

Invariants held by :class:`EndpointRegistry`:
  - at most ``MAX_ENDPOINTS`` endpoints;
  - once non-empty, never empty again through ``remove``;
  - exactly one endpoint has ``is_selected`` whenever the registry is
    non-empty.

A rejected operation leaves the registry untouched.  Every successful
mutation calls the ``on_change`` hook, which the owning state object uses to
persist the new endpoint set.
"""

from __future__ import annotations

import threading
import uuid
from dataclasses import dataclass, replace
from enum import Enum
from typing import Callable

import requests
import structlog

from .config import (
    HEALTH_PATH,
    JSON_HEADERS,
    MAX_ENDPOINTS,
    PROBE_TIMEOUT_SECONDS,
    UPDATABLE_ENDPOINT_FIELDS,
)
from .errors import CapacityExceededError, EndpointNotFoundError, LastEndpointError

logger = structlog.get_logger(__name__)


class EndpointStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"


def normalize_url(url: str) -> str:
    """
    Trim whitespace and drop one trailing slash from a base URL.

    >>> normalize_url(" http://localhost:7777/ ")
    'http://localhost:7777'
    """
    cleaned = url.strip()
    if cleaned.endswith("/"):
        cleaned = cleaned[:-1]
    return cleaned


@dataclass(frozen=True)
class Endpoint:
    """One configured service instance."""

    id: str
    tag: str
    url: str
    is_active: bool = False
    is_selected: bool = False

    def to_record(self) -> dict:
        """Serialise with the persisted field names."""
        return {
            "id": self.id,
            "tag": self.tag,
            "url": self.url,
            "isActive": self.is_active,
            "isSelected": self.is_selected,
        }

    @classmethod
    def from_record(cls, record: dict) -> "Endpoint":
        """
        Build an endpoint from a persisted record.

        Raises:
            KeyError: ``id``, ``tag`` or ``url`` is missing.
        """
        return cls(
            id=str(record["id"]),
            tag=str(record["tag"]),
            url=normalize_url(str(record["url"])),
            is_active=bool(record.get("isActive", False)),
            is_selected=bool(record.get("isSelected", False)),
        )


class EndpointRegistry:
    """
    Ordered set of up to ``max_endpoints`` endpoints.

    Args:
        endpoints: Initial endpoints, in display order.  Selection is
            repaired on load so that exactly one is selected.
        on_change: Called with no arguments after every successful mutation.
        max_endpoints: Capacity limit.
        probe_timeout: Seconds allowed for a health probe.
    """

    def __init__(
        self,
        endpoints: list[Endpoint] | None = None,
        on_change: Callable[[], None] | None = None,
        max_endpoints: int = MAX_ENDPOINTS,
        probe_timeout: float = PROBE_TIMEOUT_SECONDS,
    ) -> None:
        self.max_endpoints = max_endpoints
        self.probe_timeout = probe_timeout
        self._on_change = on_change
        self._lock = threading.RLock()
        self._endpoints: list[Endpoint] = self._repair_selection(
            list(endpoints or [])[:max_endpoints]
        )

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def __len__(self) -> int:
        return len(self._endpoints)

    def list(self) -> list[Endpoint]:
        with self._lock:
            return list(self._endpoints)

    def get(self, endpoint_id: str) -> Endpoint:
        """
        Return the endpoint with ``endpoint_id``.

        Raises:
            EndpointNotFoundError: No such endpoint.
        """
        with self._lock:
            return self._endpoints[self._index_of(endpoint_id)]

    def selected(self) -> Endpoint | None:
        with self._lock:
            return next((e for e in self._endpoints if e.is_selected), None)

    def find_by_tag(self, tag: str) -> Endpoint | None:
        with self._lock:
            return next((e for e in self._endpoints if e.tag == tag), None)

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def add(self, tag: str, url: str) -> Endpoint:
        """
        Append a new endpoint (inactive, unselected).

        The first endpoint added to an empty registry is selected.

        Raises:
            CapacityExceededError: The registry is already full.
            ValueError: ``tag`` or ``url`` is blank.
        """
        tag = tag.strip()
        url = normalize_url(url)
        if not tag:
            raise ValueError("Endpoint tag must not be empty")
        if not url:
            raise ValueError("Endpoint URL must not be empty")

        with self._lock:
            if len(self._endpoints) >= self.max_endpoints:
                raise CapacityExceededError(self.max_endpoints)

            endpoint = Endpoint(
                id=str(uuid.uuid4()),
                tag=tag,
                url=url,
                is_active=False,
                is_selected=not self._endpoints,
            )
            self._endpoints.append(endpoint)

        logger.info("endpoint_added", endpoint_id=endpoint.id, tag=tag, url=url)
        self._changed()
        return endpoint

    def update(self, endpoint_id: str, **fields) -> Endpoint:
        """
        Merge ``fields`` into an endpoint.

        ``is_selected=True`` is applied through :meth:`select`;
        ``is_selected=False`` is ignored, since deselecting the only selected
        endpoint would leave none selected.

        Raises:
            EndpointNotFoundError: No such endpoint.
            ValueError: A field is not updatable, or ``tag``/``url`` is blank.
        """
        unknown = set(fields) - UPDATABLE_ENDPOINT_FIELDS
        if unknown:
            raise ValueError(f"Cannot update endpoint field(s): {sorted(unknown)}")

        select_requested = fields.pop("is_selected", None)
        if "tag" in fields:
            fields["tag"] = str(fields["tag"]).strip()
            if not fields["tag"]:
                raise ValueError("Endpoint tag must not be empty")
        if "url" in fields:
            fields["url"] = normalize_url(str(fields["url"]))
            if not fields["url"]:
                raise ValueError("Endpoint URL must not be empty")
        if "is_active" in fields:
            fields["is_active"] = bool(fields["is_active"])

        with self._lock:
            index = self._index_of(endpoint_id)
            if fields:
                self._endpoints[index] = replace(self._endpoints[index], **fields)
            if select_requested:
                self._select_index(index)
            updated = self._endpoints[index]

        logger.info("endpoint_updated", endpoint_id=endpoint_id, fields=sorted(fields))
        self._changed()
        return updated

    def remove(self, endpoint_id: str) -> None:
        """
        Remove an endpoint.

        If it was selected, the first remaining endpoint becomes selected.

        Raises:
            LastEndpointError: Only one endpoint is left.
            EndpointNotFoundError: No such endpoint.
        """
        with self._lock:
            if len(self._endpoints) <= 1:
                raise LastEndpointError(endpoint_id)
            index = self._index_of(endpoint_id)
            removed = self._endpoints.pop(index)
            if removed.is_selected:
                self._select_index(0)

        logger.info(
            "endpoint_removed",
            endpoint_id=endpoint_id,
            tag=removed.tag,
            was_selected=removed.is_selected,
        )
        self._changed()

    def select(self, endpoint_id: str) -> Endpoint:
        """
        Make ``endpoint_id`` the only selected endpoint.

        Raises:
            EndpointNotFoundError: No such endpoint.
        """
        with self._lock:
            index = self._index_of(endpoint_id)
            self._select_index(index)
            chosen = self._endpoints[index]

        logger.info("endpoint_selected", endpoint_id=endpoint_id, tag=chosen.tag)
        self._changed()
        return chosen

    # ------------------------------------------------------------------
    # Health probe
    # ------------------------------------------------------------------

    def probe(
        self,
        endpoint_id: str | None = None,
        url_override: str | None = None,
    ) -> EndpointStatus:
        """
        Check reachability with ``GET <base>/liveness``.

        The target is ``url_override`` if given, else ``endpoint_id``, else
        the selected endpoint.  The matching registry entry (by id, or by URL
        for an override) gets ``is_active`` updated.  Never raises.

        Returns:
            ``EndpointStatus.ACTIVE`` on any 2xx response, otherwise
            ``EndpointStatus.INACTIVE``.
        """
        with self._lock:
            if url_override is not None:
                base_url = normalize_url(url_override)
                target = next((e for e in self._endpoints if e.url == base_url), None)
            else:
                if endpoint_id is not None:
                    target = next((e for e in self._endpoints if e.id == endpoint_id), None)
                else:
                    target = self.selected()
                base_url = target.url if target is not None else ""

        if not base_url:
            logger.warning("probe_skipped", reason="no target endpoint", endpoint_id=endpoint_id)
            return EndpointStatus.INACTIVE

        status = self._check_health(base_url)

        if target is not None:
            is_active = status is EndpointStatus.ACTIVE
            with self._lock:
                try:
                    index = self._index_of(target.id)
                except EndpointNotFoundError:
                    # Removed while the probe was in flight
                    return status
                changed = self._endpoints[index].is_active != is_active
                self._endpoints[index] = replace(self._endpoints[index], is_active=is_active)
            if changed:
                self._changed()

        return status

    def probe_all(self) -> dict[str, EndpointStatus]:
        """Probe every endpoint in order; returns ``{endpoint_id: status}``."""
        return {endpoint.id: self.probe(endpoint_id=endpoint.id) for endpoint in self.list()}

    def _check_health(self, base_url: str) -> EndpointStatus:
        health_url = f"{base_url}{HEALTH_PATH}"
        try:
            response = requests.get(
                health_url,
                headers=JSON_HEADERS,
                timeout=self.probe_timeout,
            )
        except requests.RequestException as exc:
            logger.info("probe_failed", url=health_url, error=str(exc))
            return EndpointStatus.INACTIVE

        if 200 <= response.status_code < 300:
            status = EndpointStatus.ACTIVE
        else:
            status = EndpointStatus.INACTIVE
        logger.info(
            "probe_completed",
            url=health_url,
            http_status=response.status_code,
            status=status.value,
        )
        return status

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _index_of(self, endpoint_id: str) -> int:
        for index, endpoint in enumerate(self._endpoints):
            if endpoint.id == endpoint_id:
                return index
        raise EndpointNotFoundError(endpoint_id)

    def _select_index(self, index: int) -> None:
        self._endpoints = [
            replace(endpoint, is_selected=(i == index))
            for i, endpoint in enumerate(self._endpoints)
        ]

    @staticmethod
    def _repair_selection(endpoints: list[Endpoint]) -> list[Endpoint]:
        if not endpoints:
            return endpoints
        selected = [i for i, e in enumerate(endpoints) if e.is_selected]
        keep = selected[0] if selected else 0
        return [replace(e, is_selected=(i == keep)) for i, e in enumerate(endpoints)]

    def _changed(self) -> None:
        if self._on_change is not None:
            self._on_change()
