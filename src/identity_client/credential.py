"""Holder for the single API credential attached to evaluation requests."""

from __future__ import annotations

import threading
from typing import Callable

import structlog

logger = structlog.get_logger(__name__)


class CredentialStore:
    """
    One opaque secret string.  ``""`` means "not configured".

    The value is never logged.  ``on_change`` is called after every
    ``set``/``clear`` so the owning state object can persist it.
    """

    def __init__(
        self,
        value: str = "",
        on_change: Callable[[], None] | None = None,
    ) -> None:
        self._value = value.strip()
        self._on_change = on_change
        self._lock = threading.Lock()

    def get(self) -> str:
        return self._value

    def set(self, value: str) -> None:
        """Store ``value`` trimmed; an empty result unsets the credential."""
        with self._lock:
            self._value = (value or "").strip()
        logger.info("credential_updated", configured=self.is_configured())
        if self._on_change is not None:
            self._on_change()

    def clear(self) -> None:
        self.set("")

    def is_configured(self) -> bool:
        return bool(self._value)

    def masked(self) -> str:
        """Return the credential with all but its last four characters hidden."""
        if not self._value:
            return ""
        visible = self._value[-4:] if len(self._value) > 8 else ""
        return "*" * (len(self._value) - len(visible)) + visible
