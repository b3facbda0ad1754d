"""Secure on-device credential store.

``SecureStore`` is the capability the identity flow needs: get, set and
delete opaque strings by key.  ``InMemorySecureStore`` keeps values for the
process lifetime only; each value lapses ``ttl_seconds`` after it was set
and is dropped on the next read.  Values are NEVER written to disk.
"""
import logging
import time
from abc import ABC, abstractmethod
from typing import Dict, Optional, Tuple

logger = logging.getLogger(__name__)


class SecureStore(ABC):
    """Key/value store for secrets such as the session token."""

    @abstractmethod
    async def get(self, key: str) -> Optional[str]:
        """Return the value for *key*, or None."""

    @abstractmethod
    async def set(self, key: str, value: str) -> None:
        """Store or replace *value* under *key*."""

    @abstractmethod
    async def delete(self, key: str) -> None:
        """Remove *key* (no-op if absent)."""


class InMemorySecureStore(SecureStore):
    """Process-lifetime ``SecureStore`` with per-value expiry."""

    def __init__(self, ttl_seconds: int = 3600) -> None:
        self.ttl_seconds = ttl_seconds
        # key -> (value, monotonic deadline)
        self._values: Dict[str, Tuple[str, float]] = {}

    async def get(self, key: str) -> Optional[str]:
        item = self._values.get(key)
        if item is None:
            return None
        value, deadline = item
        if time.monotonic() >= deadline:
            del self._values[key]
            logger.info("Stored %s lapsed after %ss", key, self.ttl_seconds)
            return None
        return value

    async def set(self, key: str, value: str, ttl_seconds: Optional[int] = None) -> None:
        ttl = self.ttl_seconds if ttl_seconds is None else ttl_seconds
        self._values[key] = (value, time.monotonic() + ttl)

    async def delete(self, key: str) -> None:
        self._values.pop(key, None)
