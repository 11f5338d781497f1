"""
Protocol definitions for generic infrastructure services.

Available Protocols:
    CacheBackend: Cache operations interface (subset of Django's cache API)

Usage:
    from django.core.cache import cache
    from core.protocols import CacheBackend

    def remember(backend: CacheBackend, key: str, value) -> None:
        backend.set(key, value, timeout=60)

    remember(cache, "k", "v")

Note:
    Protocols are for type checking and dependency injection in tests;
    @runtime_checkable allows isinstance() checks.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from typing import Any


@runtime_checkable
class CacheBackend(Protocol):
    """
    Protocol for cache backends.

    Compatible with Django's cache interface, so both ``django-redis`` and
    the local-memory backend used in tests satisfy it.
    """

    def get(self, key: str, default: Any = None) -> Any:
        """Return the cached value or ``default``."""
        ...

    def set(self, key: str, value: Any, timeout: int | None = None) -> None:
        """Store a value; ``timeout`` in seconds, None for no expiry."""
        ...

    def get_many(self, keys: list[str]) -> dict[str, Any]:
        """Return a dict of the keys that exist."""
        ...

    def delete(self, key: str) -> bool:
        """Delete a key; True if it existed."""
        ...
