"""Optional read-path decorators: a TTL cache and in-flight request de-duplication.

Neither is part of any correctness contract. Every caller must behave the same
with :class:`NullCache` as with a real cache.
"""
from __future__ import annotations

import threading
import time
from collections.abc import Callable, Hashable
from concurrent.futures import Future
from typing import Any, Protocol, TypeVar

T = TypeVar("T")


class CachePort(Protocol):
    def get(self, key: Hashable) -> Any | None: ...

    def set(self, key: Hashable, value: Any, ttl_seconds: float | None = None) -> None: ...

    def is_expired(self, key: Hashable) -> bool: ...

    def clear(self) -> None: ...


class NullCache:
    def get(self, key: Hashable) -> Any | None:
        return None

    def set(self, key: Hashable, value: Any, ttl_seconds: float | None = None) -> None:
        return None

    def is_expired(self, key: Hashable) -> bool:
        return True

    def clear(self) -> None:
        return None


class TTLCache:
    """Expiring entries. Each write purges expired ones, then evicts the oldest past ``max_entries``."""

    def __init__(
        self,
        default_ttl_seconds: float = 300,
        clock: Callable[[], float] = time.monotonic,
        max_entries: int = 1024,
    ) -> None:
        self._default_ttl = default_ttl_seconds
        self._clock = clock
        self._max_entries = max_entries
        self._entries: dict[Hashable, tuple[float, Any]] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def get(self, key: Hashable) -> Any | None:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            expires_at, value = entry
            if self._clock() >= expires_at:
                del self._entries[key]
                return None
            return value

    def set(self, key: Hashable, value: Any, ttl_seconds: float | None = None) -> None:
        ttl = self._default_ttl if ttl_seconds is None else ttl_seconds
        with self._lock:
            now = self._clock()
            for expired in [k for k, (expires_at, _) in self._entries.items() if now >= expires_at]:
                del self._entries[expired]
            # Re-inserting moves the key to the end, so iteration order is oldest write first.
            self._entries.pop(key, None)
            self._entries[key] = (now + ttl, value)
            while len(self._entries) > self._max_entries:
                del self._entries[next(iter(self._entries))]

    def is_expired(self, key: Hashable) -> bool:
        with self._lock:
            entry = self._entries.get(key)
            return entry is None or self._clock() >= entry[0]

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()


class InFlightDeduplicator:
    """Collapse concurrent calls for the same key onto a single factory invocation."""

    def __init__(self) -> None:
        self._pending: dict[Hashable, Future] = {}
        self._lock = threading.Lock()

    def dedupe(self, key: Hashable, factory: Callable[[], T]) -> T:
        with self._lock:
            future = self._pending.get(key)
            owner = future is None
            if owner:
                future = Future()
                self._pending[key] = future

        if not owner:
            return future.result()

        try:
            result = factory()
        except BaseException as exc:
            future.set_exception(exc)
            raise
        else:
            future.set_result(result)
            return result
        finally:
            with self._lock:
                self._pending.pop(key, None)
