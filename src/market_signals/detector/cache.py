"""Per-run read-through cache for area lookups.

One instance is created for each pipeline invocation and dropped with it,
so lookups never leak between runs or orgs.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class LookupCache:
    """Memoizes async lookups by (namespace, key)."""

    def __init__(self) -> None:
        self._entries: dict[tuple[str, tuple[Any, ...]], Any] = {}
        self.hits = 0
        self.misses = 0

    async def get_or_load(
        self,
        namespace: str,
        key: tuple[Any, ...],
        loader: Callable[[], Awaitable[T]],
    ) -> T:
        cache_key = (namespace, key)
        if cache_key in self._entries:
            self.hits += 1
            value: T = self._entries[cache_key]
            return value
        self.misses += 1
        loaded = await loader()
        self._entries[cache_key] = loaded
        return loaded

    def clear(self) -> None:
        self._entries.clear()
        self.hits = 0
        self.misses = 0

    def __len__(self) -> int:
        return len(self._entries)
