from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional

logger = logging.getLogger(__name__)


@dataclass
class CacheEntry:
    value: Any
    captured_at: float


class TTLCache:
    """
    Кэш метрик в памяти процесса: значение живёт `ttl_seconds` с момента записи.

    Без блокировок и фонового обновления: два одновременных промаха оба посчитают
    значение, запишет последний. Часы инъецируются для тестов.
    """

    def __init__(self, ttl_seconds: float = 300.0, clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: Dict[str, CacheEntry] = {}

    def _is_fresh(self, entry: CacheEntry) -> bool:
        return self._clock() - entry.captured_at < self.ttl_seconds

    def get(self, key: str) -> Optional[Any]:
        entry = self._entries.get(key)
        if entry is None or not self._is_fresh(entry):
            return None
        return entry.value

    def set(self, key: str, value: Any) -> None:
        self._entries[key] = CacheEntry(value=value, captured_at=self._clock())

    def invalidate(self, key: Optional[str] = None) -> None:
        """Без ключа очищает всё; с ключом удаляет его и все производные вида "key:..."."""
        if key is None:
            self._entries.clear()
            return
        self._entries.pop(key, None)
        prefix = f"{key}:"
        for stale in [k for k in self._entries if k.startswith(prefix)]:
            del self._entries[stale]

    async def get_or_compute(self, key: str, factory: Callable[[], Awaitable[Any]]) -> Any:
        entry = self._entries.get(key)
        if entry is not None and self._is_fresh(entry):
            return entry.value
        logger.debug(f"Cache miss for '{key}', recomputing")
        value = await factory()
        self.set(key, value)
        return value
