import time
from typing import Any, Callable, Iterable, Optional


def fingerprint(league_key: str, region: str, markets: str | Iterable[str]) -> str:
    """Cache key for an odds request. Market order and case don't matter."""
    if isinstance(markets, str):
        markets = markets.split(",")
    canon = sorted({m.strip().lower() for m in markets if m and m.strip()})
    return f"{league_key}|{region}|{','.join(canon)}"


class OddsCache:
    """In-memory TTL cache for normalized odds payloads.

    Expired entries are dropped lazily on lookup; there is no background sweep
    and no size cap (the key space is league x region x market set).
    Not safe for use from several threads without external locking.
    """

    def __init__(self, ttl: float, clock: Callable[[], float] = time.monotonic):
        self.ttl = ttl
        self._clock = clock
        self._data: dict[str, dict[str, Any]] = {}

    def get(self, key: str) -> Optional[Any]:
        entry = self._data.get(key)
        if entry is None:
            return None
        if self._clock() >= entry["exp"]:
            del self._data[key]
            return None
        return entry["data"]

    def put(self, key: str, data: Any, ttl: float | None = None) -> None:
        ttl = self.ttl if ttl is None else ttl
        self._data[key] = {"data": data, "exp": self._clock() + ttl}

    def clear(self) -> None:
        self._data.clear()

    def __len__(self) -> int:
        return len(self._data)
