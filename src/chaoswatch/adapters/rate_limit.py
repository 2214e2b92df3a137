from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from time import monotonic


@dataclass
class AsyncTokenBucket:
    """Async token bucket; one token per HTTP round trip (a JSON-RPC batch is one)."""

    rate_per_sec: float
    burst: int
    _available: float = field(init=False)
    _last_refill: float = field(init=False)
    _lock: asyncio.Lock = field(default_factory=asyncio.Lock, init=False)

    def __post_init__(self) -> None:
        if self.rate_per_sec <= 0:
            raise ValueError("rate_per_sec must be > 0")
        if self.burst < 1:
            raise ValueError("burst must be >= 1")
        self._available = float(self.burst)
        self._last_refill = monotonic()

    @property
    def available(self) -> float:
        return self._available

    def _refill(self) -> None:
        now = monotonic()
        elapsed = max(0.0, now - self._last_refill)
        self._available = min(float(self.burst), self._available + elapsed * self.rate_per_sec)
        self._last_refill = now

    async def acquire(self, tokens: float = 1.0) -> None:
        if tokens <= 0:
            return
        tokens = min(tokens, float(self.burst))
        while True:
            async with self._lock:
                self._refill()
                if self._available >= tokens:
                    self._available -= tokens
                    return
                shortfall = tokens - self._available
            await asyncio.sleep(shortfall / self.rate_per_sec)
