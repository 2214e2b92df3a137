from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from chaoswatch.adapters.offchain_api import OffchainApiClient, OffchainApiError
from chaoswatch.domain.offchain import (
    Alliance,
    AllianceBoard,
    AllianceEvent,
    AllianceStats,
    DynamicPrice,
    MarketplaceListing,
    MarketplaceSale,
    NegotiationEvent,
    PersonalityData,
    SabotageEvent,
    SocialMessage,
)
from chaoswatch.observability import get_instrumentation
from chaoswatch.services.poll_scheduler import CancellationToken

logger = logging.getLogger(__name__)


@dataclass
class EndpointState:
    value: Any = None
    last_success_at: datetime | None = None
    last_error: str | None = None
    consecutive_failures: int = 0

    @property
    def stale(self) -> bool:
        return self.last_error is not None


@dataclass(frozen=True)
class OffchainCounts:
    social_feed: int = 40
    alliance_events: int = 20
    sabotage_events: int = 20
    negotiations: int = 10
    marketplace_listings: int = 20
    marketplace_sales: int = 10


@dataclass
class OffchainFeedService:
    """Last known-good copy of every off-chain endpoint.

    A failed fetch (network, non-2xx, bad body) leaves the previous value in
    place; it is never replaced by an empty list.
    """

    api: OffchainApiClient
    counts: OffchainCounts = field(default_factory=OffchainCounts)
    now_provider: Callable[[], datetime] = field(default=lambda: datetime.now(UTC))
    endpoints: dict[str, EndpointState] = field(default_factory=dict)

    def _value(self, name: str, default: Any) -> Any:
        state = self.endpoints.get(name)
        return state.value if state is not None and state.value is not None else default

    @property
    def messages(self) -> list[SocialMessage]:
        return self._value("social_feed", [])

    @property
    def alliances(self) -> list[Alliance]:
        board: AllianceBoard | None = self._value("alliances", None)
        return list(board.alliances) if board is not None else []

    @property
    def alliance_stats(self) -> AllianceStats:
        board: AllianceBoard | None = self._value("alliances", None)
        return board.stats if board is not None else AllianceStats()

    @property
    def alliance_events(self) -> list[AllianceEvent]:
        return self._value("alliance_events", [])

    @property
    def personalities(self) -> list[PersonalityData]:
        return self._value("personalities", [])

    @property
    def sabotage_events(self) -> list[SabotageEvent]:
        return self._value("sabotage_events", [])

    @property
    def negotiations(self) -> list[NegotiationEvent]:
        return self._value("negotiations", [])

    @property
    def listings(self) -> list[MarketplaceListing]:
        return self._value("marketplace_listings", [])

    @property
    def sales(self) -> list[MarketplaceSale]:
        return self._value("marketplace_sales", [])

    @property
    def prices(self) -> list[DynamicPrice]:
        return self._value("marketplace_prices", [])

    def stats(self, area: str) -> dict[str, Any] | None:
        return self._value(f"{area}_stats", None)

    async def poll_social(self, token: CancellationToken | None = None) -> None:
        await self._refresh_all(
            token,
            social_feed=lambda: self.api.social_feed(self.counts.social_feed),
        )

    async def poll_alliances(self, token: CancellationToken | None = None) -> None:
        await self._refresh_all(
            token,
            alliances=self.api.alliances,
            alliance_events=lambda: self.api.alliance_events(self.counts.alliance_events),
            personalities=self.api.personalities,
            social_stats=lambda: self.api.stats("social"),
        )

    async def poll_sabotage(self, token: CancellationToken | None = None) -> None:
        await self._refresh_all(
            token,
            sabotage_events=lambda: self.api.sabotage_events(self.counts.sabotage_events),
            negotiations=lambda: self.api.negotiations(self.counts.negotiations),
            sabotage_stats=lambda: self.api.stats("sabotage"),
        )

    async def poll_marketplace(self, token: CancellationToken | None = None) -> None:
        await self._refresh_all(
            token,
            marketplace_listings=lambda: self.api.marketplace_listings(
                self.counts.marketplace_listings
            ),
            marketplace_sales=lambda: self.api.marketplace_sales(self.counts.marketplace_sales),
            marketplace_prices=self.api.marketplace_prices,
            marketplace_stats=lambda: self.api.stats("marketplace"),
        )

    async def _refresh_all(
        self,
        token: CancellationToken | None,
        **fetchers: Callable[[], Awaitable[Any]],
    ) -> None:
        token = token or CancellationToken()
        await asyncio.gather(
            *(self._refresh(name, fetch, token) for name, fetch in fetchers.items())
        )

    async def _refresh(
        self,
        name: str,
        fetch: Callable[[], Awaitable[Any]],
        token: CancellationToken,
    ) -> None:
        state = self.endpoints.setdefault(name, EndpointState())
        try:
            value = await fetch()
        except OffchainApiError as exc:
            if not token.alive:
                return
            state.last_error = str(exc)
            state.consecutive_failures += 1
            get_instrumentation().counter("offchain_endpoint_stale", attrs={"endpoint": name})
            logger.warning(
                "offchain_endpoint_degraded_serving_stale",
                extra={
                    "extra": {
                        "endpoint": name,
                        "status_code": exc.status_code,
                        "error_message": str(exc),
                        "consecutive_failures": state.consecutive_failures,
                        "has_previous": state.value is not None,
                    }
                },
            )
            return
        if not token.alive:
            return
        state.value = value
        state.last_success_at = self.now_provider()
        state.last_error = None
        state.consecutive_failures = 0
