from __future__ import annotations

import logging
from time import monotonic
from typing import Any, TypeVar

import httpx
from pydantic import ValidationError

from chaoswatch.adapters.instrumentation import MetricsSink
from chaoswatch.domain.offchain import (
    Alliance,
    AllianceBoard,
    AllianceEvent,
    AllianceStats,
    DynamicPrice,
    MarketplaceListing,
    MarketplaceSale,
    NegotiationEvent,
    OffchainRecord,
    PersonalityData,
    SabotageEvent,
    SocialMessage,
)

logger = logging.getLogger(__name__)

RecordT = TypeVar("RecordT", bound=OffchainRecord)


class OffchainApiError(RuntimeError):
    def __init__(self, message: str, *, path: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.path = path
        self.status_code = status_code


class OffchainApiClient:
    """Read-only client for the game's off-chain social/sabotage/marketplace API."""

    def __init__(
        self,
        *,
        base_url: str,
        metrics: MetricsSink | None = None,
        timeout_seconds: float = 8.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.metrics = metrics or MetricsSink()
        self._client = client or httpx.AsyncClient(
            base_url=base_url, timeout=httpx.Timeout(timeout_seconds)
        )

    async def close(self) -> None:
        await self._client.aclose()

    async def fetch_json(self, path: str, *, count: int | None = None) -> dict[str, Any]:
        params = {"count": count} if count is not None else None
        started = monotonic()
        try:
            response = await self._client.get(path, params=params)
        except httpx.HTTPError as exc:
            self.metrics.inc("api_errors", attrs={"path": path})
            raise OffchainApiError(f"{path}: {type(exc).__name__}: {exc}", path=path) from exc
        self.metrics.observe_ms("api_latency", (monotonic() - started) * 1000, attrs={"path": path})

        if not response.is_success:
            self.metrics.inc("api_errors", attrs={"path": path})
            raise OffchainApiError(
                f"{path}: HTTP {response.status_code}",
                path=path,
                status_code=response.status_code,
            )
        try:
            payload = response.json()
        except ValueError as exc:
            raise OffchainApiError(f"{path}: body is not JSON", path=path) from exc
        if not isinstance(payload, dict):
            raise OffchainApiError(f"{path}: expected a JSON object", path=path)
        return payload

    async def fetch_array(
        self, path: str, field_name: str, *, count: int | None = None
    ) -> list[Any]:
        payload = await self.fetch_json(path, count=count)
        return _array_field(payload, path, field_name)

    async def _fetch_records(
        self,
        model: type[RecordT],
        path: str,
        field_name: str,
        *,
        count: int | None = None,
    ) -> list[RecordT]:
        return _validate_items(model, path, await self.fetch_array(path, field_name, count=count))

    async def social_feed(self, count: int) -> list[SocialMessage]:
        return await self._fetch_records(SocialMessage, "/api/social/feed", "messages", count=count)

    async def alliances(self) -> AllianceBoard:
        path = "/api/social/alliances"
        payload = await self.fetch_json(path)
        alliances = _validate_items(Alliance, path, _array_field(payload, path, "alliances"))
        stats = AllianceStats()
        if payload.get("stats") is not None:
            try:
                stats = AllianceStats.model_validate(payload["stats"])
            except ValidationError:
                logger.warning("offchain_alliance_stats_invalid", extra={"extra": {"path": path}})
        return AllianceBoard(alliances=tuple(alliances), stats=stats)

    async def alliance_events(self, count: int) -> list[AllianceEvent]:
        return await self._fetch_records(
            AllianceEvent, "/api/social/alliance-events", "events", count=count
        )

    async def personalities(self) -> list[PersonalityData]:
        return await self._fetch_records(
            PersonalityData, "/api/social/personalities", "personalities"
        )

    async def sabotage_events(self, count: int) -> list[SabotageEvent]:
        return await self._fetch_records(
            SabotageEvent, "/api/sabotage/events", "events", count=count
        )

    async def negotiations(self, count: int) -> list[NegotiationEvent]:
        return await self._fetch_records(
            NegotiationEvent, "/api/sabotage/negotiations", "negotiations", count=count
        )

    async def marketplace_listings(self, count: int) -> list[MarketplaceListing]:
        return await self._fetch_records(
            MarketplaceListing, "/api/marketplace/listings", "listings", count=count
        )

    async def marketplace_sales(self, count: int) -> list[MarketplaceSale]:
        return await self._fetch_records(
            MarketplaceSale, "/api/marketplace/sales", "sales", count=count
        )

    async def marketplace_prices(self) -> list[DynamicPrice]:
        return await self._fetch_records(DynamicPrice, "/api/marketplace/prices", "prices")

    async def stats(self, area: str) -> dict[str, Any]:
        if area not in {"social", "sabotage", "marketplace"}:
            raise ValueError(f"unknown stats area: {area}")
        return await self.fetch_json(f"/api/{area}/stats")


def _array_field(payload: dict[str, Any], path: str, field_name: str) -> list[Any]:
    items = payload.get(field_name)
    if not isinstance(items, list):
        raise OffchainApiError(f"{path}: field {field_name!r} is not an array", path=path)
    return items


def _validate_items(model: type[RecordT], path: str, items: list[Any]) -> list[RecordT]:
    records: list[RecordT] = []
    skipped = 0
    for item in items:
        if not isinstance(item, dict):
            skipped += 1
            continue
        try:
            records.append(model.model_validate(item))
        except ValidationError:
            skipped += 1
    if skipped:
        logger.warning(
            "offchain_records_skipped",
            extra={"extra": {"path": path, "model": model.__name__, "skipped": skipped}},
        )
    return records
