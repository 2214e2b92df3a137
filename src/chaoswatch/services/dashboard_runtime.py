from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any

import httpx

from chaoswatch.adapters.instrumentation import MetricsSink
from chaoswatch.adapters.ledger_reader import LedgerReader, LedgerReadError
from chaoswatch.adapters.offchain_api import OffchainApiClient, OffchainApiError
from chaoswatch.adapters.rate_limit import AsyncTokenBucket
from chaoswatch.adapters.retry import BackoffPolicy
from chaoswatch.adapters.rpc_client import JsonRpcClient, RpcReliabilityConfig
from chaoswatch.config import Settings
from chaoswatch.domain.agents import AgentDetails
from chaoswatch.domain.models import RawEventRecord, UnifiedFeedItem
from chaoswatch.persistence.collection_store import CollectionStore
from chaoswatch.security import redact_url
from chaoswatch.services.activity_service import (
    ActivityFeedService,
    record_from_dict,
    record_to_dict,
)
from chaoswatch.services.agent_details_service import AgentDetailsService
from chaoswatch.services.dedup_store import DeduplicationStore
from chaoswatch.services.offchain_service import OffchainCounts, OffchainFeedService
from chaoswatch.services.poll_scheduler import CancellationToken, PollJob, PollScheduler
from chaoswatch.services.roster_service import AgentRosterService, CosmicEventsService
from chaoswatch.services.snapshot_merger import SnapshotMerger
from chaoswatch.services.timeline import (
    FeedFilter,
    activity_source,
    alliance_source,
    combat_source,
    cosmic_source,
    merge,
    negotiation_source,
    social_source,
)

logger = logging.getLogger(__name__)

ACTIVITY_COLLECTION = "activity_feed"
CURSOR_COLLECTION = "scan_cursors"
AGENT_COLLECTION = "agent_profiles"


def _now_ms() -> int:
    return int(time.time() * 1000)


class DashboardRuntime:
    """Owns every adapter and service for one process and exposes read views."""

    def __init__(
        self,
        settings: Settings,
        *,
        rpc: JsonRpcClient,
        api: OffchainApiClient,
        store: CollectionStore | None = None,
        now_ms_provider: Callable[[], int] | None = None,
    ) -> None:
        self.settings = settings
        self.rpc = rpc
        self.api = api
        self.store = store or CollectionStore(settings.state_db_path)
        self.now_ms_provider = now_ms_provider or _now_ms
        addresses = settings.contract_addresses()
        self.addresses = addresses
        self.reader = LedgerReader(
            rpc=rpc, batch_size=settings.rpc_batch_size, batching=settings.rpc_batching
        )
        self.dedup = DeduplicationStore(
            settings.dedup_max_ids, retention=settings.activity_max_items
        )
        self.activity = ActivityFeedService(
            source=self.reader,
            addresses=addresses,
            dedup=self.dedup,
            lookback_blocks=settings.lookback_blocks,
            max_items=settings.activity_max_items,
        )
        self.snapshot = SnapshotMerger(reader=self.reader, addresses=addresses)
        self.roster = AgentRosterService(
            reader=self.reader, addresses=addresses, max_agents=settings.max_agents
        )
        self.cosmic = CosmicEventsService(
            reader=self.reader, addresses=addresses, max_events=settings.max_cosmic_events
        )
        self.details = AgentDetailsService(
            reader=self.reader,
            addresses=addresses,
            rig_batch_size=settings.agent_rig_batch_size,
            rig_batch_delay_seconds=settings.agent_rig_batch_delay_seconds,
        )
        self.offchain = OffchainFeedService(
            api=api,
            counts=OffchainCounts(
                social_feed=settings.social_feed_count,
                alliance_events=settings.alliance_events_count,
                sabotage_events=settings.sabotage_events_count,
                negotiations=settings.negotiations_count,
                marketplace_listings=settings.marketplace_listings_count,
                marketplace_sales=settings.marketplace_sales_count,
            ),
        )
        self.scheduler: PollScheduler | None = None
        self.last_flush: dict[str, bool] = {}

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        *,
        metrics: MetricsSink | None = None,
        rpc_http: httpx.AsyncClient | None = None,
        api_http: httpx.AsyncClient | None = None,
        now_ms_provider: Callable[[], int] | None = None,
    ) -> DashboardRuntime:
        metrics = metrics or MetricsSink()
        addresses = settings.contract_addresses()
        rpc = JsonRpcClient(
            url=settings.rpc_url,
            limiter=AsyncTokenBucket(
                rate_per_sec=settings.rpc_rate_per_sec, burst=settings.rpc_burst
            ),
            metrics=metrics,
            reliability=RpcReliabilityConfig(
                connect_timeout_seconds=min(5.0, settings.rpc_timeout_seconds),
                read_timeout_seconds=settings.rpc_timeout_seconds,
                backoff=BackoffPolicy(max_attempts=settings.rpc_max_attempts),
            ),
            client=rpc_http,
        )
        api = OffchainApiClient(
            base_url=settings.api_url,
            metrics=metrics,
            timeout_seconds=settings.api_timeout_seconds,
            client=api_http,
        )
        logger.info(
            "dashboard_runtime_configured",
            extra={
                "extra": {
                    "rpc_url": redact_url(settings.rpc_url),
                    "api_url": settings.api_url,
                    "state_db_path": settings.state_db_path,
                    "undeployed_contracts": [
                        name for name in addresses.as_dict() if not addresses.deployed(name)
                    ],
                }
            },
        )
        return cls(settings, rpc=rpc, api=api, now_ms_provider=now_ms_provider)

    def restore(self) -> dict[str, int]:
        """Reload persisted collections; missing or corrupt ones start empty.

        The dedup store is rebuilt from the restored history ids only.
        """
        records: list[RawEventRecord] = []
        for row in self.store.load(ACTIVITY_COLLECTION):
            if not isinstance(row, dict):
                continue
            try:
                records.append(record_from_dict(row))
            except (KeyError, TypeError, ValueError):
                continue
        cursors = [row for row in self.store.load(CURSOR_COLLECTION) if isinstance(row, dict)]
        restored = {
            ACTIVITY_COLLECTION: self.activity.restore(records, cursors),
            CURSOR_COLLECTION: len(self.activity.persisted_cursors),
            AGENT_COLLECTION: self.roster.restore(
                row for row in self.store.load(AGENT_COLLECTION) if isinstance(row, dict)
            ),
        }
        logger.info(
            "dashboard_state_restored",
            extra={"extra": {**restored, "dedup_ids": len(self.dedup)}},
        )
        return restored

    def _cursor_rows(self) -> list[dict[str, Any]]:
        return [
            {
                "source_id": cursor.source_id,
                "last_scanned_block": cursor.last_scanned_block,
                "phase": cursor.phase.value,
            }
            for cursor in self.activity.cursors()
        ]

    def flush(self) -> dict[str, bool]:
        results = {
            ACTIVITY_COLLECTION: self.store.save(
                ACTIVITY_COLLECTION,
                [record_to_dict(record) for record in self.activity.history],
                max_items=self.settings.activity_max_items,
            ),
            CURSOR_COLLECTION: self.store.save(CURSOR_COLLECTION, self._cursor_rows()),
            AGENT_COLLECTION: self.store.save(
                AGENT_COLLECTION, self.roster.export(), max_items=self.settings.max_agents
            ),
        }
        self.last_flush = results
        failed = sorted(name for name, ok in results.items() if not ok)
        if failed:
            logger.warning("dashboard_flush_incomplete", extra={"extra": {"failed": failed}})
        return results

    async def _flush_cycle(self, token: CancellationToken) -> None:
        if token.alive:
            self.flush()

    def poll_jobs(self, *, include_flush: bool = True) -> list[PollJob]:
        s = self.settings
        jobs = [
            PollJob("chain", s.chain_poll_seconds, self.snapshot.poll),
            PollJob("agents", s.agents_poll_seconds, self.roster.poll),
            PollJob("cosmic", s.cosmic_poll_seconds, self.cosmic.poll),
            PollJob("activity", s.activity_poll_seconds, self.activity.poll),
            PollJob("social", s.social_poll_seconds, self.offchain.poll_social),
            PollJob("alliances", s.alliances_poll_seconds, self.offchain.poll_alliances),
            PollJob("sabotage", s.sabotage_poll_seconds, self.offchain.poll_sabotage),
            PollJob("marketplace", s.marketplace_poll_seconds, self.offchain.poll_marketplace),
        ]
        if include_flush:
            jobs.append(
                PollJob(
                    "flush", s.flush_interval_seconds, self._flush_cycle, run_immediately=False
                )
            )
        return jobs

    def build_scheduler(self, *, run_id: str | None = None) -> PollScheduler:
        self.scheduler = PollScheduler(self.poll_jobs(), run_id=run_id)
        return self.scheduler

    async def refresh_all(self) -> dict[str, bool]:
        """Run every poll job once, concurrently."""
        return await PollScheduler(self.poll_jobs(include_flush=False)).run_all_once()

    async def run(self, *, max_seconds: float | None = None) -> None:
        self.restore()
        scheduler = self.build_scheduler()
        scheduler.start()
        try:
            if max_seconds is None:
                await asyncio.Event().wait()
            else:
                await asyncio.sleep(max_seconds)
        finally:
            await scheduler.stop()
            self.flush()

    def timeline(
        self,
        feed_filter: FeedFilter | None = None,
        *,
        max_items: int | None = None,
    ) -> list[UnifiedFeedItem]:
        head = self.activity.head
        sources = [
            activity_source(self.activity.history),
            cosmic_source(self.cosmic.events, head),
            social_source(self.offchain.messages),
            alliance_source(self.offchain.alliance_events),
            combat_source(self.offchain.sabotage_events),
            negotiation_source(self.offchain.negotiations),
        ]
        return merge(
            sources,
            feed_filter,
            now_ms=self.now_ms_provider(),
            current_head=head,
            avg_block_seconds=self.settings.avg_block_seconds,
            max_items=self.settings.feed_max_items if max_items is None else max_items,
        )

    async def agent_details(self, agent_id: int) -> AgentDetails | None:
        return await self.details.fetch(agent_id)

    def status(self) -> dict[str, Any]:
        snapshot = self.snapshot.snapshot
        return {
            "head": self.activity.head,
            "snapshot": {
                **self.snapshot.status.as_dict(),
                "stale_fields": sorted(snapshot.stale_fields) if snapshot else [],
            },
            "agents": {**self.roster.status.as_dict(), "count": len(self.roster.agents)},
            "cosmic": {**self.cosmic.status.as_dict(), "count": len(self.cosmic.events)},
            "activity": {
                "records": len(self.activity.history),
                "last_error": self.activity.last_error,
                "cursors": self._cursor_rows(),
                "persisted_cursors": dict(self.activity.persisted_cursors),
            },
            "dedup": {"size": len(self.dedup), "evicted": self.dedup.evicted},
            "offchain": {
                name: {
                    "stale": state.stale,
                    "last_error": state.last_error,
                    "last_success_at": (
                        state.last_success_at.isoformat() if state.last_success_at else None
                    ),
                }
                for name, state in sorted(self.offchain.endpoints.items())
            },
            "jobs": (
                {
                    name: {
                        "started": stats.started,
                        "succeeded": stats.succeeded,
                        "failed": stats.failed,
                        "skipped_in_flight": stats.skipped_in_flight,
                        "last_error": stats.last_error,
                    }
                    for name, stats in self.scheduler.stats.items()
                }
                if self.scheduler is not None
                else {}
            ),
            "last_flush": dict(self.last_flush),
            "checked_at": datetime.now(UTC).isoformat(),
        }

    async def health(self) -> dict[str, Any]:
        checks: dict[str, Any] = {}
        try:
            checks["rpc"] = {"ok": True, "head": await self.reader.block_number()}
        except LedgerReadError as exc:
            checks["rpc"] = {"ok": False, "error": str(exc)}
        try:
            await self.api.stats("social")
            checks["api"] = {"ok": True}
        except OffchainApiError as exc:
            checks["api"] = {"ok": False, "error": str(exc)}
        checks["state_db"] = {"ok": self.store.save("health_check", [])}
        checks["ok"] = all(check["ok"] for check in checks.values())
        return checks

    async def close(self) -> None:
        await self.rpc.close()
        await self.api.close()
