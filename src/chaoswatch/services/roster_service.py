from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Mapping
from datetime import UTC, datetime
from typing import Any

from chaoswatch.adapters.ledger_reader import LedgerReadError
from chaoswatch.domain.abi import ContractCall
from chaoswatch.domain.agents import (
    AgentProfile,
    CosmicEvent,
    get_agent_call,
    get_event_call,
    pending_rewards_call,
)
from chaoswatch.domain.contracts import ContractAddresses
from chaoswatch.domain.models import ReadOk
from chaoswatch.observability import get_instrumentation
from chaoswatch.services.entity_merger import merge_entities
from chaoswatch.services.poll_scheduler import CancellationToken
from chaoswatch.services.snapshot_merger import BatchReader, MergerStatus

logger = logging.getLogger(__name__)


def latest_ids(next_id: int, limit: int) -> list[int]:
    """Ids 1..next_id-1 capped to the newest ``limit``, ascending."""
    last = next_id - 1
    if last < 1 or limit < 1:
        return []
    return list(range(max(1, last - limit + 1), last + 1))


class _CounterBackedRoster:
    def __init__(
        self,
        *,
        reader: BatchReader,
        addresses: ContractAddresses,
        now_provider: Callable[[], datetime] | None = None,
    ) -> None:
        self.reader = reader
        self.addresses = addresses
        self.now_provider = now_provider or (lambda: datetime.now(UTC))
        self.status = MergerStatus()
        self.next_id: int | None = None

    async def _read_next_id(self, call: ContractCall) -> int | None:
        (outcome,) = await self.reader.read_many([call])
        if isinstance(outcome, ReadOk):
            self.next_id = int(outcome.value)
        elif self.next_id is not None:
            logger.warning(
                "roster_counter_stale",
                extra={"extra": {"call": call.signature, "reason": outcome.reason}},
            )
        return self.next_id

    def _fail(self, exc: Exception, event: str) -> None:
        self.status.record_failure(str(exc), self.now_provider())
        logger.warning(
            event,
            extra={
                "extra": {
                    "error_type": type(exc).__name__,
                    "error_message": str(exc),
                    "consecutive_failures": self.status.consecutive_failures,
                }
            },
        )


class AgentRosterService(_CounterBackedRoster):
    """All registered agents, refreshed as whole profiles with stale fallback."""

    def __init__(
        self,
        *,
        reader: BatchReader,
        addresses: ContractAddresses,
        max_agents: int,
        now_provider: Callable[[], datetime] | None = None,
    ) -> None:
        super().__init__(reader=reader, addresses=addresses, now_provider=now_provider)
        self.max_agents = max_agents
        self._agents: dict[int, AgentProfile] = {}

    @property
    def agents(self) -> list[AgentProfile]:
        return list(self._agents.values())

    def get(self, agent_id: int) -> AgentProfile | None:
        return self._agents.get(agent_id)

    async def poll(self, token: CancellationToken | None = None) -> list[AgentProfile]:
        token = token or CancellationToken()
        registry = self.addresses.agent_registry
        if not self.addresses.deployed("agent_registry"):
            return self.agents
        with_pending = self.addresses.deployed("mining_engine")

        try:
            next_id = await self._read_next_id(ContractCall(registry, "nextAgentId()"))
            if not token.alive or next_id is None:
                return self.agents
            ids = latest_ids(next_id, self.max_agents)
            calls: list[ContractCall] = []
            for agent_id in ids:
                calls.append(get_agent_call(registry, agent_id))
                if with_pending:
                    calls.append(pending_rewards_call(self.addresses.mining_engine, agent_id))
            outcomes = await self.reader.read_many(calls)
        except LedgerReadError as exc:
            if token.alive:
                self._fail(exc, "agent_roster_unavailable_keeping_previous")
            return self.agents
        if not token.alive:
            return self.agents

        step = 2 if with_pending else 1
        fresh: dict[int, AgentProfile | None] = {}
        for position, agent_id in enumerate(ids):
            agent_outcome = outcomes[position * step]
            if not isinstance(agent_outcome, ReadOk):
                fresh[agent_id] = None
                continue
            pending = 0
            if with_pending:
                pending_outcome = outcomes[position * step + 1]
                if isinstance(pending_outcome, ReadOk):
                    pending = int(pending_outcome.value)
                elif agent_id in self._agents:
                    # Whole-profile fallback: a half-refreshed agent keeps its old profile.
                    fresh[agent_id] = None
                    continue
            fresh[agent_id] = AgentProfile.from_chain(agent_outcome.value, pending)

        result = merge_entities(ids, fresh, self._agents)
        self._agents = result.entities
        self.status.record_success(self.now_provider())
        if result.stale or result.missing:
            get_instrumentation().counter("agent_profiles_stale", len(result.stale))
            logger.warning(
                "agent_profiles_stale",
                extra={
                    "extra": {
                        "stale_ids": list(result.stale),
                        "missing_ids": list(result.missing),
                        "refreshed": len(result.refreshed),
                    }
                },
            )
        return self.agents

    def export(self) -> list[dict[str, Any]]:
        return [profile.to_dict() for profile in self._agents.values()]

    def restore(self, rows: Iterable[Mapping[str, Any]]) -> int:
        restored: dict[int, AgentProfile] = {}
        for row in rows:
            try:
                profile = AgentProfile.from_dict(row)
            except (KeyError, TypeError, ValueError):
                continue
            restored[profile.agent_id] = profile
        ordered = sorted(restored.values(), key=lambda profile: profile.agent_id)
        self._agents = {profile.agent_id: profile for profile in ordered[-self.max_agents :]}
        return len(self._agents)


class CosmicEventsService(_CounterBackedRoster):
    """Latest cosmic events by id, newest first, with whole-event fallback."""

    def __init__(
        self,
        *,
        reader: BatchReader,
        addresses: ContractAddresses,
        max_events: int,
        now_provider: Callable[[], datetime] | None = None,
    ) -> None:
        super().__init__(reader=reader, addresses=addresses, now_provider=now_provider)
        self.max_events = max_events
        self._events: dict[int, CosmicEvent] = {}

    @property
    def events(self) -> list[CosmicEvent]:
        return list(self._events.values())

    async def poll(self, token: CancellationToken | None = None) -> list[CosmicEvent]:
        token = token or CancellationToken()
        engine = self.addresses.cosmic_engine
        if not self.addresses.deployed("cosmic_engine"):
            return self.events

        try:
            next_id = await self._read_next_id(ContractCall(engine, "nextEventId()"))
            if not token.alive or next_id is None:
                return self.events
            ids = list(reversed(latest_ids(next_id, self.max_events)))
            outcomes = await self.reader.read_many(
                [get_event_call(engine, event_id) for event_id in ids]
            )
        except LedgerReadError as exc:
            if token.alive:
                self._fail(exc, "cosmic_events_unavailable_keeping_previous")
            return self.events
        if not token.alive:
            return self.events

        fresh: dict[int, CosmicEvent | None] = {
            event_id: CosmicEvent.from_chain(outcome.value) if isinstance(outcome, ReadOk) else None
            for event_id, outcome in zip(ids, outcomes, strict=True)
        }
        result = merge_entities(ids, fresh, self._events)
        self._events = result.entities
        self.status.record_success(self.now_provider())
        if result.stale or result.missing:
            logger.warning(
                "cosmic_events_stale",
                extra={
                    "extra": {
                        "stale_ids": list(result.stale),
                        "missing_ids": list(result.missing),
                    }
                },
            )
        return self.events
