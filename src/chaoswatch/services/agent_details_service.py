from __future__ import annotations

import asyncio
import logging

from chaoswatch.adapters.ledger_reader import LedgerReadError
from chaoswatch.domain.agents import (
    AgentDetails,
    AgentProfile,
    FacilityInfo,
    RigInfo,
    ShieldInfo,
    agent_rigs_call,
    balance_of_call,
    get_agent_call,
    get_facility_call,
    get_rig_call,
    get_shield_call,
    pending_rewards_call,
)
from chaoswatch.domain.contracts import ContractAddresses
from chaoswatch.domain.models import ReadOk, ReadOutcome
from chaoswatch.services.poll_scheduler import CancellationToken
from chaoswatch.services.snapshot_merger import BatchReader

logger = logging.getLogger(__name__)


class AgentDetailsService:
    """Per-agent drill-down (wallet, rigs, facility, shield) with per-part fallback."""

    def __init__(
        self,
        *,
        reader: BatchReader,
        addresses: ContractAddresses,
        rig_batch_size: int = 3,
        rig_batch_delay_seconds: float = 0.25,
    ) -> None:
        self.reader = reader
        self.addresses = addresses
        self.rig_batch_size = max(1, rig_batch_size)
        self.rig_batch_delay_seconds = max(0.0, rig_batch_delay_seconds)
        self._cache: dict[int, AgentDetails] = {}

    def cached(self, agent_id: int) -> AgentDetails | None:
        return self._cache.get(agent_id)

    async def fetch(
        self, agent_id: int, token: CancellationToken | None = None
    ) -> AgentDetails | None:
        token = token or CancellationToken()
        previous = self._cache.get(agent_id)
        try:
            details = await self._fetch(agent_id, previous, token)
        except LedgerReadError as exc:
            logger.warning(
                "agent_details_unavailable",
                extra={
                    "extra": {
                        "agent_id": agent_id,
                        "error_type": type(exc).__name__,
                        "has_previous": previous is not None,
                    }
                },
            )
            return previous
        if details is not None and token.alive:
            self._cache[agent_id] = details
        return details if details is not None else previous

    async def _fetch(
        self, agent_id: int, previous: AgentDetails | None, token: CancellationToken
    ) -> AgentDetails | None:
        a = self.addresses
        calls = [get_agent_call(a.agent_registry, agent_id)]
        if a.deployed("mining_engine"):
            calls.append(pending_rewards_call(a.mining_engine, agent_id))
        head = await self.reader.read_many(calls)
        if not token.alive:
            return None

        stale: set[str] = set()
        profile = self._resolve_profile(head, previous, stale)
        if profile is None:
            return None

        parts: dict[str, int] = {}
        part_calls = []
        if a.deployed("chaos_token"):
            parts["wallet"] = len(part_calls)
            part_calls.append(balance_of_call(a.chaos_token, profile.operator))
        if a.deployed("rig_factory"):
            parts["rigs"] = len(part_calls)
            part_calls.append(agent_rigs_call(a.rig_factory, agent_id))
        if a.deployed("facility_manager"):
            parts["facility"] = len(part_calls)
            part_calls.append(get_facility_call(a.facility_manager, agent_id))
        if a.deployed("shield_manager"):
            parts["shield"] = len(part_calls)
            part_calls.append(get_shield_call(a.shield_manager, agent_id))
        outcomes = await self.reader.read_many(part_calls) if part_calls else []
        if not token.alive:
            return None

        def part(name: str) -> ReadOutcome | None:
            index = parts.get(name)
            return outcomes[index] if index is not None else None

        wallet_balance = previous.wallet_balance if previous else 0
        wallet = part("wallet")
        if isinstance(wallet, ReadOk):
            wallet_balance = int(wallet.value)
        elif wallet is not None:
            stale.add("wallet")

        facility = previous.facility if previous else FacilityInfo()
        facility_outcome = part("facility")
        if isinstance(facility_outcome, ReadOk):
            facility = FacilityInfo.from_chain(facility_outcome.value)
        elif facility_outcome is not None:
            stale.add("facility")

        shield = previous.shield if previous else ShieldInfo()
        shield_outcome = part("shield")
        if isinstance(shield_outcome, ReadOk):
            shield = ShieldInfo.from_chain(shield_outcome.value)
        elif shield_outcome is not None:
            stale.add("shield")

        rigs = previous.rigs if previous else ()
        rig_ids = part("rigs")
        if isinstance(rig_ids, ReadOk):
            rigs = await self._fetch_rigs(tuple(int(r) for r in rig_ids.value), previous, stale)
        elif rig_ids is not None:
            stale.add("rigs")

        return AgentDetails(
            profile=profile,
            wallet_balance=wallet_balance,
            rigs=rigs,
            facility=facility,
            shield=shield,
            stale_parts=frozenset(stale),
        )

    @staticmethod
    def _resolve_profile(
        outcomes: list[ReadOutcome], previous: AgentDetails | None, stale: set[str]
    ) -> AgentProfile | None:
        agent = outcomes[0]
        if not isinstance(agent, ReadOk):
            stale.add("profile")
            return previous.profile if previous else None
        pending = 0
        if len(outcomes) > 1:
            pending_outcome = outcomes[1]
            if isinstance(pending_outcome, ReadOk):
                pending = int(pending_outcome.value)
            elif previous is not None:
                stale.add("profile")
                return previous.profile
            else:
                stale.add("pending_rewards")
        return AgentProfile.from_chain(agent.value, pending)

    async def _fetch_rigs(
        self, rig_ids: tuple[int, ...], previous: AgentDetails | None, stale: set[str]
    ) -> tuple[RigInfo, ...]:
        known = {rig.rig_id: rig for rig in previous.rigs} if previous else {}
        rigs: list[RigInfo] = []
        for start in range(0, len(rig_ids), self.rig_batch_size):
            if start:
                await asyncio.sleep(self.rig_batch_delay_seconds)
            batch = rig_ids[start : start + self.rig_batch_size]
            try:
                outcomes = await self.reader.read_many(
                    [get_rig_call(self.addresses.rig_factory, rig_id) for rig_id in batch]
                )
            except LedgerReadError:
                outcomes = []
            for position, rig_id in enumerate(batch):
                outcome = outcomes[position] if position < len(outcomes) else None
                if isinstance(outcome, ReadOk):
                    rigs.append(RigInfo.from_chain(rig_id, outcome.value))
                    continue
                stale.add("rigs")
                if rig_id in known:
                    rigs.append(known[rig_id])
        return tuple(rigs)
