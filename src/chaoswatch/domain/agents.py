from __future__ import annotations

from collections.abc import Mapping
from dataclasses import asdict, dataclass, field
from typing import Any

from chaoswatch.domain.abi import ContractCall
from chaoswatch.domain.catalog import cosmic_event_name, zone_name, zones_in_mask

AGENT_TUPLE = (
    "(uint256,bytes32,address,uint256,uint8,uint256,uint8,"
    "uint256,uint256,uint8,uint256,uint256,bool)"
)
COSMIC_EVENT_TUPLE = "(uint256,uint8,uint8,uint256,uint8,uint8,uint256,address,bool)"
RIG_TUPLE = "(uint8,uint256,uint16,uint256,uint256,uint256,bool)"
FACILITY_TUPLE = "(uint8,uint8,uint32,uint8,uint256,uint256)"
SHIELD_TUPLE = "(uint8,uint8,uint8,bool)"


def get_agent_call(registry: str, agent_id: int) -> ContractCall:
    return ContractCall(registry, "getAgent(uint256)", (agent_id,), (AGENT_TUPLE,))


def pending_rewards_call(mining_engine: str, agent_id: int) -> ContractCall:
    return ContractCall(mining_engine, "getPendingRewards(uint256)", (agent_id,))


def get_event_call(cosmic_engine: str, event_id: int) -> ContractCall:
    return ContractCall(cosmic_engine, "getEvent(uint256)", (event_id,), (COSMIC_EVENT_TUPLE,))


def balance_of_call(token: str, owner: str) -> ContractCall:
    return ContractCall(token, "balanceOf(address)", (owner,))


def agent_rigs_call(rig_factory: str, agent_id: int) -> ContractCall:
    return ContractCall(rig_factory, "getAgentRigs(uint256)", (agent_id,), ("uint256[]",))


def get_rig_call(rig_factory: str, rig_id: int) -> ContractCall:
    return ContractCall(rig_factory, "getRig(uint256)", (rig_id,), (RIG_TUPLE,))


def get_facility_call(facility_manager: str, agent_id: int) -> ContractCall:
    return ContractCall(facility_manager, "getFacility(uint256)", (agent_id,), (FACILITY_TUPLE,))


def get_shield_call(shield_manager: str, agent_id: int) -> ContractCall:
    return ContractCall(shield_manager, "getShield(uint256)", (agent_id,), (SHIELD_TUPLE,))


@dataclass(frozen=True)
class AgentProfile:
    agent_id: int
    operator: str
    moltbook_id_hash: str
    hashrate: int
    zone: int
    cosmic_resilience: int
    shield_level: int
    last_heartbeat: int
    registration_block: int
    pioneer_phase: int
    reward_debt: int
    total_mined: int
    pending_rewards: int
    active: bool

    @classmethod
    def from_chain(cls, raw: tuple[Any, ...], pending_rewards: int = 0) -> AgentProfile:
        (
            agent_id,
            moltbook_id_hash,
            operator,
            hashrate,
            zone,
            resilience,
            shield_level,
            last_heartbeat,
            registration_block,
            pioneer_phase,
            reward_debt,
            total_mined,
            active,
        ) = raw
        return cls(
            agent_id=int(agent_id),
            operator=str(operator).lower(),
            moltbook_id_hash=str(moltbook_id_hash),
            hashrate=int(hashrate),
            zone=int(zone),
            cosmic_resilience=int(resilience),
            shield_level=int(shield_level),
            last_heartbeat=int(last_heartbeat),
            registration_block=int(registration_block),
            pioneer_phase=int(pioneer_phase),
            reward_debt=int(reward_debt),
            # Displayed total includes rewards not yet claimed.
            total_mined=int(total_mined) + int(pending_rewards),
            pending_rewards=int(pending_rewards),
            active=bool(active),
        )

    @property
    def zone_name(self) -> str:
        return zone_name(self.zone)

    def to_dict(self) -> dict[str, Any]:
        return {**asdict(self), "zone_name": self.zone_name}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> AgentProfile:
        return cls(**{key: data[key] for key in cls.__dataclass_fields__})


@dataclass(frozen=True)
class CosmicEvent:
    event_id: int
    event_type: int
    severity_tier: int
    base_damage: int
    origin_zone: int
    affected_zones_mask: int
    trigger_block: int
    triggered_by: str
    processed: bool

    @classmethod
    def from_chain(cls, raw: tuple[Any, ...]) -> CosmicEvent:
        (
            event_id,
            event_type,
            severity_tier,
            base_damage,
            origin_zone,
            affected_mask,
            trigger_block,
            triggered_by,
            processed,
        ) = raw
        return cls(
            event_id=int(event_id),
            event_type=int(event_type),
            severity_tier=int(severity_tier),
            base_damage=int(base_damage),
            origin_zone=int(origin_zone),
            affected_zones_mask=int(affected_mask),
            trigger_block=int(trigger_block),
            triggered_by=str(triggered_by).lower(),
            processed=bool(processed),
        )

    @property
    def name(self) -> str:
        return cosmic_event_name(self.event_type)

    @property
    def affected_zones(self) -> tuple[int, ...]:
        return zones_in_mask(self.affected_zones_mask)

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["name"] = self.name
        data["origin_zone_name"] = zone_name(self.origin_zone)
        data["affected_zones"] = list(self.affected_zones)
        return data


@dataclass(frozen=True)
class RigInfo:
    rig_id: int
    tier: int
    base_hashrate: int
    power_draw: int
    durability: int
    max_durability: int
    owner_agent_id: int
    active: bool

    @classmethod
    def from_chain(cls, rig_id: int, raw: tuple[Any, ...]) -> RigInfo:
        tier, base_hashrate, power_draw, durability, max_durability, owner, active = raw
        return cls(
            rig_id=rig_id,
            tier=int(tier),
            base_hashrate=int(base_hashrate),
            power_draw=int(power_draw),
            durability=int(durability),
            max_durability=int(max_durability),
            owner_agent_id=int(owner),
            active=bool(active),
        )


@dataclass(frozen=True)
class FacilityInfo:
    level: int = 1
    slots: int = 2
    power_output: int = 500
    shelter_rating: int = 5
    condition: int = 0
    max_condition: int = 0

    @classmethod
    def from_chain(cls, raw: tuple[Any, ...]) -> FacilityInfo:
        return cls(*(int(value) for value in raw))


@dataclass(frozen=True)
class ShieldInfo:
    tier: int = 0
    absorption: int = 0
    charges: int = 0
    active: bool = False

    @classmethod
    def from_chain(cls, raw: tuple[Any, ...]) -> ShieldInfo:
        tier, absorption, charges, active = raw
        return cls(int(tier), int(absorption), int(charges), bool(active))


@dataclass(frozen=True)
class AgentDetails:
    profile: AgentProfile
    wallet_balance: int = 0
    rigs: tuple[RigInfo, ...] = ()
    facility: FacilityInfo = field(default_factory=FacilityInfo)
    shield: ShieldInfo = field(default_factory=ShieldInfo)
    stale_parts: frozenset[str] = frozenset()

    @property
    def effective_hashrate(self) -> int:
        return sum(rig.base_hashrate for rig in self.rigs if rig.active)

    def to_dict(self) -> dict[str, Any]:
        return {
            "profile": self.profile.to_dict(),
            "wallet_balance": self.wallet_balance,
            "effective_hashrate": self.effective_hashrate,
            "rigs": [asdict(rig) for rig in self.rigs],
            "facility": asdict(self.facility),
            "shield": asdict(self.shield),
            "stale_parts": sorted(self.stale_parts),
        }
