from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class OffchainRecord(BaseModel):
    """Base for records served by the off-chain game API (camelCase JSON)."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
        frozen=True,
    )

    def to_payload(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


class SocialMessage(OffchainRecord):
    id: str
    agent_id: int
    agent_title: str = ""
    agent_emoji: str = ""
    archetype: str = ""
    type: str
    text: str
    mood: str = ""
    zone: int = 0
    timestamp: int
    mentions_agent: int | None = None
    event_related: bool | None = None
    reply_to: str | None = None


class Alliance(OffchainRecord):
    id: str
    members: tuple[int, int]
    name: str
    strength: float = 0
    formed_at_cycle: int = 0
    zone: int = 0
    active: bool = True
    end_reason: str | None = None
    betrayed_by: int | None = None


class AllianceStats(OffchainRecord):
    active_count: int = 0
    betrayal_count: int = 0
    average_strength: float = 0


class AllianceBoard(OffchainRecord):
    """One `/api/social/alliances` response: the alliance list and its summary."""

    alliances: tuple[Alliance, ...] = ()
    stats: AllianceStats = Field(default_factory=AllianceStats)


class AllianceEvent(OffchainRecord):
    type: str
    alliance_id: str
    agent_ids: list[int] = Field(default_factory=list)
    details: str = ""
    timestamp: int

    @property
    def item_id(self) -> str:
        return f"{self.alliance_id}-{self.type}-{self.timestamp}"


class PersonalityData(OffchainRecord):
    agent_id: int
    archetype: str
    emoji: str = ""
    title: str = ""
    catchphrase: str = ""
    traits: dict[str, float] = Field(default_factory=dict)
    mood: str = ""
    grudge_count: int = 0
    alliance_count: int = 0


class SabotageEvent(OffchainRecord):
    id: str
    type: Literal["facility_raid", "rig_jam", "intel_gathering"]
    attacker_agent_id: int
    attacker_title: str = ""
    target_agent_id: int
    target_title: str = ""
    cost: str = "0"
    burned: str = "0"
    damage: float = 0
    shield_reduction: float = 0
    zone: int = 0
    timestamp: int
    narrative: str | None = None


class NegotiationEvent(OffchainRecord):
    id: str
    type: str
    proposer_agent_id: int
    proposer_title: str = ""
    target_agent_id: int
    target_title: str = ""
    terms: str = ""
    outcome: Literal["accepted", "rejected", "expired"]
    response: str | None = None
    timestamp: int


class MarketplaceListing(OffchainRecord):
    id: str
    seller_agent_id: int
    seller_title: str = ""
    rig_id: int
    rig_tier: int
    price: str
    status: Literal["active", "sold", "cancelled"]
    listed_at: int
    buyer_agent_id: int | None = None
    sold_at: int | None = None


class MarketplaceSale(OffchainRecord):
    listing_id: str
    seller_agent_id: int
    buyer_agent_id: int
    rig_tier: int
    price: str
    burned: str = "0"
    timestamp: int


class DynamicPrice(OffchainRecord):
    tier: int
    base_cost: str
    effective_cost: str
    total_owned: int = 0
    timestamp: int = 0
