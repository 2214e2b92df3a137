from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime
from types import MappingProxyType
from typing import Any

from chaoswatch.domain.abi import ContractCall
from chaoswatch.domain.catalog import BURN_SOURCES, ZONE_COUNT, era_name
from chaoswatch.domain.contracts import ContractAddresses


@dataclass(frozen=True)
class SnapshotField:
    name: str
    contract: str
    signature: str
    args: tuple[int, ...] = ()
    output_type: str = "uint256"
    default: int = 0

    def call(self, addresses: ContractAddresses) -> ContractCall:
        return ContractCall(
            address=addresses.address_of(self.contract),
            signature=self.signature,
            args=self.args,
            output_types=(self.output_type,),
        )


def _build_fields() -> tuple[SnapshotField, ...]:
    fields_: list[SnapshotField] = [
        SnapshotField("total_minted", "chaos_token", "totalMinted()"),
        SnapshotField("total_burned", "chaos_token", "totalBurned()"),
        SnapshotField("total_supply", "chaos_token", "totalSupply()"),
        SnapshotField("active_agent_count", "agent_registry", "activeAgentCount()"),
        SnapshotField("next_agent_id", "agent_registry", "nextAgentId()"),
        SnapshotField("genesis_phase", "agent_registry", "getGenesisPhase()", output_type="uint8"),
        SnapshotField(
            "current_era", "era_manager", "getCurrentEra()", output_type="uint8", default=1
        ),
        SnapshotField("event_cooldown", "era_manager", "getEventCooldown()", default=75_000),
        SnapshotField("total_hashrate", "mining_engine", "totalEffectiveHashrate()"),
        SnapshotField("adaptive_emission", "mining_engine", "calculateAdaptiveEmission()"),
        SnapshotField("next_event_id", "cosmic_engine", "nextEventId()"),
        SnapshotField("last_event_block", "cosmic_engine", "lastEventBlock()"),
    ]
    for index, source in enumerate(BURN_SOURCES):
        fields_.append(
            SnapshotField(f"burns_{source}", "token_burner", "burnsBySource(uint8)", args=(index,))
        )
    for zone in range(ZONE_COUNT):
        fields_.append(
            SnapshotField(
                f"zone_{zone}_agents", "zone_manager", "getZoneAgentCount(uint8)", args=(zone,)
            )
        )
    return tuple(fields_)


SNAPSHOT_FIELDS = _build_fields()
SNAPSHOT_DEFAULTS: Mapping[str, int] = MappingProxyType(
    {item.name: item.default for item in SNAPSHOT_FIELDS}
)


@dataclass(frozen=True)
class ChainSnapshot:
    values: Mapping[str, int]
    fetched_at: datetime
    stale_fields: frozenset[str] = field(default_factory=frozenset)

    def __post_init__(self) -> None:
        missing = set(SNAPSHOT_DEFAULTS) - set(self.values)
        if missing:
            raise ValueError(f"snapshot is missing fields: {sorted(missing)}")
        object.__setattr__(self, "values", MappingProxyType(dict(self.values)))
        object.__setattr__(self, "stale_fields", frozenset(self.stale_fields))

    def __getitem__(self, name: str) -> int:
        return self.values[name]

    @property
    def burn_ratio(self) -> float:
        minted = self.values["total_minted"]
        if minted <= 0:
            return 0.0
        return (self.values["total_burned"] * 10_000 // minted) / 100

    @property
    def total_agents(self) -> int:
        return max(self.values["next_agent_id"] - 1, 0)

    @property
    def total_events(self) -> int:
        return max(self.values["next_event_id"] - 1, 0)

    @property
    def burns_by_source(self) -> dict[str, int]:
        return {source: self.values[f"burns_{source}"] for source in BURN_SOURCES}

    @property
    def zone_agent_counts(self) -> tuple[int, ...]:
        return tuple(self.values[f"zone_{zone}_agents"] for zone in range(ZONE_COUNT))

    def as_dict(self) -> dict[str, Any]:
        return {
            **dict(self.values),
            "current_era_name": era_name(self.values["current_era"]),
            "burn_ratio": self.burn_ratio,
            "total_agents": self.total_agents,
            "total_events": self.total_events,
            "stale_fields": sorted(self.stale_fields),
            "fetched_at": self.fetched_at.isoformat(),
        }
