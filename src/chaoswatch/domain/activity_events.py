from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass
from enum import StrEnum
from typing import Any

from chaoswatch.domain.abi import EventInput, EventSpec, parse_quantity
from chaoswatch.domain.catalog import (
    cosmic_event_name,
    facility_name,
    rig_name,
    shield_name,
    zone_name,
)
from chaoswatch.domain.models import RawEventRecord, event_record_id
from chaoswatch.domain.units import format_ether


class ActivityKind(StrEnum):
    REGISTER = "register"
    HEARTBEAT = "heartbeat"
    REWARD = "reward"
    RIG_PURCHASE = "rig_purchase"
    RIG_EQUIP = "rig_equip"
    FACILITY_UPGRADE = "facility_upgrade"
    SHIELD_PURCHASE = "shield_purchase"
    COSMIC_EVENT = "cosmic_event"
    MIGRATION = "migration"


def _uint(name: str, *, indexed: bool = False) -> EventInput:
    return EventInput(name, "uint256", indexed)


def _u8(name: str) -> EventInput:
    return EventInput(name, "uint8")


def _describe_register(args: Mapping[str, Any]) -> str:
    return f"Registered in {zone_name(args['zone'])} (Pioneer P{args['pioneerPhase']})"


def _describe_reward(args: Mapping[str, Any]) -> str:
    return f"Received {format_ether(args['amount'])} CHAOS"


def _describe_rig_purchase(args: Mapping[str, Any]) -> str:
    return f"Purchased {rig_name(args['tier'])} ({format_ether(args['cost'])} CHAOS)"


def _describe_facility(args: Mapping[str, Any]) -> str:
    level = args["newLevel"]
    return f"Upgraded facility to {facility_name(level)} ({format_ether(args['cost'])} CHAOS)"


def _describe_shield(args: Mapping[str, Any]) -> str:
    return f"Purchased {shield_name(args['tier'])} ({format_ether(args['cost'])} CHAOS)"


def _describe_cosmic(args: Mapping[str, Any]) -> str:
    return f"{cosmic_event_name(args['eventType'])} struck {zone_name(args['originZone'])}"


def _describe_migration(args: Mapping[str, Any]) -> str:
    return (
        f"Migrated from {zone_name(args['fromZone'])} to {zone_name(args['toZone'])} "
        f"({format_ether(args['cost'])} CHAOS)"
    )


@dataclass(frozen=True)
class ActivityEventSpec:
    kind: ActivityKind
    label: str
    contract: str
    event: EventSpec
    describe: Callable[[Mapping[str, Any]], str]
    subject_arg: str | None = "agentId"

    def to_record(self, log: Mapping[str, Any]) -> RawEventRecord:
        args = self.event.decode_log(log)
        tx_hash = str(log["transactionHash"])
        log_index = parse_quantity(log["logIndex"])
        subject = int(args[self.subject_arg]) if self.subject_arg else 0
        return RawEventRecord(
            id=event_record_id(tx_hash, log_index),
            kind=self.kind.value,
            subject_id=subject,
            block_number=parse_quantity(log["blockNumber"]),
            tx_hash=tx_hash.lower(),
            log_index=log_index,
            payload=args,
            detail_text=self.describe(args),
        )


ACTIVITY_EVENTS: tuple[ActivityEventSpec, ...] = (
    ActivityEventSpec(
        kind=ActivityKind.REGISTER,
        label="Register",
        contract="agent_registry",
        event=EventSpec(
            "AgentRegistered",
            (
                _uint("agentId", indexed=True),
                EventInput("operator", "address", True),
                EventInput("moltbookIdHash", "bytes32"),
                _u8("zone"),
                _u8("pioneerPhase"),
            ),
        ),
        describe=_describe_register,
    ),
    ActivityEventSpec(
        kind=ActivityKind.HEARTBEAT,
        label="Heartbeat",
        contract="agent_registry",
        event=EventSpec("Heartbeat", (_uint("agentId", indexed=True), _uint("blockNumber"))),
        describe=lambda args: "Sent heartbeat",
    ),
    ActivityEventSpec(
        kind=ActivityKind.REWARD,
        label="Reward",
        contract="mining_engine",
        event=EventSpec("RewardsDistributed", (_uint("agentId", indexed=True), _uint("amount"))),
        describe=_describe_reward,
    ),
    ActivityEventSpec(
        kind=ActivityKind.RIG_PURCHASE,
        label="Rig Buy",
        contract="rig_factory",
        event=EventSpec(
            "RigPurchased",
            (
                _uint("rigId", indexed=True),
                _uint("agentId", indexed=True),
                _u8("tier"),
                _uint("cost"),
                _uint("burned"),
            ),
        ),
        describe=_describe_rig_purchase,
    ),
    ActivityEventSpec(
        kind=ActivityKind.RIG_EQUIP,
        label="Rig Equip",
        contract="rig_factory",
        event=EventSpec(
            "RigEquipped", (_uint("rigId", indexed=True), _uint("agentId", indexed=True))
        ),
        describe=lambda args: "Equipped a new rig",
    ),
    ActivityEventSpec(
        kind=ActivityKind.FACILITY_UPGRADE,
        label="Facility",
        contract="facility_manager",
        event=EventSpec(
            "FacilityUpgraded",
            (_uint("agentId", indexed=True), _u8("newLevel"), _uint("cost"), _uint("burned")),
        ),
        describe=_describe_facility,
    ),
    ActivityEventSpec(
        kind=ActivityKind.SHIELD_PURCHASE,
        label="Shield",
        contract="shield_manager",
        event=EventSpec(
            "ShieldPurchased",
            (_uint("agentId", indexed=True), _u8("tier"), _uint("cost"), _uint("burned")),
        ),
        describe=_describe_shield,
    ),
    ActivityEventSpec(
        kind=ActivityKind.COSMIC_EVENT,
        label="Event",
        contract="cosmic_engine",
        event=EventSpec(
            "EventTriggered",
            (
                _uint("eventId", indexed=True),
                _u8("eventType"),
                _u8("severityTier"),
                _u8("originZone"),
                EventInput("triggeredBy", "address"),
            ),
        ),
        describe=_describe_cosmic,
        subject_arg=None,
    ),
    ActivityEventSpec(
        kind=ActivityKind.MIGRATION,
        label="Migrate",
        contract="zone_manager",
        event=EventSpec(
            "AgentMigrated",
            (
                _uint("agentId", indexed=True),
                _u8("fromZone"),
                _u8("toZone"),
                _uint("cost"),
                _uint("burned"),
            ),
        ),
        describe=_describe_migration,
    ),
)

_BY_KIND = {spec.kind.value: spec for spec in ACTIVITY_EVENTS}


def activity_label(kind: str) -> str:
    spec = _BY_KIND.get(kind)
    return spec.label if spec else kind
