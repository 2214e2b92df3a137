from __future__ import annotations

from dataclasses import dataclass

ZONE_NAMES = (
    "The Solar Flats",
    "The Graviton Fields",
    "The Dark Forest",
    "The Nebula Depths",
    "The Kuiper Expanse",
    "The Trisolaran Reach",
    "The Pocket Rim",
    "The Singer Void",
)
ZONE_COUNT = len(ZONE_NAMES)

ERA_NAMES = ("Era I: The Calm Before", "Era II: First Contact")

RIG_NAMES = (
    "Potato Rig",
    "Scrapheap Engine",
    "Windmill Cracker",
    "Magma Core",
    "Neutrino Sieve",
)

FACILITY_NAMES = ("The Burrow", "Faraday Cage", "The Bunker")

SHIELD_NAMES = ("None", "Magnetic Deflector", "EM Barrier")

# Index order matches TokenBurner.burnsBySource(uint8).
BURN_SOURCES = (
    "mining",
    "rig_purchase",
    "facility_upgrade",
    "rig_repair",
    "shield_purchase",
    "migration",
)


@dataclass(frozen=True)
class CosmicEventType:
    name: str
    tier: int


COSMIC_EVENT_TYPES = (
    CosmicEventType("Solar Breeze", 1),
    CosmicEventType("Cosmic Dust Cloud", 1),
    CosmicEventType("Sophon Surveillance Pulse", 2),
    CosmicEventType("Gravity Wave Oscillation", 2),
    CosmicEventType("Dark Forest Strike", 3),
    CosmicEventType("Solar Flare Cascade", 3),
)


def _lookup(names: tuple[str, ...], index: int) -> str | None:
    if 0 <= index < len(names):
        return names[index]
    return None


def zone_name(zone: int) -> str:
    return _lookup(ZONE_NAMES, zone) or f"Zone {zone}"


def era_name(era: int) -> str:
    return _lookup(ERA_NAMES, era - 1) or f"Era {era}"


def rig_name(tier: int) -> str:
    return _lookup(RIG_NAMES, tier) or f"T{tier} Rig"


def facility_name(level: int) -> str:
    return _lookup(FACILITY_NAMES, level - 1) or f"Level {level}"


def shield_name(tier: int) -> str:
    return _lookup(SHIELD_NAMES, tier) or f"T{tier} Shield"


def cosmic_event_name(event_type: int) -> str:
    if 0 <= event_type < len(COSMIC_EVENT_TYPES):
        return COSMIC_EVENT_TYPES[event_type].name
    return f"Type {event_type}"


def zones_in_mask(mask: int) -> tuple[int, ...]:
    return tuple(zone for zone in range(ZONE_COUNT) if mask & (1 << zone))
