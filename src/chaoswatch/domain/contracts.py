from __future__ import annotations

from dataclasses import dataclass, fields

from eth_utils import is_address

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"


def normalize_address(value: str) -> str:
    candidate = value.strip()
    if not is_address(candidate):
        raise ValueError(f"invalid contract address: {candidate!r}")
    return candidate.lower()


def is_deployed(address: str) -> bool:
    return address.lower() != ZERO_ADDRESS


@dataclass(frozen=True)
class ContractAddresses:
    """Deployed game contracts; a zero address marks a contract that is not live yet."""

    chaos_token: str = ZERO_ADDRESS
    token_burner: str = ZERO_ADDRESS
    agent_registry: str = ZERO_ADDRESS
    mining_engine: str = ZERO_ADDRESS
    era_manager: str = ZERO_ADDRESS
    zone_manager: str = ZERO_ADDRESS
    cosmic_engine: str = ZERO_ADDRESS
    rig_factory: str = ZERO_ADDRESS
    facility_manager: str = ZERO_ADDRESS
    shield_manager: str = ZERO_ADDRESS

    def address_of(self, contract: str) -> str:
        return str(getattr(self, contract))

    def deployed(self, contract: str) -> bool:
        return is_deployed(self.address_of(contract))

    def as_dict(self) -> dict[str, str]:
        return {item.name: getattr(self, item.name) for item in fields(self)}
