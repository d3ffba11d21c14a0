"""Supported chains and their address families."""

from enum import Enum
from typing import Dict, Iterable, List, Optional, Set

from shared.utils.errors import ValidationError

from .addresses import AddressFamily


class Chain(str, Enum):
    """Blockchain networks the orchestrator can fan out to."""
    BASE = "Base"
    ETHEREUM = "Ethereum"
    POLYGON = "Polygon"
    ARBITRUM = "Arbitrum"
    OPTIMISM = "Optimism"
    BNB = "BNB"
    SOLANA = "Solana"

    @property
    def slug(self) -> str:
        """Lowercase identifier used in store keys and messages."""
        return self.value.lower()

    @property
    def family(self) -> AddressFamily:
        return CHAIN_FAMILIES[self]

    @classmethod
    def parse(cls, value: str) -> "Chain":
        """Parse a chain name case-insensitively."""
        if isinstance(value, Chain):
            return value
        if isinstance(value, str):
            chain = _BY_SLUG.get(value.strip().lower())
            if chain is not None:
                return chain
        raise ValidationError(f"Unsupported chain: {value!r}", field="chains", value=value)


CHAIN_FAMILIES: Dict[Chain, AddressFamily] = {
    Chain.BASE: AddressFamily.EVM_LIKE,
    Chain.ETHEREUM: AddressFamily.EVM_LIKE,
    Chain.POLYGON: AddressFamily.EVM_LIKE,
    Chain.ARBITRUM: AddressFamily.EVM_LIKE,
    Chain.OPTIMISM: AddressFamily.EVM_LIKE,
    Chain.BNB: AddressFamily.EVM_LIKE,
    Chain.SOLANA: AddressFamily.BASE58_LIKE,
}

_BY_SLUG: Dict[str, Chain] = {chain.slug: chain for chain in Chain}

# Chains requested on the caller's behalf when none are given
DEFAULT_CHAINS: Dict[AddressFamily, List[Chain]] = {
    AddressFamily.EVM_LIKE: [Chain.BASE, Chain.BNB, Chain.ARBITRUM, Chain.ETHEREUM],
    AddressFamily.BASE58_LIKE: [Chain.SOLANA],
}


def parse_chains(values: Iterable[str]) -> List[Chain]:
    """Parse chain names, dropping duplicates while keeping first-seen order."""
    chains: List[Chain] = []
    for value in values:
        chain = Chain.parse(value)
        if chain not in chains:
            chains.append(chain)
    return chains


def default_chains(families: Iterable[AddressFamily]) -> List[Chain]:
    """Default chain selection for the given account families."""
    chains: List[Chain] = []
    for family in families:
        for chain in DEFAULT_CHAINS.get(family, []):
            if chain not in chains:
                chains.append(chain)
    return chains


def filter_enabled(chains: Iterable[Chain], enabled: Optional[Set[Chain]]) -> List[Chain]:
    """Keep only enabled chains; ``None`` means every chain is enabled."""
    if enabled is None:
        return list(chains)
    return [chain for chain in chains if chain in enabled]
