"""Provider registry and the provider/chain compatibility matrix."""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Dict, FrozenSet, Iterable, List, Optional, Set, Tuple

import structlog

from .addresses import AddressFamily
from .chains import Chain


logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class ProviderDescriptor:
    """Static metadata for one integration provider."""
    id: str
    display_name: str
    family: AddressFamily
    chains: FrozenSet[Chain]


_EVM_L2S = frozenset({Chain.BASE, Chain.ARBITRUM, Chain.OPTIMISM})

DEFAULT_PROVIDERS: Tuple[ProviderDescriptor, ...] = (
    ProviderDescriptor(
        id="moralistokens",
        display_name="Moralis Tokens",
        family=AddressFamily.EVM_LIKE,
        chains=_EVM_L2S | {Chain.ETHEREUM, Chain.POLYGON, Chain.BNB},
    ),
    ProviderDescriptor(
        id="aavesupplies",
        display_name="Aave V3 Supplies",
        family=AddressFamily.EVM_LIKE,
        chains=_EVM_L2S | {Chain.ETHEREUM, Chain.POLYGON},
    ),
    ProviderDescriptor(
        id="aaveborrows",
        display_name="Aave V3 Borrows",
        family=AddressFamily.EVM_LIKE,
        chains=_EVM_L2S | {Chain.ETHEREUM, Chain.POLYGON},
    ),
    ProviderDescriptor(
        id="uniswapv3positions",
        display_name="Uniswap V3 Positions",
        family=AddressFamily.EVM_LIKE,
        chains=_EVM_L2S | {Chain.ETHEREUM, Chain.POLYGON},
    ),
    ProviderDescriptor(
        id="pendlevepositions",
        display_name="Pendle vePENDLE",
        family=AddressFamily.EVM_LIKE,
        chains=frozenset({Chain.ETHEREUM}),
    ),
    ProviderDescriptor(
        id="pendledeposits",
        display_name="Pendle Deposits",
        family=AddressFamily.EVM_LIKE,
        chains=frozenset({Chain.ETHEREUM, Chain.ARBITRUM, Chain.BASE, Chain.BNB}),
    ),
    ProviderDescriptor(
        id="solanatokens",
        display_name="Solana Tokens",
        family=AddressFamily.BASE58_LIKE,
        chains=frozenset({Chain.SOLANA}),
    ),
    ProviderDescriptor(
        id="solanakaminopositions",
        display_name="Kamino Positions",
        family=AddressFamily.BASE58_LIKE,
        chains=frozenset({Chain.SOLANA}),
    ),
    ProviderDescriptor(
        id="solanaraydiumpositions",
        display_name="Raydium Positions",
        family=AddressFamily.BASE58_LIKE,
        chains=frozenset({Chain.SOLANA}),
    ),
)


def build_registry(descriptors: Iterable[ProviderDescriptor]) -> Dict[str, ProviderDescriptor]:
    """Index descriptors by provider id, rejecting duplicates."""
    registry: Dict[str, ProviderDescriptor] = {}
    for descriptor in descriptors:
        if descriptor.id in registry:
            raise ValueError(f"Duplicate provider id: {descriptor.id}")
        registry[descriptor.id] = descriptor
    return registry


PROVIDER_REGISTRY: Dict[str, ProviderDescriptor] = build_registry(DEFAULT_PROVIDERS)


class ChainSupport(ABC):
    """External say on whether a provider may run on a chain."""

    @abstractmethod
    def supports(self, provider_id: str, chain: Chain) -> bool:
        ...


class ConfiguredChainSupport(ChainSupport):
    """Chain support driven by enabled chains and disabled provider/chain pairs."""

    def __init__(
        self,
        enabled_chains: Optional[Set[Chain]] = None,
        disabled_pairs: Optional[Set[Tuple[str, Chain]]] = None
    ):
        self.enabled_chains = enabled_chains
        self.disabled_pairs = disabled_pairs or set()

    def supports(self, provider_id: str, chain: Chain) -> bool:
        if self.enabled_chains is not None and chain not in self.enabled_chains:
            return False
        return (provider_id, chain) not in self.disabled_pairs


class ProviderCompatibilityMatrix:
    """
    Decides which providers can serve a chain.

    A provider matches when the chain is on its static allow-list,
    its address family equals the chain's, and the chain-support
    collaborator agrees. A collaborator that raises counts as "no".
    """

    def __init__(
        self,
        registry: Optional[Dict[str, ProviderDescriptor]] = None,
        chain_support: Optional[ChainSupport] = None
    ):
        self.registry = registry if registry is not None else PROVIDER_REGISTRY
        self.chain_support = chain_support or ConfiguredChainSupport()

    def supports(self, provider_id: str, chain: Chain) -> bool:
        descriptor = self.registry.get(provider_id)
        if descriptor is None:
            return False
        if chain not in descriptor.chains or descriptor.family != chain.family:
            return False
        try:
            return bool(self.chain_support.supports(provider_id, chain))
        except Exception as e:
            logger.warning(
                "Chain support lookup failed, treating provider as unsupported",
                provider=provider_id,
                chain=chain.slug,
                error=str(e),
            )
            return False

    def providers_for(self, chain: Chain) -> List[ProviderDescriptor]:
        """Providers supporting ``chain``, ordered by id."""
        return [
            self.registry[provider_id]
            for provider_id in sorted(self.registry)
            if self.supports(provider_id, chain)
        ]
