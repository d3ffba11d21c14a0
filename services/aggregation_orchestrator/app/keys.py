"""Reuse keys for active jobs and the store key layout."""

from typing import Iterable, Optional, Sequence

from .addresses import Account
from .chains import Chain


def _chain_set(chains: Iterable[Chain]) -> str:
    return ",".join(sorted({chain.slug for chain in chains}))


class JobKeyResolver:
    """
    Computes the canonical reuse key of a request shape.

    Shapes:
      active:single:{account}:{chain}
      active:multi:{accounts}:{chains}
      active:group:{groupId}:{chains}

    Chains are de-duplicated and sorted; several accounts without a
    wallet group are sorted and comma-joined. Accounts arrive already
    normalized, so EVM casing never produces distinct keys.
    """

    def resolve(
        self,
        accounts: Sequence[Account],
        chains: Sequence[Chain],
        wallet_group_id: Optional[str] = None
    ) -> str:
        if not accounts:
            raise ValueError("accounts must not be empty")
        if not chains:
            raise ValueError("chains must not be empty")

        chain_set = _chain_set(chains)
        if wallet_group_id:
            return f"active:group:{wallet_group_id}:{chain_set}"

        addresses = sorted({account.address for account in accounts})
        if len(addresses) == 1 and len(set(chains)) == 1:
            return f"active:single:{addresses[0]}:{chain_set}"
        return f"active:multi:{','.join(addresses)}:{chain_set}"


class StoreKeys:
    """Physical key names under a namespace prefix."""

    def __init__(self, prefix: str = "wallet:agg:"):
        self.prefix = prefix

    def meta(self, job_id: str) -> str:
        return f"{self.prefix}meta:{job_id}"

    def pending(self, job_id: str) -> str:
        return f"{self.prefix}pending:{job_id}"

    def results(self, job_id: str) -> str:
        return f"{self.prefix}results:{job_id}"

    def payloads(self, job_id: str) -> str:
        return f"{self.prefix}payloads:{job_id}"

    def items(self, job_id: str) -> str:
        return f"{self.prefix}items:{job_id}"

    def index(self, account: str) -> str:
        return f"{self.prefix}index:{account}"

    def pointer(self, reuse_key: str) -> str:
        return f"{self.prefix}{reuse_key}"

    def meta_pattern(self) -> str:
        return f"{self.prefix}meta:*"

    def job_id_from_meta(self, key: str) -> str:
        return key[len(self.meta("")):]

    def job_keys(self, job_id: str) -> list:
        """Every per-job key, in a fixed order."""
        return [
            self.meta(job_id),
            self.pending(job_id),
            self.results(job_id),
            self.payloads(job_id),
            self.items(job_id),
        ]
