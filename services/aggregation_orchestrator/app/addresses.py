"""Wallet address classification and normalization."""

import re
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, List

from shared.utils.errors import ValidationError


class AddressFamily(str, Enum):
    """Address encoding family."""
    EVM_LIKE = "EVMLike"
    BASE58_LIKE = "Base58Like"
    UNKNOWN = "Unknown"


_EVM_PATTERN = re.compile(r"^0x[0-9a-fA-F]{40}$")
# Base58 alphabet: no 0, O, I or l
_BASE58_PATTERN = re.compile(r"^[1-9A-HJ-NP-Za-km-z]{32,44}$")


@dataclass(frozen=True)
class Account:
    """A classified wallet address in its keying form."""
    address: str
    family: AddressFamily


class AddressClassifier:
    """
    Classifies addresses into families and produces their keying form.

    EVM-like addresses are lowercased; checksum casing carries no
    meaning. Base58-like addresses are kept exactly as given because
    case is significant in that encoding.
    """

    def family(self, address: str) -> AddressFamily:
        if not isinstance(address, str):
            return AddressFamily.UNKNOWN
        candidate = address.strip()
        if _EVM_PATTERN.match(candidate):
            return AddressFamily.EVM_LIKE
        if _BASE58_PATTERN.match(candidate):
            return AddressFamily.BASE58_LIKE
        return AddressFamily.UNKNOWN

    def normalize(self, address: str) -> str:
        candidate = address.strip()
        if self.family(candidate) == AddressFamily.EVM_LIKE:
            return candidate.lower()
        return candidate

    def parse(self, address: str) -> Account:
        """Classify one address, rejecting unknown encodings."""
        family = self.family(address)
        if family == AddressFamily.UNKNOWN:
            raise ValidationError(
                f"Unsupported address format: {address!r}",
                field="accounts",
                value=address,
            )
        return Account(address=self.normalize(address), family=family)

    def parse_many(self, addresses: Iterable[str], max_accounts: int) -> List[Account]:
        """
        Classify a request's accounts.

        Duplicates (after normalization) collapse to the first
        occurrence. Raises ValidationError when the list is empty,
        holds an unknown address, or exceeds ``max_accounts``.
        """
        if addresses is None or isinstance(addresses, str):
            raise ValidationError("accounts must be a list of addresses", field="accounts")

        accounts: List[Account] = []
        seen = set()
        for raw in addresses:
            account = self.parse(raw)
            if account.address in seen:
                continue
            seen.add(account.address)
            accounts.append(account)

        if not accounts:
            raise ValidationError("At least one account is required", field="accounts")
        if len(accounts) > max_accounts:
            raise ValidationError(
                f"At most {max_accounts} accounts may be aggregated together",
                field="accounts",
                value=len(accounts),
            )
        return accounts
