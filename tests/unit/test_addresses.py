"""Unit tests for address classification."""

import pytest

from shared.utils.errors import ValidationError
from services.aggregation_orchestrator.app.addresses import AddressClassifier, AddressFamily
from tests.fixtures.sample_accounts import (
    EVM_ACCOUNT,
    EVM_ACCOUNT_2,
    EVM_ACCOUNT_CHECKSUM,
    SOLANA_ACCOUNT,
    SOLANA_ACCOUNT_SWAPPED_CASE,
)


class TestAddressClassifier:
    """Test AddressClassifier class."""

    def setup_method(self):
        self.classifier = AddressClassifier()

    def test_family_detection(self):
        """EVM hex and base58 addresses land in their own families."""
        assert self.classifier.family(EVM_ACCOUNT) == AddressFamily.EVM_LIKE
        assert self.classifier.family(EVM_ACCOUNT_CHECKSUM) == AddressFamily.EVM_LIKE
        assert self.classifier.family(SOLANA_ACCOUNT) == AddressFamily.BASE58_LIKE
        assert self.classifier.family("not-an-address") == AddressFamily.UNKNOWN
        assert self.classifier.family("0x1234") == AddressFamily.UNKNOWN
        assert self.classifier.family(None) == AddressFamily.UNKNOWN

    def test_base58_rejects_ambiguous_characters(self):
        """0, O, I and l are outside the base58 alphabet."""
        assert self.classifier.family("0" * 32) == AddressFamily.UNKNOWN
        assert self.classifier.family("O" * 32) == AddressFamily.UNKNOWN

    def test_evm_normalized_to_lowercase(self):
        """Checksum casing does not change the keying form."""
        assert self.classifier.normalize(EVM_ACCOUNT_CHECKSUM) == EVM_ACCOUNT
        assert self.classifier.normalize(f"  {EVM_ACCOUNT}  ") == EVM_ACCOUNT

    def test_base58_case_preserved(self):
        """Base58 addresses differing only in case stay distinct."""
        assert self.classifier.normalize(SOLANA_ACCOUNT) == SOLANA_ACCOUNT
        assert self.classifier.normalize(SOLANA_ACCOUNT_SWAPPED_CASE) == SOLANA_ACCOUNT_SWAPPED_CASE
        assert SOLANA_ACCOUNT != SOLANA_ACCOUNT_SWAPPED_CASE

    def test_parse_unknown_raises(self):
        """Unknown encodings are rejected."""
        with pytest.raises(ValidationError) as exc_info:
            self.classifier.parse("hello")
        assert exc_info.value.field == "accounts"

    def test_parse_many_deduplicates(self):
        """Duplicates after normalization collapse to one account."""
        accounts = self.classifier.parse_many([EVM_ACCOUNT_CHECKSUM, EVM_ACCOUNT, SOLANA_ACCOUNT], max_accounts=3)
        assert [account.address for account in accounts] == [EVM_ACCOUNT, SOLANA_ACCOUNT]
        assert accounts[1].family == AddressFamily.BASE58_LIKE

    def test_parse_many_validation(self):
        """Empty lists, bare strings and oversized lists are rejected."""
        with pytest.raises(ValidationError):
            self.classifier.parse_many([], max_accounts=3)
        with pytest.raises(ValidationError):
            self.classifier.parse_many(EVM_ACCOUNT, max_accounts=3)
        with pytest.raises(ValidationError):
            self.classifier.parse_many([EVM_ACCOUNT, EVM_ACCOUNT_2, SOLANA_ACCOUNT], max_accounts=2)
