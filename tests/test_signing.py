"""
Tests for EIP-712 quote signing.
"""

import pytest
from eth_account import Account
from eth_account.messages import encode_typed_data
from eth_utils import keccak

from options_gateway.core.signing import (
    FILL_QUOTE_OB_FIELDS, SaltGenerator, compute_digest, compute_domain_separator,
    compute_struct_hash, recover_signer, split_signature, type_string, verify_signature,
)
from options_gateway.types import ZERO_ADDRESS
from options_gateway.utils import parse_ether

from conftest import TEST_ADDRESS

POOL_ADDRESS = "0x4444444444444444444444444444444444444444"


@pytest.fixture
def quote(quote_signer):
    return quote_signer.build_quote(
        size=parse_ether("1.5"),
        is_buy=False,
        price=parse_ether("0.12"),
        deadline=1_700_000_300,
    )


class TestTypedData:
    """Test the FillQuoteOB typed-data layout"""

    def test_type_string(self):
        assert type_string("FillQuoteOB", FILL_QUOTE_OB_FIELDS) == (
            "FillQuoteOB(address provider,address taker,uint256 price,uint256 size,"
            "bool isBuy,uint256 deadline,uint256 salt)"
        )

    def test_message(self, quote_signer, quote):
        typed_message = quote_signer.build_message(POOL_ADDRESS, quote)

        assert typed_message.domain == {
            "name": "Premia",
            "version": "1",
            "chainId": 421613,
            "verifyingContract": POOL_ADDRESS,
        }
        assert typed_message.message["provider"] == TEST_ADDRESS
        assert typed_message.message["taker"] == ZERO_ADDRESS
        assert typed_message.message["size"] == "1500000000000000000"
        assert typed_message.message["isBuy"] is False

    def test_digest_matches_eth_account(self, quote_signer, quote):
        """Test the local digest agrees with eth-account's typed-data encoding"""
        document = quote_signer.build_message(POOL_ADDRESS, quote).to_dict()
        document["message"] = {
            **document["message"],
            "price": quote.price,
            "size": quote.size,
            "deadline": quote.deadline,
            "salt": quote.salt,
        }
        signable = encode_typed_data(full_message=document)
        typed_message = quote_signer.build_message(POOL_ADDRESS, quote)

        assert signable.header == compute_domain_separator(typed_message.domain)
        assert signable.body == compute_struct_hash(typed_message.message)
        assert compute_digest(typed_message) == keccak(b"\x19" + signable.version + signable.header + signable.body)


class TestSignQuote:
    """Test signing and recovery"""

    def test_recovers_provider(self, quote_signer, quote):
        signature = quote_signer.sign_quote(POOL_ADDRESS, quote)
        typed_message = quote_signer.build_message(POOL_ADDRESS, quote)

        assert signature.v in (27, 28)
        assert len(signature.r) == 66
        assert len(signature.s) == 66
        assert recover_signer(typed_message, signature) == TEST_ADDRESS
        assert verify_signature(typed_message, signature, TEST_ADDRESS.lower())

    def test_tampered_quote_does_not_verify(self, quote_signer, quote):
        signature = quote_signer.sign_quote(POOL_ADDRESS, quote)
        quote.price += 1

        assert not verify_signature(quote_signer.build_message(POOL_ADDRESS, quote), signature, TEST_ADDRESS)

    def test_signature_bound_to_pool(self, quote_signer, quote):
        signature = quote_signer.sign_quote(POOL_ADDRESS, quote)
        other_pool = quote_signer.build_message("0x5555555555555555555555555555555555555555", quote)

        assert not verify_signature(other_pool, signature, TEST_ADDRESS)

    def test_recover_with_eth_account(self, quote_signer, quote):
        signature = quote_signer.sign_quote(POOL_ADDRESS, quote)
        document = quote_signer.build_message(POOL_ADDRESS, quote).to_dict()
        document["message"] = {**document["message"], "price": quote.price, "size": quote.size,
                               "deadline": quote.deadline, "salt": quote.salt}

        recovered = Account.recover_message(
            encode_typed_data(full_message=document),
            vrs=(signature.v, int(signature.r, 16), int(signature.s, 16)),
        )
        assert recovered == TEST_ADDRESS


class TestSplitSignature:

    def test_split(self):
        raw = bytes(range(32)) + bytes(range(32, 64)) + bytes([28])
        signature = split_signature(raw)

        assert signature.r == "0x" + bytes(range(32)).hex()
        assert signature.s == "0x" + bytes(range(32, 64)).hex()
        assert signature.v == 28

    def test_split_hex(self):
        assert split_signature("0x" + "ab" * 64 + "1b").v == 27

    def test_rejects_wrong_length(self):
        with pytest.raises(ValueError):
            split_signature(b"\x00" * 64)


class TestSalts:

    def test_strictly_increasing_with_frozen_clock(self):
        salts = SaltGenerator(clock=lambda: 1_700_000_000_000_000_000)
        issued = [salts.next() for _ in range(3)]

        assert issued == [1_700_000_000_000_000, 1_700_000_000_000_001, 1_700_000_000_000_002]

    def test_quotes_get_distinct_salts(self, quote_signer):
        first = quote_signer.build_quote(size=1, is_buy=True, price=1, deadline=1)
        second = quote_signer.build_quote(size=1, is_buy=True, price=1, deadline=1)

        assert second.salt > first.salt
