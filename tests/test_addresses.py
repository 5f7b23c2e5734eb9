"""Tests for address normalization across SS58 encodings."""

from dataclasses import dataclass

from conftest import ALICE, ALICE_PUBLIC_KEY, BOB

from governance_ledger.core.addresses import (
    KUSAMA_SS58_FORMAT,
    POLKADOT_SS58_FORMAT,
    addresses_match,
    find_member,
    normalize_address,
    to_network_address,
)


@dataclass
class Member:
    wallet_address: str


class TestNormalizeAddress:
    def test_generic_address_to_public_key(self):
        assert normalize_address(ALICE) == ALICE_PUBLIC_KEY

    def test_network_encodings_share_a_key(self):
        polkadot = to_network_address(ALICE, POLKADOT_SS58_FORMAT)
        kusama = to_network_address(ALICE, KUSAMA_SS58_FORMAT)

        assert polkadot != ALICE
        assert kusama != polkadot
        assert normalize_address(polkadot) == ALICE_PUBLIC_KEY
        assert normalize_address(kusama) == ALICE_PUBLIC_KEY

    def test_hex_is_lowercased(self):
        assert normalize_address(ALICE_PUBLIC_KEY.upper().replace("0X", "0x")) == ALICE_PUBLIC_KEY

    def test_whitespace_stripped(self):
        assert normalize_address(f"  {ALICE}\n") == ALICE_PUBLIC_KEY

    def test_invalid_address_kept_verbatim(self):
        assert normalize_address(" not-an-address ") == "not-an-address"

    def test_empty(self):
        assert normalize_address("") == ""


class TestAddressesMatch:
    def test_same_key_different_encoding(self):
        assert addresses_match(ALICE, to_network_address(ALICE, POLKADOT_SS58_FORMAT))
        assert addresses_match(ALICE_PUBLIC_KEY, ALICE)

    def test_different_accounts(self):
        assert not addresses_match(ALICE, BOB)

    def test_empty_never_matches(self):
        assert not addresses_match("", "")


class TestFindMember:
    def test_finds_by_any_encoding(self):
        members = [Member(BOB), Member(to_network_address(ALICE, KUSAMA_SS58_FORMAT))]
        found = find_member(members, to_network_address(ALICE, POLKADOT_SS58_FORMAT))
        assert found is members[1]

    def test_unknown_address(self):
        assert find_member([Member(BOB)], ALICE) is None
