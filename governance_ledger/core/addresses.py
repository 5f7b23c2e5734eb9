"""Account address normalization.

Substrate accounts are shown in several SS58 encodings (generic prefix 42,
Polkadot prefix 0, Kusama prefix 2) and occasionally as raw hex public keys.
Every address comparison in the ledger goes through `normalize_address` so
that all encodings of one key compare equal.
"""

import logging
from collections.abc import Iterable
from typing import Protocol, TypeVar

from scalecodec.utils.ss58 import ss58_decode, ss58_encode

logger = logging.getLogger(__name__)

POLKADOT_SS58_FORMAT = 0
KUSAMA_SS58_FORMAT = 2
GENERIC_SS58_FORMAT = 42


class HasWalletAddress(Protocol):
    wallet_address: str


M = TypeVar("M", bound=HasWalletAddress)


def normalize_address(address: str) -> str:
    """
    Reduce an address to a canonical comparison key.

    SS58 addresses decode to their 0x-prefixed lowercase public key. Hex keys
    are lowercased. Anything undecodable is returned stripped, so that two
    identical malformed strings still match each other.
    """
    candidate = (address or "").strip()
    if not candidate:
        return ""

    if candidate.lower().startswith("0x"):
        return candidate.lower()

    try:
        return "0x" + ss58_decode(candidate).lower()
    except ValueError:
        logger.debug(f"Address {candidate!r} is not valid SS58, comparing verbatim")
        return candidate


def addresses_match(left: str, right: str) -> bool:
    """True when both addresses refer to the same account."""
    left_key = normalize_address(left)
    return bool(left_key) and left_key == normalize_address(right)


def to_network_address(address: str, ss58_format: int) -> str:
    """Re-encode an address for a specific network; returns the input on failure."""
    try:
        return ss58_encode(ss58_decode(address.strip()), ss58_format=ss58_format)
    except ValueError as e:
        logger.warning(f"Failed to convert address {address!r} to format {ss58_format}: {e}")
        return address


def find_member(members: Iterable[M], address: str) -> M | None:
    """Find the member whose wallet address matches, in any encoding."""
    key = normalize_address(address)
    if not key:
        return None
    for member in members:
        if normalize_address(member.wallet_address) == key:
            return member
    return None
