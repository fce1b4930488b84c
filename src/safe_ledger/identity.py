"""Chain-scoped identities for Safes.

The same address string can be a tracked Safe on one chain and an unrelated
counterparty on another, so membership tests always use the pair.
"""

from __future__ import annotations

from dataclasses import dataclass

from web3 import AsyncWeb3

from safe_ledger.chains import Chain, parse_chain
from safe_ledger.errors import ValidationError

SEPARATOR = "_"


def to_checksum_address(address: str) -> str:
    """Validate and checksum a hex address.

    Args:
        address: Hex address in any casing.

    Returns:
        EIP-55 checksummed address.

    Raises:
        ValidationError: If the address is not a valid hex address.
    """
    if not isinstance(address, str) or not AsyncWeb3.is_address(address):
        raise ValidationError(f"Invalid address: {address!r}")
    return AsyncWeb3.to_checksum_address(address)


@dataclass(frozen=True)
class SelectedSafe:
    """A (address, chain) pair, e.g. the Safe picked in a perspective."""

    address: str
    chain: Chain


def create_safe_chain_unique_id(address: str, chain: str | Chain) -> str:
    """Build the chain-scoped identity for an address.

    Args:
        address: Hex address in any casing.
        chain: Chain member or name.

    Returns:
        ``lower(address)`` and ``lower(chain)`` joined by ``SEPARATOR``.
    """
    chain_name = chain.value if isinstance(chain, Chain) else str(chain)
    return f"{address.lower()}{SEPARATOR}{chain_name.lower()}"


def parse_safe_chain_unique_id(unique_id: str) -> SelectedSafe:
    """Split a chain-scoped identity back into its parts.

    The address comes back lowercased; original checksum casing is lost.

    Args:
        unique_id: Value produced by ``create_safe_chain_unique_id``.

    Returns:
        SelectedSafe with the lowercase address and the Chain member.

    Raises:
        ValidationError: If the id is malformed or names an unknown chain.
    """
    address, sep, chain = unique_id.partition(SEPARATOR)
    if not sep or not address or not chain:
        raise ValidationError(f"Malformed safe identity: {unique_id!r}")
    return SelectedSafe(address=address, chain=parse_chain(chain.upper()))
