"""Chain registry.

Single source of truth mapping each supported chain to its Safe Transaction
Service endpoint and block explorer. Any new ``Chain`` member must be
registered in ``CHAIN_CONFIGS``.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from safe_ledger.errors import ValidationError


class Chain(str, Enum):
    """Chains on which Safes can be tracked."""

    ETH = "ETH"
    ARB = "ARB"
    UNI = "UNI"
    BASE = "BASE"
    LINEA = "LINEA"
    OP = "OP"
    SCROLL = "SCROLL"


@dataclass(frozen=True)
class ChainConfig:
    """Static endpoints for a chain."""

    chain: Chain
    chain_id: int
    api_base_url: str
    explorer_url: str


CHAIN_CONFIGS: dict[Chain, ChainConfig] = {
    Chain.ETH: ChainConfig(
        chain=Chain.ETH,
        chain_id=1,
        api_base_url="https://safe-transaction-mainnet.safe.global/api/v1",
        explorer_url="https://etherscan.io",
    ),
    Chain.ARB: ChainConfig(
        chain=Chain.ARB,
        chain_id=42161,
        api_base_url="https://safe-transaction-arbitrum.safe.global/api/v1",
        explorer_url="https://arbiscan.io",
    ),
    Chain.UNI: ChainConfig(
        chain=Chain.UNI,
        chain_id=130,
        api_base_url="https://safe-transaction-unichain.safe.global/api/v1",
        explorer_url="https://uniscan.xyz",
    ),
    Chain.BASE: ChainConfig(
        chain=Chain.BASE,
        chain_id=8453,
        api_base_url="https://safe-transaction-base.safe.global/api/v1",
        explorer_url="https://basescan.org",
    ),
    Chain.LINEA: ChainConfig(
        chain=Chain.LINEA,
        chain_id=59144,
        api_base_url="https://safe-transaction-linea.safe.global/api/v1",
        explorer_url="https://lineascan.build",
    ),
    Chain.OP: ChainConfig(
        chain=Chain.OP,
        chain_id=10,
        api_base_url="https://safe-transaction-optimism.safe.global/api/v1",
        explorer_url="https://optimistic.etherscan.io",
    ),
    Chain.SCROLL: ChainConfig(
        chain=Chain.SCROLL,
        chain_id=534352,
        api_base_url="https://safe-transaction-scroll.safe.global/api/v1",
        explorer_url="https://scrollscan.com",
    ),
}


def parse_chain(value: str | Chain) -> Chain:
    """Convert user input to a ``Chain``.

    Args:
        value: Chain name in any case, or a ``Chain`` member.

    Returns:
        The matching Chain.

    Raises:
        ValidationError: If the name is not a supported chain.
    """
    if isinstance(value, Chain):
        return value
    try:
        return Chain(str(value).strip().upper())
    except ValueError as e:
        supported = ", ".join(c.value for c in Chain)
        raise ValidationError(f"Unsupported chain {value!r} (expected one of {supported})") from e


def get_chain_config(chain: Chain) -> ChainConfig:
    """Look up the registry entry for a chain.

    Raises:
        KeyError: If the chain was never registered.
    """
    return CHAIN_CONFIGS[chain]


def get_api_base_url(chain: Chain) -> str:
    """Base URL of the chain's transaction service API."""
    return get_chain_config(chain).api_base_url


def get_block_explorer_url(chain: Chain) -> str:
    """Base URL of the chain's block explorer."""
    return get_chain_config(chain).explorer_url


def get_address_url(chain: Chain, address: str) -> str:
    return f"{get_block_explorer_url(chain)}/address/{address}"


def get_transaction_url(chain: Chain, tx_hash: str) -> str:
    return f"{get_block_explorer_url(chain)}/tx/{tx_hash}"
