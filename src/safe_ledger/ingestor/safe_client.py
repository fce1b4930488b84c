"""Safe Transaction Service client.

Fetches transfer history for one (Safe, chain) pair and normalizes it into
chain-tagged ``SafeTransfer`` records. Failures are raised to the caller
without retrying; retry policy belongs to whoever drives the sync.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from typing import Any

import httpx

from safe_ledger.chains import Chain, get_api_base_url
from safe_ledger.errors import FetchError, ValidationError
from safe_ledger.identity import to_checksum_address
from safe_ledger.ingestor.models import SafeTransfer, TransferPage

logger = logging.getLogger(__name__)

# Default configuration
DEFAULT_LIMIT = 100
DEFAULT_REQUEST_TIMEOUT = 30.0


def filter_trusted_transfers(transfers: Iterable[SafeTransfer]) -> list[SafeTransfer]:
    """Drop transfers of tokens the service marks as untrusted.

    Native-currency transfers carry no token info and always pass.

    Args:
        transfers: Transfers in service order.

    Returns:
        The kept transfers, order preserved.
    """
    return [t for t in transfers if t.token_info is None or t.token_info.trusted is True]


class SafeTransactionClient:
    """Async client for the per-chain Safe Transaction Service.

    Example:
        ```python
        client = SafeTransactionClient(api_key="...")
        page = await client.fetch_transfers(
            "0x742d35cc6634c0532925a3b844bc9e7595f5eae2", Chain.ETH, limit=50
        )
        for transfer in page.results:
            print(transfer.transfer_id, transfer.amount)
        ```
    """

    def __init__(
        self,
        api_key: str | None = None,
        *,
        timeout: float = DEFAULT_REQUEST_TIMEOUT,
        base_urls: Mapping[Chain, str] | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            api_key: Optional bearer token for the service.
            timeout: HTTP request timeout in seconds.
            base_urls: Per-chain overrides of the registry's API base URL.
        """
        self._api_key = api_key
        self._timeout = timeout
        self._base_urls = dict(base_urls or {})

    def _base_url(self, chain: Chain) -> str:
        return self._base_urls.get(chain) or get_api_base_url(chain)

    def _headers(self) -> dict[str, str]:
        headers = {"Accept": "application/json"}
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"
        return headers

    def transfers_url(self, safe_address: str, chain: Chain) -> str:
        """Build the transfers endpoint URL for a Safe.

        Raises:
            ValidationError: If the address is invalid.
        """
        checksummed = to_checksum_address(safe_address)
        return f"{self._base_url(chain)}/safes/{checksummed}/transfers/"

    async def fetch_transfers(
        self,
        safe_address: str,
        chain: Chain,
        limit: int = DEFAULT_LIMIT,
        token_address: str | None = None,
    ) -> TransferPage:
        """Fetch the most recent transfers of a Safe on one chain.

        Args:
            safe_address: Safe address in any casing.
            chain: Chain the Safe lives on.
            limit: Maximum number of records to request.
            token_address: Optional token contract to filter on.

        Returns:
            TransferPage whose records are stamped with ``safe_address``
            and ``chain``, in service order.

        Raises:
            ValidationError: If an address or the limit is invalid.
            FetchError: If the request fails or returns a non-2xx status.
        """
        if isinstance(limit, bool) or not isinstance(limit, int) or limit <= 0:
            raise ValidationError(f"limit must be a positive integer, got {limit!r}")

        url = self.transfers_url(safe_address, chain)
        params: dict[str, Any] = {"limit": limit}
        if token_address is not None:
            params["token_address"] = to_checksum_address(token_address)

        logger.debug("Fetching transfers for %s on %s (limit=%d)", safe_address, chain.value, limit)

        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                response = await client.get(url, params=params, headers=self._headers())
        except httpx.HTTPError as e:
            logger.error("Transfer request for %s on %s failed: %s", safe_address, chain.value, e)
            raise FetchError(
                f"Failed to fetch transfers for safe {safe_address} on {chain.value}: {e}",
                safe_address=safe_address,
                chain=chain.value,
            ) from e

        if not response.is_success:
            logger.error(
                "Transfer request for %s on %s returned %d",
                safe_address,
                chain.value,
                response.status_code,
            )
            raise FetchError(
                f"Failed to fetch transfers for safe {safe_address} on {chain.value} "
                f"(HTTP {response.status_code})",
                safe_address=safe_address,
                chain=chain.value,
                status_code=response.status_code,
            )

        try:
            payload = response.json()
            transfers = tuple(
                SafeTransfer.from_dict({**raw, "safeAddress": safe_address, "chain": chain.value})
                for raw in payload.get("results", [])
            )
        except (ValueError, KeyError, TypeError, AttributeError) as e:
            raise FetchError(
                f"Malformed transfer response for safe {safe_address} on {chain.value}: {e}",
                safe_address=safe_address,
                chain=chain.value,
                status_code=response.status_code,
            ) from e

        logger.debug("Fetched %d transfers for %s on %s", len(transfers), safe_address, chain.value)
        return TransferPage(count=len(transfers), results=transfers)

    async def fetch_trusted_transfers(
        self,
        safe_address: str,
        chain: Chain,
        limit: int = DEFAULT_LIMIT,
        token_address: str | None = None,
    ) -> list[SafeTransfer]:
        """Fetch transfers and drop untrusted token transfers.

        This is the read path for views; the sync path writes every fetched
        transfer.
        """
        page = await self.fetch_transfers(safe_address, chain, limit, token_address)
        return filter_trusted_transfers(page.results)
