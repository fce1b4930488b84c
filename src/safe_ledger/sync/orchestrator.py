"""Transfer sync orchestrator.

Brings the ledger up to date with the Safe Transaction Service for every
Safe of an organization. Safes are processed one at a time and transfers are
written one at a time, in fetch order, with a short pause between writes.
The first failure halts the whole run; writes already committed stay.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import time
from collections.abc import AsyncIterator, Awaitable, Callable, Coroutine
from dataclasses import replace
from typing import Any, TypeVar

from prometheus_client import Counter, Histogram
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from safe_ledger.errors import SyncCancelledError, ValidationError
from safe_ledger.identity import create_safe_chain_unique_id
from safe_ledger.ingestor.safe_client import SafeTransactionClient
from safe_ledger.storage.database import session_scope
from safe_ledger.storage.repos import SafeDTO, SafeRepository, TransferRepository
from safe_ledger.sync.models import SafeSyncStatus, SyncProgress, SyncReport, SyncState

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Default configuration
DEFAULT_WRITE_DELAY_SECONDS = 0.1
TRANSFER_LIMITS = (10, 50, 100, 200)

# Type aliases for callbacks
StatusCallback = Callable[[SafeSyncStatus], Awaitable[None] | None]


# Prometheus metrics
TRANSFERS_WRITTEN = Counter(
    "safe_ledger_transfers_written_total",
    "Transfers inserted into the ledger",
    ["chain"],
)

TRANSFERS_SKIPPED = Counter(
    "safe_ledger_transfers_skipped_total",
    "Fetched transfers already present in the ledger",
    ["chain"],
)

SAFE_SYNCS = Counter(
    "safe_ledger_safe_syncs_total",
    "Per-safe sync outcomes",
    ["chain", "state"],
)

SAFE_SYNC_DURATION = Histogram(
    "safe_ledger_safe_sync_duration_seconds",
    "Time spent syncing a single safe",
    ["chain"],
    buckets=[0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 120.0],
)


class TransferSync:
    """Sequential, fail-fast sync of an organization's Safes.

    Each call to ``sync_organization`` owns its own status map, so separate
    callers never share progress state. Progress is observable by iterating
    the returned stream and, optionally, through ``on_status_change``.

    Example:
        ```python
        sync = TransferSync(client, session_factory)
        async for status in sync.sync_organization(org_id, transfer_limit=50):
            print(status.safe_id, status.state, status.progress)
        ```
    """

    def __init__(
        self,
        client: SafeTransactionClient,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        write_delay_seconds: float = DEFAULT_WRITE_DELAY_SECONDS,
        on_status_change: StatusCallback | None = None,
    ) -> None:
        """Initialize the orchestrator.

        Args:
            client: Transaction service client.
            session_factory: Factory for ledger sessions.
            write_delay_seconds: Pause after each inserted transfer.
            on_status_change: Callback (sync or async) for every status update.
        """
        self._client = client
        self._session_factory = session_factory
        self._write_delay = write_delay_seconds
        self._on_status_change = on_status_change

    async def run(
        self,
        organization_id: str,
        transfer_limit: int,
        *,
        cancel_event: asyncio.Event | None = None,
    ) -> SyncReport:
        """Run a sync to completion and return the final statuses."""
        final: dict[str, SafeSyncStatus] = {}
        async for status in self.sync_organization(
            organization_id, transfer_limit, cancel_event=cancel_event
        ):
            final[status.safe_id] = status
        return SyncReport(organization_id=organization_id, statuses=list(final.values()))

    async def sync_organization(
        self,
        organization_id: str,
        transfer_limit: int,
        *,
        cancel_event: asyncio.Event | None = None,
    ) -> AsyncIterator[SafeSyncStatus]:
        """Sync every active Safe of an organization.

        Yields a ``pending`` status for every Safe first, then a status on
        each state or progress change. Stops after the last Safe completes
        or right after the first ``error``; later Safes stay ``pending``.

        Args:
            organization_id: Organization whose Safes to sync.
            transfer_limit: Maximum transfers fetched per Safe.
            cancel_event: Set it to abort the run. The in-flight request is
                cancelled and the current Safe ends in ``error``.

        Raises:
            ValidationError: If the parameters are invalid. Raised before
                any Safe is touched.
        """
        _validate_params(organization_id, transfer_limit)

        async with session_scope(self._session_factory) as session:
            safes = await SafeRepository(session).list_for_organization(organization_id)

        logger.info(
            "Starting sync of %d safes for organization %s (limit=%d)",
            len(safes),
            organization_id,
            transfer_limit,
        )

        statuses: dict[str, SafeSyncStatus] = {}
        for safe in safes:
            safe_id = create_safe_chain_unique_id(safe.address, safe.chain)
            status = SafeSyncStatus(safe_id=safe_id, address=safe.address, chain=safe.chain)
            statuses[safe_id] = status
            await self._notify(status)
            yield status

        for safe in safes:
            safe_id = create_safe_chain_unique_id(safe.address, safe.chain)
            async for status in self._sync_safe(
                safe, statuses[safe_id], transfer_limit, cancel_event
            ):
                statuses[safe_id] = status
                yield status

            if statuses[safe_id].state is SyncState.ERROR:
                remaining = sum(1 for s in statuses.values() if s.state is SyncState.PENDING)
                logger.error("Sync halted at safe %s; %d safes left pending", safe_id, remaining)
                return

        logger.info("Sync of organization %s completed", organization_id)

    async def _sync_safe(
        self,
        safe: SafeDTO,
        status: SafeSyncStatus,
        transfer_limit: int,
        cancel_event: asyncio.Event | None,
    ) -> AsyncIterator[SafeSyncStatus]:
        """Sync one Safe, yielding every status change."""
        chain = safe.chain.value
        started = time.monotonic()

        status = replace(status, state=SyncState.SYNCING, progress=SyncProgress())
        yield await self._notify(status)
        logger.info("Syncing safe %s on %s", safe.address, chain)

        try:
            async with session_scope(self._session_factory) as session:
                existing = await TransferRepository(session).existing_ids(
                    safe.address, safe.chain
                )

            _check_cancelled(cancel_event)
            page = await _cancellable(
                self._client.fetch_transfers(safe.address, safe.chain, transfer_limit),
                cancel_event,
            )

            status = replace(status, progress=SyncProgress(total=page.count))
            yield await self._notify(status)

            for transfer in page.results:
                _check_cancelled(cancel_event)
                progress = status.progress

                if transfer.transfer_id in existing:
                    TRANSFERS_SKIPPED.labels(chain=chain).inc()
                    status = replace(
                        status,
                        progress=replace(
                            progress, current=progress.current + 1, skipped=progress.skipped + 1
                        ),
                    )
                    yield await self._notify(status)
                    continue

                async with session_scope(self._session_factory) as session:
                    inserted = await TransferRepository(session).insert_if_absent(transfer)

                if not inserted:
                    # Stored earlier under the other side of an internal transfer
                    TRANSFERS_SKIPPED.labels(chain=chain).inc()
                    status = replace(
                        status,
                        progress=replace(
                            progress, current=progress.current + 1, skipped=progress.skipped + 1
                        ),
                    )
                    yield await self._notify(status)
                    continue

                TRANSFERS_WRITTEN.labels(chain=chain).inc()
                status = replace(status, progress=replace(progress, current=progress.current + 1))
                yield await self._notify(status)

                await _pause(self._write_delay, cancel_event)

        except Exception as e:
            message = str(e) or type(e).__name__
            logger.error("Sync of safe %s on %s failed: %s", safe.address, chain, message)
            SAFE_SYNCS.labels(chain=chain, state=SyncState.ERROR.value).inc()
            status = replace(status, state=SyncState.ERROR, message=message)
            yield await self._notify(status)
            return
        finally:
            SAFE_SYNC_DURATION.labels(chain=chain).observe(time.monotonic() - started)

        SAFE_SYNCS.labels(chain=chain, state=SyncState.COMPLETED.value).inc()
        logger.info(
            "Synced safe %s on %s: %d written, %d skipped",
            safe.address,
            chain,
            status.progress.written,
            status.progress.skipped,
        )
        status = replace(status, state=SyncState.COMPLETED)
        yield await self._notify(status)

    async def _notify(self, status: SafeSyncStatus) -> SafeSyncStatus:
        """Invoke the status callback and hand the status back."""
        if self._on_status_change:
            try:
                result = self._on_status_change(status)
                if asyncio.iscoroutine(result):
                    await result
            except Exception as e:
                logger.warning("Status callback failed: %s", e)
        return status


def _validate_params(organization_id: str, transfer_limit: int) -> None:
    if not organization_id or not str(organization_id).strip():
        raise ValidationError("organization_id is required")
    if isinstance(transfer_limit, bool) or not isinstance(transfer_limit, int):
        raise ValidationError(f"transfer_limit must be an integer, got {transfer_limit!r}")
    if transfer_limit <= 0:
        raise ValidationError(f"transfer_limit must be positive, got {transfer_limit}")


def _check_cancelled(cancel_event: asyncio.Event | None) -> None:
    if cancel_event is not None and cancel_event.is_set():
        raise SyncCancelledError("Sync cancelled")


async def _cancellable(coro: Coroutine[Any, Any, T], cancel_event: asyncio.Event | None) -> T:
    """Await ``coro`` unless ``cancel_event`` fires first.

    On cancellation the pending operation is cancelled and awaited so its
    resources (e.g. an open HTTP connection) are released.

    Raises:
        SyncCancelledError: If the event fired first.
    """
    if cancel_event is None:
        return await coro
    if cancel_event.is_set():
        coro.close()
        raise SyncCancelledError("Sync cancelled")

    task = asyncio.ensure_future(coro)
    waiter = asyncio.ensure_future(cancel_event.wait())
    try:
        done, _ = await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        for pending in (task, waiter):
            if not pending.done():
                pending.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await pending

    if task in done:
        return task.result()
    raise SyncCancelledError("Sync cancelled")


async def _pause(delay: float, cancel_event: asyncio.Event | None) -> None:
    """Sleep between writes, waking early if the run is cancelled."""
    if delay <= 0:
        _check_cancelled(cancel_event)
        return
    if cancel_event is None:
        await asyncio.sleep(delay)
        return
    with contextlib.suppress(TimeoutError):
        await asyncio.wait_for(cancel_event.wait(), timeout=delay)
    _check_cancelled(cancel_event)
