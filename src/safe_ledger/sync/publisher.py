"""Redis Streams publisher for sync progress.

Publishes every status update of a sync run to a per-run stream so any
number of readers (e.g. several browser tabs behind a web layer) can follow
the same run without sharing in-process state.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from redis.asyncio import Redis

from safe_ledger.errors import SafeLedgerError
from safe_ledger.sync.models import SafeSyncStatus

logger = logging.getLogger(__name__)


# Default configuration
DEFAULT_STREAM_PREFIX = "safe-sync:"
DEFAULT_MAX_LEN = 10_000
DEFAULT_COUNT = 100


@dataclass
class StatusEntry:
    """Represents a status read back from a run's stream."""

    entry_id: str
    status: SafeSyncStatus


def _serialize_status(status: SafeSyncStatus) -> dict[str, str]:
    """Serialize a status to string pairs for Redis Streams."""
    return {
        key: "" if value is None else str(value) for key, value in status.to_dict().items()
    }


def _deserialize_status(data: dict[bytes | str, bytes | str]) -> SafeSyncStatus:
    """Deserialize a status from Redis Stream data (keys/values may be bytes)."""
    decoded: dict[str, str] = {}
    for k, v in data.items():
        key = k.decode() if isinstance(k, bytes) else k
        value = v.decode() if isinstance(v, bytes) else v
        decoded[key] = value
    return SafeSyncStatus.from_dict(decoded)


class SyncStatusPublisher:
    """Publishes sync status updates to Redis Streams.

    Example:
        ```python
        redis = Redis.from_url("redis://localhost:6379")
        publisher = SyncStatusPublisher(redis)

        sync = TransferSync(client, factory, on_status_change=publisher.sink(run_id))
        await sync.run(org_id, 50)

        # Elsewhere
        entries = await publisher.read_statuses(run_id)
        ```
    """

    def __init__(
        self,
        redis: Redis,
        *,
        stream_prefix: str = DEFAULT_STREAM_PREFIX,
        max_len: int = DEFAULT_MAX_LEN,
    ) -> None:
        """Initialize the publisher.

        Args:
            redis: Redis async client.
            stream_prefix: Prefix of per-run stream keys.
            max_len: Maximum number of entries to keep per stream.
        """
        self._redis = redis
        self._stream_prefix = stream_prefix
        self._max_len = max_len

    def stream_name(self, run_id: str) -> str:
        return f"{self._stream_prefix}{run_id}"

    async def publish(self, run_id: str, status: SafeSyncStatus) -> str:
        """Append a status to the run's stream.

        Returns:
            The entry ID assigned by Redis.
        """
        entry_id = await self._redis.xadd(
            self.stream_name(run_id),
            _serialize_status(status),  # type: ignore[arg-type]
            maxlen=self._max_len,
        )
        if isinstance(entry_id, bytes):
            return entry_id.decode()
        return str(entry_id)

    def sink(self, run_id: str) -> Callable[[SafeSyncStatus], Awaitable[None]]:
        """Return an ``on_status_change`` callback publishing to ``run_id``."""

        async def _publish(status: SafeSyncStatus) -> None:
            await self.publish(run_id, status)

        return _publish

    async def read_statuses(
        self,
        run_id: str,
        *,
        last_id: str = "0",
        count: int = DEFAULT_COUNT,
        block_ms: int | None = None,
    ) -> list[StatusEntry]:
        """Read statuses published after ``last_id``.

        Args:
            run_id: Sync run to follow.
            last_id: Entry ID to read after ("0" for the beginning).
            count: Maximum entries to return.
            block_ms: Block up to this many milliseconds for new entries.

        Returns:
            List of StatusEntry objects in publish order.
        """
        response = await self._redis.xread(
            {self.stream_name(run_id): last_id}, count=count, block=block_ms
        )
        entries: list[StatusEntry] = []
        for _stream, messages in response or []:
            for entry_id, data in messages:
                eid = entry_id.decode() if isinstance(entry_id, bytes) else str(entry_id)
                try:
                    entries.append(StatusEntry(entry_id=eid, status=_deserialize_status(data)))
                except (KeyError, ValueError, SafeLedgerError) as e:
                    logger.warning("Skipping malformed status entry %s: %s", eid, e)
        return entries

    async def delete_run(self, run_id: str) -> bool:
        """Delete a run's stream.

        Returns:
            True if the stream existed.
        """
        deleted = await self._redis.delete(self.stream_name(run_id))
        return int(deleted) > 0
