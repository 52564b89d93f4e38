from __future__ import annotations

import logging
import time
from typing import Any, Dict, List, Optional

import redis

from playground_orch.core.models import QueueEntry
from playground_orch.errors import QueueUnavailable

logger = logging.getLogger(__name__)


class RedisStreamClient:
    """Redis Streams client for the job queue (consumer-group consumption)."""

    def __init__(self, redis_url: Optional[str] = None, client: Optional[redis.Redis] = None):
        """
        Initialize stream client.

        Args:
            redis_url: Redis URL (e.g., "redis://localhost:6379/0")
            client: Pre-built redis.Redis (must use decode_responses=True); wins over redis_url
        """
        if client is None:
            if not redis_url:
                raise ValueError("Either redis_url or client is required")
            client = redis.Redis.from_url(
                redis_url,
                decode_responses=True,
                health_check_interval=30,
                retry_on_timeout=True,
            )
        self.client = client

    def ensure_group(self, stream: str, group: str) -> None:
        """
        Create the consumer group if it does not exist yet.

        The group starts at the beginning of the stream, so entries appended
        before any worker came up are still delivered. The stream is created
        when missing.
        """
        try:
            self.client.xgroup_create(stream, group, id="0", mkstream=True)
            logger.info(f"Created consumer group '{group}' on stream '{stream}'")
        except redis.ResponseError as e:
            if "BUSYGROUP" in str(e):
                return
            raise QueueUnavailable(f"Failed to create consumer group {group} on {stream}: {e}") from e
        except redis.RedisError as e:
            raise QueueUnavailable(f"Failed to create consumer group {group} on {stream}: {e}") from e

    def append(self, stream: str, fields: Dict[str, str], min_id: Optional[str] = None) -> str:
        """
        Append an entry to the stream.

        Args:
            stream: Stream name
            fields: Entry fields
            min_id: If set, entries with smaller ids are evicted (XADD MINID =)

        Returns:
            Entry id assigned by Redis
        """
        try:
            return self.client.xadd(stream, fields, minid=min_id, approximate=False)
        except redis.RedisError as e:
            raise QueueUnavailable(f"Failed to append to stream {stream}: {e}") from e

    def read_group(
        self,
        stream: str,
        group: str,
        consumer: str,
        count: int = 1,
        block_ms: Optional[int] = 1000,
    ) -> List[QueueEntry]:
        """
        Read entries never delivered to any consumer of the group.

        Blocks up to block_ms when nothing is available (None: don't block).
        """
        try:
            response = self.client.xreadgroup(group, consumer, {stream: ">"}, count=count, block=block_ms)
        except redis.RedisError as e:
            raise QueueUnavailable(f"Failed to read from stream {stream}: {e}") from e
        return _entries_from_read(response, stream)

    def claim_stale(
        self,
        stream: str,
        group: str,
        consumer: str,
        min_idle_ms: int,
        count: int = 1,
    ) -> List[QueueEntry]:
        """
        Take over pending entries that another consumer claimed but never acknowledged.

        Only entries idle for at least min_idle_ms are moved to this consumer.
        """
        try:
            response = self.client.xautoclaim(stream, group, consumer, min_idle_ms, start_id="0-0", count=count)
        except redis.RedisError as e:
            raise QueueUnavailable(f"Failed to claim pending entries on {stream}: {e}") from e
        # [next_start_id, [(id, fields), ...], deleted_ids (redis >= 7)]
        claimed = response[1] if response and len(response) > 1 else []
        return [QueueEntry(entry_id=eid, fields=dict(fields)) for eid, fields in claimed if fields is not None]

    def refresh_claim(self, stream: str, group: str, consumer: str, entry_id: str) -> None:
        """Reset the idle time of an entry this consumer is still working on (XCLAIM JUSTID)."""
        try:
            self.client.xclaim(stream, group, consumer, min_idle_time=0, message_ids=[entry_id], justid=True)
        except redis.RedisError as e:
            raise QueueUnavailable(f"Failed to refresh claim on {entry_id} in {stream}: {e}") from e

    def ack(self, stream: str, group: str, entry_id: str) -> int:
        try:
            return self.client.xack(stream, group, entry_id)
        except redis.RedisError as e:
            raise QueueUnavailable(f"Failed to acknowledge {entry_id} on {stream}: {e}") from e

    def stats(self, stream: str, group: str) -> Dict[str, Any]:
        """
        Stream and group statistics.

        Returns:
            Dict with length, pending count, oldest/newest pending ids and
            per-consumer pending counts
        """
        length = 0
        try:
            length = self.client.xlen(stream)
            pending = self.client.xpending(stream, group)
        except redis.ResponseError as e:
            if "NOGROUP" in str(e):
                return {"length": int(length), "pending": 0, "min": None, "max": None, "consumers": {}}
            raise QueueUnavailable(f"Failed to read stats of {stream}: {e}") from e
        except redis.RedisError as e:
            raise QueueUnavailable(f"Failed to read stats of {stream}: {e}") from e

        consumers = {c["name"]: int(c["pending"]) for c in pending.get("consumers") or []}
        return {
            "length": int(length),
            "pending": int(pending.get("pending", 0)),
            "min": pending.get("min"),
            "max": pending.get("max"),
            "consumers": consumers,
        }

    def close(self) -> None:
        self.client.close()


def min_id_for_retention(retention_seconds: int, now: Optional[float] = None) -> Optional[str]:
    """Smallest entry id to keep when entries older than retention_seconds are trimmed."""
    if retention_seconds <= 0:
        return None
    now = time.time() if now is None else now
    return str(int((now - retention_seconds) * 1000))


def _entries_from_read(response: Any, stream: str) -> List[QueueEntry]:
    if not response:
        return []
    # [[stream, [(id, fields), ...]], ...]
    items = []
    for name, stream_items in response:
        if name == stream:
            items.extend(stream_items)
    return [QueueEntry(entry_id=eid, fields=dict(fields or {})) for eid, fields in items]
