from __future__ import annotations

import logging
import threading
import time
from contextlib import contextmanager
from enum import Enum
from typing import Any, Iterator, Optional, Set

from playground_orch.config import WorkerConfig
from playground_orch.core.envelope import decode_entry
from playground_orch.core.models import Failure, JobRequest, QueueEntry, Result, result_key
from playground_orch.core.registry import StrategyRegistry
from playground_orch.errors import (
    MalformedEnvelope,
    ObjectNotFound,
    QueueUnavailable,
    RetryableTaskError,
    TerminalTaskError,
    UnknownCommand,
)

logger = logging.getLogger(__name__)


class DispatchOutcome(str, Enum):
    IDLE = "idle"                     # nothing claimed during the poll interval
    PUBLISHED = "published"           # result written, ack done or deferred
    SKIPPED_MALFORMED = "malformed"   # left unacknowledged
    SKIPPED_UNKNOWN = "unknown"       # acknowledged, never routed
    PUBLISH_FAILED = "publish_failed" # left unacknowledged


class Dispatcher:
    """
    Worker loop: claims one stream entry at a time and turns it into a published result.

    Flow per iteration:
    1. Acknowledge the previous entry if its ack was deferred
    2. Claim at most one entry for this consumer (stale pending first when
       reclaiming is enabled, then new entries with a blocking read)
    3. Decode the envelope (malformed entries are skipped, not acknowledged)
    4. Route by command to an execution strategy (unknown commands are
       acknowledged and dropped)
    5. Publish the result under "<key>_result"
    6. Acknowledge now, or at the start of the next iteration (default)

    A crash after 5 and before the deferred ack means the entry is delivered
    again and its result produced twice; a crash before 5 loses nothing.
    """

    def __init__(
        self,
        cfg: WorkerConfig,
        queue: Any,
        store: Any,
        registry: StrategyRegistry,
        warm_up: Optional[Any] = None,
    ):
        """
        Args:
            cfg: Worker configuration
            queue: Stream client (RedisStreamClient or compatible)
            store: Object store (ObjectStore or compatible)
            registry: Command tag -> execution strategy
            warm_up: Optional callable run once by initialize() (package cache, templates)
        """
        self.cfg = cfg
        self.queue = queue
        self.store = store
        self.registry = registry
        self.warm_up = warm_up

        self.stream = cfg.queue.stream_name
        self.group = cfg.queue.group_name
        self.consumer = cfg.consumer_name

        # Entry whose result is published but whose ack waits for the next iteration
        self._pending_ack: Optional[str] = None
        self._empty_polls: int = 0

        # Malformed entries stay pending; reclaiming them again is not progress
        self._malformed: Set[str] = set()

    def initialize(self) -> None:
        """
        Ensure the consumer group exists and run the optional warm-up.

        Queue errors here are fatal: a worker that cannot reach the stream at
        startup should not pretend to be healthy.
        """
        logger.info(
            f"Initializing dispatcher: consumer {self.consumer} on stream {self.stream} (group {self.group})",
            extra={"commands": self.registry.commands()},
        )
        self.queue.ensure_group(self.stream, self.group)

        if self.warm_up is not None:
            try:
                self.warm_up()
            except Exception as e:
                # A cold cache only makes the first builds slower
                logger.warning(f"Warm-up failed, continuing without it: {e}", exc_info=True)

    def run_forever(self, stop_event: threading.Event) -> None:
        """
        Main loop: runs until stop_event is set, or after N empty polls when
        shutdown_after_empty_polls > 0.

        The stop event is only checked between iterations; a running tool
        invocation is never interrupted.
        """
        if self.cfg.shutdown_after_empty_polls > 0:
            logger.info(f"Starting main loop (shutdown after {self.cfg.shutdown_after_empty_polls} empty polls)")
        else:
            logger.info("Starting main loop (running until stopped)")

        while not stop_event.is_set():
            try:
                outcome = self.run_once()
            except QueueUnavailable as e:
                logger.warning(f"Queue unavailable, retrying in {self.cfg.poll_interval_ms}ms: {e}")
                stop_event.wait(self.cfg.poll_interval_ms / 1000)
                continue

            if outcome is DispatchOutcome.IDLE:
                self._empty_polls += 1
                if self.cfg.shutdown_after_empty_polls > 0:
                    logger.info(f"No entries received ({self._empty_polls}/{self.cfg.shutdown_after_empty_polls})")
                    if self._empty_polls >= self.cfg.shutdown_after_empty_polls:
                        logger.info("Shutdown threshold reached, exiting")
                        break
                elif self._empty_polls % 60 == 1:
                    logger.debug(f"No entries, continuing to poll ({self._empty_polls} empty polls so far)")
            else:
                self._empty_polls = 0

        logger.info("Main loop stopped")

    def run_once(self) -> DispatchOutcome:
        """
        One loop iteration.

        Raises:
            QueueUnavailable: The stream could not be read or acknowledged
        """
        self._flush_pending_ack()

        entry = self._claim()
        if entry is None:
            return DispatchOutcome.IDLE

        logger.info(f"Claimed entry {entry.entry_id}")

        try:
            envelope = decode_entry(entry)
        except MalformedEnvelope as e:
            if entry.entry_id in self._malformed:
                logger.debug(f"Malformed entry {entry.entry_id} reclaimed again, still skipping")
                return DispatchOutcome.IDLE
            # No key means nowhere to publish a result; leave it pending
            logger.warning(f"Skipping malformed entry {entry.entry_id} without acknowledgment: {e}")
            self._malformed.add(entry.entry_id)
            return DispatchOutcome.SKIPPED_MALFORMED

        try:
            strategy = self.registry.resolve(envelope.command)
        except UnknownCommand as e:
            logger.warning(f"Dropping entry {entry.entry_id} (key={envelope.correlation_key}): {e}")
            self._acknowledge(entry.entry_id)
            return DispatchOutcome.SKIPPED_UNKNOWN

        start_time = time.time()
        with self._keep_claim(entry.entry_id):
            result = self._execute(strategy, envelope.correlation_key, envelope.command, envelope.payload)

        try:
            self.store.put(result_key(envelope.correlation_key), result.to_wire())
        except Exception as e:
            retryable, reason = self._classify_exception(e)
            logger.error(
                f"Failed to publish result for {envelope.correlation_key} (retryable={retryable}): {reason}. "
                f"Entry {entry.entry_id} stays pending",
                exc_info=True,
            )
            return DispatchOutcome.PUBLISH_FAILED

        logger.info(
            f"Published {'success' if result.ok else 'failure'} for {envelope.command} "
            f"job {envelope.correlation_key} in {time.time() - start_time:.1f}s",
            extra={"entry_id": entry.entry_id, "correlation_key": envelope.correlation_key},
        )
        self._acknowledge(entry.entry_id)
        return DispatchOutcome.PUBLISHED

    def shutdown(self) -> None:
        """Acknowledge a deferred entry and close clients."""
        logger.info("Shutting down dispatcher")
        try:
            self._flush_pending_ack()
        except QueueUnavailable as e:
            logger.error(f"Failed to acknowledge {self._pending_ack} at shutdown, it will be delivered again: {e}")

        for client in (self.queue, self.store):
            close = getattr(client, "close", None)
            if close is None:
                continue
            try:
                close()
            except Exception as e:
                logger.error(f"Failed to close {type(client).__name__}: {e}")

    # ---- internals ----

    def _claim(self) -> Optional[QueueEntry]:
        if self.cfg.reclaim_idle_ms > 0:
            stale = self.queue.claim_stale(
                self.stream, self.group, self.consumer, min_idle_ms=self.cfg.reclaim_idle_ms, count=1
            )
            if stale:
                logger.warning(f"Reclaimed stale entry {stale[0].entry_id} from another consumer")
                return stale[0]

        entries = self.queue.read_group(
            self.stream, self.group, self.consumer, count=1, block_ms=self.cfg.poll_interval_ms
        )
        return entries[0] if entries else None

    def _execute(self, strategy: Any, key: str, command: str, params: dict) -> Result:
        """Run a strategy; nothing it does can escape as an exception."""
        try:
            archive = None
            if getattr(strategy, "needs_archive", False):
                try:
                    archive = self.store.get(key)
                except ObjectNotFound:
                    return Failure(f"No input archive found for {key}")
            request = JobRequest(correlation_key=key, command=command, params=dict(params), archive=archive)
            return strategy.execute(request)
        except Exception as e:
            logger.error(f"Strategy for '{command}' raised on {key}: {e}", exc_info=True)
            return Failure(str(e) or type(e).__name__)

    @contextmanager
    def _keep_claim(self, entry_id: str) -> Iterator[None]:
        """
        While the block runs, reset the idle time of entry_id every
        reclaim_idle_ms / 2 so other consumers do not reclaim a job that is
        still being processed. No-op when reclaiming is disabled.
        """
        if self.cfg.reclaim_idle_ms <= 0:
            yield
            return

        interval = self.cfg.reclaim_idle_ms / 2000
        done = threading.Event()

        def keepalive() -> None:
            while not done.wait(interval):
                try:
                    self.queue.refresh_claim(self.stream, self.group, self.consumer, entry_id)
                except QueueUnavailable as e:
                    logger.warning(f"Failed to refresh claim on {entry_id}: {e}")

        thread = threading.Thread(target=keepalive, name=f"keep-claim-{entry_id}", daemon=True)
        thread.start()
        try:
            yield
        finally:
            done.set()
            thread.join()

    def _acknowledge(self, entry_id: str) -> None:
        if self.cfg.ack_immediately:
            self.queue.ack(self.stream, self.group, entry_id)
        else:
            self._pending_ack = entry_id

    def _flush_pending_ack(self) -> None:
        if self._pending_ack is None:
            return
        self.queue.ack(self.stream, self.group, self._pending_ack)
        logger.debug(f"Acknowledged entry {self._pending_ack}")
        self._pending_ack = None

    def _classify_exception(self, exc: Exception) -> tuple[bool, str]:
        """
        Returns (retryable, reason).
        Default: retryable=True unless it's a TerminalTaskError.
        """
        if isinstance(exc, TerminalTaskError):
            return False, str(exc)
        if isinstance(exc, RetryableTaskError):
            return True, str(exc)
        return True, f"{type(exc).__name__}: {exc}"
