from __future__ import annotations

import logging
import time
import uuid
from typing import Any, Callable, Dict, List, Optional, Union

from playground_orch.config import ProducerConfig
from playground_orch.core.envelope import encode_envelope, new_envelope
from playground_orch.core.models import TIMEOUT, Command, Timeout, result_key
from playground_orch.errors import ObjectNotFound
from playground_orch.housekeeping.templates import read_published_templates
from playground_orch.io.streams import min_id_for_retention

logger = logging.getLogger(__name__)

Outcome = Union[bytes, Timeout]


class Correlator:
    """
    Producer side: submits a job and waits for its result in the object store.

    The producer only ever appends to the stream; claiming and acknowledging
    entries belongs to the workers. A job that times out here keeps running,
    and its result is written even though nobody reads it.
    """

    def __init__(
        self,
        cfg: ProducerConfig,
        queue: Any,
        store: Any,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.cfg = cfg
        self.queue = queue
        self.store = store
        self._clock = clock
        self._sleep = sleep

    def initialize(self) -> None:
        """Make sure the consumer group exists so early entries are not missed."""
        self.queue.ensure_group(self.cfg.queue.stream_name, self.cfg.queue.group_name)

    def submit(
        self,
        command: Union[str, Command],
        archive: Optional[bytes] = None,
        params: Optional[Dict[str, str]] = None,
    ) -> Outcome:
        """
        Store the input, enqueue the job and wait for its result.

        Args:
            command: Command tag ("build", "test", "template")
            archive: Input archive for build/test
            params: Command parameters (template/projectName for template)

        Returns:
            The raw result bytes (success output or error text, the two are
            not distinguishable), or TIMEOUT.

        Raises:
            ObjectStoreUnavailable, QueueUnavailable: The job could not be submitted
        """
        envelope = new_envelope(command, **(params or {}))
        key = envelope.correlation_key

        if archive is not None:
            self.store.put(key, archive)

        min_id = min_id_for_retention(self.cfg.queue.stream_retention_seconds)
        entry_id = self.queue.append(self.cfg.queue.stream_name, encode_envelope(envelope), min_id=min_id)
        logger.info(
            f"Entry added to stream {self.cfg.queue.stream_name} with key {key} as {entry_id}",
            extra={"command": envelope.command, "correlation_key": key},
        )

        return self.wait_for_result(key)

    def wait_for_result(self, key: str) -> Outcome:
        """
        Poll for "<key>_result" until it exists or the timeout elapses.

        Transport errors while polling are retried like a missing result.
        """
        target = result_key(key)
        start = self._clock()
        while self._clock() - start < self.cfg.timeout_seconds:
            try:
                data = self.store.get(target)
                logger.info(f"Result for {key} received in {self._clock() - start:.1f}s")
                return data
            except ObjectNotFound:
                pass
            except Exception as e:
                logger.debug(f"Polling {target} failed, retrying: {e}")
            self._sleep(self.cfg.poll_interval_seconds)

        logger.warning(f"No result for {key} after {self.cfg.timeout_seconds:.0f}s")
        return TIMEOUT

    def build(self, archive: bytes) -> Outcome:
        return self.submit(Command.BUILD, archive=archive)

    def test(self, archive: bytes) -> Outcome:
        return self.submit(Command.TEST, archive=archive)

    def template(self, template: str, project_name: str) -> Outcome:
        if not template or not template.strip():
            raise ValueError("Template name is required.")
        if not project_name or not project_name.strip():
            raise ValueError("Project name is required.")
        return self.submit(Command.TEMPLATE, params={"template": template, "projectName": project_name})

    def list_templates(self) -> List[str]:
        """Template short names published by the template catalog."""
        return read_published_templates(self.store)

    def share(self, data: bytes) -> str:
        """Store a blob under a fresh key and return the key."""
        if not data:
            raise ValueError("A valid file is required.")
        key = str(uuid.uuid4())
        self.store.put(key, data)
        logger.info(f"Shared {len(data)} bytes as {key}")
        return key

    def fetch_shared(self, key: str) -> bytes:
        if not key or not key.strip():
            raise ValueError("File ID is required.")
        return self.store.get(key)
