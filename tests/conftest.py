"""Shared test fixtures: in-memory stream, object store and a scripted tool runner."""

from __future__ import annotations

import io
import threading
import time
import zipfile
from collections import Counter, OrderedDict
from pathlib import Path
from typing import Callable, Dict, List, Optional

import pytest

from playground_orch.config import ProducerConfig, QueueConfig, StoreConfig, WorkerConfig
from playground_orch.core.models import QueueEntry
from playground_orch.errors import ObjectNotFound, ObjectStoreUnavailable
from playground_orch.jobs.toolchain import ToolOutcome


class FakeStream:
    """
    Consumer-group semantics of a Redis stream, in memory and thread-safe.

    Every entry is delivered to at most one consumer via read_group; it stays
    pending until acknowledged, and claim_stale can move it to another consumer.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._seq = 0
        self.entries: "OrderedDict[str, Dict[str, str]]" = OrderedDict()
        self.groups: Dict[str, Dict] = {}
        self.min_ids: List[Optional[str]] = []
        self.ack_counts: Counter = Counter()
        self.closed = False

    def ensure_group(self, stream: str, group: str) -> None:
        with self._lock:
            self.groups.setdefault(group, {"cursor": 0, "pending": {}})

    def append(self, stream: str, fields: Dict[str, str], min_id: Optional[str] = None) -> str:
        with self._lock:
            self._seq += 1
            entry_id = f"{self._seq}-0"
            self.entries[entry_id] = dict(fields)
            self.min_ids.append(min_id)
            return entry_id

    def read_group(self, stream, group, consumer, count=1, block_ms=1000) -> List[QueueEntry]:
        with self._lock:
            state = self.groups[group]
            ids = list(self.entries)[state["cursor"]:state["cursor"] + count]
            state["cursor"] += len(ids)
            for entry_id in ids:
                state["pending"][entry_id] = {"consumer": consumer, "since": time.monotonic()}
            claimed = [QueueEntry(entry_id=i, fields=dict(self.entries[i])) for i in ids]
        if not claimed and block_ms:
            time.sleep(min(block_ms, 5) / 1000)
        return claimed

    def claim_stale(self, stream, group, consumer, min_idle_ms, count=1) -> List[QueueEntry]:
        now = time.monotonic()
        claimed = []
        with self._lock:
            for entry_id, info in self.groups[group]["pending"].items():
                if len(claimed) >= count:
                    break
                if (now - info["since"]) * 1000 >= min_idle_ms:
                    info.update(consumer=consumer, since=now)
                    claimed.append(QueueEntry(entry_id=entry_id, fields=dict(self.entries[entry_id])))
        return claimed

    def refresh_claim(self, stream, group, consumer, entry_id) -> None:
        with self._lock:
            info = self.groups[group]["pending"].get(entry_id)
            if info is not None:
                info.update(consumer=consumer, since=time.monotonic())

    def ack(self, stream, group, entry_id) -> int:
        with self._lock:
            self.ack_counts[entry_id] += 1
            return 1 if self.groups[group]["pending"].pop(entry_id, None) else 0

    def pending(self, group: str) -> Dict[str, str]:
        """entry id -> consumer currently holding it"""
        with self._lock:
            return {i: info["consumer"] for i, info in self.groups[group]["pending"].items()}

    def age_pending(self, group: str, seconds: float) -> None:
        with self._lock:
            for info in self.groups[group]["pending"].values():
                info["since"] -= seconds

    def close(self) -> None:
        self.closed = True


class FakeObjectStore:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.objects: Dict[str, bytes] = {}
        self.fail_puts = False
        self.get_calls: List[str] = []

    def put(self, key: str, data) -> None:
        if self.fail_puts:
            raise ObjectStoreUnavailable(f"Failed to put {key}: connection refused")
        body = data.read() if hasattr(data, "read") else data
        with self._lock:
            self.objects[key] = bytes(body)

    def get(self, key: str) -> bytes:
        with self._lock:
            self.get_calls.append(key)
            try:
                return self.objects[key]
            except KeyError:
                raise ObjectNotFound(key) from None

    def exists(self, key: str) -> bool:
        with self._lock:
            return key in self.objects

    def ensure_bucket(self) -> None:
        pass


class ScriptedToolRunner:
    """
    Stands in for ToolRunner. Records every call; a handler decides the outcome
    and may create files in the working directory the way the real tool would.
    """

    def __init__(self, handler: Optional[Callable[[List[str], Optional[Path]], ToolOutcome]] = None):
        self.handler = handler
        self.calls: List[tuple] = []

    def run(self, executable, args, cwd=None) -> ToolOutcome:
        args = [str(a) for a in args]
        cwd = Path(cwd) if cwd is not None else None
        self.calls.append((executable, args, cwd))
        if self.handler is None:
            return ToolOutcome(exit_code=0, stdout="")
        return self.handler(args, cwd)


def make_zip(files: Dict[str, bytes]) -> bytes:
    buf = io.BytesIO()
    with zipfile.ZipFile(buf, "w") as zf:
        for name, data in files.items():
            zf.writestr(name, data)
    return buf.getvalue()


@pytest.fixture()
def stream() -> FakeStream:
    return FakeStream()


@pytest.fixture()
def store() -> FakeObjectStore:
    return FakeObjectStore()


@pytest.fixture()
def queue_config() -> QueueConfig:
    return QueueConfig(redis_url="redis://fake:6379/0", stream_name="buildstream", group_name="consumergroup")


@pytest.fixture()
def worker_config(queue_config) -> WorkerConfig:
    return WorkerConfig(
        queue=queue_config,
        store=StoreConfig(bucket="playground"),
        consumer_name="worker-1",
        poll_interval_ms=5,
    )


@pytest.fixture()
def producer_config(queue_config) -> ProducerConfig:
    return ProducerConfig(
        queue=queue_config,
        store=StoreConfig(bucket="playground"),
        timeout_seconds=3.0,
        poll_interval_seconds=1.0,
    )
