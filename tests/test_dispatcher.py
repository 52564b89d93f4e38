from __future__ import annotations

import json
import threading
import time
from dataclasses import replace
from typing import List

from playground_orch.core.dispatcher import DispatchOutcome, Dispatcher
from playground_orch.core.envelope import encode_envelope, new_envelope
from playground_orch.core.models import Failure, Success
from playground_orch.core.registry import StrategyRegistry
from playground_orch.errors import QueueUnavailable

from conftest import FakeStream

GROUP = "consumergroup"
STREAM = "buildstream"


class RecordingStrategy:
    """Echoes the archive back, or the params when no archive is needed."""

    def __init__(self, needs_archive: bool = True, delay: float = 0.0):
        self.needs_archive = needs_archive
        self.delay = delay
        self.keys: List[str] = []
        self._lock = threading.Lock()

    def execute(self, request):
        if self.delay:
            time.sleep(self.delay)
        with self._lock:
            self.keys.append(request.correlation_key)
        if self.needs_archive:
            return Success(b"built:" + request.archive)
        return Success(json.dumps(request.params, sort_keys=True).encode("utf-8"))


class ExplodingStrategy:
    needs_archive = False

    def execute(self, request):
        raise RuntimeError("disk full")


def _registry(**strategies) -> StrategyRegistry:
    registry = StrategyRegistry()
    for command, strategy in strategies.items():
        registry.register(command, strategy)
    return registry


def _submit(stream, store, command="build", archive=b"zip", **params) -> str:
    envelope = new_envelope(command, **params)
    if archive is not None:
        store.put(envelope.correlation_key, archive)
    stream.append(STREAM, encode_envelope(envelope))
    return envelope.correlation_key


def _dispatcher(cfg, stream, store, registry) -> Dispatcher:
    dispatcher = Dispatcher(cfg, stream, store, registry)
    dispatcher.initialize()
    return dispatcher


def test_result_is_published_and_ack_deferred_to_next_iteration(worker_config, stream, store) -> None:
    dispatcher = _dispatcher(worker_config, stream, store, _registry(build=RecordingStrategy()))
    key = _submit(stream, store, archive=b"project")

    assert dispatcher.run_once() is DispatchOutcome.PUBLISHED
    assert store.objects[f"{key}_result"] == b"built:project"
    assert stream.pending(GROUP) == {"1-0": "worker-1"}
    assert stream.ack_counts["1-0"] == 0

    assert dispatcher.run_once() is DispatchOutcome.IDLE
    assert stream.pending(GROUP) == {}
    assert stream.ack_counts["1-0"] == 1


def test_ack_immediately_acknowledges_after_publishing(worker_config, stream, store) -> None:
    cfg = replace(worker_config, ack_immediately=True)
    dispatcher = _dispatcher(cfg, stream, store, _registry(build=RecordingStrategy()))
    _submit(stream, store)

    assert dispatcher.run_once() is DispatchOutcome.PUBLISHED
    assert stream.pending(GROUP) == {}
    assert stream.ack_counts["1-0"] == 1


def test_shutdown_acknowledges_deferred_entry(worker_config, stream, store) -> None:
    dispatcher = _dispatcher(worker_config, stream, store, _registry(build=RecordingStrategy()))
    _submit(stream, store)
    dispatcher.run_once()

    dispatcher.shutdown()

    assert stream.ack_counts["1-0"] == 1
    assert stream.closed


def test_malformed_entry_is_skipped_without_ack(worker_config, stream, store) -> None:
    cfg = replace(worker_config, ack_immediately=True)
    strategy = RecordingStrategy()
    dispatcher = _dispatcher(cfg, stream, store, _registry(build=strategy))
    stream.append(STREAM, {"payload": json.dumps({"command": "build"})})

    assert dispatcher.run_once() is DispatchOutcome.SKIPPED_MALFORMED
    assert dispatcher.run_once() is DispatchOutcome.IDLE

    assert stream.pending(GROUP) == {"1-0": "worker-1"}
    assert stream.ack_counts["1-0"] == 0
    assert strategy.keys == []
    assert store.objects == {}


def test_unknown_command_is_acknowledged_and_never_routed(worker_config, stream, store) -> None:
    cfg = replace(worker_config, ack_immediately=True)
    strategy = RecordingStrategy()
    dispatcher = _dispatcher(cfg, stream, store, _registry(build=strategy))
    key = _submit(stream, store, command="deploy")

    assert dispatcher.run_once() is DispatchOutcome.SKIPPED_UNKNOWN
    assert stream.ack_counts["1-0"] == 1
    assert strategy.keys == []
    assert f"{key}_result" not in store.objects


def test_failed_publish_leaves_entry_pending(worker_config, stream, store) -> None:
    cfg = replace(worker_config, ack_immediately=True)
    dispatcher = _dispatcher(cfg, stream, store, _registry(build=RecordingStrategy()))
    _submit(stream, store)
    store.fail_puts = True

    assert dispatcher.run_once() is DispatchOutcome.PUBLISH_FAILED
    assert stream.pending(GROUP) == {"1-0": "worker-1"}
    assert stream.ack_counts["1-0"] == 0


def test_strategy_exception_becomes_error_result(worker_config, stream, store) -> None:
    dispatcher = _dispatcher(worker_config, stream, store, _registry(template=ExplodingStrategy()))
    key = _submit(stream, store, command="template", archive=None, template="aelf", projectName="Hello")

    assert dispatcher.run_once() is DispatchOutcome.PUBLISHED
    assert store.objects[f"{key}_result"] == b"disk full"


def test_missing_input_archive_becomes_error_result(worker_config, stream, store) -> None:
    strategy = RecordingStrategy()
    dispatcher = _dispatcher(worker_config, stream, store, _registry(build=strategy))
    key = _submit(stream, store, archive=None)

    assert dispatcher.run_once() is DispatchOutcome.PUBLISHED
    assert store.objects[f"{key}_result"] == f"No input archive found for {key}".encode("utf-8")
    assert strategy.keys == []


def test_template_params_reach_the_strategy(worker_config, stream, store) -> None:
    dispatcher = _dispatcher(worker_config, stream, store, _registry(template=RecordingStrategy(needs_archive=False)))
    key = _submit(stream, store, command="template", archive=None, template="aelf", projectName="Hello")

    dispatcher.run_once()

    assert json.loads(store.objects[f"{key}_result"]) == {"projectName": "Hello", "template": "aelf"}
    assert key not in store.get_calls


def test_stale_entries_are_reclaimed_before_new_ones(worker_config, stream, store) -> None:
    cfg = replace(worker_config, consumer_name="worker-2", reclaim_idle_ms=60_000, ack_immediately=True)
    strategy = RecordingStrategy()
    dispatcher = _dispatcher(cfg, stream, store, _registry(build=strategy))
    stale_key = _submit(stream, store, archive=b"first")
    fresh_key = _submit(stream, store, archive=b"second")
    stream.read_group(STREAM, GROUP, "crashed-worker", count=1, block_ms=None)

    # not idle long enough yet
    dispatcher.run_once()
    assert strategy.keys == [fresh_key]

    stream.age_pending(GROUP, 120)
    dispatcher.run_once()
    assert strategy.keys == [fresh_key, stale_key]
    assert stream.pending(GROUP) == {}


def test_each_entry_is_processed_by_exactly_one_worker(worker_config, stream, store) -> None:
    strategy = RecordingStrategy(delay=0.002)
    registry = _registry(build=strategy)
    keys = [_submit(stream, store, archive=f"p{i}".encode()) for i in range(24)]

    stop_event = threading.Event()
    dispatchers = [
        _dispatcher(replace(worker_config, consumer_name=f"worker-{i}"), stream, store, registry) for i in range(4)
    ]
    threads = [threading.Thread(target=d.run_forever, args=(stop_event,)) for d in dispatchers]
    for t in threads:
        t.start()

    deadline = time.monotonic() + 10
    while time.monotonic() < deadline and not all(f"{k}_result" in store.objects for k in keys):
        time.sleep(0.01)
    stop_event.set()
    for t in threads:
        t.join(timeout=5)
    for d in dispatchers:
        d.shutdown()

    assert sorted(strategy.keys) == sorted(keys)
    assert all(count == 1 for count in stream.ack_counts.values())
    assert len(stream.ack_counts) == 24
    assert stream.pending(GROUP) == {}


def test_run_forever_returns_immediately_when_already_stopped(worker_config, stream, store) -> None:
    dispatcher = _dispatcher(worker_config, stream, store, _registry(build=RecordingStrategy()))
    _submit(stream, store)
    stop_event = threading.Event()
    stop_event.set()

    dispatcher.run_forever(stop_event)

    assert stream.pending(GROUP) == {}
    assert store.objects.keys() == {stream.entries["1-0"]["key"]}


def test_run_forever_stops_after_empty_polls(worker_config, stream, store) -> None:
    cfg = replace(worker_config, shutdown_after_empty_polls=3)
    dispatcher = _dispatcher(cfg, stream, store, _registry(build=RecordingStrategy()))
    key = _submit(stream, store)

    dispatcher.run_forever(threading.Event())

    assert f"{key}_result" in store.objects
    assert stream.ack_counts["1-0"] == 1


class FlakyStream(FakeStream):
    def __init__(self, failures: int):
        super().__init__()
        self.failures = failures

    def read_group(self, *args, **kwargs):
        if self.failures > 0:
            self.failures -= 1
            raise QueueUnavailable("Connection reset by peer")
        return super().read_group(*args, **kwargs)


def test_queue_outage_does_not_stop_the_loop(worker_config, store) -> None:
    stream = FlakyStream(failures=2)
    cfg = replace(worker_config, shutdown_after_empty_polls=1)
    dispatcher = _dispatcher(cfg, stream, store, _registry(build=RecordingStrategy()))
    key = _submit(stream, store)

    dispatcher.run_forever(threading.Event())

    assert stream.failures == 0
    assert f"{key}_result" in store.objects


def test_warm_up_failure_is_not_fatal(worker_config, stream, store) -> None:
    def warm_up():
        raise RuntimeError("no cache published")

    dispatcher = Dispatcher(worker_config, stream, store, _registry(build=RecordingStrategy()), warm_up=warm_up)
    dispatcher.initialize()

    assert GROUP in stream.groups


def test_error_results_are_indistinguishable_on_the_wire(worker_config, stream, store) -> None:
    class Failing:
        needs_archive = False

        def execute(self, request):
            return Failure("No csproj file found")

    dispatcher = _dispatcher(worker_config, stream, store, _registry(build=Failing()))
    key = _submit(stream, store, archive=None)

    dispatcher.run_once()

    assert store.objects[f"{key}_result"] == b"No csproj file found"


def test_long_running_job_is_not_reclaimed_by_another_worker(worker_config, stream, store) -> None:
    strategy = RecordingStrategy(delay=0.5)
    registry = _registry(build=strategy)
    busy = _dispatcher(replace(worker_config, consumer_name="worker-a", reclaim_idle_ms=100), stream, store, registry)
    idle = _dispatcher(replace(worker_config, consumer_name="worker-b", reclaim_idle_ms=100), stream, store, registry)
    key = _submit(stream, store)

    outcomes = []
    thread = threading.Thread(target=lambda: outcomes.append(busy.run_once()))
    thread.start()
    time.sleep(0.25)
    assert idle.run_once() is DispatchOutcome.IDLE
    thread.join(timeout=5)

    assert outcomes == [DispatchOutcome.PUBLISHED]
    assert strategy.keys == [key]
    assert stream.pending(GROUP) == {"1-0": "worker-a"}


def test_reclaimed_malformed_entry_counts_as_idle(worker_config, stream, store) -> None:
    cfg = replace(worker_config, reclaim_idle_ms=1, shutdown_after_empty_polls=3)
    dispatcher = _dispatcher(cfg, stream, store, _registry(build=RecordingStrategy()))
    stream.append(STREAM, {"payload": json.dumps({"command": "build"})})

    assert dispatcher.run_once() is DispatchOutcome.SKIPPED_MALFORMED
    stream.age_pending(GROUP, 1)
    assert dispatcher.run_once() is DispatchOutcome.IDLE

    worker = threading.Thread(target=dispatcher.run_forever, args=(threading.Event(),))
    worker.start()
    worker.join(timeout=5)

    assert not worker.is_alive()
    assert stream.pending(GROUP) == {"1-0": "worker-1"}
