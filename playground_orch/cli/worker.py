"""
Playground Worker CLI - Run a worker that processes jobs from the stream.

Usage:
  playground worker
  playground worker --consumer-name worker-1 --ack-immediately

Environment variables:
  PLAYGROUND_REDIS_URL, PLAYGROUND_STREAM_NAME, PLAYGROUND_GROUP_NAME
  PLAYGROUND_S3_BUCKET, PLAYGROUND_S3_ENDPOINT, PLAYGROUND_S3_ACCESS_KEY, PLAYGROUND_S3_SECRET_KEY
  PLAYGROUND_TOOL (external toolchain executable, default: dotnet)
"""

import logging
import signal
import sys
import threading
from dataclasses import replace
from typing import Any

import click

from playground_orch.errors import ConfigError

# Use "playground_orch" namespace so logs appear at INFO level
logger = logging.getLogger("playground_orch.cli.worker")


@click.command()
@click.option('--consumer-name', type=str, help='Consumer name within the group (default: random UUID)')
@click.option('--stream', type=str, help='Stream name (default: from PLAYGROUND_STREAM_NAME or buildstream)')
@click.option('--group', type=str, help='Consumer group (default: from PLAYGROUND_GROUP_NAME or consumergroup)')
@click.option('--poll-interval-ms', type=int, help='Blocking read bound when the stream is idle')
@click.option('--ack-immediately', is_flag=True, help='Acknowledge right after publishing instead of on the next iteration')
@click.option('--reclaim-idle-ms', type=int, help='Take over pending entries idle this long (0 disables)')
@click.option('--shutdown-after-empty', type=int, help='Shutdown after N empty polls (0 runs forever)')
@click.option('--tool', type=str, help='Toolchain executable (default: from PLAYGROUND_TOOL or dotnet)')
@click.option('--warm-up', is_flag=True, help='Restore NuGet cache and install templates at startup')
def worker(
    consumer_name,
    stream,
    group,
    poll_interval_ms,
    ack_immediately,
    reclaim_idle_ms,
    shutdown_after_empty,
    tool,
    warm_up,
):
    """Run worker to process build/test/template jobs from the stream."""

    from playground_orch.config import WorkerConfig
    from playground_orch.core.dispatcher import Dispatcher
    from playground_orch.core.registry import build_default_registry
    from playground_orch.housekeeping.package_cache import warm_up as warm_up_worker
    from playground_orch.io.object_store import ObjectStore
    from playground_orch.io.streams import RedisStreamClient
    from playground_orch.jobs.toolchain import ToolRunner

    try:
        cfg = WorkerConfig.from_env(consumer_name=consumer_name)
    except ConfigError as e:
        logger.error(str(e))
        sys.exit(1)

    queue_overrides = {k: v for k, v in (('stream_name', stream), ('group_name', group)) if v}
    overrides = {
        k: v
        for k, v in (
            ('poll_interval_ms', poll_interval_ms),
            ('reclaim_idle_ms', reclaim_idle_ms),
            ('shutdown_after_empty_polls', shutdown_after_empty),
            ('tool_executable', tool),
        )
        if v is not None
    }
    # flags can only switch these on; the environment decides otherwise
    if ack_immediately:
        overrides['ack_immediately'] = True
    if warm_up:
        overrides['warm_up'] = True
    cfg = replace(cfg, queue=replace(cfg.queue, **queue_overrides), **overrides)

    # Switch to JSON logs: root=WARNING, playground_orch namespace=INFO
    from playground_orch.logging_setup import setup_logging
    setup_logging(verbose=click.get_current_context().find_root().obj.get('verbose', False), consumer=cfg.consumer_name)

    logger.info(
        "Starting Playground Worker",
        extra={
            "stream": cfg.queue.stream_name,
            "group": cfg.queue.group_name,
            "bucket": cfg.store.bucket,
            "ack_immediately": cfg.ack_immediately,
        },
    )

    # Create clients
    queue = RedisStreamClient(cfg.queue.redis_url)
    store = ObjectStore.from_config(cfg.store)
    runner = ToolRunner()
    registry = build_default_registry(runner, executable=cfg.tool_executable, work_root=cfg.work_root)

    warm = None
    if cfg.warm_up:
        def warm():
            warm_up_worker(store, runner, executable=cfg.tool_executable)

    dispatcher = Dispatcher(cfg, queue, store, registry, warm_up=warm)
    stop_event = threading.Event()
    _install_signal_handlers(stop_event)

    try:
        store.ensure_bucket()
        dispatcher.initialize()
        dispatcher.run_forever(stop_event)
        logger.info("Worker completed successfully")
    except KeyboardInterrupt:
        logger.info("Worker interrupted by user")
    except Exception as e:
        logger.error(f"Worker failed: {e}", exc_info=True)
        raise
    finally:
        dispatcher.shutdown()
        logger.info("Worker shutdown complete")


def _install_signal_handlers(stop_event: threading.Event) -> None:
    """
    Install signal handlers for graceful shutdown.

    Handles SIGTERM (sent by docker/k8s during shutdown) and SIGINT (Ctrl+C).
    When a signal is received:
    - Stops claiming new entries after the current iteration
    - Lets a running tool invocation finish
    A second signal forces an immediate exit; the entry in progress is then
    left pending in the group.
    """

    def signal_handler(signum: int, frame: Any) -> None:
        sig_name = signal.Signals(signum).name
        if not stop_event.is_set():
            logger.info(
                f"Received {sig_name} signal. Initiating graceful shutdown. "
                f"Will stop claiming entries and finish the current job if any."
            )
            stop_event.set()
        else:
            logger.warning(
                f"Received second {sig_name} signal. Forcing immediate shutdown. "
                "Current entry (if any) stays pending in the consumer group."
            )
            raise KeyboardInterrupt("Forced shutdown by second signal")

    signal.signal(signal.SIGTERM, signal_handler)
    signal.signal(signal.SIGINT, signal_handler)
    logger.info("Signal handlers installed for graceful shutdown (SIGTERM, SIGINT)")
