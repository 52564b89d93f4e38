"""Client construction shared by the CLI commands."""

import sys
from dataclasses import replace

from rich.console import Console

from playground_orch.config import ProducerConfig, QueueConfig, StoreConfig
from playground_orch.errors import ConfigError

console = Console()


def load_queue_config(stream=None, group=None, redis_url=None) -> QueueConfig:
    cfg = QueueConfig.from_env()
    overrides = {}
    if stream:
        overrides['stream_name'] = stream
    if group:
        overrides['group_name'] = group
    if redis_url:
        overrides['redis_url'] = redis_url
    return replace(cfg, **overrides)


def load_store_config() -> StoreConfig:
    try:
        return StoreConfig.from_env()
    except ConfigError as e:
        console.print(f"[red]Error:[/red] {e}")
        sys.exit(1)


def load_producer_config(timeout=None) -> ProducerConfig:
    try:
        cfg = ProducerConfig.from_env()
    except ConfigError as e:
        console.print(f"[red]Error:[/red] {e}")
        sys.exit(1)
    if timeout is not None:
        cfg = replace(cfg, timeout_seconds=timeout)
    return cfg


def get_stream_client(queue_cfg: QueueConfig):
    from playground_orch.io.streams import RedisStreamClient

    return RedisStreamClient(queue_cfg.redis_url)


def get_object_store(store_cfg: StoreConfig = None):
    from playground_orch.io.object_store import ObjectStore

    return ObjectStore.from_config(store_cfg or load_store_config())
