from __future__ import annotations

import os
import uuid
from dataclasses import dataclass
from typing import Optional

from playground_orch.errors import ConfigError


def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def _env_number(name: str, default, cast=int):
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return cast(raw)
    except ValueError as e:
        raise ConfigError(f"{name} must be a number, got {raw!r}") from e


@dataclass(frozen=True)
class QueueConfig:
    redis_url: str = "redis://localhost:6379/0"
    stream_name: str = "buildstream"
    group_name: str = "consumergroup"

    # Producer trims entries older than this on every append (XADD MINID).
    # <= 0 disables trimming.
    stream_retention_seconds: int = 180

    @classmethod
    def from_env(cls) -> "QueueConfig":
        return cls(
            redis_url=os.environ.get("PLAYGROUND_REDIS_URL", cls.redis_url),
            stream_name=os.environ.get("PLAYGROUND_STREAM_NAME", cls.stream_name),
            group_name=os.environ.get("PLAYGROUND_GROUP_NAME", cls.group_name),
            stream_retention_seconds=_env_number(
                "PLAYGROUND_STREAM_RETENTION_SECONDS", cls.stream_retention_seconds
            ),
        )


@dataclass(frozen=True)
class StoreConfig:
    bucket: str
    endpoint_url: Optional[str] = None   # MinIO / LocalStack; None means AWS S3
    region: str = "us-east-1"
    access_key: Optional[str] = None
    secret_key: Optional[str] = None

    @classmethod
    def from_env(cls) -> "StoreConfig":
        bucket = os.environ.get("PLAYGROUND_S3_BUCKET")
        if not bucket:
            raise ConfigError("Missing object store bucket. Set PLAYGROUND_S3_BUCKET environment variable")
        return cls(
            bucket=bucket,
            endpoint_url=os.environ.get("PLAYGROUND_S3_ENDPOINT") or None,
            region=os.environ.get("PLAYGROUND_REGION", "us-east-1"),
            access_key=os.environ.get("PLAYGROUND_S3_ACCESS_KEY") or None,
            secret_key=os.environ.get("PLAYGROUND_S3_SECRET_KEY") or None,
        )


@dataclass(frozen=True)
class WorkerConfig:
    queue: QueueConfig
    store: StoreConfig
    consumer_name: str                     # unique per worker process within the group

    poll_interval_ms: int = 1000           # blocking read bound when the stream is idle
    ack_immediately: bool = False          # False: ack the entry at the start of the next iteration
    reclaim_idle_ms: int = 0               # > 0: claim pending entries idle this long before reading new ones

    # Shutdown behavior:
    # > 0: Exit after N empty polls - for batch runs
    # <= 0: Run indefinitely (daemon mode)
    shutdown_after_empty_polls: int = 0

    tool_executable: str = "dotnet"
    work_root: Optional[str] = None        # parent of working areas; None means the system temp dir
    warm_up: bool = False                  # restore package cache and install templates at startup

    @classmethod
    def from_env(cls, consumer_name: Optional[str] = None) -> "WorkerConfig":
        return cls(
            queue=QueueConfig.from_env(),
            store=StoreConfig.from_env(),
            consumer_name=consumer_name or os.environ.get("PLAYGROUND_CONSUMER_NAME") or str(uuid.uuid4()),
            poll_interval_ms=_env_number("PLAYGROUND_POLL_INTERVAL_MS", cls.poll_interval_ms),
            ack_immediately=_env_bool("PLAYGROUND_ACK_IMMEDIATELY", cls.ack_immediately),
            reclaim_idle_ms=_env_number("PLAYGROUND_RECLAIM_IDLE_MS", cls.reclaim_idle_ms),
            shutdown_after_empty_polls=_env_number(
                "PLAYGROUND_SHUTDOWN_AFTER_EMPTY_POLLS", cls.shutdown_after_empty_polls
            ),
            tool_executable=os.environ.get("PLAYGROUND_TOOL", cls.tool_executable),
            work_root=os.environ.get("PLAYGROUND_WORK_ROOT") or None,
            warm_up=_env_bool("PLAYGROUND_WARM_UP", cls.warm_up),
        )


@dataclass(frozen=True)
class ProducerConfig:
    queue: QueueConfig
    store: StoreConfig

    timeout_seconds: float = 180.0
    poll_interval_seconds: float = 1.0

    @classmethod
    def from_env(cls) -> "ProducerConfig":
        return cls(
            queue=QueueConfig.from_env(),
            store=StoreConfig.from_env(),
            timeout_seconds=_env_number("PLAYGROUND_TIMEOUT_SECONDS", cls.timeout_seconds, float),
            poll_interval_seconds=_env_number(
                "PLAYGROUND_POLL_INTERVAL_SECONDS", cls.poll_interval_seconds, float
            ),
        )
