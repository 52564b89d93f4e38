import json
import logging
import os
import sys
from datetime import datetime, timezone
from typing import Any, Dict, Mapping, Optional

# Worker logs go to stdout as one JSON object per line so the container runtime
# (docker / k8s log driver) can ship them as-is.
# Everything is WARNING by default, except logging.getLogger("playground_orch")
# (and sub loggers) which is INFO.

# LogRecord attributes that are not user supplied `extra=` fields
_RECORD_ATTRS = frozenset(
    logging.LogRecord("", logging.INFO, "", 0, "", None, None).__dict__
) | {"message", "asctime", "taskName"}


class JsonFormatter(logging.Formatter):
    """
    One JSON object per record: timestamp, level, logger, message, the
    record's `extra=` fields, and fields fixed for the whole process (e.g.
    the consumer name, so logs of competing workers can be told apart).
    """

    def __init__(self, static_fields: Optional[Mapping[str, Any]] = None):
        super().__init__()
        self.static_fields = dict(static_fields or {})

    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(timespec="milliseconds"),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        payload.update(self.static_fields)

        for k, v in record.__dict__.items():
            if k in _RECORD_ATTRS or k.startswith("_"):
                continue
            payload.setdefault(k, v)

        if record.exc_info:
            payload["exc_type"] = record.exc_info[0].__name__ if record.exc_info[0] else None
            payload["exc_info"] = self.formatException(record.exc_info)

        return json.dumps(payload, ensure_ascii=False, default=str)


def setup_logging(verbose: bool = False, consumer: Optional[str] = None) -> None:
    """
    Setup logging with JSON formatting on stdout.

    Args:
        verbose: If True, sets playground_orch logger to DEBUG and root logger to INFO.
                 If False, uses environment variables or defaults (WARNING for root, INFO for playground_orch).
        consumer: Consumer name added to every record
    """
    if verbose:
        root_level = "INFO"
        app_level = "DEBUG"
    else:
        root_level = os.environ.get("PLAYGROUND_ROOT_LOG_LEVEL", "WARNING").upper()
        app_level = os.environ.get("PLAYGROUND_APP_LOG_LEVEL", "INFO").upper()

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JsonFormatter({"consumer": consumer} if consumer else None))
    # Handler should not filter - let loggers control what gets through
    handler.setLevel(logging.DEBUG if verbose else logging.INFO)

    # Root logger: controls third-party libraries (botocore, redis)
    root = logging.getLogger()
    root.handlers.clear()
    root.setLevel(root_level)
    root.addHandler(handler)

    app_logger = logging.getLogger("playground_orch")
    app_logger.setLevel(app_level)
    app_logger.propagate = True  # still go to root handler

    # External tool durations - ERROR by default.
    # Set PLAYGROUND_TIMINGS_LOG_LEVEL=INFO to see how long every dotnet call took
    timings_level = os.environ.get("PLAYGROUND_TIMINGS_LOG_LEVEL", "ERROR").upper()
    if verbose:
        timings_level = "INFO"
    timings_logger = logging.getLogger("playground_timings")
    timings_logger.setLevel(timings_level)
    timings_logger.propagate = True

    # botocore logs every credential lookup and retry at INFO
    if not verbose:
        logging.getLogger("botocore").setLevel(logging.WARNING)
