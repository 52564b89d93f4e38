from __future__ import annotations

import base64
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Optional, Union

RESULT_SUFFIX = "_result"


class Command(str, Enum):
    BUILD = "build"
    TEST = "test"
    TEMPLATE = "template"


@dataclass(frozen=True)
class JobEnvelope:
    correlation_key: str
    command: str                    # command tag, resolved against the strategy registry
    payload: Dict[str, str] = field(default_factory=dict)  # template/projectName; empty for build/test


@dataclass(frozen=True)
class QueueEntry:
    entry_id: str                   # assigned by the stream, only used to acknowledge
    fields: Dict[str, str]


@dataclass(frozen=True)
class JobRequest:
    """What an execution strategy gets to work with."""

    correlation_key: str
    command: str
    params: Dict[str, str] = field(default_factory=dict)
    archive: Optional[bytes] = None


@dataclass(frozen=True)
class Success:
    data: bytes

    ok = True

    def to_wire(self) -> bytes:
        return self.data

    @classmethod
    def base64_of(cls, raw: bytes) -> "Success":
        return cls(base64.b64encode(raw))


@dataclass(frozen=True)
class Failure:
    message: str

    ok = False

    def to_wire(self) -> bytes:
        return self.message.encode("utf-8")


Result = Union[Success, Failure]


class Timeout:
    """Returned by the correlator when no result showed up in time."""

    wire = b"Timeout"

    def __repr__(self) -> str:
        return "TIMEOUT"

    def __bool__(self) -> bool:
        return False


TIMEOUT = Timeout()


def result_key(correlation_key: str) -> str:
    return f"{correlation_key}{RESULT_SUFFIX}"
