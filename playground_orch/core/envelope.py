"""
Job envelope wire codec.

A stream entry carries two fields:

    key      correlation key; the input archive (if any) is stored under it
    payload  JSON object with at least "command", plus command parameters
             ("template" and "projectName" for template jobs)
"""
from __future__ import annotations

import json
import uuid
from typing import Dict

from playground_orch.core.models import Command, JobEnvelope, QueueEntry
from playground_orch.errors import MalformedEnvelope

KEY_FIELD = "key"
PAYLOAD_FIELD = "payload"
COMMAND_FIELD = "command"


def new_envelope(command: str, **params: str) -> JobEnvelope:
    """Create an envelope under a fresh, globally unique correlation key."""
    tag = command.value if isinstance(command, Command) else command
    return JobEnvelope(correlation_key=str(uuid.uuid4()), command=tag, payload=dict(params))


def encode_envelope(envelope: JobEnvelope) -> Dict[str, str]:
    body = {COMMAND_FIELD: envelope.command}
    for name, value in envelope.payload.items():
        if name == COMMAND_FIELD:
            continue
        body[name] = value
    return {
        KEY_FIELD: envelope.correlation_key,
        PAYLOAD_FIELD: json.dumps(body),
    }


def decode_entry(entry: QueueEntry) -> JobEnvelope:
    """
    Decode a stream entry into a JobEnvelope.

    Raises:
        MalformedEnvelope: key missing, payload missing / not a JSON object,
            or no command in the payload.
    """
    key = entry.fields.get(KEY_FIELD)
    if not key:
        raise MalformedEnvelope(f"No key found in entry {entry.entry_id}")

    raw = entry.fields.get(PAYLOAD_FIELD)
    if raw is None:
        raise MalformedEnvelope(f"No payload found in entry {entry.entry_id} (key={key})")

    try:
        body = json.loads(raw)
    except (json.JSONDecodeError, TypeError) as e:
        raise MalformedEnvelope(f"Payload of entry {entry.entry_id} is not valid JSON: {e}") from e

    if not isinstance(body, dict):
        raise MalformedEnvelope(f"Payload of entry {entry.entry_id} is not a JSON object")

    command = body.pop(COMMAND_FIELD, None)
    if not command or not isinstance(command, str):
        raise MalformedEnvelope(f"No command found in payload of entry {entry.entry_id} (key={key})")

    params = {str(k): v if isinstance(v, str) else json.dumps(v) for k, v in body.items()}
    return JobEnvelope(correlation_key=key, command=command, payload=params)
