"""Helpers for turning worker replies into JSON payloads."""

from __future__ import annotations

import json
import re

from gated_orchestrator.orchestrator.errors import ProtocolError

_FENCE_RE = re.compile(r"^```(?:json)?\s*\n(?P<body>.*?)\n```\s*$", re.DOTALL)


def decode_json_reply(text: str, *, source: str) -> object:
    """Decode a worker reply that should be a single JSON document.

    Agents often wrap JSON in a Markdown code fence; treat that as cosmetic.
    """

    stripped = text.strip()
    if not stripped:
        raise ProtocolError(f"{source} returned an empty reply")

    match = _FENCE_RE.match(stripped)
    if match:
        stripped = match.group("body").strip()

    try:
        return json.loads(stripped)
    except json.JSONDecodeError as e:
        raise ProtocolError(f"{source} reply is not valid JSON: {e.msg} (line {e.lineno})") from e


def unwrap_result_envelope(payload: object, *, source: str) -> object:
    """Unwrap `{"result": "<json text>"}` envelopes produced by agent CLIs."""

    if isinstance(payload, dict) and isinstance(payload.get("result"), str):
        if payload.get("is_error") is True:
            # Leave it to the client to report as a worker failure.
            return {"error": payload["result"] or "agent reported an error"}
        return decode_json_reply(payload["result"], source=source)
    return payload
