"""
Relay payload decoding.

The relay normally sends JSON text frames, sometimes binary frames wrapping
the same JSON, and under load the odd truncated/mangled frame. Everything
past this module only ever sees typed `InboundEvent`s.
"""

from __future__ import annotations

import json
import re
from typing import Any, Optional

from pydantic import ValidationError

from .jsonlog import json_log
from .messages import KNOWN_INBOUND_TYPES, BarcodeEvent, InboundEvent, inbound_event_adapter

_CODE_FIELD_RE = re.compile(r'"code"\s*:\s*"([^"]+)"')


def _payload_text(payload: Any) -> Optional[str]:
    if isinstance(payload, str):
        return payload
    if isinstance(payload, (bytes, bytearray, memoryview)):
        try:
            return bytes(payload).decode("utf-8")
        except UnicodeDecodeError as exc:
            json_log("warning", "scanner.decode.binary_failed", size=len(payload), error=str(exc))
            return None
    json_log("warning", "scanner.decode.unsupported_payload", payload_type=type(payload).__name__)
    return None


def _recover_barcode(text: str) -> Optional[BarcodeEvent]:
    # Last resort for malformed frames: the scanned code is the only field
    # worth saving.
    if "barcode" not in text and "code" not in text:
        return None
    m = _CODE_FIELD_RE.search(text)
    if not m:
        return None
    return BarcodeEvent(type="barcode", code=m.group(1))


def decode_message(payload: Any) -> Optional[InboundEvent]:
    text = _payload_text(payload)
    if text is None:
        return None

    try:
        data = json.loads(text)
    except ValueError as exc:
        recovered = _recover_barcode(text)
        if recovered is not None:
            json_log("warning", "scanner.decode.recovered", code=recovered.code)
            return recovered
        json_log("warning", "scanner.decode.dropped", error=str(exc), raw=text[:200])
        return None

    if not isinstance(data, dict):
        json_log("warning", "scanner.decode.not_an_object", raw=text[:200])
        return None

    msg_type = data.get("type")
    if msg_type not in KNOWN_INBOUND_TYPES:
        json_log("info", "scanner.decode.unknown_type", type=msg_type)
        return None

    try:
        return inbound_event_adapter.validate_python(data)
    except ValidationError as exc:
        json_log("warning", "scanner.decode.invalid", type=msg_type, errors=exc.errors(include_url=False))
        return None
