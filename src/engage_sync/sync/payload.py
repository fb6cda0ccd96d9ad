"""Payload builder -- wraps a mapped payload in the upload envelope.

The platform's upload API takes a batch under the ``d`` key; each dispatch
sends a batch of one. The same function regenerates the request body for the
audit trace, so the logged request matches the sent one byte for byte.

Values without a JSON type are sent as strings: dates and datetimes in ISO
8601, UUIDs in canonical form, and Decimals as their exact digits (never
rounded through float).
"""

from __future__ import annotations

import json
import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import Any

ENVELOPE_KEY = "d"


def _default(value: Any) -> Any:
    """Serialize the non-JSON scalars a record can carry."""
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, uuid.UUID):
        return str(value)
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def build_payload(mapped: dict[str, Any]) -> str:
    """Serialize a mapped payload as ``{"d": [mapped]}`` (compact UTF-8 JSON)."""
    return json.dumps(
        {ENVELOPE_KEY: [mapped]},
        default=_default,
        ensure_ascii=False,
        separators=(",", ":"),
    )


def parse_payload(body: str) -> dict[str, Any]:
    """Return the single record carried by a serialized request body."""
    envelope = json.loads(body)
    return envelope[ENVELOPE_KEY][0]
