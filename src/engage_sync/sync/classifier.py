"""Outcome classifier -- turns one delivery attempt into Success or Failed.

Decision order:
1. Transport failure -> Failed, diagnostic = error detail.
2. Status != 200 -> Failed, diagnostic = raw body (may be empty).
3. Status 200:
   - body is not JSON -> Success (HTTP status is trusted)
   - JSON object with a string ``status`` -> Success iff it equals
     "success" case-insensitively, otherwise Failed with the body
   - anything else (no ``status`` key, non-string status, non-object
     JSON) -> Success

Success diagnostics carry the response and the request body so each audit
row holds a full trace. ``classify`` is pure.
"""

from __future__ import annotations

import json

from src.engage_sync.sync.errors import TransportError
from src.engage_sync.sync.schemas import AuditStatus, Classification, DeliveryResponse

RESPONSE_PREFIX = "Response: "
REQUEST_SEPARATOR = "\nRequest: "


def _success(body: str, request_body: str) -> Classification:
    return Classification(
        status=AuditStatus.SUCCESS,
        diagnostic=f"{RESPONSE_PREFIX}{body}{REQUEST_SEPARATOR}{request_body}",
    )


def _failed(diagnostic: str) -> Classification:
    return Classification(status=AuditStatus.FAILED, diagnostic=diagnostic)


def classify(
    response: DeliveryResponse | TransportError, request_body: str = ""
) -> Classification:
    """Classify a delivery attempt.

    Args:
        response: The raw response, or the transport error raised instead.
        request_body: The serialized body that was sent.
    """
    if isinstance(response, TransportError):
        return _failed(str(response) or type(response).__name__)

    if response.status_code != 200:
        return _failed(response.body)

    try:
        parsed = json.loads(response.body)
    except ValueError:
        return _success(response.body, request_body)

    if isinstance(parsed, dict) and isinstance(parsed.get("status"), str):
        if parsed["status"].lower() == "success":
            return _success(response.body, request_body)
        return _failed(response.body)

    return _success(response.body, request_body)


def split_trace(text: str) -> tuple[str, str | None]:
    """Split a Success diagnostic into (response, request).

    Text that is not a trace comes back unchanged with a None request.
    """
    # Entity-type prefix lines written by the audit fallback come first
    start = text.find(RESPONSE_PREFIX)
    if start == -1 or REQUEST_SEPARATOR not in text[start:]:
        return text, None
    response, request = text[start + len(RESPONSE_PREFIX):].split(REQUEST_SEPARATOR, 1)
    return response, request


def format_response(text: str) -> str:
    """Pretty-print JSON text; anything else is returned unchanged."""
    try:
        return json.dumps(json.loads(text), indent=2, ensure_ascii=False)
    except (ValueError, TypeError):
        return text
