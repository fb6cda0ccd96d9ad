"""REST API endpoints for the sync event log.

List view with status / time-window / row-limit filters, and a detail view
that splits a Success trace into its response and request parts and
pretty-prints JSON.
"""

from __future__ import annotations

from typing import Any, Literal

from fastapi import APIRouter, HTTPException, Query, Request, status
from pydantic import BaseModel

from src.engage_sync.sync.classifier import format_response, split_trace
from src.engage_sync.sync.schemas import AuditLogFilter, AuditRecord, AuditStatus

router = APIRouter(prefix="/api/v1/event-logs", tags=["event-logs"])

DayWindow = Literal["1", "7", "30", "90", "all"]


# ── Response Schemas ─────────────────────────────────────────────────────────


class EventLogResponse(BaseModel):
    """One row of the event log list."""

    id: str
    status: str
    entity_type: str | None = None
    record_id: str | None = None
    response: str = ""
    created_at: str | None = None


class EventLogDetailResponse(EventLogResponse):
    """Event log detail with the trace split and formatted."""

    formatted_response: str = ""
    request: str | None = None


# ── Dependency Injection Helper ──────────────────────────────────────────────


def _get_audit_repository(request: Request) -> Any:
    """Retrieve AuditLogRepository from app.state, 503 if not available."""
    repo = getattr(request.app.state, "audit_repository", None)
    if repo is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Event log not initialized",
        )
    return repo


# ── Conversion Helpers ───────────────────────────────────────────────────────


def _record_id(entry: AuditRecord) -> str | None:
    return entry.lead_ref or entry.contact_ref or entry.account_ref or entry.opportunity_ref


def _to_response(entry: AuditRecord) -> EventLogResponse:
    return EventLogResponse(
        id=entry.id,
        status=entry.status.value,
        entity_type=entry.entity_type,
        record_id=_record_id(entry),
        response=entry.response,
        created_at=entry.created_at.isoformat() if entry.created_at else None,
    )


def _to_detail(entry: AuditRecord) -> EventLogDetailResponse:
    response_text, request_text = split_trace(entry.response)
    return EventLogDetailResponse(
        **_to_response(entry).model_dump(),
        formatted_response=format_response(response_text),
        request=format_response(request_text) if request_text is not None else None,
    )


# ── Endpoints ────────────────────────────────────────────────────────────────


@router.get("", response_model=list[EventLogResponse])
async def list_event_logs(
    request: Request,
    status_filter: AuditStatus | None = Query(default=None, alias="status"),
    days: DayWindow = Query(default="7"),
    limit: int = Query(default=50, ge=1, le=500),
) -> list[EventLogResponse]:
    """List event log rows, newest first."""
    repo = _get_audit_repository(request)
    filters = AuditLogFilter(
        status=status_filter,
        days=None if days == "all" else int(days),
        limit=limit,
    )
    entries = await repo.list_entries(filters)
    return [_to_response(e) for e in entries]


@router.get("/{entry_id}", response_model=EventLogDetailResponse)
async def get_event_log(entry_id: str, request: Request) -> EventLogDetailResponse:
    """Get one event log row with its formatted response and request."""
    repo = _get_audit_repository(request)
    entry = await repo.get_entry(entry_id)
    if entry is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Event log {entry_id} not found",
        )
    return _to_detail(entry)
