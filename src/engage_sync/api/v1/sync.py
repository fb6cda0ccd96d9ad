"""On-demand resync endpoint.

Accepts a batch of changed records and hands it to the dispatch
orchestrator. The response is returned before any record is processed.
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, HTTPException, Request, status
from pydantic import BaseModel, Field

from src.engage_sync.sync.schemas import SourceRecord

router = APIRouter(prefix="/api/v1/sync", tags=["sync"])


class DispatchRequest(BaseModel):
    """Batch of records to resync, optionally pinned to one connection."""

    records: list[SourceRecord] = Field(default_factory=list)
    connection_id: str | None = None


class DispatchAccepted(BaseModel):
    accepted: int
    connection_id: str | None = None


def _get_orchestrator(request: Request) -> Any:
    """Retrieve DispatchOrchestrator from app.state, 503 if not available."""
    orchestrator = getattr(request.app.state, "orchestrator", None)
    if orchestrator is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Sync dispatch not initialized",
        )
    return orchestrator


@router.post("/dispatch", response_model=DispatchAccepted, status_code=202)
async def dispatch_records(body: DispatchRequest, request: Request) -> DispatchAccepted:
    orchestrator = _get_orchestrator(request)
    await orchestrator.dispatch(body.records, connection_id=body.connection_id)
    return DispatchAccepted(accepted=len(body.records), connection_id=body.connection_id)
