"""Audit writer -- appends one outcome row per dispatch attempt.

The row links to the originating record through a per-entity-type reference
column chosen from AUDIT_REFERENCE_COLUMNS. When no column is registered for
the entity type, or the sink's schema lacks it, the record id is embedded as
a ``"{entity_type} ID: {source_id}"`` prefix of the diagnostic text instead.

Audit writes never raise: every failure (permission denied, sink error) is
logged, counted, and returned as a failed AuditWriteResult.
"""

from __future__ import annotations

import structlog

from src.engage_sync.core.monitoring import sync_audit_write_failures_total
from src.engage_sync.sync.errors import AuditWriteError
from src.engage_sync.sync.schemas import (
    AuditEntry,
    AuditWriteResult,
    Classification,
    EntityType,
)
from src.engage_sync.sync.store import AuditSink

logger = structlog.get_logger(__name__)

AUDIT_REFERENCE_COLUMNS: dict[str, str] = {
    EntityType.LEAD.value: "lead_ref",
    EntityType.CONTACT.value: "contact_ref",
    EntityType.ACCOUNT.value: "account_ref",
    EntityType.OPPORTUNITY.value: "opportunity_ref",
}

DEFAULT_MAX_TEXT_LENGTH = 131072


def build_audit_entry(
    source_id: str,
    entity_type: str,
    classification: Classification,
    sink: AuditSink,
    max_length: int = DEFAULT_MAX_TEXT_LENGTH,
) -> AuditEntry:
    """Build the audit row for one attempt, choosing reference column or text prefix."""
    text = classification.diagnostic or ""
    references: dict[str, str] = {}

    column = AUDIT_REFERENCE_COLUMNS.get(entity_type)
    if column is not None and sink.has_field(column):
        references[column] = source_id
    else:
        text = f"{entity_type} ID: {source_id}\n{text}"

    return AuditEntry(
        status=classification.status,
        response=text[:max_length],
        entity_type=entity_type,
        references=references,
    )


class AuditWriter:
    """Writes audit rows to a sink without ever propagating errors.

    Args:
        sink: Audit sink append contract.
        max_text_length: Truncation limit for the diagnostic text.
    """

    def __init__(self, sink: AuditSink, max_text_length: int = DEFAULT_MAX_TEXT_LENGTH) -> None:
        self._sink = sink
        self._max_text_length = max_text_length

    async def record(
        self, source_id: str, entity_type: str, classification: Classification
    ) -> AuditWriteResult:
        """Append one audit row. Returns a result instead of raising."""
        try:
            if not await self._sink.can_create():
                raise AuditWriteError("Missing create permission on the audit log")

            entry = build_audit_entry(
                source_id,
                entity_type,
                classification,
                self._sink,
                self._max_text_length,
            )
            await self._sink.append(entry)
        except Exception as exc:
            sync_audit_write_failures_total.inc()
            logger.warning(
                "audit.write_failed",
                record_id=source_id,
                entity_type=entity_type,
                status=classification.status.value,
                error=str(exc),
            )
            return AuditWriteResult.failure(str(exc))

        logger.debug(
            "audit.written",
            record_id=source_id,
            entity_type=entity_type,
            status=classification.status.value,
        )
        return AuditWriteResult.success()
