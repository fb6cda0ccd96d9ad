"""Dispatch orchestrator -- entry point for changed-record batches.

dispatch() hands each batch to the worker pool and returns without waiting.
Inside the job, run_batch() processes records sequentially:

    resolve -> (skip: nothing) | (failed: audit Failed)
            | (mapped: build -> send -> classify -> audit)

Per-record state: Pending -> {Skipped | Failed | Dispatched} -> {Success | Failed}.
One record's failure never stops its siblings, and no exception ever
leaves dispatch().
"""

from __future__ import annotations

from collections.abc import Iterable

import structlog

from src.engage_sync.core.monitoring import sync_records_total
from src.engage_sync.sync.audit import AuditWriter
from src.engage_sync.sync.classifier import classify
from src.engage_sync.sync.delivery import DeliveryClient
from src.engage_sync.sync.errors import TransportError
from src.engage_sync.sync.payload import build_payload
from src.engage_sync.sync.resolver import MappingResolver
from src.engage_sync.sync.schemas import (
    AuditStatus,
    Classification,
    DispatchSummary,
    RecordOutcome,
    RecordState,
    ResolutionOutcome,
    SourceRecord,
)
from src.engage_sync.sync.worker import DispatchWorkerPool, PoolClosedError

logger = structlog.get_logger(__name__)


class DispatchOrchestrator:
    """Runs the per-record sync pipeline for batches of changed records.

    Args:
        resolver: MappingResolver over the configuration store.
        delivery: DeliveryClient for the upload API.
        audit_writer: AuditWriter over the audit sink.
        pool: Worker pool that runs batches in the background.
    """

    def __init__(
        self,
        resolver: MappingResolver,
        delivery: DeliveryClient,
        audit_writer: AuditWriter,
        pool: DispatchWorkerPool,
    ) -> None:
        self._resolver = resolver
        self._delivery = delivery
        self._audit = audit_writer
        self._pool = pool

    async def dispatch(
        self,
        records: Iterable[SourceRecord] | None,
        connection_id: str | None = None,
    ) -> None:
        """Schedule a batch for background processing.

        Empty or None input is a no-op. Never raises; a batch that cannot be
        scheduled is logged and dropped. The caller's structlog context (the
        request id, for HTTP dispatches) is re-bound inside the job so batch
        logs stay correlated with the request that triggered them.
        """
        batch = list(records or [])
        if not batch:
            return

        context = structlog.contextvars.get_contextvars()

        async def job() -> DispatchSummary:
            with structlog.contextvars.bound_contextvars(**context):
                return await self.run_batch(batch, connection_id)

        try:
            await self._pool.submit(job)
        except PoolClosedError:
            logger.warning("dispatch.pool_closed", batch_size=len(batch))
            return
        except Exception:
            logger.exception("dispatch.submit_failed", batch_size=len(batch))
            return

        logger.info("dispatch.batch_submitted", batch_size=len(batch), connection_id=connection_id)

    async def run_batch(
        self,
        records: Iterable[SourceRecord],
        connection_id: str | None = None,
    ) -> DispatchSummary:
        """Process records in order and summarize their terminal states."""
        summary = DispatchSummary()
        for record in records:
            outcome = await self.process_record(record, connection_id)
            sync_records_total.labels(
                entity_type=record.entity_type, outcome=outcome.state.value
            ).inc()
            summary.add(outcome)

        logger.info(
            "dispatch.batch_complete",
            succeeded=summary.succeeded,
            failed=summary.failed,
            skipped=summary.skipped,
        )
        return summary

    async def process_record(
        self, record: SourceRecord, connection_id: str | None = None
    ) -> RecordOutcome:
        """Run one record through the pipeline. Never raises."""
        outcome = RecordOutcome(record_id=record.id, entity_type=record.entity_type)

        try:
            resolution = await self._resolver.resolve(record, connection_id)

            if resolution.outcome == ResolutionOutcome.SKIP:
                outcome.state = RecordState.SKIPPED
                outcome.diagnostic = resolution.reason
                return outcome

            if resolution.outcome == ResolutionOutcome.FAILED:
                classification = Classification(
                    status=AuditStatus.FAILED, diagnostic=resolution.reason or ""
                )
            else:
                body = build_payload(resolution.payload or {})
                outcome.state = RecordState.DISPATCHED
                try:
                    response = await self._delivery.send(resolution.credentials, body)
                except TransportError as exc:
                    classification = classify(exc, body)
                else:
                    classification = classify(response, body)
        except Exception as exc:
            logger.exception("dispatch.record_error", record_id=record.id)
            classification = Classification(
                status=AuditStatus.FAILED, diagnostic=f"{type(exc).__name__}: {exc}"
            )

        await self._audit.record(record.id, record.entity_type, classification)

        outcome.state = (
            RecordState.SUCCESS if classification.succeeded else RecordState.FAILED
        )
        outcome.diagnostic = classification.diagnostic
        return outcome
