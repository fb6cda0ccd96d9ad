"""Record synchronization pipeline -- resolver, payload builder, delivery, classifier, audit.

Provides the SQLAlchemy configuration store and audit log (repository.py),
the per-stage pipeline components, and DispatchOrchestrator, the entry
point that runs changed-record batches on a background worker pool.
"""

from src.engage_sync.sync.audit import AuditWriter
from src.engage_sync.sync.classifier import classify
from src.engage_sync.sync.delivery import DeliveryClient
from src.engage_sync.sync.orchestrator import DispatchOrchestrator
from src.engage_sync.sync.payload import build_payload
from src.engage_sync.sync.resolver import MappingResolver
from src.engage_sync.sync.worker import DispatchWorkerPool

__all__ = [
    "AuditWriter",
    "DeliveryClient",
    "DispatchOrchestrator",
    "DispatchWorkerPool",
    "MappingResolver",
    "build_payload",
    "classify",
]
