"""Exception taxonomy for the record synchronization pipeline.

Only ConfigValidationError is ever raised to a caller (the configuration
write surface). Every other error is caught inside the pipeline and turned
into a skip or an audited Failed outcome.
"""

from __future__ import annotations


class EngageSyncError(Exception):
    """Base class for all engage-sync errors."""


class ConfigurationUnavailable(EngageSyncError):
    """Store inaccessible, no active definition, or no usable credentials."""


class ConfigValidationError(EngageSyncError):
    """Invalid configuration input on the write path (user-facing)."""


class MappingValidationError(EngageSyncError):
    """A mandatory-mapped source field has no value on the record."""

    def __init__(self, source_field: str, target_field: str) -> None:
        self.source_field = source_field
        self.target_field = target_field
        super().__init__(
            f"Missing mandatory field: source field '{source_field}' "
            f"(mapped to '{target_field}') has no value"
        )


class TransportError(EngageSyncError):
    """Network-level delivery failure (connect error, timeout, protocol error)."""


class AuditWriteError(EngageSyncError):
    """Audit row could not be persisted. Never propagated past the audit writer."""


class ConfigNotFoundError(ConfigValidationError):
    """Referenced credential set or sync definition does not exist."""
