"""
Audit Models for Sheet Ledger

Every mutation of the ledger, and every time the rate chain degrades to a
fallback, is recorded as an audit event. The ledger itself keeps no
history (soft-deleted rows are blanked), so the audit trail is the only
place a removed value can be recovered from.

DESIGN DECISION: Audit logs are append-only. We never delete or modify them.
"""

import json
from datetime import datetime
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field


class AuditEventType(str, Enum):
    """Types of events we audit."""
    # Ledger mutations
    RECORD_APPENDED = "record_appended"
    RECORD_UPDATED = "record_updated"
    RECORD_SOFT_DELETED = "record_soft_deleted"
    DUPLICATE_REJECTED = "duplicate_rejected"
    RECORD_NOT_FOUND = "record_not_found"

    # Mirror reconciliation
    MIRROR_WRITE_FAILED = "mirror_write_failed"

    # Exchange rates
    RATE_FALLBACK_USED = "rate_fallback_used"

    # Trade log
    TRADES_IMPORTED = "trades_imported"

    # System events
    SYSTEM_ERROR = "system_error"


class AuditSeverity(str, Enum):
    """Severity level for audit events."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class AuditEvent(BaseModel):
    """
    A single audit event.

    entity_key is the natural key of the affected record rendered as
    text (e.g. "2025-08" or "2025-08-15|SCHD"), since ledger records have
    no surrogate ids.
    """

    # Identity
    event_id: UUID = Field(
        default_factory=uuid4,
        description="Unique event identifier"
    )
    timestamp: datetime = Field(
        default_factory=datetime.utcnow,
        description="When the event occurred (UTC)"
    )

    # Event classification
    event_type: AuditEventType = Field(
        ...,
        description="Type of event"
    )
    severity: AuditSeverity = Field(
        default=AuditSeverity.INFO,
        description="Event severity"
    )

    # Context - what record is this about?
    entity_type: Optional[str] = Field(
        default=None,
        description="Ledger kind (e.g., 'account_balance', 'dividend')"
    )
    entity_key: Optional[str] = Field(
        default=None,
        description="Natural key of the affected record"
    )

    correlation_id: Optional[UUID] = Field(
        default=None,
        description="ID to correlate related events (e.g., both halves of a key-changing update)"
    )

    description: str = Field(
        ...,
        max_length=500,
        description="Human-readable description of what happened"
    )

    details: dict[str, Any] = Field(
        default_factory=dict,
        description="Additional event-specific data"
    )

    error_message: Optional[str] = None

    def to_log_dict(self) -> dict:
        """Convert to a dictionary suitable for structured logging."""
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "entity_type": self.entity_type,
            "entity_key": self.entity_key,
            "correlation_id": str(self.correlation_id) if self.correlation_id else None,
            "description": self.description,
            "details": self.details,
            "error_message": self.error_message,
        }

    def to_sheets_row(self) -> list:
        """
        Convert to a row for the audit sheet.

        Returns columns in order:
        [event_id, timestamp, event_type, severity, entity_type, entity_key,
         correlation_id, description, details_json, error_message]
        """
        return [
            str(self.event_id),
            self.timestamp.isoformat(),
            self.event_type.value,
            self.severity.value,
            self.entity_type or "",
            self.entity_key or "",
            str(self.correlation_id) if self.correlation_id else "",
            self.description,
            json.dumps(self.details, default=str, ensure_ascii=False) if self.details else "",
            self.error_message or "",
        ]


class AuditEventBuilder:
    """
    Helper class to build audit events with common patterns.

    Usage:
        event = AuditEventBuilder.record_appended("account_balance", "2025-08", row=46)
    """

    @staticmethod
    def record_appended(
        entity_type: str,
        entity_key: str,
        row: Optional[int] = None,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RECORD_APPENDED,
            entity_type=entity_type,
            entity_key=entity_key,
            correlation_id=correlation_id,
            description=f"Appended {entity_type} {entity_key}",
            details={"row": row},
        )

    @staticmethod
    def record_updated(
        entity_type: str,
        old_key: str,
        new_key: str,
        row: Optional[int] = None,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RECORD_UPDATED,
            entity_type=entity_type,
            entity_key=new_key,
            correlation_id=correlation_id,
            description=f"Updated {entity_type} {old_key} -> {new_key}",
            details={"old_key": old_key, "row": row},
        )

    @staticmethod
    def record_soft_deleted(
        entity_type: str,
        entity_key: str,
        row: Optional[int],
        previous_values: Optional[list] = None,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RECORD_SOFT_DELETED,
            entity_type=entity_type,
            entity_key=entity_key,
            correlation_id=correlation_id,
            description=f"Blanked {entity_type} {entity_key}",
            details={"row": row, "previous_values": previous_values or []},
        )

    @staticmethod
    def duplicate_rejected(
        entity_type: str,
        entity_key: str,
        existing_row: int,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.DUPLICATE_REJECTED,
            severity=AuditSeverity.WARNING,
            entity_type=entity_type,
            entity_key=entity_key,
            correlation_id=correlation_id,
            description=f"Rejected duplicate {entity_type} {entity_key}",
            details={"existing_row": existing_row},
        )

    @staticmethod
    def record_not_found(
        entity_type: str,
        entity_key: str,
        operation: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RECORD_NOT_FOUND,
            severity=AuditSeverity.WARNING,
            entity_type=entity_type,
            entity_key=entity_key,
            correlation_id=correlation_id,
            description=f"No {entity_type} {entity_key} to {operation}",
            details={"operation": operation},
        )

    @staticmethod
    def mirror_write_failed(
        table: str,
        error_message: str,
        entity_key: Optional[str] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.MIRROR_WRITE_FAILED,
            severity=AuditSeverity.WARNING,
            entity_type=table,
            entity_key=entity_key,
            description=f"Mirror write to {table} failed",
            error_message=error_message,
        )

    @staticmethod
    def rate_fallback_used(
        tier: str,
        rate: str,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RATE_FALLBACK_USED,
            severity=AuditSeverity.WARNING,
            entity_type="exchange_rate",
            entity_key="today",
            description=f"Exchange rate degraded to {tier} tier ({rate})",
            details={"tier": tier, "rate": rate},
        )

    @staticmethod
    def trades_imported(
        count: int,
        tickers: list[str],
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TRADES_IMPORTED,
            entity_type="transaction",
            correlation_id=correlation_id,
            description=f"Imported {count} trades",
            details={"count": count, "tickers": tickers},
        )

    @staticmethod
    def system_error(
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SYSTEM_ERROR,
            severity=AuditSeverity.ERROR,
            description=f"System error: {error_type}",
            error_message=error_message,
            details=details or {},
            correlation_id=correlation_id,
        )
