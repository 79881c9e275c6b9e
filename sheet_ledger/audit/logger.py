"""
Audit Logger

DESIGN DECISION: Every ledger mutation is logged. Soft-deleting a row
blanks its values for good, so the audit trail (which records the
blanked values) is the only history the ledger has.

The audit logger:
- Is async to not block main flow
- Gracefully handles failures (doesn't crash the app if logging fails)
- Supports correlation IDs to trace related events
"""

import logging
from typing import Optional
from uuid import UUID, uuid4

import structlog

from sheet_ledger.models.audit import AuditEvent, AuditEventBuilder
from sheet_ledger.services.storage.interface import LedgerStoreInterface, sheet_range


# Configure structlog for local logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer(ensure_ascii=False)
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)


def get_logger(name: Optional[str] = None) -> structlog.stdlib.BoundLogger:
    """Module logger with the structlog configuration above applied."""
    return structlog.get_logger(name)


def configure_logging(level: str = "INFO") -> None:
    """Route structlog output through the stdlib root logger at `level`."""
    logging.basicConfig(format="%(message)s", level=level.upper())


AUDIT_COLUMNS = "A:J"


class AuditLogger:
    """
    Central audit logging service.

    Logs events both to:
    1. Structured local log (for debugging)
    2. The audit sheet of the ledger (for persistence and user visibility)
    """

    def __init__(
        self,
        store: Optional[LedgerStoreInterface] = None,
        sheet_name: str = "AuditLog",
    ):
        """
        Initialize audit logger.

        Args:
            store: Ledger store for persistence. If None, only logs locally.
            sheet_name: Sheet the audit rows are appended to.
        """
        self._store = store
        self._sheet_name = sheet_name
        self._logger = get_logger(__name__)

    async def log(self, event: AuditEvent) -> bool:
        """
        Log an audit event.

        Always logs locally. Persists to the audit sheet if available.

        Returns True if storage write succeeded (or no storage configured).
        """
        log_dict = event.to_log_dict()

        if event.severity.value in ("error", "critical"):
            self._logger.error("audit_event", **log_dict)
        elif event.severity.value == "warning":
            self._logger.warning("audit_event", **log_dict)
        else:
            self._logger.info("audit_event", **log_dict)

        if self._store:
            try:
                await self._store.append_rows(
                    sheet_range(self._sheet_name, AUDIT_COLUMNS),
                    [event.to_sheets_row()],
                )
                return True
            except Exception as e:
                # Audit persistence must not break the ledger flow
                self._logger.error(
                    "audit_storage_failed",
                    error=str(e),
                    event_id=str(event.event_id),
                )
                return False

        return True

    async def log_record_appended(
        self,
        entity_type: str,
        entity_key: str,
        row: Optional[int] = None,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log a new ledger row."""
        await self.log(AuditEventBuilder.record_appended(
            entity_type=entity_type,
            entity_key=entity_key,
            row=row,
            correlation_id=correlation_id,
        ))

    async def log_record_updated(
        self,
        entity_type: str,
        old_key: str,
        new_key: str,
        row: Optional[int] = None,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log an in-place or key-changing update."""
        await self.log(AuditEventBuilder.record_updated(
            entity_type=entity_type,
            old_key=old_key,
            new_key=new_key,
            row=row,
            correlation_id=correlation_id,
        ))

    async def log_record_soft_deleted(
        self,
        entity_type: str,
        entity_key: str,
        row: Optional[int],
        previous_values: Optional[list] = None,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log a blanked row together with the values it held."""
        await self.log(AuditEventBuilder.record_soft_deleted(
            entity_type=entity_type,
            entity_key=entity_key,
            row=row,
            previous_values=previous_values,
            correlation_id=correlation_id,
        ))

    async def log_duplicate_rejected(
        self,
        entity_type: str,
        entity_key: str,
        existing_row: int,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.duplicate_rejected(
            entity_type=entity_type,
            entity_key=entity_key,
            existing_row=existing_row,
            correlation_id=correlation_id,
        ))

    async def log_not_found(
        self,
        entity_type: str,
        entity_key: str,
        operation: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.record_not_found(
            entity_type=entity_type,
            entity_key=entity_key,
            operation=operation,
            correlation_id=correlation_id,
        ))

    async def log_mirror_failed(
        self,
        table: str,
        error_message: str,
        entity_key: Optional[str] = None,
    ) -> None:
        await self.log(AuditEventBuilder.mirror_write_failed(
            table=table,
            error_message=error_message,
            entity_key=entity_key,
        ))

    async def log_rate_fallback(self, tier: str, rate: str) -> None:
        await self.log(AuditEventBuilder.rate_fallback_used(tier=tier, rate=rate))

    async def log_trades_imported(
        self,
        count: int,
        tickers: list[str],
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.trades_imported(
            count=count,
            tickers=tickers,
            correlation_id=correlation_id,
        ))

    async def log_error(
        self,
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log an error."""
        await self.log(AuditEventBuilder.system_error(
            error_type=error_type,
            error_message=error_message,
            details=details,
            correlation_id=correlation_id,
        ))


def create_correlation_id() -> UUID:
    """
    Create a new correlation ID for tracking related events.

    Use this at the start of a multi-step mutation (e.g. a key-changing
    update) and pass it through all subsequent operations.
    """
    return uuid4()
