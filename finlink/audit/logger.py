"""
Audit Logger

DESIGN DECISION: Every significant action in the system is logged.
This provides:
1. Complete traceability of sync runs and reconciliation decisions
2. Debugging capability
3. A history the user can inspect

The audit logger:
- Is async to not block main flow
- Gracefully handles failures (doesn't crash the app if logging fails)
- Supports correlation IDs to trace related events
"""

import logging
import sys
from typing import Optional
from uuid import UUID, uuid4

import structlog

from finlink.models.audit import AuditEvent, AuditEventBuilder, AuditSeverity
from finlink.services.storage import AuditStorageInterface


def configure_logging(level: str = "INFO") -> None:
    """
    Configure structlog for JSON output through the stdlib logging tree.

    Safe to call again (e.g. with the level from AppSettings).
    """
    logging.basicConfig(format="%(message)s", stream=sys.stdout)
    logging.getLogger("finlink").setLevel(getattr(logging, level.upper(), logging.INFO))
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
            structlog.processors.JSONRenderer()
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


configure_logging()


class AuditLogger:
    """
    Central audit logging service.

    Logs events both to:
    1. Structured local log (for debugging)
    2. Audit storage (for persistence and user visibility)
    """

    def __init__(
        self,
        storage: Optional[AuditStorageInterface] = None,
    ):
        """
        Initialize audit logger.

        Args:
            storage: Storage backend for persistence.
                    If None, only logs locally.
        """
        self._storage = storage
        self._logger = structlog.get_logger("finlink.audit")

    async def log(self, event: AuditEvent) -> bool:
        """
        Log an audit event.

        Always logs locally. Persists to storage if available.

        Returns True if storage write succeeded (or no storage configured).
        """
        log_dict = event.to_log_dict()

        if event.severity in (AuditSeverity.ERROR, AuditSeverity.CRITICAL):
            self._logger.error("audit_event", **log_dict)
        elif event.severity == AuditSeverity.WARNING:
            self._logger.warning("audit_event", **log_dict)
        else:
            self._logger.info("audit_event", **log_dict)

        if self._storage:
            try:
                return await self._storage.append_event(event)
            except Exception as e:
                # Log failure but don't raise
                self._logger.error(
                    "audit_storage_failed",
                    error=str(e),
                    event_id=str(event.event_id),
                )
                return False

        return True

    async def log_account_linked(
        self,
        user_id: str,
        item_id: str,
        institution_name: Optional[str],
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.account_linked(
            user_id=user_id,
            item_id=item_id,
            institution_name=institution_name,
            correlation_id=correlation_id,
        ))

    async def log_account_unlinked(
        self,
        user_id: str,
        item_id: str,
        credential_revoked: bool,
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.account_unlinked(
            user_id=user_id,
            item_id=item_id,
            credential_revoked=credential_revoked,
            correlation_id=correlation_id,
        ))

    async def log_sync_completed(
        self,
        user_id: str,
        item_id: str,
        added: int,
        pages: int,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.sync_completed(
            user_id=user_id,
            item_id=item_id,
            added=added,
            pages=pages,
            correlation_id=correlation_id,
        ))

    async def log_sync_failed(
        self,
        user_id: str,
        item_id: str,
        status: str,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.sync_failed(
            user_id=user_id,
            item_id=item_id,
            status=status,
            error_message=error_message,
            correlation_id=correlation_id,
        ))

    async def log_receipt_extracted(
        self,
        user_id: str,
        receipt_id: str,
        vendor: Optional[str],
        line_item_count: int,
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.receipt_extracted(
            user_id=user_id,
            receipt_id=receipt_id,
            vendor=vendor,
            line_item_count=line_item_count,
            correlation_id=correlation_id,
        ))

    async def log_receipt_matched(
        self,
        user_id: str,
        receipt_id: str,
        transaction_id: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.receipt_matched(
            user_id=user_id,
            receipt_id=receipt_id,
            transaction_id=transaction_id,
            correlation_id=correlation_id,
        ))

    async def log_receipt_match_ambiguous(
        self,
        user_id: str,
        receipt_id: str,
        candidate_ids: list[str],
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.receipt_match_ambiguous(
            user_id=user_id,
            receipt_id=receipt_id,
            candidate_ids=candidate_ids,
            correlation_id=correlation_id,
        ))

    async def log_receipt_not_matched(
        self,
        user_id: str,
        receipt_id: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.receipt_not_matched(
            user_id=user_id,
            receipt_id=receipt_id,
            correlation_id=correlation_id,
        ))

    async def log_query_resolved(
        self,
        user_id: str,
        intent: str,
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.query_resolved(
            user_id=user_id,
            intent=intent,
            correlation_id=correlation_id,
        ))

    async def log_insights_generated(
        self,
        user_id: str,
        insight_count: int,
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.insights_generated(
            user_id=user_id,
            insight_count=insight_count,
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

    async def log_external_service_error(
        self,
        service: str,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log external service error."""
        await self.log(AuditEventBuilder.external_service_error(
            service=service,
            error_message=error_message,
            correlation_id=correlation_id,
        ))


def create_correlation_id() -> UUID:
    """
    Create a new correlation ID for tracking related events.

    Use this at the start of a caller-facing operation (e.g., a sync run).
    Pass it through all subsequent operations.
    """
    return uuid4()
