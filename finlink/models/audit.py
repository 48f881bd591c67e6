"""
Audit Models for finlink

Every significant action in the system is logged for audit purposes:
account links and unlinks, each sync attempt, receipt extraction and
every reconciliation decision.

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
    # Accounts
    ACCOUNT_LINKED = "account_linked"
    ACCOUNT_UNLINKED = "account_unlinked"

    # Sync
    SYNC_COMPLETED = "sync_completed"
    SYNC_FAILED = "sync_failed"

    # Receipts
    RECEIPT_EXTRACTED = "receipt_extracted"
    RECEIPT_MATCHED = "receipt_matched"
    RECEIPT_MATCH_AMBIGUOUS = "receipt_match_ambiguous"
    RECEIPT_NOT_MATCHED = "receipt_not_matched"

    # Read side
    QUERY_RESOLVED = "query_resolved"
    INSIGHTS_GENERATED = "insights_generated"

    # System events
    SYSTEM_ERROR = "system_error"
    EXTERNAL_SERVICE_ERROR = "external_service_error"


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

    This is the core unit of our audit trail.
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

    # Context - what entity is this about?
    user_id: Optional[str] = Field(
        default=None,
        description="Owner of the entity"
    )
    entity_type: Optional[str] = Field(
        default=None,
        description="Type of entity (e.g., 'account', 'receipt', 'query')"
    )
    entity_id: Optional[str] = Field(
        default=None,
        description="External or generated id of the entity"
    )

    # Correlation - for tracking related events
    correlation_id: Optional[UUID] = Field(
        default=None,
        description="ID to correlate related events (e.g., one sync run)"
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

    # Error information (if applicable)
    error_code: Optional[str] = None
    error_message: Optional[str] = None

    def to_log_dict(self) -> dict:
        """
        Convert to a dictionary suitable for structured logging.
        """
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "user_id": self.user_id,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "correlation_id": str(self.correlation_id) if self.correlation_id else None,
            "description": self.description,
            "details": self.details,
            "error_code": self.error_code,
            "error_message": self.error_message,
        }

    def to_sheets_row(self) -> list:
        """
        Convert to a row suitable for Google Sheets storage.

        Returns columns in order:
        [event_id, timestamp, event_type, severity, user_id, entity_type,
         entity_id, correlation_id, description, details_json, error_code,
         error_message]
        """
        return [
            str(self.event_id),
            self.timestamp.isoformat(),
            self.event_type.value,
            self.severity.value,
            self.user_id or "",
            self.entity_type or "",
            self.entity_id or "",
            str(self.correlation_id) if self.correlation_id else "",
            self.description,
            json.dumps(self.details, default=str) if self.details else "",
            self.error_code or "",
            self.error_message or "",
        ]


class AuditEventBuilder:
    """
    Helper class to build audit events with common patterns.

    Usage:
        event = AuditEventBuilder.account_linked(user_id, item_id, name, correlation_id)
        event = AuditEventBuilder.receipt_matched(user_id, receipt_id, txn_id, correlation_id)
    """

    @staticmethod
    def account_linked(
        user_id: str,
        item_id: str,
        institution_name: Optional[str],
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.ACCOUNT_LINKED,
            user_id=user_id,
            entity_type="account",
            entity_id=item_id,
            correlation_id=correlation_id,
            description=f"Account linked: {institution_name or 'unknown institution'}",
            details={"institution_name": institution_name},
        )

    @staticmethod
    def account_unlinked(
        user_id: str,
        item_id: str,
        credential_revoked: bool,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.ACCOUNT_UNLINKED,
            severity=AuditSeverity.INFO if credential_revoked else AuditSeverity.WARNING,
            user_id=user_id,
            entity_type="account",
            entity_id=item_id,
            correlation_id=correlation_id,
            description="Account unlinked",
            details={"credential_revoked": credential_revoked},
        )

    @staticmethod
    def sync_completed(
        user_id: str,
        item_id: str,
        added: int,
        pages: int,
        correlation_id: Optional[UUID],
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SYNC_COMPLETED,
            user_id=user_id,
            entity_type="account",
            entity_id=item_id,
            correlation_id=correlation_id,
            description=f"Sync completed: {added} new transactions over {pages} pages",
            details={"transactions_added": added, "pages_fetched": pages},
        )

    @staticmethod
    def sync_failed(
        user_id: str,
        item_id: str,
        status: str,
        error_message: str,
        correlation_id: Optional[UUID],
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SYNC_FAILED,
            severity=AuditSeverity.WARNING,
            user_id=user_id,
            entity_type="account",
            entity_id=item_id,
            correlation_id=correlation_id,
            description=f"Sync failed, account is now {status}",
            error_message=error_message,
            details={"status": status},
        )

    @staticmethod
    def receipt_extracted(
        user_id: str,
        receipt_id: str,
        vendor: Optional[str],
        line_item_count: int,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RECEIPT_EXTRACTED,
            user_id=user_id,
            entity_type="receipt",
            entity_id=receipt_id,
            correlation_id=correlation_id,
            description=f"Receipt extracted: {vendor or 'unknown vendor'}",
            details={"vendor": vendor, "line_items": line_item_count},
        )

    @staticmethod
    def receipt_matched(
        user_id: str,
        receipt_id: str,
        transaction_id: str,
        correlation_id: Optional[UUID],
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RECEIPT_MATCHED,
            user_id=user_id,
            entity_type="receipt",
            entity_id=receipt_id,
            correlation_id=correlation_id,
            description="Receipt linked to transaction",
            details={"transaction_id": transaction_id},
        )

    @staticmethod
    def receipt_match_ambiguous(
        user_id: str,
        receipt_id: str,
        candidate_ids: list[str],
        correlation_id: Optional[UUID],
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RECEIPT_MATCH_AMBIGUOUS,
            severity=AuditSeverity.WARNING,
            user_id=user_id,
            entity_type="receipt",
            entity_id=receipt_id,
            correlation_id=correlation_id,
            description=f"{len(candidate_ids)} candidate transactions, none linked",
            details={"candidate_ids": candidate_ids},
        )

    @staticmethod
    def receipt_not_matched(
        user_id: str,
        receipt_id: str,
        correlation_id: Optional[UUID],
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RECEIPT_NOT_MATCHED,
            user_id=user_id,
            entity_type="receipt",
            entity_id=receipt_id,
            correlation_id=correlation_id,
            description="No transaction inside the matching window",
        )

    @staticmethod
    def query_resolved(
        user_id: str,
        intent: str,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.QUERY_RESOLVED,
            user_id=user_id,
            entity_type="query",
            correlation_id=correlation_id,
            description=f"Query resolved: {intent}",
            details={"intent": intent},
        )

    @staticmethod
    def insights_generated(
        user_id: str,
        insight_count: int,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.INSIGHTS_GENERATED,
            user_id=user_id,
            entity_type="insights",
            correlation_id=correlation_id,
            description=f"Generated {insight_count} insights",
            details={"insight_count": insight_count},
        )

    @staticmethod
    def system_error(
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SYSTEM_ERROR,
            severity=AuditSeverity.ERROR,
            description=f"System error: {error_type}",
            error_code=error_type,
            error_message=error_message,
            details=details or {},
            correlation_id=correlation_id,
        )

    @staticmethod
    def external_service_error(
        service: str,
        error_message: str,
        correlation_id: Optional[UUID],
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.EXTERNAL_SERVICE_ERROR,
            severity=AuditSeverity.ERROR,
            description=f"External service error: {service}",
            error_message=error_message,
            details={
                "service": service,
            },
            correlation_id=correlation_id,
        )
