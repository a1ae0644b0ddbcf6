"""
AuditLogger - structured audit trail of committed complaint transitions.

Usage:
    from complaint_desk.infrastructure.audit import audit_logger

    await audit_logger.log(
        actor_id="u7",
        action="complaint_closed",
        complaint_id="42",
        metadata={"status_from": "AWAITING_PRINCIPAL_REVIEW", "status_to": "CLOSED"},
        request_id="req-abc123",
    )

Entries go to the structured log stream. Letter bodies, reasons and
reporter contact details are never included; metadata carries ids and
statuses only.
"""

from datetime import UTC, datetime
from typing import Any

from complaint_desk.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)


class AuditLogger:
    """
    Centralized audit logging service.

    Never fails the request: a logging failure is reported and swallowed.
    """

    @staticmethod
    async def log(
        actor_id: str,
        action: str,
        complaint_id: str | None = None,
        metadata: dict[str, Any] | None = None,
        request_id: str | None = None,
    ) -> bool:
        """
        Log an audit event.

        Args:
            actor_id: User who performed the action
            action: Action name (e.g. "letter_submitted", "complaint_closed")
            complaint_id: Complaint the action applied to
            metadata: Additional JSON-serializable context (no free text)
            request_id: Request correlation ID for tracing

        Returns:
            True if logged successfully, False if failed (never raises)
        """
        try:
            logger.info(
                "Audit event",
                audit_action=action,
                actor_id=actor_id,
                complaint_id=complaint_id,
                request_id=request_id,
                metadata=metadata or {},
                audited_at=datetime.now(UTC).isoformat(),
            )
            return True
        except Exception as e:
            logger.error(
                "Failed to write audit log",
                error=str(e)[:200],
                error_type=type(e).__name__,
                action=action,
                actor_id=actor_id,
                complaint_id=complaint_id,
            )
            return False


audit_logger = AuditLogger()
