"""
Audit logging infrastructure for complaint workflow transitions.
"""

from complaint_desk.infrastructure.audit.audit_logger import AuditLogger, audit_logger

__all__ = ["AuditLogger", "audit_logger"]
