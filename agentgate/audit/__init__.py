"""Hash-chained audit trail of lifecycle events."""

from .trail import AuditTrail, AuditEntry, ChainVerification

__all__ = ["AuditTrail", "AuditEntry", "ChainVerification"]
