"""Audit logging for farmsync."""

from farmsync.audit.batcher import AuditBatcher, AuditStats, AuditWriter
from farmsync.audit.schemas import (
    CRITICAL_ACTIONS,
    READ_ACTIONS,
    AuditAction,
    AuditEntry,
)

__all__ = [
    "AuditAction",
    "AuditEntry",
    "AuditBatcher",
    "AuditStats",
    "AuditWriter",
    "CRITICAL_ACTIONS",
    "READ_ACTIONS",
]
