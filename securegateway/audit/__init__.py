"""
Audit logging and compliance reporting
"""
from .compliance import analyze
from .logger import AuditLogger, violation_threat_score
from .models import (
    AI_REQUEST_FAILED,
    AI_REQUEST_SUCCESS,
    HIGH_THREAT_DETECTED,
    SECURITY_VIOLATION,
    AuditLogEntry,
    AuditQuery,
    ComplianceReport,
)
from .store import AuditStore, MemoryAuditStore, SQLiteAuditStore

__all__ = [
    'analyze',
    'AuditLogger',
    'violation_threat_score',
    'AI_REQUEST_FAILED',
    'AI_REQUEST_SUCCESS',
    'HIGH_THREAT_DETECTED',
    'SECURITY_VIOLATION',
    'AuditLogEntry',
    'AuditQuery',
    'ComplianceReport',
    'AuditStore',
    'MemoryAuditStore',
    'SQLiteAuditStore'
]
