"""
Audit data models
"""
import json
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from ..models import Severity, _parse_timestamp
from ..utils import generate_id, utcnow

# Actions written by the gateway
SECURITY_VIOLATION = "security_violation"
HIGH_THREAT_DETECTED = "high_threat_detected"
AI_REQUEST_SUCCESS = "ai_request_success"
AI_REQUEST_FAILED = "ai_request_failed"

DEFAULT_RESOURCE = "ai_gateway"

# Column order of the persisted audit table
COLUMNS = (
    "id", "timestamp", "caller_id", "action", "resource", "success", "security_level",
    "threat_score", "metadata", "network_origin", "user_agent", "session_id",
)


@dataclass(frozen=True)
class AuditLogEntry:
    """Immutable, append-only audit record"""
    caller_id: str
    action: str
    resource: str = DEFAULT_RESOURCE
    success: bool = True
    security_level: Severity = Severity.LOW
    threat_score: float = 0.0
    metadata: Dict[str, Any] = field(default_factory=dict)
    network_origin: str = "unknown"
    user_agent: str = "unknown"
    session_id: str = ""
    timestamp: datetime = field(default_factory=utcnow)
    id: str = field(default_factory=lambda: generate_id("audit"))

    def to_row(self) -> Tuple[Any, ...]:
        """Values in table column order; metadata as JSON text"""
        return (
            self.id,
            self.timestamp.isoformat(),
            self.caller_id,
            self.action,
            self.resource,
            int(self.success),
            self.security_level.value,
            self.threat_score,
            json.dumps(self.metadata, default=str),
            self.network_origin,
            self.user_agent,
            self.session_id,
        )

    @classmethod
    def from_row(cls, row: Tuple[Any, ...]) -> "AuditLogEntry":
        values = dict(zip(COLUMNS, row))
        return cls(
            id=values["id"],
            timestamp=_parse_timestamp(values["timestamp"]),
            caller_id=values["caller_id"],
            action=values["action"],
            resource=values["resource"],
            success=bool(values["success"]),
            security_level=Severity(values["security_level"]),
            threat_score=float(values["threat_score"] or 0.0),
            metadata=json.loads(values["metadata"] or "{}"),
            network_origin=values["network_origin"],
            user_agent=values["user_agent"],
            session_id=values["session_id"],
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "timestamp": self.timestamp.isoformat(),
            "callerId": self.caller_id,
            "action": self.action,
            "resource": self.resource,
            "success": self.success,
            "securityLevel": self.security_level.value,
            "threatScore": self.threat_score,
            "metadata": self.metadata,
            "networkOrigin": self.network_origin,
            "userAgent": self.user_agent,
            "sessionId": self.session_id,
        }


@dataclass
class AuditQuery:
    """Filters for reading audit entries; unset fields match everything"""
    caller_id: Optional[str] = None
    action: Optional[str] = None
    resource: Optional[str] = None
    security_level: Optional[Severity] = None
    start: Optional[datetime] = None
    end: Optional[datetime] = None
    limit: Optional[int] = None
    offset: int = 0

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AuditQuery":
        level = data.get("securityLevel")
        return cls(
            caller_id=data.get("callerId"),
            action=data.get("action"),
            resource=data.get("resource"),
            security_level=Severity(level) if level else None,
            start=_parse_timestamp(data["start"]) if data.get("start") else None,
            end=_parse_timestamp(data["end"]) if data.get("end") else None,
            limit=data.get("limit"),
            offset=int(data.get("offset", 0)),
        )

    def matches(self, entry: AuditLogEntry) -> bool:
        if self.caller_id is not None and entry.caller_id != self.caller_id:
            return False
        if self.action is not None and entry.action != self.action:
            return False
        if self.resource is not None and entry.resource != self.resource:
            return False
        if self.security_level is not None and entry.security_level is not self.security_level:
            return False
        if self.start is not None and entry.timestamp < self.start:
            return False
        if self.end is not None and entry.timestamp > self.end:
            return False
        return True

    def apply(self, entries: List[AuditLogEntry]) -> List[AuditLogEntry]:
        """Filter, order newest first, then page"""
        selected = sorted((e for e in entries if self.matches(e)), key=lambda e: e.timestamp, reverse=True)
        selected = selected[self.offset:]
        return selected if self.limit is None else selected[:self.limit]


@dataclass
class ComplianceReport:
    """Read-only aggregate over a window of audit entries"""
    start: datetime
    end: datetime
    total_events: int
    security_violations: int
    high_threat_events: int
    user_activity: int
    compliance_score: int
    events_by_action: Dict[str, int]
    events_by_caller: Dict[str, int]
    threat_score_distribution: Dict[str, int]
    security_level_breakdown: Dict[str, int]
    recommendations: List[str]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "period": {"start": self.start.isoformat(), "end": self.end.isoformat()},
            "summary": {
                "totalEvents": self.total_events,
                "securityViolations": self.security_violations,
                "highThreatEvents": self.high_threat_events,
                "userActivity": self.user_activity,
                "complianceScore": self.compliance_score,
            },
            "details": {
                "eventsByAction": self.events_by_action,
                "eventsByCaller": self.events_by_caller,
                "threatScoreDistribution": self.threat_score_distribution,
                "securityLevelBreakdown": self.security_level_breakdown,
            },
            "recommendations": list(self.recommendations),
        }
