"""
Data models for the security gateway
Requests, caller context, risk profiles and responses
"""
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional

from .utils import generate_id, utcnow


class CallerTier(Enum):
    """Service level of a caller, ordered Free < Pro < Admin"""
    FREE = "Free"
    PRO = "Pro"
    ADMIN = "Admin"

    @property
    def rank(self) -> int:
        return _TIER_RANKS[self]

    @classmethod
    def from_value(cls, value: Any) -> "CallerTier":
        """Resolve a tier name, falling back to Free for unknown values"""
        if isinstance(value, cls):
            return value
        for tier in cls:
            if str(value).lower() == tier.value.lower():
                return tier
        return cls.FREE


_TIER_RANKS = {CallerTier.FREE: 1, CallerTier.PRO: 2, CallerTier.ADMIN: 3}


class Severity(Enum):
    """Ordinal risk label: low < medium < high < critical"""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANKS[self]

    @property
    def risk_increment(self) -> float:
        """Contribution of one violation at this severity to a risk score"""
        return _RISK_INCREMENTS[self]


_SEVERITY_RANKS = {Severity.LOW: 1, Severity.MEDIUM: 2, Severity.HIGH: 3, Severity.CRITICAL: 4}
_RISK_INCREMENTS = {Severity.LOW: 0.05, Severity.MEDIUM: 0.1, Severity.HIGH: 0.2, Severity.CRITICAL: 0.4}


def max_severity(severities: Iterable[Severity]) -> Severity:
    """Highest severity in the iterable, low when empty"""
    return max(severities, key=lambda s: s.rank, default=Severity.LOW)


@dataclass(frozen=True)
class CharacterRelationship:
    """Link from one character profile to another"""
    character_id: str
    relationship_type: str
    description: str = ""


@dataclass(frozen=True)
class CharacterProfile:
    """Auxiliary character/profile payload attached to a writing request"""
    id: str
    name: str
    description: str = ""
    background: str = ""
    personality: Dict[str, Any] = field(default_factory=dict)
    relationships: List[CharacterRelationship] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CharacterProfile":
        return cls(
            id=str(data.get("id", "")),
            name=str(data.get("name", "")),
            description=data.get("description", "") or "",
            background=data.get("background", "") or "",
            personality=data.get("personality", {}) or {},
            relationships=[
                CharacterRelationship(
                    character_id=rel.get("characterId", ""),
                    relationship_type=rel.get("relationshipType", ""),
                    description=rel.get("description", ""),
                )
                for rel in data.get("relationships", []) or []
            ],
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "background": self.background,
            "personality": self.personality,
            "relationships": [
                {
                    "characterId": rel.character_id,
                    "relationshipType": rel.relationship_type,
                    "description": rel.description,
                }
                for rel in self.relationships
            ],
        }

    def free_text(self) -> str:
        """Concatenated free-text fields, for pattern scanning"""
        return "\n".join(part for part in (self.description, self.background) if part)


@dataclass(frozen=True)
class SecureRequest:
    """An AI request submitted into the gateway. Never mutated; sanitizing yields a copy."""
    caller_id: str
    session_id: str
    content: str
    target_module: Optional[str] = None
    auxiliary_data: Optional[CharacterProfile] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=utcnow)
    request_id: str = field(default_factory=lambda: generate_id("req"))

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SecureRequest":
        """Build a request from its inbound wire shape"""
        aux = data.get("auxiliaryData")
        kwargs: Dict[str, Any] = {}
        if timestamp := data.get("timestamp"):
            kwargs["timestamp"] = _parse_timestamp(timestamp)
        if request_id := data.get("requestId"):
            kwargs["request_id"] = request_id
        return cls(
            caller_id=data.get("callerId", "") or "",
            session_id=data.get("sessionId", "") or "",
            content=data.get("content", "") or "",
            target_module=data.get("targetModule"),
            auxiliary_data=CharacterProfile.from_dict(aux) if aux else None,
            metadata=data.get("metadata", {}) or {},
            **kwargs,
        )


@dataclass(frozen=True)
class RiskEvent:
    """One escalation of a caller's risk profile"""
    timestamp: datetime
    increment: float
    risk_level: Severity
    reason: str


@dataclass
class RiskProfile:
    """Running risk score of a caller plus its append-only escalation history"""
    risk_score: float = 0.0
    last_violation: Optional[datetime] = None
    history: List[RiskEvent] = field(default_factory=list)

    def escalate(self, increment: float, risk_level: Severity, reason: str,
                 when: Optional[datetime] = None) -> RiskEvent:
        """Append an escalation and raise the running score (clamped to 1.0)"""
        when = when or utcnow()
        event = RiskEvent(timestamp=when, increment=increment, risk_level=risk_level, reason=reason)
        self.history.append(event)
        self.risk_score = min(self.risk_score + increment, 1.0)
        self.last_violation = when
        return event


@dataclass
class SecurityContext:
    """Caller context supplied alongside every request"""
    caller_id: str
    session_id: str
    tier: CallerTier = CallerTier.FREE
    network_origin: str = "unknown"
    user_agent: str = "unknown"
    device_fingerprint: str = ""
    risk_profile: RiskProfile = field(default_factory=RiskProfile)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SecurityContext":
        risk = data.get("riskProfile", {}) or {}
        last_violation = risk.get("lastViolation")
        return cls(
            caller_id=data.get("callerId", "") or "",
            session_id=data.get("sessionId", "") or "",
            tier=CallerTier.from_value(data.get("tier", "Free")),
            network_origin=data.get("networkOrigin", "unknown") or "unknown",
            user_agent=data.get("userAgent", "unknown") or "unknown",
            device_fingerprint=data.get("deviceFingerprint", "") or "",
            risk_profile=RiskProfile(
                risk_score=float(risk.get("riskScore", 0.0)),
                last_violation=_parse_timestamp(last_violation) if last_violation else None,
            ),
        )


@dataclass
class BackendResponse:
    """Raw response from a generation backend"""
    content: str
    model: str = "unknown"
    confidence: float = 0.0
    usage: Dict[str, int] = field(default_factory=dict)
    cached: bool = False


@dataclass
class ComplianceStatus:
    """Compliance assertions returned to the caller"""
    gdpr: bool
    ccpa: bool
    hipaa: bool
    sox: bool
    iso27001: bool
    last_audit: datetime

    @classmethod
    def for_tier(cls, tier: CallerTier) -> "ComplianceStatus":
        """Elevated categories are only asserted for the Admin tier"""
        elevated = tier is CallerTier.ADMIN
        return cls(gdpr=True, ccpa=True, hipaa=elevated, sox=elevated, iso27001=True, last_audit=utcnow())

    def to_dict(self) -> Dict[str, Any]:
        return {
            "gdpr": self.gdpr,
            "ccpa": self.ccpa,
            "hipaa": self.hipaa,
            "sox": self.sox,
            "iso27001": self.iso27001,
            "lastAudit": self.last_audit.isoformat(),
        }


@dataclass
class SecurityMetadata:
    """Security annotations attached to every successful response"""
    validation_score: float
    threat_score: float
    compliance_status: ComplianceStatus
    encryption_level: str = "AES-256"
    audit_trail: List[str] = field(default_factory=list)


@dataclass
class SecureResponse:
    """Response returned to the caller after the full pipeline"""
    content: str
    confidence: float
    backend_model: str
    usage: Dict[str, int]
    cached: bool
    security_level: str
    request_id: str
    security_metadata: SecurityMetadata

    def to_dict(self) -> Dict[str, Any]:
        """Convert to the outbound wire shape"""
        meta = self.security_metadata
        return {
            "content": self.content,
            "confidence": self.confidence,
            "backendModel": self.backend_model,
            "usage": self.usage,
            "cached": self.cached,
            "securityLevel": self.security_level,
            "requestId": self.request_id,
            "securityMetadata": {
                "validationScore": meta.validation_score,
                "threatScore": meta.threat_score,
                "encryptionLevel": meta.encryption_level,
                "auditTrail": list(meta.audit_trail),
                "complianceStatus": meta.compliance_status.to_dict(),
            },
        }


def _parse_timestamp(value: Any) -> datetime:
    if isinstance(value, datetime):
        return value
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value, tz=utcnow().tzinfo)
    parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=utcnow().tzinfo)
    return parsed
