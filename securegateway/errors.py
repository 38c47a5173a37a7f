"""
Error taxonomy for the security gateway
Every pipeline stage reports failures as one of these kinds
"""
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, Generic, List, Optional, TypeVar

from .models import Severity

if TYPE_CHECKING:
    from .security.base import Violation


class ErrorKind(Enum):
    """Distinct abort reasons of the request pipeline"""
    AUTH_REQUIRED = "AUTH_REQUIRED"
    INVALID_SESSION = "INVALID_SESSION"
    RATE_LIMIT_EXCEEDED = "RATE_LIMIT_EXCEEDED"
    VALIDATION_FAILED = "VALIDATION_FAILED"
    THREAT_CRITICAL = "THREAT_CRITICAL"
    FORWARDING_FAILURE = "FORWARDING_FAILURE"
    PERSISTENCE_FAILURE = "PERSISTENCE_FAILURE"
    INTERNAL_ERROR = "INTERNAL_ERROR"


class SecurityError(Exception):
    """Base exception for pipeline failures surfaced to the caller"""
    kind: ErrorKind = ErrorKind.INTERNAL_ERROR
    default_severity: Severity = Severity.HIGH

    def __init__(
        self,
        message: str,
        severity: Optional[Severity] = None,
        request_id: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.severity = severity or self.default_severity
        self.request_id = request_id
        self.details: Dict[str, Any] = details or {}

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization"""
        result: Dict[str, Any] = {
            "code": self.kind.value,
            "message": self.message,
            "severity": self.severity.value,
        }
        if self.request_id:
            result["requestId"] = self.request_id
        if self.details:
            result["details"] = self.details
        return result


class AuthRequired(SecurityError):
    """Caller identity or session identity missing"""
    kind = ErrorKind.AUTH_REQUIRED


class InvalidSession(SecurityError):
    """Session unknown, expired, revoked or bound to another caller"""
    kind = ErrorKind.INVALID_SESSION


class RateLimitExceeded(SecurityError):
    """Caller exceeded its tier's window or burst limit"""
    kind = ErrorKind.RATE_LIMIT_EXCEEDED
    default_severity = Severity.MEDIUM

    def __init__(self, message: str, retry_after_seconds: int, **kwargs: Any):
        super().__init__(message, **kwargs)
        self.retry_after_seconds = retry_after_seconds
        self.details.setdefault("retryAfterSeconds", retry_after_seconds)


class ValidationFailed(SecurityError):
    """Input validation produced violations that cannot be remediated"""
    kind = ErrorKind.VALIDATION_FAILED

    def __init__(self, message: str, violations: List["Violation"], risk_level: Severity, **kwargs: Any):
        kwargs.setdefault("severity", risk_level)
        super().__init__(message, **kwargs)
        self.violations = violations
        self.risk_level = risk_level
        self.details.setdefault("riskLevel", risk_level.value)
        self.details.setdefault("violations", [v.to_dict() for v in violations])


class ThreatCritical(SecurityError):
    """Caller is blocked after a critical threat assessment"""
    kind = ErrorKind.THREAT_CRITICAL
    default_severity = Severity.CRITICAL


class ForwardingFailure(SecurityError):
    """Generation backend unreachable, failing or too slow"""
    kind = ErrorKind.FORWARDING_FAILURE


class PersistenceFailure(SecurityError):
    """Audit batch could not be written; retried on the next flush"""
    kind = ErrorKind.PERSISTENCE_FAILURE


class InternalError(SecurityError):
    """Unexpected failure inside a gateway stage other than forwarding"""
    kind = ErrorKind.INTERNAL_ERROR


T = TypeVar("T")


@dataclass
class StageResult(Generic[T]):
    """Outcome of one pipeline stage: a value, or the error that aborts the pipeline"""
    value: Optional[T] = None
    error: Optional[SecurityError] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, value: Optional[T] = None) -> "StageResult[T]":
        return cls(value=value)

    @classmethod
    def fail(cls, error: SecurityError) -> "StageResult[T]":
        return cls(error=error)
