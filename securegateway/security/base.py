"""
Base types for content validation
"""
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from ..models import Severity

# Check kinds produced by the input validator
PROMPT_INJECTION = "prompt_injection"
CONTENT_LENGTH = "content_length"
MALICIOUS_PATTERN = "malicious_pattern"
DATA_INTEGRITY = "data_integrity"
ML_THREAT_DETECTION = "ml_threat_detection"
AUXILIARY_DATA_SECURITY = "auxiliary_data_security"

# Fixed remediation advice per check kind
RECOMMENDATIONS: Dict[str, str] = {
    PROMPT_INJECTION: "Rephrase the request without instructions aimed at the assistant itself",
    CONTENT_LENGTH: "Shorten the content or upgrade to a tier with a higher content limit",
    MALICIOUS_PATTERN: "Remove code, query syntax, file paths and credentials from the content",
    DATA_INTEGRITY: "Provide non-empty content and complete character data with plain metadata",
    ML_THREAT_DETECTION: "Review the request for privileged or unusual instructions",
    AUXILIARY_DATA_SECURITY: "Use fictional names and places instead of real personal information",
}
MODULE_RECOMMENDATION = "Choose a writing module available to your tier"


@dataclass
class ValidationCheck:
    """Outcome of exactly one check"""
    kind: str
    severity: Severity
    passed: bool
    score: float
    details: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind,
            "severity": self.severity.value,
            "passed": self.passed,
            "score": self.score,
            "details": self.details,
        }


@dataclass
class Violation:
    """A failed check, as reported to the caller"""
    kind: str
    severity: Severity
    description: str
    details: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_check(cls, check: ValidationCheck) -> "Violation":
        return cls(
            kind=check.kind,
            severity=check.severity,
            description=f"{check.kind} check failed",
            details=check.details,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.kind,
            "severity": self.severity.value,
            "description": self.description,
            "details": self.details,
        }


@dataclass
class ValidationResult:
    """Consolidated verdict over all checks for one request"""
    passed: bool
    score: float
    violations: List[Violation]
    risk_level: Severity
    recommendations: List[str]
    checks: List[ValidationCheck] = field(default_factory=list)

    def violations_of(self, *severities: Severity) -> List[Violation]:
        return [v for v in self.violations if v.severity in severities]

    def check(self, kind: str) -> Optional[ValidationCheck]:
        """Look up a check by kind"""
        return next((c for c in self.checks if c.kind == kind), None)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "isValid": self.passed,
            "score": self.score,
            "riskLevel": self.risk_level.value,
            "violations": [v.to_dict() for v in self.violations],
            "recommendations": list(self.recommendations),
        }
