"""
Input validator that runs every content check and consolidates the verdict
"""
import json
import logging
from typing import Any, Dict, List, Optional

from ..config import DEFAULT_TIER_POLICIES, TierPolicy
from ..models import CallerTier, CharacterProfile, SecureRequest, SecurityContext, Severity, max_severity
from ..utils import truncate
from .base import (
    AUXILIARY_DATA_SECURITY,
    CONTENT_LENGTH,
    DATA_INTEGRITY,
    MALICIOUS_PATTERN,
    ML_THREAT_DETECTION,
    MODULE_RECOMMENDATION,
    PROMPT_INJECTION,
    RECOMMENDATIONS,
    ValidationCheck,
    ValidationResult,
    Violation,
)
from .matchers import ContentMatcher
from .modules import validate_target_module
from .patterns import (
    malicious_matchers,
    personal_info_matchers,
    prompt_injection_matchers,
    realistic_detail_matchers,
    scan_content,
    script_matchers,
)
from .threat import HeuristicThreatScorer, ThreatScorer

logger = logging.getLogger(__name__)

# Metadata keys containing these fragments are treated as script-like
SUSPICIOUS_METADATA_KEYS = ('script', 'eval', 'function')


class InputValidator:
    """Runs the content checks for a request and consolidates them into one result"""

    def __init__(
        self,
        tier_policies: Optional[Dict[CallerTier, TierPolicy]] = None,
        threat_scorer: Optional[ThreatScorer] = None,
    ):
        self.tier_policies = tier_policies or dict(DEFAULT_TIER_POLICIES)
        self.threat_scorer = threat_scorer or HeuristicThreatScorer()

        # Pattern sets per check kind, extensible at runtime
        self.matchers: Dict[str, List[ContentMatcher]] = {
            PROMPT_INJECTION: prompt_injection_matchers(),
            MALICIOUS_PATTERN: malicious_matchers(),
        }
        self.script_matchers = script_matchers()
        self.personal_info_matchers = personal_info_matchers()
        self.realistic_detail_matchers = realistic_detail_matchers()

        logger.info(
            f"Initialized input validator with {sum(len(m) for m in self.matchers.values())} "
            f"content patterns, threat scorer {self.threat_scorer.name}"
        )

    def add_matcher(self, kind: str, matcher: ContentMatcher) -> None:
        """Register an extra pattern for a pattern-based check"""
        if kind not in self.matchers:
            raise ValueError(f"Check '{kind}' does not use content patterns")
        self.matchers[kind].append(matcher)

    def remove_matcher(self, kind: str, name: str) -> bool:
        """Remove a pattern by name, returning whether anything was removed"""
        before = len(self.matchers.get(kind, []))
        self.matchers[kind] = [m for m in self.matchers.get(kind, []) if m.name != name]
        return len(self.matchers[kind]) < before

    def matchers_for(self, kind: str) -> List[ContentMatcher]:
        """Patterns whose matches trigger a check of the given kind"""
        return list(self.matchers.get(kind, []))

    def validate(self, request: SecureRequest, context: SecurityContext) -> ValidationResult:
        """Run all checks; they are independent of each other and of their order"""
        checks: List[ValidationCheck] = [
            self.check_prompt_injection(request.content),
            self.check_content_length(request.content, context.tier),
            self.check_malicious_patterns(request.content),
            self.check_data_integrity(request),
            self.check_threat_score(request, context),
        ]

        if module_check := validate_target_module(request, context):
            checks.append(module_check)
        elif request.target_module:
            logger.debug(f"Unknown target module '{request.target_module}' skipped by validation")

        if request.auxiliary_data is not None:
            checks.append(self.check_auxiliary_data(request.auxiliary_data))

        result = self.consolidate(checks)
        if not result.passed:
            logger.warning(
                f"Validation failed for request {request.request_id}: "
                f"{[v.kind for v in result.violations]} (risk {result.risk_level.value})"
            )
        return result

    def check_prompt_injection(self, content: str) -> ValidationCheck:
        scan = scan_content(content, self.matchers[PROMPT_INJECTION])
        if scan.score > 0.8:
            severity = Severity.CRITICAL
        elif scan.score > 0.5:
            severity = Severity.HIGH
        else:
            severity = Severity.LOW
        return ValidationCheck(
            kind=PROMPT_INJECTION,
            severity=severity,
            passed=scan.score < 0.5,
            score=scan.score,
            details={"suspiciousPatterns": scan.matched_texts(), "matchers": scan.matcher_names()},
        )

    def check_content_length(self, content: str, tier: CallerTier) -> ValidationCheck:
        policy = self.tier_policies.get(tier) or DEFAULT_TIER_POLICIES[CallerTier.FREE]
        max_length = policy.max_content_length
        length_score = len(content) / max_length
        if length_score > 1.2:
            severity = Severity.HIGH
        elif length_score > 1.0:
            severity = Severity.MEDIUM
        else:
            severity = Severity.LOW
        return ValidationCheck(
            kind=CONTENT_LENGTH,
            severity=severity,
            passed=len(content) <= max_length,
            score=length_score,
            details={"length": len(content), "maxLength": max_length, "tier": tier.value},
        )

    def check_malicious_patterns(self, content: str) -> ValidationCheck:
        scan = scan_content(content, self.matchers[MALICIOUS_PATTERN])
        if scan.score > 0.7:
            severity = Severity.CRITICAL
        elif scan.score > 0.4:
            severity = Severity.HIGH
        else:
            severity = Severity.LOW
        # Matched text may be a credential; report masked examples only
        examples = []
        for hit in scan.hits:
            examples.extend(hit.matcher.mask_matches(text) for text, _, _ in hit.spans[:3])
        return ValidationCheck(
            kind=MALICIOUS_PATTERN,
            severity=severity,
            passed=scan.score < 0.3,
            score=scan.score,
            details={"maliciousPatterns": examples, "matchers": scan.matcher_names()},
        )

    def check_data_integrity(self, request: SecureRequest) -> ValidationCheck:
        # (issue, severity, score)
        issues: List[tuple] = []

        if not request.content or not request.content.strip():
            issues.append(("Empty content", Severity.HIGH, 1.0))

        if suspicious := self._suspicious_metadata(request.metadata):
            issues.append((f"Suspicious metadata: {', '.join(suspicious)}", Severity.MEDIUM, 0.5))

        if request.auxiliary_data is not None:
            character_issues = self._character_integrity_issues(request.auxiliary_data)
            if character_issues:
                severity = Severity.HIGH if len(character_issues) > 2 else Severity.MEDIUM
                issues.extend(
                    (issue, severity, min(1.0, 0.2 * len(character_issues))) for issue in character_issues
                )

        return ValidationCheck(
            kind=DATA_INTEGRITY,
            severity=max_severity(severity for _, severity, _ in issues),
            passed=not issues,
            score=max((score for _, _, score in issues), default=0.0),
            details={"issues": [issue for issue, _, _ in issues]},
        )

    def check_threat_score(self, request: SecureRequest, context: SecurityContext) -> ValidationCheck:
        threat_score = self.threat_scorer.score(request, context)
        if threat_score > 0.8:
            severity = Severity.HIGH
        elif threat_score > 0.5:
            severity = Severity.MEDIUM
        else:
            severity = Severity.LOW
        return ValidationCheck(
            kind=ML_THREAT_DETECTION,
            severity=severity,
            passed=threat_score < 0.8,
            score=threat_score,
            details={"scorer": self.threat_scorer.name},
        )

    def check_auxiliary_data(self, profile: CharacterProfile) -> ValidationCheck:
        """Flag character payloads that look like real personal information"""
        serialized = json.dumps(profile.to_dict())
        findings: List[Dict[str, Any]] = []

        sensitive = scan_content(serialized, self.personal_info_matchers)
        if sensitive.score >= 0.4 or any(h.matcher.name in ('email', 'phone') for h in sensitive.hits):
            findings.append({
                "type": "sensitive_data_detection",
                "severity": Severity.HIGH if sensitive.score > 0.6 else Severity.MEDIUM,
                "score": max(sensitive.score, 0.6),
                "matchers": sensitive.matcher_names(),
            })

        realistic = scan_content(serialized, self.realistic_detail_matchers)
        if realistic.matched:
            findings.append({
                "type": "realistic_personal_details",
                "severity": Severity.MEDIUM,
                "score": 0.6,
                "matches": realistic.matched_texts(),
            })

        return ValidationCheck(
            kind=AUXILIARY_DATA_SECURITY,
            severity=max_severity(f["severity"] for f in findings),
            passed=not findings,
            score=max((f["score"] for f in findings), default=sensitive.score),
            details={
                "findings": [{**f, "severity": f["severity"].value} for f in findings],
                "characterId": profile.id,
            },
        )

    def consolidate(self, checks: List[ValidationCheck]) -> ValidationResult:
        """Failed checks become violations; the score is the mean over all checks"""
        violations = [Violation.from_check(check) for check in checks if not check.passed]
        score = sum(check.score for check in checks) / len(checks) if checks else 0.0
        return ValidationResult(
            passed=not violations,
            score=score,
            violations=violations,
            risk_level=max_severity(v.severity for v in violations),
            recommendations=self._recommendations(violations),
            checks=checks,
        )

    def _recommendations(self, violations: List[Violation]) -> List[str]:
        recommendations: List[str] = []
        for violation in violations:
            advice = RECOMMENDATIONS.get(violation.kind, MODULE_RECOMMENDATION)
            if advice not in recommendations:
                recommendations.append(advice)
        return recommendations

    def _suspicious_metadata(self, metadata: Dict[str, Any]) -> List[str]:
        suspicious = []
        for key, value in metadata.items():
            if any(fragment in key.lower() for fragment in SUSPICIOUS_METADATA_KEYS):
                suspicious.append(f"key '{key}'")
            if isinstance(value, str) and scan_content(value, self.script_matchers).matched:
                suspicious.append(f"value of '{key}' ({truncate(value)})")
        return suspicious

    def _character_integrity_issues(self, profile: CharacterProfile) -> List[str]:
        issues = []
        if not profile.id or not profile.name:
            issues.append("Missing required character fields (id, name)")
        if (free_text := profile.free_text()) and scan_content(free_text, self.script_matchers).score >= 0.5:
            issues.append("Suspicious content in character description")
        if any(not rel.character_id or not rel.relationship_type for rel in profile.relationships):
            issues.append("Invalid relationship data")
        return issues
