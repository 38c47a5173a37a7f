"""
Content sanitization: request-side remediation and response-side filtering
"""
from dataclasses import dataclass, field, replace
from typing import Dict, List
import html
import logging
import re

from ..models import CallerTier, SecureRequest, Severity
from .base import ValidationResult
from .matchers import ContentMatcher, CredentialMatcher, PaymentCardMatcher

logger = logging.getLogger(__name__)

# Removed from every backend response
EXECUTABLE_OUTPUT_PATTERNS = [
    re.compile(r'<script\b[^<]*(?:(?!</script>)<[^<]*)*</script>', re.IGNORECASE),
    re.compile(r'javascript:', re.IGNORECASE),
    re.compile(r'data:text/html', re.IGNORECASE),
    re.compile(r'\bon[a-z]+\s*=', re.IGNORECASE),
]

# Additionally removed for tiers below Admin
HTML_OUTPUT_PATTERNS = [
    re.compile(r'<script[^>]*>.*?</script>', re.IGNORECASE | re.DOTALL),
    re.compile(r'<iframe[^>]*>.*?</iframe>', re.IGNORECASE | re.DOTALL),
    re.compile(r'<object[^>]*>.*?</object>', re.IGNORECASE | re.DOTALL),
    re.compile(r'<embed[^>]*>', re.IGNORECASE),
    re.compile(r'</?(?:script|iframe|object|form|input|button|textarea|style)\b[^>]*>', re.IGNORECASE),
]


@dataclass
class SanitizationOutcome:
    """Sanitized copy of a request plus what was done to it"""
    request: SecureRequest
    actions: List[Dict[str, str]] = field(default_factory=list)

    @property
    def changed(self) -> bool:
        return bool(self.actions)


class ContentSanitizer:
    """
    Removes or neutralizes the spans that made validation checks fail.

    Critical violations have their matches stripped. High violations are
    neutralized: markup is escaped, sensitive data masked, and anything
    still matching after that is removed. Sanitizing already-sanitized
    content is a no-op.
    """

    def __init__(self, matchers: Dict[str, List[ContentMatcher]], max_passes: int = 10):
        self.matchers = matchers
        self.max_passes = max_passes

    def sanitize(self, request: SecureRequest, result: ValidationResult) -> SanitizationOutcome:
        """Return a sanitized copy of the request; the original is never modified"""
        content = request.content
        actions: List[Dict[str, str]] = []

        for violation in result.violations_of(Severity.CRITICAL, Severity.HIGH):
            triggering = self._triggering_matchers(violation.kind, content)
            if not triggering:
                continue
            mode = "strip" if violation.severity is Severity.CRITICAL else "neutralize"
            content = self._apply_until_clean(content, triggering, mode)
            actions.append({
                "kind": violation.kind,
                "mode": mode,
                "matchers": ", ".join(m.name for m in triggering),
            })

        if actions:
            logger.info(f"Sanitized request {request.request_id}: {[a['kind'] for a in actions]}")
            return SanitizationOutcome(request=replace(request, content=content), actions=actions)
        return SanitizationOutcome(request=request)

    def _triggering_matchers(self, kind: str, content: str) -> List[ContentMatcher]:
        return [m for m in self.matchers.get(kind, []) if m.contains_match(content)]

    def _apply_until_clean(self, content: str, matchers: List[ContentMatcher], mode: str) -> str:
        # Removing one span can join text into a new match, so repeat until nothing matches
        for _ in range(self.max_passes):
            remaining = [m for m in matchers if m.contains_match(content)]
            if not remaining:
                return content
            for matcher in remaining:
                content = self._strip(content, matcher) if mode == "strip" else self._neutralize(content, matcher)

        for matcher in matchers:
            while matcher.contains_match(content):
                content = self._strip(content, matcher)
        return content

    def _strip(self, content: str, matcher: ContentMatcher) -> str:
        for _, start, end in sorted(matcher.find_matches(content), key=lambda m: m[1], reverse=True):
            content = content[:start] + content[end:]
        return content

    def _neutralize(self, content: str, matcher: ContentMatcher) -> str:
        if isinstance(matcher, (CredentialMatcher, PaymentCardMatcher)):
            masked = matcher.mask_matches(content)
            return masked if not matcher.contains_match(masked) else self._strip(masked, matcher)

        for matched_text, start, end in sorted(matcher.find_matches(content), key=lambda m: m[1], reverse=True):
            escaped = html.escape(matched_text)
            if matcher.contains_match(escaped):
                escaped = ""
            content = content[:start] + escaped + content[end:]
        return content


def filter_output(content: str, tier: CallerTier) -> str:
    """Strip executable content from a backend response and mask leaked secrets"""
    filtered = content
    for pattern in EXECUTABLE_OUTPUT_PATTERNS:
        filtered = pattern.sub('', filtered)

    if tier is not CallerTier.ADMIN:
        for pattern in HTML_OUTPUT_PATTERNS:
            filtered = pattern.sub('', filtered)

    for matcher in (CredentialMatcher(), PaymentCardMatcher()):
        filtered = matcher.mask_matches(filtered)

    if filtered != content:
        logger.debug(f"Filtered backend output for {tier.value} tier")
    return filtered
