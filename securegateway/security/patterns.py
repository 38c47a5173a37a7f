"""
Pattern sets and the weighted suspicion scorer shared by the validation checks
"""
from dataclasses import dataclass, field
from typing import Iterable, List, Sequence

from .matchers import (
    ContentMatcher,
    CredentialMatcher,
    EmailMatcher,
    MatchSpan,
    PaymentCardMatcher,
    PhoneMatcher,
    RegexMatcher,
)

# Per-pattern cap on matched texts reported in check details
MAX_REPORTED_PER_PATTERN = 3

# Any instruction override is critical, however long the surrounding content
INSTRUCTION_OVERRIDE_MIN_SCORE = 0.85


@dataclass
class PatternHit:
    """Matches of one matcher within scanned content"""
    matcher: ContentMatcher
    spans: List[MatchSpan]

    @property
    def weighted(self) -> float:
        return len(self.spans) * self.matcher.weight


@dataclass
class PatternScan:
    """Result of scanning content against a set of matchers"""
    score: float
    match_count: int
    hits: List[PatternHit] = field(default_factory=list)

    @property
    def matched(self) -> bool:
        return self.match_count > 0

    def matched_texts(self) -> List[str]:
        """Distinct matched texts, at most a few per pattern"""
        texts: List[str] = []
        for hit in self.hits:
            for text, _, _ in hit.spans[:MAX_REPORTED_PER_PATTERN]:
                if text not in texts:
                    texts.append(text)
        return texts

    def matcher_names(self) -> List[str]:
        return sorted({hit.matcher.name for hit in self.hits})


def suspicion_score(content_length: int, weighted_total: float, match_count: int) -> float:
    """
    Normalize a weighted match total into [0, 1].

    The total is divided by the content length in hundreds of characters
    (never less than one), then boosted by 0.2 for more than five matches
    or 0.1 for more than two.
    """
    normalized = min(weighted_total / max(content_length / 100, 1), 1.0)
    if match_count > 5:
        return min(normalized + 0.2, 1.0)
    if match_count > 2:
        return min(normalized + 0.1, 1.0)
    return normalized


def scan_content(content: str, matchers: Iterable[ContentMatcher]) -> PatternScan:
    """Run every matcher over the content and score the combined matches"""
    hits = []
    for matcher in matchers:
        if spans := matcher.find_matches(content):
            hits.append(PatternHit(matcher=matcher, spans=spans))

    match_count = sum(len(hit.spans) for hit in hits)
    total = sum(hit.weighted for hit in hits)
    # A single hit on a floored matcher outweighs any length dilution
    floor = max((hit.matcher.min_score for hit in hits), default=0.0)
    return PatternScan(
        score=max(suspicion_score(len(content), total, match_count), floor),
        match_count=match_count,
        hits=hits,
    )


def _regex_set(prefix: str, patterns: Sequence[str], weight: float, flags=None,
               min_score: float = 0.0) -> List[ContentMatcher]:
    kwargs = {} if flags is None else {'flags': flags}
    return [
        RegexMatcher(f"{prefix}_{index}", pattern, weight=weight, min_score=min_score, **kwargs)
        for index, pattern in enumerate(patterns, start=1)
    ]


INSTRUCTION_OVERRIDE_PATTERNS = [
    r'ignore\s+(?:all\s+)?previous\s+instructions',
    r'forget\s+everything\s+above',
    r'you\s+are\s+now\s+a\s+different\s+ai',
    r'roleplay\s+as\s+(?:admin|root|system)',
    r'execute\s+(?:command|code|script)',
    r'disregard\s+(?:all\s+)?(?:prior|previous|above)\s+(?:instructions|rules)',
]

SCRIPT_MARKER_PATTERNS = [
    r'<script\b[^>]*>(?:[\s\S]*?</script>)?',
    r'data:text/html',
    r'javascript:',
    r'vbscript:',
    r'\bon(?:load|error)\s*=',
    r'\{\{[^{}]*\}\}',
]

API_NAME_PATTERNS = [
    r'\beval\s*\(',
    r'\bFunction\s*\(',
    r'\bsetTimeout\s*\(',
    r'\bsetInterval\s*\(',
    r'\bdocument\.[a-z_]',
    r'\bwindow\.[a-z_]',
    r'\bprocess\.[a-z_]',
    r'\brequire\s*\(',
    r'\bimport\s*\(',
    r'\bfs\.[a-z_]',
    r'\bchild_process\b',
    r'\bexec\s*\(',
    r'\bspawn\s*\(',
]

INJECTION_SYNTAX_PATTERNS = [
    r'\bunion\s+(?:all\s+)?select\b',
    r'\b(?:and|or)\s+\d+\s*=\s*\d+',
    r'\b(?:and|or)\s+[\'"]\w+[\'"]\s*=\s*[\'"]\w+[\'"]',
    r';\s*(?:drop|delete|truncate|alter)\s+(?:table|database)\b',
    r'\bselect\s+\*\s+from\b',
    r'\binsert\s+into\s+\w+\s*\(',
]

MARKUP_INJECTION_PATTERNS = [
    r'<iframe\b[^>]*>',
    r'<object\b[^>]*>',
    r'<embed\b[^>]*>',
    r'<form\b[^>]*>',
    r'<input\b[^>]*>',
    r'<textarea\b[^>]*>',
    r'<button\b[^>]*>',
]

COMMAND_INJECTION_PATTERNS = [
    r'[;&|]\s*(?:rm|cat|ls|wget|curl|chmod|chown|whoami|uname|nc|bash|sh)\b',
    r'\$\([^)]*\)',
    r'\brm\s+-rf\b',
]

PATH_TRAVERSAL_PATTERNS = [
    r'(?:\.\.[/\\]){2,}',
    r'/etc/(?:passwd|shadow)',
    r'/proc/(?:version|self)',
    r'/sys/class',
]

SENSITIVE_ASSIGNMENT_PATTERNS = [
    r'\b(?:ssn|credit_card|cc_number|card_number)\s*[:=]\s*[\'"]?\d+',
]

PERSONAL_INFO_PATTERNS = [
    r'\b(?:real|actual|true|genuine)\s+(?:name|address|phone|email|ssn|credit_card)\b',
    r'\b(?:birth|born|age|dob)\s*[:=]\s*[\'"]?\d+',
    r'\b(?:address|street|city|state|zip|postal)\s*[:=]\s*[\'"]?\w+',
    r'\b(?:employer|company|work|job)\s*[:=]\s*[\'"]?\w+',
    r'\b(?:income|salary|wage|earnings)\s*[:=]\s*[\'"]?\d+',
]


def prompt_injection_matchers() -> List[ContentMatcher]:
    """Instruction-override phrases weigh 1.0, script/template markers 0.5, API names 0.1"""
    return (
        _regex_set('instruction_override', INSTRUCTION_OVERRIDE_PATTERNS, 1.0,
                   min_score=INSTRUCTION_OVERRIDE_MIN_SCORE)
        + _regex_set('script_marker', SCRIPT_MARKER_PATTERNS, 0.5)
        + _regex_set('api_name', API_NAME_PATTERNS, 0.1)
    )


def malicious_matchers() -> List[ContentMatcher]:
    """Injection syntax, markup, commands, path traversal and sensitive-data tokens"""
    return (
        _regex_set('injection_syntax', INJECTION_SYNTAX_PATTERNS, 0.3)
        + _regex_set('markup_injection', MARKUP_INJECTION_PATTERNS, 0.3)
        + _regex_set('command_injection', COMMAND_INJECTION_PATTERNS, 0.3)
        + _regex_set('path_traversal', PATH_TRAVERSAL_PATTERNS, 0.3)
        + _regex_set('sensitive_assignment', SENSITIVE_ASSIGNMENT_PATTERNS, 0.3)
        + [CredentialMatcher(weight=0.3), PaymentCardMatcher(weight=0.3)]
    )


def script_matchers() -> List[ContentMatcher]:
    """Markers that make metadata values or character descriptions suspicious"""
    return _regex_set('script', [r'<script', r'javascript:', r'\beval\('], 0.5)


def personal_info_matchers() -> List[ContentMatcher]:
    return _regex_set('personal_info', PERSONAL_INFO_PATTERNS, 0.1) + [EmailMatcher(), PhoneMatcher()]


def realistic_detail_matchers() -> List[ContentMatcher]:
    """Honorific names and street-address shapes that may describe real people"""
    return [
        RegexMatcher('honorific_name', r'\b(?:Mr|Mrs|Ms|Dr|Prof)\.\s+[A-Z][a-z]+', weight=0.1, flags=0),
        RegexMatcher(
            'street_address',
            r'\b\d+\s+[A-Za-z]+\s+(?:Street|St|Avenue|Ave|Road|Rd|Boulevard|Blvd|Lane|Ln|Drive)\b',
            weight=0.1,
        ),
    ]
