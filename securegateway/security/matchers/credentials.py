"""Credential matcher: API keys, tokens and exposed passwords"""
from typing import Dict, List
import math
import re

import zxcvbn

from .base import ContentMatcher, MatchSpan


class CredentialMatcher(ContentMatcher):
    """Finds key/secret/credential-looking tokens and assignments"""

    TOKEN_PATTERNS: Dict[str, re.Pattern] = {
        'generic_assignment': re.compile(
            r'(?i)(?:api[_-]?key|apikey|api[_-]?token|access[_-]?token|private[_-]?key|secret[_-]?key)'
            r'\s*[:=]\s*[\'"]?([a-zA-Z0-9_\-]{10,})[\'"]?'
        ),
        'aws_access_key': re.compile(r'\bAKIA[0-9A-Z]{16}\b'),
        'generic_sk': re.compile(r'\bsk[-_][a-zA-Z0-9_\-]{8,}\b'),
        'github_pat': re.compile(r'ghp_[a-zA-Z0-9]{36}'),
        'slack_token': re.compile(r'xox[baprs]-[0-9]{10,13}-[0-9]{10,13}-[a-zA-Z0-9]{24,34}'),
        'google_api': re.compile(r'AIza[0-9A-Za-z_\-]{35}'),
        'bearer': re.compile(r'(?i)bearer\s+([a-zA-Z0-9_\-\.]{20,})'),
    }

    PASSWORD_PATTERNS: List[re.Pattern] = [
        re.compile(r'(?i)\b(?:password|passwd|pwd|secret)\s*[:=]\s*[\'"]?([^\s\'"]+)[\'"]?'),
        re.compile(r'(?i)(?:mysql|postgres|postgresql|mongodb|redis)://[^:\s]+:([^@\s]+)@'),
        re.compile(r'(?i)https?://[^:\s/]+:([^@\s]+)@'),
    ]

    PLACEHOLDERS = {
        'xxx', '***', '...', 'null', 'none', 'undefined', 'empty',
        'test', 'demo', 'example', 'sample', 'placeholder',
        'changeme', 'password', 'secret', 'your-api-key-here', 'your_api_key',
    }

    def __init__(self, weight: float = 0.3, min_password_length: int = 8, min_entropy: float = 40.0):
        super().__init__('credential', weight)
        self.min_password_length = min_password_length
        self.min_entropy = min_entropy

    def find_matches(self, text: str) -> List[MatchSpan]:
        """Find tokens and exposed passwords, one span per distinct secret"""
        matches: List[MatchSpan] = []
        seen = set()

        for pattern in self.TOKEN_PATTERNS.values():
            for match in pattern.finditer(text):
                secret = match.group(1) if match.lastindex else match.group(0)
                if secret in seen or self._is_placeholder(secret):
                    continue
                seen.add(secret)
                matches.append((match.group(0), match.start(), match.end()))

        for pattern in self.PASSWORD_PATTERNS:
            for match in pattern.finditer(text):
                password = match.group(1)
                if password in seen or password.startswith(('$', '%')):
                    continue
                if not self._looks_like_real_password(password):
                    continue
                seen.add(password)
                matches.append((match.group(0), match.start(), match.end()))

        return matches

    def _is_placeholder(self, secret: str) -> bool:
        lowered = secret.lower()
        if lowered in self.PLACEHOLDERS or 'example' in lowered or 'sample' in lowered:
            return True
        # Runs like xxxxxxxxxx or 0000000000
        return len(set(secret.replace('-', '').replace('_', ''))) <= 2

    def _entropy_bits(self, password: str) -> float:
        charset = 0
        if any(c.islower() for c in password):
            charset += 26
        if any(c.isupper() for c in password):
            charset += 26
        if any(c.isdigit() for c in password):
            charset += 10
        if any(not c.isalnum() for c in password):
            charset += 32
        if charset == 0:
            return 0.0
        return len(password) * math.log2(charset)

    def _looks_like_real_password(self, password: str) -> bool:
        """Heuristics separating real secrets from prose and placeholders"""
        if len(password) < self.min_password_length or len(password) > 64:
            return False
        if password.lower() in self.PLACEHOLDERS:
            return False
        if re.fullmatch(r'[a-zA-Z]+', password):
            return False

        # zxcvbn score: 0 = very weak ... 4 = very strong
        if zxcvbn.zxcvbn(password)['score'] >= 2:
            return True

        return self._entropy_bits(password) >= self.min_entropy
