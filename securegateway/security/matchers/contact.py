"""Contact detail matchers: e-mail addresses and phone numbers"""
from typing import List
import logging
import re

import phonenumbers
from email_validator import EmailNotValidError, validate_email
from phonenumbers import PhoneNumberMatcher

from .base import ContentMatcher, MatchSpan

logger = logging.getLogger(__name__)


class EmailMatcher(ContentMatcher):
    """Finds syntactically valid e-mail addresses"""

    EMAIL_REGEX = re.compile(
        r'\b[A-Za-z0-9][A-Za-z0-9._%+-]*@[A-Za-z0-9][A-Za-z0-9.-]*\.[A-Za-z]{2,}\b'
    )

    def __init__(self, weight: float = 0.2):
        super().__init__('email', weight)

    def find_matches(self, text: str) -> List[MatchSpan]:
        matches: List[MatchSpan] = []
        for match in self.EMAIL_REGEX.finditer(text):
            try:
                # No DNS lookups on the request path
                validate_email(match.group(0), check_deliverability=False)
            except EmailNotValidError:
                continue
            matches.append((match.group(0), match.start(), match.end()))
        return matches


class PhoneMatcher(ContentMatcher):
    """Finds international phone numbers using libphonenumber"""

    # Digits right after these words are identifiers, not phone numbers
    CONTEXT_EXCLUSIONS = ('key', 'token', 'secret', 'id', 'hash', 'isbn')

    def __init__(self, weight: float = 0.2, default_region: str = None):
        super().__init__('phone', weight)
        self.default_region = default_region

    def find_matches(self, text: str) -> List[MatchSpan]:
        matches: List[MatchSpan] = []
        seen = set()

        for match in PhoneNumberMatcher(text, self.default_region):
            context = text[max(0, match.start - 20):match.start].lower()
            if any(keyword in context for keyword in self.CONTEXT_EXCLUSIONS):
                continue

            number = match.number
            if not (phonenumbers.is_valid_number(number) or phonenumbers.is_possible_number(number)):
                continue

            key = phonenumbers.format_number(number, phonenumbers.PhoneNumberFormat.E164)
            if key in seen:
                continue
            seen.add(key)
            matches.append((match.raw_string, match.start, match.end))

        return matches
