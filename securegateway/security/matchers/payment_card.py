"""Payment card number matcher"""
from typing import List
import logging
import re

from luhnchecker.luhn import Luhn

from .base import ContentMatcher, MatchSpan

logger = logging.getLogger(__name__)


class PaymentCardMatcher(ContentMatcher):
    """Finds card numbers confirmed by Luhn checksum and a recognized issuer"""

    CARD_PATTERNS = [
        re.compile(r'\b(?:\d{4}[\s\-]?){3}\d{4}\b'),  # 16 digits with optional separators
        re.compile(r'\b\d{4}[\s\-]?\d{6}[\s\-]?\d{5}\b'),  # Amex 4-6-5 grouping
        re.compile(r'\b\d{13,19}\b'),
    ]

    # Published test numbers that show up in documentation and fiction alike
    TEST_CARDS = {
        '4111111111111111',
        '5555555555554444',
        '5105105105105100',
        '378282246310005',
        '371449635398431',
        '6011111111111117',
        '6011000990139424',
        '3530111333300000',
        '3566002020360505',
        '4242424242424242',
        '4000056655665556',
    }

    def __init__(self, weight: float = 0.3):
        super().__init__('payment_card', weight)
        self.checker = Luhn()

    def find_matches(self, text: str) -> List[MatchSpan]:
        matches: List[MatchSpan] = []
        seen = set()

        for pattern in self.CARD_PATTERNS:
            for match in pattern.finditer(text):
                digits = re.sub(r'[\s\-]', '', match.group(0))
                if digits in seen or not 13 <= len(digits) <= 19:
                    continue
                if digits in self.TEST_CARDS or not self._is_card_number(digits):
                    continue
                seen.add(digits)
                matches.append((match.group(0), match.start(), match.end()))

        return matches

    def _is_card_number(self, digits: str) -> bool:
        try:
            if not self.checker.check_luhn(digits):
                return False
            return self.checker.credit_card_issuer(digits) != "invalid card number"
        except (ValueError, TypeError, IndexError) as e:
            logger.debug(f"Card check rejected candidate: {e}")
            return False
