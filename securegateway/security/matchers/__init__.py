"""Content matchers used by the validation checks"""
from .base import ContentMatcher, MatchSpan, RegexMatcher
from .contact import EmailMatcher, PhoneMatcher
from .credentials import CredentialMatcher
from .payment_card import PaymentCardMatcher

__all__ = [
    'ContentMatcher',
    'MatchSpan',
    'RegexMatcher',
    'EmailMatcher',
    'PhoneMatcher',
    'CredentialMatcher',
    'PaymentCardMatcher'
]
