"""
Threat scoring: a numeric estimate of how likely a request is malicious
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
import re

from ..config import ThreatPolicy
from ..models import SecureRequest, SecurityContext


class ThreatScorer(ABC):
    """Pure function of (request, context) returning a score in [0, 1]"""

    @abstractmethod
    def score(self, request: SecureRequest, context: SecurityContext) -> float:
        pass

    @property
    def name(self) -> str:
        return self.__class__.__name__


class HeuristicThreatScorer(ThreatScorer):
    """
    Rule-of-thumb scorer used until a trained classifier is plugged in.

    +0.1 for very long content, +0.2 for privileged keywords,
    +0.3 when the caller's running risk score is above 0.5.
    """

    PRIVILEGED_KEYWORDS = re.compile(r'\b(?:admin\w*|root|sudo|superuser)\b', re.IGNORECASE)

    def __init__(self, long_content_threshold: int = 5000, risky_caller_threshold: float = 0.5):
        self.long_content_threshold = long_content_threshold
        self.risky_caller_threshold = risky_caller_threshold

    def score(self, request: SecureRequest, context: SecurityContext) -> float:
        threat_score = 0.0
        if len(request.content) > self.long_content_threshold:
            threat_score += 0.1
        if self.PRIVILEGED_KEYWORDS.search(request.content):
            threat_score += 0.2
        if context.risk_profile.risk_score > self.risky_caller_threshold:
            threat_score += 0.3
        return max(0.0, min(threat_score, 1.0))


class ThreatLevel(Enum):
    """How the gateway reacts to a threat score"""
    NORMAL = "normal"
    HIGH = "high"
    CRITICAL = "critical"


@dataclass(frozen=True)
class ThreatAssessment:
    score: float
    level: ThreatLevel

    @classmethod
    def classify(cls, score: float, policy: ThreatPolicy) -> "ThreatAssessment":
        """Critical above the critical threshold, high above the high threshold"""
        if score > policy.critical_threshold:
            level = ThreatLevel.CRITICAL
        elif score > policy.high_threshold:
            level = ThreatLevel.HIGH
        else:
            level = ThreatLevel.NORMAL
        return cls(score=score, level=level)
