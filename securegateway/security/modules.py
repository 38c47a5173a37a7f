"""
Target writing modules and their per-module validation
"""
from enum import Enum
from typing import Optional

from ..models import CallerTier, SecureRequest, SecurityContext, Severity
from .base import ValidationCheck


class TargetModule(Enum):
    """Closed set of writing modules a request can target"""
    EMOTION_ARC = "emotionArc"
    NARRATIVE_DASHBOARD = "narrativeDashboard"
    PLOT_STRUCTURE = "plotStructure"
    STYLE_PROFILE = "styleProfile"
    THEME_ANALYSIS = "themeAnalysis"

    @classmethod
    def lookup(cls, name: Optional[str]) -> Optional["TargetModule"]:
        """Resolve a module name, None for missing or unknown names"""
        for module in cls:
            if module.value == name:
                return module
        return None

    @property
    def check_kind(self) -> str:
        """e.g. emotionArc -> emotion_arc_validation"""
        return self.name.lower() + "_validation"

    @property
    def minimum_tier(self) -> CallerTier:
        match self:
            case TargetModule.EMOTION_ARC | TargetModule.PLOT_STRUCTURE:
                return CallerTier.FREE
            case TargetModule.NARRATIVE_DASHBOARD | TargetModule.STYLE_PROFILE:
                return CallerTier.PRO
            case TargetModule.THEME_ANALYSIS:
                return CallerTier.ADMIN


def validate_target_module(request: SecureRequest, context: SecurityContext) -> Optional[ValidationCheck]:
    """
    Run the check for the request's target module.

    Returns None when the request names no module or an unknown one;
    such requests are not rejected here.
    """
    module = TargetModule.lookup(request.target_module)
    if module is None:
        return None

    match module:
        case TargetModule.EMOTION_ARC | TargetModule.PLOT_STRUCTURE:
            # Structural analysis works on any content that passed the generic checks
            allowed = True
        case TargetModule.NARRATIVE_DASHBOARD | TargetModule.STYLE_PROFILE | TargetModule.THEME_ANALYSIS:
            allowed = context.tier.rank >= module.minimum_tier.rank

    return ValidationCheck(
        kind=module.check_kind,
        severity=Severity.LOW if allowed else Severity.MEDIUM,
        passed=allowed,
        score=0.0 if allowed else 1.0,
        details={
            "module": module.value,
            "tier": context.tier.value,
            "requiredTier": module.minimum_tier.value,
        },
    )
