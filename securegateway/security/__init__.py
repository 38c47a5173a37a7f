"""
Content security: validation checks, threat scoring and sanitization
"""
from .base import ValidationCheck, ValidationResult, Violation
from .input_validator import InputValidator
from .modules import TargetModule, validate_target_module
from .sanitizer import ContentSanitizer, SanitizationOutcome, filter_output
from .threat import HeuristicThreatScorer, ThreatAssessment, ThreatLevel, ThreatScorer

__all__ = [
    'ValidationCheck',
    'ValidationResult',
    'Violation',
    'InputValidator',
    'TargetModule',
    'validate_target_module',
    'ContentSanitizer',
    'SanitizationOutcome',
    'filter_output',
    'HeuristicThreatScorer',
    'ThreatAssessment',
    'ThreatLevel',
    'ThreatScorer'
]
