"""
securegateway - security gateway for AI writing-assistance requests
"""
from .config import ConfigurationManager, GatewayConfig
from .errors import (
    AuthRequired,
    ForwardingFailure,
    InternalError,
    InvalidSession,
    PersistenceFailure,
    RateLimitExceeded,
    SecurityError,
    ThreatCritical,
    ValidationFailed,
)
from .gateway import SecurityGateway
from .models import CallerTier, SecureRequest, SecureResponse, SecurityContext, Severity

__version__ = "0.1.0"

__all__ = [
    'ConfigurationManager',
    'GatewayConfig',
    'AuthRequired',
    'ForwardingFailure',
    'InternalError',
    'InvalidSession',
    'PersistenceFailure',
    'RateLimitExceeded',
    'SecurityError',
    'ThreatCritical',
    'ValidationFailed',
    'SecurityGateway',
    'CallerTier',
    'SecureRequest',
    'SecureResponse',
    'SecurityContext',
    'Severity'
]
