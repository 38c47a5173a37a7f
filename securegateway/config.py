"""
Configuration module for the security gateway
"""
import json
import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from .models import CallerTier
from .utils import substitute_env_vars

logger = logging.getLogger(__name__)


class ConfigurationError(Exception):
    """Base exception for configuration errors"""
    pass


class SecurityPolicyError(ConfigurationError):
    """Exception for security policy configuration errors"""
    pass


@dataclass
class TierPolicy:
    """Request admission and content limits for one caller tier"""
    tier: CallerTier
    request_limit: int
    window_seconds: int
    burst_limit: int
    max_content_length: int


DEFAULT_TIER_POLICIES: Dict[CallerTier, TierPolicy] = {
    CallerTier.FREE: TierPolicy(CallerTier.FREE, 100, 3600, 10, 1000),
    CallerTier.PRO: TierPolicy(CallerTier.PRO, 500, 3600, 50, 5000),
    CallerTier.ADMIN: TierPolicy(CallerTier.ADMIN, 2000, 3600, 200, 10000),
}


@dataclass
class ThreatPolicy:
    """Thresholds deciding how a threat score escalates"""
    high_threshold: float = 0.8
    critical_threshold: float = 0.9
    block_hours: float = 24.0
    abort_on_critical: bool = False


@dataclass
class AuditSettings:
    """Buffering and persistence of audit entries"""
    buffer_size: int = 100
    flush_interval_seconds: float = 30.0
    database_path: Optional[str] = None


class AlertChannelType(Enum):
    """Supported alert dispatch channels"""
    EMAIL = "email"
    CHAT_WEBHOOK = "chat_webhook"
    WEBHOOK = "webhook"
    SMS = "sms"


@dataclass
class AlertChannelConfig:
    """Configuration for one alert channel"""
    name: str
    type: AlertChannelType
    target: str
    enabled: bool = True
    headers: Dict[str, str] = field(default_factory=dict)


@dataclass
class BackendConfig:
    """Configuration for a stdio generation backend"""
    name: str
    command: str
    args: List[str] = field(default_factory=list)
    modules: List[str] = field(default_factory=list)
    description: str = "No description"
    timeout: int = 30
    env: Dict[str, str] = field(default_factory=dict)

    def get_full_command(self) -> List[str]:
        """Get the full command as a list (command + args)"""
        return [self.command] + self.args


@dataclass
class GatewayConfig:
    """Complete gateway configuration"""
    tiers: Dict[CallerTier, TierPolicy] = field(default_factory=lambda: dict(DEFAULT_TIER_POLICIES))
    threat_policy: ThreatPolicy = field(default_factory=ThreatPolicy)
    audit: AuditSettings = field(default_factory=AuditSettings)
    remediable_checks: List[str] = field(default_factory=lambda: ["prompt_injection"])
    forward_timeout_seconds: float = 30.0
    session_ttl_minutes: int = 30
    backends: Dict[str, BackendConfig] = field(default_factory=dict)
    alert_channels: List[AlertChannelConfig] = field(default_factory=list)

    def tier_policy(self, tier: CallerTier) -> TierPolicy:
        """Policy for a tier, falling back to Free"""
        return self.tiers.get(tier) or self.tiers.get(CallerTier.FREE) or DEFAULT_TIER_POLICIES[CallerTier.FREE]


class ConfigurationManager:
    """Manages configuration for the security gateway"""

    def __init__(self, config_file: Union[str, Path]):
        self.config_file = Path(config_file)
        self.config: Dict = {}  # Store full configuration
        self.gateway_config: Optional[GatewayConfig] = None

    def load(self) -> GatewayConfig:
        """Load configuration from JSON file"""
        if not self.config_file.exists():
            error_msg = f"Configuration file not found: {self.config_file}"
            logger.error(error_msg)
            raise FileNotFoundError(error_msg)

        try:
            with self.config_file.open('r') as f:
                config_data = json.load(f)

            self.config = config_data
            self.gateway_config = self.parse(config_data)
            logger.info(
                f"Loaded gateway configuration with {len(self.gateway_config.backends)} backends "
                f"and {len(self.gateway_config.alert_channels)} alert channels"
            )
            return self.gateway_config

        except json.JSONDecodeError as e:
            logger.error(f"Invalid JSON in configuration file: {e}")
            raise ConfigurationError(f"Invalid JSON: {e}") from e
        except (KeyError, ValueError, TypeError) as e:
            logger.error(f"Configuration error: {e}")
            raise ConfigurationError(str(e)) from e

    @classmethod
    def parse(cls, config_data: Dict[str, Any]) -> GatewayConfig:
        """Build a GatewayConfig from already-decoded JSON data"""
        audit_data = config_data.get('audit', {})
        return GatewayConfig(
            tiers=cls._create_tiers(config_data.get('tiers', {})),
            threat_policy=cls._create_threat_policy(config_data.get('threat_policy', {})),
            audit=AuditSettings(
                buffer_size=int(audit_data.get('buffer_size', 100)),
                flush_interval_seconds=float(audit_data.get('flush_interval_seconds', 30.0)),
                database_path=audit_data.get('database_path'),
            ),
            remediable_checks=list(
                config_data.get('sanitization', {}).get('remediable_checks', ["prompt_injection"])
            ),
            forward_timeout_seconds=float(config_data.get('forward_timeout_seconds', 30.0)),
            session_ttl_minutes=int(config_data.get('session_ttl_minutes', 30)),
            backends=cls._create_backends(config_data.get('backends', {})),
            alert_channels=cls._create_alert_channels(config_data.get('alerts', {}).get('channels', {})),
        )

    @staticmethod
    def _create_tiers(tiers_data: Dict[str, Dict]) -> Dict[CallerTier, TierPolicy]:
        """Merge configured tier limits over the defaults"""
        tiers = dict(DEFAULT_TIER_POLICIES)
        for name, data in tiers_data.items():
            tier = CallerTier.from_value(name)
            if tier.value.lower() != name.lower():
                raise SecurityPolicyError(f"Unknown caller tier '{name}'. Expected one of: Free, Pro, Admin")
            base = tiers[tier]
            policy = TierPolicy(
                tier=tier,
                request_limit=int(data.get('request_limit', base.request_limit)),
                window_seconds=int(data.get('window_seconds', base.window_seconds)),
                burst_limit=int(data.get('burst_limit', base.burst_limit)),
                max_content_length=int(data.get('max_content_length', base.max_content_length)),
            )
            if min(policy.request_limit, policy.window_seconds, policy.burst_limit, policy.max_content_length) <= 0:
                raise SecurityPolicyError(f"Tier '{name}' limits must be positive")
            tiers[tier] = policy
        return tiers

    @staticmethod
    def _create_threat_policy(policy_data: Dict[str, Any]) -> ThreatPolicy:
        """Create threat policy, rejecting inverted thresholds"""
        policy = ThreatPolicy(**{**ThreatPolicy().__dict__, **policy_data})
        if not 0.0 <= policy.high_threshold <= policy.critical_threshold <= 1.0:
            raise SecurityPolicyError(
                "threat_policy thresholds must satisfy 0 <= high_threshold <= critical_threshold <= 1"
            )
        return policy

    @staticmethod
    def _create_backends(backends_data: Dict[str, Dict]) -> Dict[str, BackendConfig]:
        """Create backend configurations"""
        return {
            name: BackendConfig(
                name=name,
                command=backend_data['command'],
                args=backend_data.get('args', []),
                modules=backend_data.get('modules', []),
                description=backend_data.get('description', 'No description'),
                env=backend_data.get('env', {}),
                timeout=backend_data.get('timeout', 30)
            )
            for name, backend_data in backends_data.items()
        }

    @staticmethod
    def _create_alert_channels(channels_data: Dict[str, Dict]) -> List[AlertChannelConfig]:
        """Create alert channels, resolving ${VAR} placeholders in targets and headers"""
        return [
            AlertChannelConfig(
                name=name,
                type=AlertChannelType(channel_data['type']),
                target=substitute_env_vars(channel_data.get('target', '')),
                enabled=channel_data.get('enabled', True),
                headers={
                    key: substitute_env_vars(value)
                    for key, value in channel_data.get('headers', {}).items()
                },
            )
            for name, channel_data in channels_data.items()
        ]
