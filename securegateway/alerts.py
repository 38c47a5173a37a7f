"""
Alert dispatch for critical security events
"""
import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import httpx

from .config import AlertChannelConfig, AlertChannelType
from .models import Severity
from .utils import has_unresolved_vars, utcnow

logger = logging.getLogger(__name__)


@dataclass
class Alert:
    category: str
    severity: Severity
    message: str
    payload: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "category": self.category,
            "severity": self.severity.value,
            "message": self.message,
            "payload": self.payload,
            "timestamp": utcnow().isoformat(),
        }


@dataclass
class DispatchResult:
    channel: str
    delivered: bool
    error: Optional[str] = None


class AlertService:
    """Fans an alert out to every enabled channel; failures are logged, never raised"""

    def __init__(
        self,
        channels: Optional[List[AlertChannelConfig]] = None,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 10.0,
    ):
        self.channels = [c for c in (channels or []) if c.enabled]
        self.timeout = timeout
        self._client = client
        self._owns_client = client is None

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(timeout=self.timeout, trust_env=False)
            self._owns_client = True
        return self._client

    async def close(self) -> None:
        if self._owns_client and self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    async def trigger_alert(
        self,
        category: str,
        severity: Severity,
        message: str,
        payload: Optional[Dict[str, Any]] = None,
    ) -> List[DispatchResult]:
        """Dispatch to all enabled channels concurrently"""
        alert = Alert(category=category, severity=severity, message=message, payload=payload or {})
        logger.warning(f"Security alert [{severity.value}] {category}: {message}")
        if not self.channels:
            return []

        results = await asyncio.gather(
            *(self._dispatch(channel, alert) for channel in self.channels),
            return_exceptions=True,
        )
        dispatched = []
        for channel, result in zip(self.channels, results):
            if isinstance(result, BaseException):
                logger.error(f"Alert channel '{channel.name}' failed: {result}")
                dispatched.append(DispatchResult(channel.name, False, str(result)))
            else:
                dispatched.append(result)
        return dispatched

    async def _dispatch(self, channel: AlertChannelConfig, alert: Alert) -> DispatchResult:
        if has_unresolved_vars(channel.target):
            return DispatchResult(channel.name, False, "unresolved target")

        match channel.type:
            case AlertChannelType.WEBHOOK | AlertChannelType.CHAT_WEBHOOK:
                return await self._post(channel, alert)
            case AlertChannelType.EMAIL | AlertChannelType.SMS:
                # No provider integration; the dispatch is recorded in the log
                logger.info(f"Alert via {channel.type.value} to {channel.target}: {alert.message}")
                return DispatchResult(channel.name, True)

    async def _post(self, channel: AlertChannelConfig, alert: Alert) -> DispatchResult:
        if channel.type is AlertChannelType.CHAT_WEBHOOK:
            body: Dict[str, Any] = {"text": f"[{alert.severity.value.upper()}] {alert.category}: {alert.message}"}
        else:
            body = alert.to_dict()

        client = await self._get_client()
        try:
            response = await client.post(channel.target, json=body, headers=channel.headers)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            logger.error(f"Alert webhook '{channel.name}' returned {e.response.status_code}")
            return DispatchResult(channel.name, False, f"HTTP {e.response.status_code}")
        except httpx.RequestError as e:
            logger.error(f"Alert webhook '{channel.name}' unreachable: {e}")
            return DispatchResult(channel.name, False, str(e))
        return DispatchResult(channel.name, True)
