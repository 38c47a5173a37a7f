"""
BackendForwarder module for the security gateway
Routes sanitized requests to the generation backend serving their target module
"""
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional

from .backend import GenerationBackend, StaticBackend
from .config import BackendConfig
from .models import BackendResponse, SecureRequest, SecurityContext
from .stdio_backend import StdioBackend

logger = logging.getLogger(__name__)


class BackendStatus(Enum):
    """Backend health status"""
    HEALTHY = "healthy"
    UNHEALTHY = "unhealthy"
    UNKNOWN = "unknown"


@dataclass
class BackendHealthResult:
    """Result of a backend health check"""
    name: str
    status: BackendStatus
    error: Optional[str] = None
    info: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization"""
        result = {
            "name": self.name,
            "status": self.status.value
        }
        if self.error:
            result["error"] = self.error
        if self.info:
            result["info"] = self.info
        return result


class BackendForwarder:
    """Owns the generation backends and picks one per request"""

    def __init__(
        self,
        backends: Optional[Dict[str, BackendConfig]] = None,
        default_backend: Optional[GenerationBackend] = None,
    ):
        self.backend_configs = backends or {}
        self.default_backend = default_backend or StaticBackend()
        self.backends: Dict[str, GenerationBackend] = {}
        self.routes: Dict[str, str] = {}

    def register(self, backend: GenerationBackend, modules: List[str]) -> None:
        """Add an already-constructed backend serving the given modules"""
        self.backends[backend.name] = backend
        for module in modules:
            if (existing := self.routes.get(module)) and existing != backend.name:
                logger.warning(f"Module {module} moved from backend {existing} to {backend.name}")
            self.routes[module] = backend.name

    async def initialize(self) -> None:
        """Start all configured backend processes"""
        for name, config in self.backend_configs.items():
            backend = StdioBackend(config)
            try:
                await backend.start()
            except Exception as e:
                # Modules of a backend that failed to start fall back to the default backend
                logger.error(f"Failed to start backend {name}: {e}")
                continue
            self.register(backend, config.modules)
            logger.info(f"Started backend {name} for modules {config.modules}")

    def route(self, target_module: Optional[str]) -> GenerationBackend:
        """Backend serving a module; unknown or missing modules go to the default backend"""
        if target_module and (name := self.routes.get(target_module)):
            return self.backends[name]
        return self.default_backend

    async def forward(self, request: SecureRequest, context: SecurityContext) -> BackendResponse:
        backend = self.route(request.target_module)
        logger.debug(f"Forwarding request {request.request_id} to backend {backend.name}")
        return await backend.generate(request, context)

    async def check_backend_health(self, backend_name: str) -> Dict[str, Any]:
        """Check the health of a specific backend"""
        if backend_name == self.default_backend.name:
            backend = self.default_backend
        elif not (backend := self.backends.get(backend_name)):
            return BackendHealthResult(
                name=backend_name,
                status=BackendStatus.UNKNOWN,
                error="Backend not found"
            ).to_dict()

        try:
            info = await backend.health()
        except Exception as e:
            logger.error(f"Health check failed for {backend_name}: {e}")
            return BackendHealthResult(
                name=backend_name,
                status=BackendStatus.UNHEALTHY,
                error=str(e)
            ).to_dict()

        return BackendHealthResult(name=backend_name, status=BackendStatus.HEALTHY, info=info).to_dict()

    async def check_all(self) -> List[Dict[str, Any]]:
        names = [self.default_backend.name, *self.backends]
        return [await self.check_backend_health(name) for name in names]

    async def close(self) -> None:
        """Stop all backend processes"""
        for backend in self.backends.values():
            try:
                await backend.stop()
            except Exception as e:
                logger.error(f"Error stopping backend {backend.name}: {e}")
