"""
Generation backend interface and the built-in static backend
"""
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

from .models import BackendResponse, SecureRequest, SecurityContext


class GenerationBackend(ABC):
    """Downstream AI collaborator that turns a sanitized request into content"""

    def __init__(self, name: str):
        self.name = name

    async def start(self) -> None:
        pass

    async def stop(self) -> None:
        pass

    @abstractmethod
    async def generate(self, request: SecureRequest, context: SecurityContext) -> BackendResponse:
        pass

    async def health(self) -> Dict[str, Any]:
        """Backend-specific health info; raise to report the backend unhealthy"""
        return {}


class StaticBackend(GenerationBackend):
    """Placeholder generator answering with a fixed template per module"""

    DEFAULT_TEMPLATE = "Suggestion for {module}: {excerpt}"

    def __init__(self, name: str = "static", templates: Optional[Dict[str, str]] = None, model: str = "static-v1"):
        super().__init__(name)
        self.templates = templates or {}
        self.model = model

    async def generate(self, request: SecureRequest, context: SecurityContext) -> BackendResponse:
        module = request.target_module or "general"
        template = self.templates.get(module, self.DEFAULT_TEMPLATE)
        excerpt = request.content[:200]
        content = template.format(module=module, excerpt=excerpt)
        return BackendResponse(
            content=content,
            model=self.model,
            confidence=0.5,
            usage={"promptChars": len(request.content), "completionChars": len(content)},
        )

    async def health(self) -> Dict[str, Any]:
        return {"model": self.model, "templates": sorted(self.templates)}
