"""
JSONRPCHandler module for the security gateway
Maps JSON-RPC methods onto gateway operations
"""
import logging
from datetime import timedelta
from typing import Any, Callable, Dict, Optional

from .audit import AuditQuery
from .errors import SecurityError
from .models import CallerTier, SecureRequest, SecurityContext, _parse_timestamp
from .gateway import SecurityGateway
from .utils import utcnow

logger = logging.getLogger(__name__)

PARSE_ERROR = -32700
INVALID_PARAMS = -32602
METHOD_NOT_FOUND = -32601
INTERNAL_ERROR = -32603
SECURITY_ERROR = -32001


class JSONRPCHandler:
    """Handles JSON-RPC protocol wrapping"""

    def __init__(self, gateway: SecurityGateway):
        self.gateway = gateway
        self._method_handlers = self._setup_method_handlers()

    def _setup_method_handlers(self) -> Dict[str, Callable]:
        """Setup mapping of methods to handlers"""
        return {
            "ai/request": self.handle_ai_request,
            "security/audit": self.handle_audit_query,
            "security/compliance": self.handle_compliance_report,
            "ratelimit/status": self.handle_rate_limit_status,
            "sessions/create": self.handle_create_session,
            "backends/health": lambda _: self.gateway.forwarder.check_all(),
        }

    async def handle_request(self, data: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        """Handle incoming JSON-RPC request"""
        method = data.get("method", "")
        params = data.get("params", {}) or {}

        # Notifications carry no id and get no response
        if "id" not in data:
            logger.info(f"Ignoring notification: {method}")
            return None

        request_id = data.get("id")

        try:
            if handler := self._method_handlers.get(method):
                return self._create_success_response(request_id, await handler(params))

            return self._create_error_response(
                request_id,
                METHOD_NOT_FOUND,
                f"Method not found: {method}"
            )

        except SecurityError as e:
            return self._create_error_response(request_id, SECURITY_ERROR, e.message, e.to_dict())
        except (KeyError, ValueError, TypeError) as e:
            logger.warning(f"Invalid params for {method}: {e}")
            return self._create_error_response(request_id, INVALID_PARAMS, "Invalid params", str(e))
        except Exception as e:
            logger.error(f"Error handling request: {e}", exc_info=True)
            return self._create_error_response(
                request_id,
                INTERNAL_ERROR,
                "Internal error",
                str(e)
            )

    async def handle_ai_request(self, params: Dict[str, Any]) -> Dict[str, Any]:
        request = SecureRequest.from_dict(params["request"])
        context = SecurityContext.from_dict(params.get("context", {}))
        response = await self.gateway.handle(request, context)
        return response.to_dict()

    async def handle_audit_query(self, params: Dict[str, Any]) -> Dict[str, Any]:
        entries = await self.gateway.audit.query(AuditQuery.from_dict(params))
        return {"entries": [entry.to_dict() for entry in entries], "count": len(entries)}

    async def handle_compliance_report(self, params: Dict[str, Any]) -> Dict[str, Any]:
        end = _parse_timestamp(params["end"]) if params.get("end") else utcnow()
        start = _parse_timestamp(params["start"]) if params.get("start") else end - timedelta(days=30)
        report = await self.gateway.audit.compliance_report(start, end, params.get("callerId"))
        return report.to_dict()

    async def handle_rate_limit_status(self, params: Dict[str, Any]) -> Dict[str, Any]:
        return self.gateway.rate_limit_status(params["callerId"], CallerTier.from_value(params.get("tier", "Free")))

    async def handle_create_session(self, params: Dict[str, Any]) -> Dict[str, Any]:
        session = self.gateway.sessions.create_session(params["callerId"])
        return session.to_dict()

    def _create_success_response(self, request_id: Any, result: Any) -> Dict[str, Any]:
        """Create a successful JSON-RPC response"""
        return {
            "jsonrpc": "2.0",
            "id": request_id,
            "result": result
        }

    def _create_error_response(
        self,
        request_id: Any,
        code: int,
        message: str,
        data: Optional[Any] = None
    ) -> Dict[str, Any]:
        """Create an error JSON-RPC response"""
        error: Dict[str, Any] = {
            "code": code,
            "message": message
        }

        if data:
            error["data"] = data

        return {
            "jsonrpc": "2.0",
            "id": request_id,
            "error": error
        }
