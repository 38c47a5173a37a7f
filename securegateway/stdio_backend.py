"""
StdioBackend module for the security gateway
Talks JSON-RPC 2.0 to a generation backend running as a subprocess
"""
import json
import logging
import asyncio
import subprocess
import os
from typing import Any, Dict, Optional, List

from .backend import GenerationBackend
from .config import BackendConfig
from .models import BackendResponse, SecureRequest, SecurityContext
from .utils import ENV_VAR_PATTERN, has_unresolved_vars, substitute_env_vars

logger = logging.getLogger(__name__)


class StdioBackend(GenerationBackend):
    """Manages communication with a single stdio-based generation backend"""

    def __init__(self, config: BackendConfig):
        super().__init__(config.name)
        self.config = config
        self.process: Optional[asyncio.subprocess.Process] = None
        self.read_task: Optional[asyncio.Task] = None
        self.stderr_task: Optional[asyncio.Task] = None
        self.pending_requests: Dict[Any, asyncio.Future] = {}
        self.next_id = 1

    def _prepare_environment(self) -> Dict[str, str]:
        """Prepare environment variables with substitution"""
        env = os.environ.copy()
        unsubstituted_vars = []

        for key, value in self.config.env.items():
            substituted_value = substitute_env_vars(value)
            if has_unresolved_vars(substituted_value):
                unsubstituted_vars.extend(ENV_VAR_PATTERN.findall(substituted_value))
            env[key] = substituted_value

        if unsubstituted_vars:
            error_msg = (
                f"Backend {self.name} requires environment variables that are not set: "
                f"{', '.join(sorted(set(unsubstituted_vars)))}"
            )
            logger.error(error_msg)
            raise RuntimeError(error_msg)

        return env

    async def start(self) -> None:
        """Start the backend process"""
        command: List[str] = self.config.get_full_command()
        env = self._prepare_environment()

        logger.info(f"Starting backend {self.name}: {' '.join(command)}")
        self.process = await asyncio.create_subprocess_exec(
            *command,
            stdin=subprocess.PIPE,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            env=env
        )
        self.read_task = asyncio.create_task(self._read_loop())
        self.stderr_task = asyncio.create_task(self._stderr_monitor())

        # Give the process a moment to start up
        await asyncio.sleep(0.5)
        if self.process.returncode is not None:
            raise RuntimeError(f"Backend {self.name} failed to start (exit code: {self.process.returncode})")
        logger.info(f"Backend {self.name} running with PID {self.process.pid}")

    async def _read_loop(self) -> None:
        """Resolve pending requests from the backend's stdout"""
        try:
            while self.process and self.process.stdout:
                line = await self.process.stdout.readline()
                if not line:
                    logger.warning(f"Backend {self.name} stdout closed")
                    break

                try:
                    response = json.loads(line.decode().strip())
                except json.JSONDecodeError:
                    logger.error(f"Invalid JSON from backend {self.name}: {line[:200]!r}")
                    continue

                request_id = response.get("id")
                if (future := self.pending_requests.pop(request_id, None)) and not future.done():
                    future.set_result(response)
                else:
                    logger.warning(f"Unexpected response from backend {self.name} with id={request_id}")
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Read loop error for {self.name}: {e}")
        finally:
            # Nobody will answer the remaining requests
            for future in self.pending_requests.values():
                if not future.done():
                    future.set_exception(RuntimeError(f"Backend {self.name} closed its output"))
            self.pending_requests.clear()

    async def _stderr_monitor(self) -> None:
        if not self.process or not self.process.stderr:
            return
        while line := await self.process.stderr.readline():
            if stderr_msg := line.decode().strip():
                logger.warning(f"Backend {self.name} stderr: {stderr_msg}")

    async def send_request(self, method: str, params: Dict[str, Any]) -> Dict[str, Any]:
        """Send a JSON-RPC request and wait for its response"""
        if not self.process or not self.process.stdin:
            raise RuntimeError(f"Backend {self.name} is not running")
        if self.process.returncode is not None:
            raise RuntimeError(f"Backend {self.name} exited with code {self.process.returncode}")

        request_id = self.next_id
        self.next_id += 1
        future = asyncio.get_running_loop().create_future()
        self.pending_requests[request_id] = future

        try:
            request_line = json.dumps({"jsonrpc": "2.0", "id": request_id, "method": method, "params": params})
            self.process.stdin.write((request_line + "\n").encode())
            await self.process.stdin.drain()
            return await asyncio.wait_for(future, timeout=self.config.timeout)
        except asyncio.TimeoutError:
            logger.error(f"Backend {self.name} request {request_id} ({method}) timed out after {self.config.timeout}s")
            raise TimeoutError(f"Request to backend {self.name} timed out")
        finally:
            self.pending_requests.pop(request_id, None)

    async def generate(self, request: SecureRequest, context: SecurityContext) -> BackendResponse:
        response = await self.send_request("generate", {
            "requestId": request.request_id,
            "content": request.content,
            "targetModule": request.target_module,
            "auxiliaryData": request.auxiliary_data.to_dict() if request.auxiliary_data else None,
            "callerTier": context.tier.value,
        })
        if error := response.get("error"):
            raise RuntimeError(f"Backend {self.name} error: {error.get('message', error)}")

        result = response.get("result") or {}
        return BackendResponse(
            content=str(result.get("content", "")),
            model=result.get("model", self.name),
            confidence=float(result.get("confidence", 0.0)),
            usage=result.get("usage", {}),
            cached=bool(result.get("cached", False)),
        )

    async def health(self) -> Dict[str, Any]:
        response = await self.send_request("initialize", {"client": "securegateway"})
        if not (result := response.get("result")):
            raise RuntimeError("Invalid response")
        return {"command": self.config.get_full_command(), "info": result.get("serverInfo", {})}

    async def stop(self) -> None:
        """Stop the backend process"""
        for task in (self.read_task, self.stderr_task):
            if task:
                task.cancel()

        if self.process and self.process.returncode is None:
            try:
                self.process.terminate()
                await asyncio.wait_for(self.process.wait(), timeout=5)
            except ProcessLookupError:
                pass
            except asyncio.TimeoutError:
                try:
                    self.process.kill()
                    await self.process.wait()
                except ProcessLookupError:
                    pass
