"""
Unit tests for generation backends and the forwarder
"""
import json
import pytest
import asyncio
import os
from unittest.mock import Mock, patch, AsyncMock, ANY

from securegateway.backend import StaticBackend
from securegateway.backend_forwarder import BackendForwarder
from securegateway.config import BackendConfig
from securegateway.models import CallerTier, CharacterProfile, SecureRequest, SecurityContext
from securegateway.stdio_backend import StdioBackend


def make_request(content="Draft of chapter one.", target_module="emotionArc", **kwargs):
    return SecureRequest(caller_id="writer-1", session_id="sess-1", content=content,
                         target_module=target_module, **kwargs)


def make_context():
    return SecurityContext(caller_id="writer-1", session_id="sess-1", tier=CallerTier.PRO)


def make_process(result=None, error=None):
    """Mock subprocess that answers every JSON-RPC line written to stdin"""
    replies = asyncio.Queue()

    def write(data):
        request = json.loads(data.decode())
        response = {"jsonrpc": "2.0", "id": request["id"]}
        if error is not None:
            response["error"] = error
        else:
            response["result"] = result
        replies.put_nowait((json.dumps(response) + "\n").encode())

    process = AsyncMock()
    process.returncode = None
    process.pid = 4242
    process.stdin = Mock()
    process.stdin.write = Mock(side_effect=write)
    process.stdin.drain = AsyncMock()
    process.stdout = AsyncMock()
    process.stdout.readline = AsyncMock(side_effect=replies.get)
    process.stderr = AsyncMock()
    process.stderr.readline = AsyncMock(return_value=b'')
    process.terminate = Mock()
    process.kill = Mock()
    process.wait = AsyncMock()
    return process


class TestStaticBackend:
    """Test cases for StaticBackend"""

    @pytest.mark.asyncio
    async def test_generate(self):
        """Test the default template"""
        response = await StaticBackend().generate(make_request(), make_context())

        assert response.content == "Suggestion for emotionArc: Draft of chapter one."
        assert response.model == "static-v1"
        assert response.confidence == 0.5
        assert response.usage == {"promptChars": 21, "completionChars": len(response.content)}

    @pytest.mark.asyncio
    async def test_module_template(self):
        """Test per-module templates and the general fallback"""
        backend = StaticBackend(templates={"plotStructure": "Outline: {excerpt}"})

        plot = await backend.generate(make_request(target_module="plotStructure"), make_context())
        general = await backend.generate(make_request(target_module=None), make_context())

        assert plot.content == "Outline: Draft of chapter one."
        assert general.content.startswith("Suggestion for general:")

    @pytest.mark.asyncio
    async def test_health(self):
        """Test health info lists templates"""
        backend = StaticBackend(templates={"b": "x", "a": "y"})

        assert await backend.health() == {"model": "static-v1", "templates": ["a", "b"]}


class TestStdioBackend:
    """Test cases for StdioBackend class"""

    @pytest.fixture
    def backend_config(self):
        """Fixture for backend configuration"""
        return BackendConfig(
            name="writer",
            command="python",
            args=["writer.py"],
            modules=["emotionArc"],
            timeout=30,
            env={"WRITER_MODE": "draft"}
        )

    @pytest.fixture
    def backend(self, backend_config):
        """Fixture for StdioBackend instance"""
        return StdioBackend(backend_config)

    def test_initialization(self, backend):
        """Test StdioBackend initialization"""
        assert backend.name == "writer"
        assert backend.process is None
        assert backend.read_task is None
        assert backend.pending_requests == {}
        assert backend.next_id == 1

    @pytest.mark.asyncio
    @patch('asyncio.create_subprocess_exec')
    async def test_start(self, mock_subprocess, backend):
        """Test starting the backend process"""
        mock_subprocess.return_value = make_process()

        await backend.start()

        mock_subprocess.assert_called_once_with(
            "python", "writer.py",
            stdin=asyncio.subprocess.PIPE,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            env=ANY
        )
        assert mock_subprocess.call_args.kwargs["env"]["WRITER_MODE"] == "draft"
        assert backend.read_task is not None
        assert backend.stderr_task is not None

        await backend.stop()

    @pytest.mark.asyncio
    @patch('asyncio.create_subprocess_exec')
    async def test_start_process_exits(self, mock_subprocess, backend):
        """Test a process that dies on startup is reported"""
        process = make_process()
        process.returncode = 1
        mock_subprocess.return_value = process

        with pytest.raises(RuntimeError, match="failed to start"):
            await backend.start()

        await backend.stop()

    @pytest.mark.asyncio
    async def test_start_with_missing_env_vars(self):
        """Test that start fails when env vars are missing"""
        for var in ("WRITER_TEST_VAR_1", "WRITER_TEST_VAR_2"):
            os.environ.pop(var, None)

        backend = StdioBackend(BackendConfig(
            name="writer",
            command="python",
            env={"A": "${WRITER_TEST_VAR_1}", "B": "${WRITER_TEST_VAR_2}"}
        ))

        with pytest.raises(RuntimeError) as exc_info:
            await backend.start()

        error_msg = str(exc_info.value)
        assert "requires environment variables that are not set" in error_msg
        assert "WRITER_TEST_VAR_1" in error_msg
        assert "WRITER_TEST_VAR_2" in error_msg

    @pytest.mark.asyncio
    async def test_send_request_not_running(self, backend):
        """Test sending request when backend is not running"""
        with pytest.raises(RuntimeError, match="Backend writer is not running"):
            await backend.send_request("generate", {})

    @pytest.mark.asyncio
    @patch('asyncio.create_subprocess_exec')
    async def test_generate(self, mock_subprocess, backend):
        """Test a generate round trip"""
        process = make_process(result={"content": "A sharper opening line.", "model": "writer-m", "confidence": 0.9})
        mock_subprocess.return_value = process
        await backend.start()

        profile = CharacterProfile(id="c1", name="Mira")
        response = await backend.generate(make_request(auxiliary_data=profile), make_context())

        assert response.content == "A sharper opening line."
        assert response.model == "writer-m"
        assert response.confidence == 0.9
        sent = json.loads(process.stdin.write.call_args[0][0].decode())
        assert sent["method"] == "generate"
        assert sent["params"]["targetModule"] == "emotionArc"
        assert sent["params"]["callerTier"] == "Pro"
        assert sent["params"]["auxiliaryData"]["id"] == "c1"

        await backend.stop()

    @pytest.mark.asyncio
    @patch('asyncio.create_subprocess_exec')
    async def test_generate_error_response(self, mock_subprocess, backend):
        """Test backend errors are raised"""
        mock_subprocess.return_value = make_process(error={"code": -1, "message": "model overloaded"})
        await backend.start()

        with pytest.raises(RuntimeError, match="model overloaded"):
            await backend.generate(make_request(), make_context())

        await backend.stop()

    @pytest.mark.asyncio
    @patch('asyncio.create_subprocess_exec')
    async def test_send_request_timeout(self, mock_subprocess, backend_config):
        """Test request timeout handling"""
        process = make_process()
        process.stdin.write = Mock()  # Nothing is ever answered
        mock_subprocess.return_value = process
        backend_config.timeout = 0.1
        backend = StdioBackend(backend_config)
        await backend.start()

        with pytest.raises(TimeoutError, match="Request to backend writer timed out"):
            await backend.send_request("generate", {})
        assert backend.pending_requests == {}

        await backend.stop()

    @pytest.mark.asyncio
    @patch('asyncio.create_subprocess_exec')
    async def test_health(self, mock_subprocess, backend):
        """Test health uses the initialize handshake"""
        mock_subprocess.return_value = make_process(result={"serverInfo": {"name": "writer", "version": "1.0"}})
        await backend.start()

        health = await backend.health()

        assert health == {"command": ["python", "writer.py"], "info": {"name": "writer", "version": "1.0"}}
        await backend.stop()

    @pytest.mark.asyncio
    async def test_stop(self, backend):
        """Test stopping the backend process"""
        backend.process = make_process()
        backend.read_task = asyncio.create_task(asyncio.sleep(10))
        backend.stderr_task = asyncio.create_task(asyncio.sleep(10))

        await backend.stop()

        assert backend.process.terminate.called
        await asyncio.sleep(0.1)
        assert backend.read_task.cancelled()
        assert backend.stderr_task.cancelled()


class TestBackendForwarder:
    """Test cases for BackendForwarder class"""

    @pytest.fixture
    def backend_configs(self):
        """Fixture for backend configurations"""
        return {
            "writer": BackendConfig(name="writer", command="python", args=["writer.py"],
                                    modules=["emotionArc", "plotStructure"]),
            "stylist": BackendConfig(name="stylist", command="python", args=["stylist.py"],
                                     modules=["styleProfile"]),
        }

    @pytest.fixture
    def forwarder(self, backend_configs):
        """Fixture for BackendForwarder instance"""
        return BackendForwarder(backend_configs)

    def test_initialization(self, forwarder):
        """Test BackendForwarder initialization"""
        assert set(forwarder.backend_configs) == {"writer", "stylist"}
        assert forwarder.backends == {}
        assert isinstance(forwarder.default_backend, StaticBackend)

    @pytest.mark.asyncio
    @patch('securegateway.backend_forwarder.StdioBackend')
    async def test_initialize(self, mock_stdio_backend, forwarder):
        """Test starting all configured backends and their routes"""
        writer, stylist = AsyncMock(), AsyncMock()
        writer.name, stylist.name = "writer", "stylist"
        mock_stdio_backend.side_effect = [writer, stylist]

        await forwarder.initialize()

        assert forwarder.route("emotionArc") is writer
        assert forwarder.route("plotStructure") is writer
        assert forwarder.route("styleProfile") is stylist
        assert writer.start.called
        assert stylist.start.called

    @pytest.mark.asyncio
    @patch('securegateway.backend_forwarder.StdioBackend')
    async def test_initialize_failed_backend_falls_back(self, mock_stdio_backend, forwarder):
        """Test modules of a backend that fails to start use the default backend"""
        writer, stylist = AsyncMock(), AsyncMock()
        writer.name, stylist.name = "writer", "stylist"
        writer.start.side_effect = RuntimeError("exit code 1")
        mock_stdio_backend.side_effect = [writer, stylist]

        await forwarder.initialize()

        assert forwarder.route("emotionArc") is forwarder.default_backend
        assert forwarder.route("styleProfile") is stylist

    def test_route_unknown_module(self, forwarder):
        """Test unknown or missing modules go to the default backend"""
        assert forwarder.route("poetry") is forwarder.default_backend
        assert forwarder.route(None) is forwarder.default_backend

    @pytest.mark.asyncio
    async def test_forward(self, forwarder):
        """Test forwarding uses the routed backend"""
        backend = StaticBackend(name="plots", model="plots-v2")
        forwarder.register(backend, ["plotStructure"])

        response = await forwarder.forward(make_request(target_module="plotStructure"), make_context())

        assert response.model == "plots-v2"

    @pytest.mark.asyncio
    async def test_check_backend_health_unknown(self, forwarder):
        """Test health check for unknown backend"""
        result = await forwarder.check_backend_health("nonexistent")

        assert result == {"name": "nonexistent", "status": "unknown", "error": "Backend not found"}

    @pytest.mark.asyncio
    async def test_check_backend_health_unhealthy(self, forwarder):
        """Test health check for unhealthy backend"""
        backend = AsyncMock()
        backend.name = "writer"
        backend.health = AsyncMock(side_effect=Exception("Connection failed"))
        forwarder.register(backend, ["emotionArc"])

        result = await forwarder.check_backend_health("writer")

        assert result["status"] == "unhealthy"
        assert "Connection failed" in result["error"]

    @pytest.mark.asyncio
    async def test_check_all(self, forwarder):
        """Test every backend including the default is checked"""
        forwarder.register(StaticBackend(name="plots"), ["plotStructure"])

        results = await forwarder.check_all()

        assert [(r["name"], r["status"]) for r in results] == [("static", "healthy"), ("plots", "healthy")]

    @pytest.mark.asyncio
    async def test_close(self, forwarder):
        """Test closing all backends, continuing past failures"""
        first, second = AsyncMock(), AsyncMock()
        first.name, second.name = "first", "second"
        first.stop.side_effect = RuntimeError("already gone")
        forwarder.register(first, [])
        forwarder.register(second, [])

        await forwarder.close()

        assert first.stop.called
        assert second.stop.called
