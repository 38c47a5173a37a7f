"""
Integration tests for gateway_server module
"""
import json
import pytest
from io import StringIO
from unittest.mock import AsyncMock, Mock, patch

from gateway_server import main, process_request, setup_components
from securegateway.jsonrpc_handler import PARSE_ERROR, JSONRPCHandler
from securegateway.gateway import SecurityGateway


class TestProcessRequest:
    """Test cases for single-line request processing"""

    @pytest.fixture
    def jsonrpc_handler(self):
        handler = Mock()
        handler.handle_request = AsyncMock(return_value={"jsonrpc": "2.0", "id": 1, "result": {}})
        return handler

    @pytest.mark.asyncio
    async def test_valid_request_delegated(self, jsonrpc_handler):
        """Test valid requests reach the JSON-RPC handler"""
        line = json.dumps({"jsonrpc": "2.0", "id": 1, "method": "backends/health"})

        response = await process_request(line, jsonrpc_handler)

        assert response == {"jsonrpc": "2.0", "id": 1, "result": {}}
        jsonrpc_handler.handle_request.assert_awaited_once_with(
            {"jsonrpc": "2.0", "id": 1, "method": "backends/health"}
        )

    @pytest.mark.asyncio
    async def test_malformed_jsonrpc(self, jsonrpc_handler):
        """Test broken JSON-RPC requests get a parse error"""
        response = await process_request('{"jsonrpc": "2.0", "method": ', jsonrpc_handler)

        assert response == {
            "jsonrpc": "2.0",
            "id": None,
            "error": {"code": PARSE_ERROR, "message": "Parse error"}
        }
        jsonrpc_handler.handle_request.assert_not_called()

    @pytest.mark.asyncio
    async def test_non_json_ignored(self, jsonrpc_handler):
        """Test stray non-JSON lines are ignored"""
        assert await process_request("hello there", jsonrpc_handler) is None
        jsonrpc_handler.handle_request.assert_not_called()

    @pytest.mark.asyncio
    async def test_non_object_ignored(self, jsonrpc_handler):
        """Test JSON that is not an object is ignored"""
        assert await process_request("[1, 2, 3]", jsonrpc_handler) is None
        jsonrpc_handler.handle_request.assert_not_called()


class TestSetupComponents:
    """Test cases for component wiring"""

    def test_defaults_without_config(self):
        """Test a gateway is built from defaults"""
        gateway, jsonrpc_handler = setup_components(None)

        assert isinstance(gateway, SecurityGateway)
        assert isinstance(jsonrpc_handler, JSONRPCHandler)
        assert jsonrpc_handler.gateway is gateway
        assert gateway.forwarder.backends == {}

    def test_with_config_file(self, tmp_path):
        """Test the configuration file is loaded"""
        config_path = tmp_path / "gateway.json"
        config_path.write_text(json.dumps({
            "backends": {
                "writer_model": {
                    "command": "python",
                    "args": ["-m", "writer_model"],
                    "modules": ["emotionArc"],
                    "timeout": 45
                }
            },
            "audit": {"buffer_size": 10}
        }))

        gateway, _ = setup_components(config_path)

        assert gateway.config.backends["writer_model"].timeout == 45
        assert gateway.config.backends["writer_model"].modules == ["emotionArc"]
        assert gateway.audit.buffer_size == 10


class TestGatewayServerMain:
    """Integration tests for the stdio loop"""

    def make_components(self, responses):
        gateway = Mock()
        gateway.start = AsyncMock()
        gateway.close = AsyncMock()
        jsonrpc_handler = Mock()
        jsonrpc_handler.handle_request = AsyncMock(side_effect=responses)
        return gateway, jsonrpc_handler

    def make_loop(self):
        loop = Mock()
        loop.connect_read_pipe = AsyncMock()
        return loop

    def make_reader(self, lines):
        reader = Mock()
        reader.readline = AsyncMock(side_effect=lines)
        return reader

    @pytest.mark.asyncio
    @patch('sys.stdout', new_callable=StringIO)
    @patch('gateway_server.signal.signal')
    @patch('gateway_server.setup_components')
    @patch('asyncio.get_event_loop')
    async def test_main_answers_requests(self, mock_get_loop, mock_setup_components, _mock_signal, mock_stdout):
        """Test requests are answered on stdout until stdin closes"""
        response = {"jsonrpc": "2.0", "id": 1, "result": {"ok": True}}
        gateway, jsonrpc_handler = self.make_components([response])
        mock_setup_components.return_value = (gateway, jsonrpc_handler)
        mock_get_loop.return_value = self.make_loop()
        request = json.dumps({"jsonrpc": "2.0", "id": 1, "method": "backends/health"})
        reader = self.make_reader([f"{request}\n".encode(), b"\n", b""])

        with patch('asyncio.StreamReader', return_value=reader), \
             patch('asyncio.StreamReaderProtocol'), \
             patch('sys.argv', ['gateway_server.py']):
            await main()

        assert json.loads(mock_stdout.getvalue()) == response
        jsonrpc_handler.handle_request.assert_awaited_once()
        mock_setup_components.assert_called_once_with(None)
        gateway.start.assert_awaited_once()
        gateway.close.assert_awaited_once()

    @pytest.mark.asyncio
    @patch('sys.stdout', new_callable=StringIO)
    @patch('gateway_server.signal.signal')
    @patch('gateway_server.setup_components')
    @patch('asyncio.get_event_loop')
    async def test_main_notification_prints_nothing(self, mock_get_loop, mock_setup_components, _mock_signal,
                                                    mock_stdout):
        """Test notifications produce no output"""
        gateway, jsonrpc_handler = self.make_components([None])
        mock_setup_components.return_value = (gateway, jsonrpc_handler)
        mock_get_loop.return_value = self.make_loop()
        notification = json.dumps({"jsonrpc": "2.0", "method": "ai/request"})
        reader = self.make_reader([f"{notification}\n".encode(), b""])

        with patch('asyncio.StreamReader', return_value=reader), \
             patch('asyncio.StreamReaderProtocol'), \
             patch('sys.argv', ['gateway_server.py', '--config', 'gateway.json']):
            await main()

        assert mock_stdout.getvalue() == ""
        mock_setup_components.assert_called_once()
        assert str(mock_setup_components.call_args.args[0]) == "gateway.json"
        gateway.close.assert_awaited_once()
