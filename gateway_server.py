#!/usr/bin/env python3
"""
securegateway
Security gateway for AI writing requests, served as JSON-RPC over stdio
"""
import argparse
import asyncio
import json
import logging
import signal
import sys
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

from securegateway.config import ConfigurationManager, GatewayConfig
from securegateway.gateway import SecurityGateway
from securegateway.jsonrpc_handler import PARSE_ERROR, JSONRPCHandler

# Logs go to stderr; stdout carries the protocol
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    stream=sys.stderr
)
logger = logging.getLogger(__name__)


def setup_components(config_path: Optional[Path]) -> Tuple[SecurityGateway, JSONRPCHandler]:
    """Load configuration and build the gateway.

    Returns:
        Tuple of (gateway, jsonrpc_handler)
    """
    if config_path is not None:
        config = ConfigurationManager(config_path).load()
    else:
        logger.info("No configuration file given, using defaults")
        config = GatewayConfig()

    gateway = SecurityGateway(config)
    return gateway, JSONRPCHandler(gateway)


async def process_request(line: str, jsonrpc_handler: JSONRPCHandler) -> Optional[Dict[str, Any]]:
    """Process a single request line.

    Returns:
        The JSON-RPC response, or None for notifications and ignored input
    """
    try:
        data = json.loads(line)
    except json.JSONDecodeError:
        # Only answer input that looks like an attempted JSON-RPC request
        if line.startswith('{') and any(key in line for key in ('jsonrpc', 'method')):
            return {
                "jsonrpc": "2.0",
                "id": None,
                "error": {
                    "code": PARSE_ERROR,
                    "message": "Parse error"
                }
            }
        logger.warning(f"Ignoring non-JSON input: {line[:50]}...")
        return None

    if not isinstance(data, dict):
        logger.warning("Ignoring JSON input that is not an object")
        return None

    return await jsonrpc_handler.handle_request(data)


async def main() -> None:
    """Main entry point for stdio mode"""
    parser = argparse.ArgumentParser(description="securegateway")
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Configuration file path (default: built-in defaults)"
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: INFO)"
    )

    args = parser.parse_args()
    logging.getLogger().setLevel(getattr(logging, args.log_level))
    logger.info("securegateway starting in stdio mode")

    gateway, jsonrpc_handler = setup_components(args.config)
    await gateway.start()

    shutdown_event = asyncio.Event()

    def signal_handler(signum: int, _) -> None:
        logger.info(f"Received signal {signum}, initiating shutdown...")
        shutdown_event.set()

    signal.signal(signal.SIGTERM, signal_handler)
    signal.signal(signal.SIGINT, signal_handler)

    try:
        loop = asyncio.get_event_loop()
        stdin_reader = asyncio.StreamReader()
        protocol = asyncio.StreamReaderProtocol(stdin_reader)
        await loop.connect_read_pipe(lambda: protocol, sys.stdin)

        async def read_stdin() -> None:
            while not shutdown_event.is_set():
                try:
                    # Wake up every second to notice shutdown
                    line_bytes = await asyncio.wait_for(stdin_reader.readline(), timeout=1.0)
                except asyncio.TimeoutError:
                    continue

                if not line_bytes:
                    logger.info("Stdin closed - client disconnected, initiating shutdown")
                    shutdown_event.set()
                    break

                if not (line := line_bytes.decode().strip()):
                    continue

                if response := await process_request(line, jsonrpc_handler):
                    print(json.dumps(response))
                    sys.stdout.flush()

        stdin_task = asyncio.create_task(read_stdin())
        shutdown_task = asyncio.create_task(shutdown_event.wait())
        _, pending = await asyncio.wait(
            [stdin_task, shutdown_task],
            return_when=asyncio.FIRST_COMPLETED
        )

        for task in pending:
            task.cancel()
            try:
                await asyncio.wait_for(task, timeout=2.0)
            except (asyncio.CancelledError, asyncio.TimeoutError):
                pass

    except KeyboardInterrupt:
        logger.info("Received interrupt signal, shutting down...")
    finally:
        try:
            # Drains the audit buffer and stops backend processes
            await asyncio.wait_for(gateway.close(), timeout=30.0)
        except asyncio.TimeoutError:
            logger.error("Gateway shutdown timed out after 30 seconds")
        logger.info("Gateway server shutdown complete")


def run() -> None:
    """Console script entry point"""
    asyncio.run(main())


if __name__ == "__main__":
    run()
