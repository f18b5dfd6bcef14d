"""Run the devcontrol MCP server.

Usage:
    python -m devcontrol [--transport stdio|http] [--port PORT] [--config-dir DIR]

stdio is the default and is what MCP clients launch directly. The http
transport keeps a persistent daemon on 127.0.0.1 whose background sessions
outlive individual client connections.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import signal
from pathlib import Path

import uvicorn

from .audit import ToolCallAuditor
from .claude_code import ClaudeCodeTool
from .config import ConfigStore, Settings
from .handlers import ToolHandlers
from .server import create_server
from .terminal import SessionManager

log = logging.getLogger(__name__)


async def _run(settings: Settings, transport: str) -> None:
    config = ConfigStore(settings.config_file)
    config.load()
    auditor = ToolCallAuditor(settings.audit_log_file)
    manager = SessionManager(
        default_shell=config.default_shell,
        default_timeout_ms=config.default_timeout_ms,
    )
    handlers = ToolHandlers(manager, config, ClaudeCodeTool(manager, config))
    server = create_server(handlers, auditor=auditor, port=settings.port)

    try:
        if transport == "stdio":
            await server.run_stdio_async()
        else:
            await _serve_http(server, settings.port)
    finally:
        log.info("Terminating active sessions")
        await manager.shutdown()
        auditor.close()


async def _serve_http(server, port: int) -> None:
    # Run uvicorn in this event loop so session pump/watcher tasks stay alive.
    app = server.streamable_http_app()
    config = uvicorn.Config(app, host="127.0.0.1", port=port, log_level="info")
    uvi = uvicorn.Server(config)

    # _serve() skips uvicorn's capture_signals(), which would replace the
    # loop signal handlers installed here.
    shutdown = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, shutdown.set)

    serve_task = asyncio.create_task(uvi._serve())
    await shutdown.wait()
    log.info("Signal received, shutting down")
    uvi.should_exit = True
    await serve_task


def main() -> None:
    settings = Settings.from_env()

    parser = argparse.ArgumentParser(description="devcontrol MCP server")
    parser.add_argument(
        "--transport", choices=("stdio", "http"), default="stdio",
        help="MCP transport (default: stdio)",
    )
    parser.add_argument(
        "--port", type=int, default=settings.port,
        help=f"Port for the http transport (default: {settings.port})",
    )
    parser.add_argument(
        "--config-dir", type=Path, default=settings.config_dir,
        help=f"Directory for config.json and tool-calls.log (default: {settings.config_dir})",
    )
    args = parser.parse_args()

    settings = Settings(
        config_dir=args.config_dir,
        port=args.port,
        log_level=settings.log_level,
        claude_debug=settings.claude_debug,
    )

    # Logs go to stderr; stdout belongs to the stdio transport.
    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format="%(asctime)s [devcontrol] %(levelname)s %(name)s: %(message)s",
    )
    if settings.claude_debug:
        logging.getLogger("devcontrol.claude_code").setLevel(logging.DEBUG)

    if args.transport == "http":
        log.info("Starting devcontrol on http://127.0.0.1:%d/mcp", settings.port)
    else:
        log.info("Starting devcontrol on stdio")
    asyncio.run(_run(settings, args.transport))


if __name__ == "__main__":
    main()
