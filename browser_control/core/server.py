"""
MCP tool server: assembles the registry, session manager and collaborators,
and serves dispatchers over stdio or HTTP.
"""
import contextlib
import logging
from typing import Dict, List, Optional, Union

import anyio
import uvicorn
from mcp.server.stdio import stdio_server
from mcp.shared.message import SessionMessage
from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from starlette.routing import Route

from browser_control.browser.backend import BrowserBackend, PlaywrightBrowserBackend
from browser_control.core.config import EffectiveConfig
from browser_control.core.dispatcher import (
    ConnectionState,
    ProtocolDispatcher,
    decode_failure,
    encode_message,
)
from browser_control.core.tool_manager import ToolRegistry
from browser_control.sessions.manager import SessionManager
from browser_control.utils.artifacts import ArtifactStore
from browser_control.utils.tool_decorator import ToolContext

# Configure logging
logger = logging.getLogger(__name__)

SESSION_HEADER = "Mcp-Session-Id"


class MCPToolServer:
    """MCP Tool Server with a fixed tool catalog loaded at startup."""

    def __init__(self, config: EffectiveConfig, registry: Optional[ToolRegistry] = None,
                 session_manager: Optional[SessionManager] = None,
                 browser: Optional[BrowserBackend] = None):
        """Initialize the MCP Tool Server."""
        self.config = config
        if registry is None:
            registry = ToolRegistry()
            registry.load_tools_from_package()
        self.registry = registry
        self.session_manager = session_manager or SessionManager.from_config(config)
        self.browser = browser or PlaywrightBrowserBackend(config.tools.browser)
        self.artifacts = ArtifactStore(config.output_dir)
        self.context = ToolContext(
            config=config,
            session_manager=self.session_manager,
            browser=self.browser,
            artifacts=self.artifacts,
        )
        self.dispatchers: Dict[str, ProtocolDispatcher] = {}

    def create_dispatcher(self) -> ProtocolDispatcher:
        return ProtocolDispatcher(self.registry, self.config, self.context)

    async def startup(self):
        stats = self.registry.get_stats(self.config)
        logger.info(f"Starting {self.config.server.name} {self.config.server.version}")
        logger.info(f"Enabled tools: {stats['enabled_tools']}")
        logger.info(f"Tool categories: {stats['categories']}")
        self.session_manager.start_reaper()

    async def shutdown(self):
        logger.info("Shutting down server...")
        for dispatcher in self.dispatchers.values():
            dispatcher.close()
        self.dispatchers.clear()
        await self.session_manager.shutdown()
        await self.browser.shutdown()
        logger.info("Server stopped")

    async def serve_streams(self, read_stream, write_stream):
        """Serve one connection over a pair of mcp message streams.

        Each incoming message is handled in its own task.
        """
        dispatcher = self.create_dispatcher()

        async def reply_to(item: Union[SessionMessage, Exception]):
            if isinstance(item, Exception):
                reply = decode_failure(item)
            else:
                reply = await dispatcher.handle(item.message)
            if reply is not None:
                await write_stream.send(SessionMessage(reply))

        try:
            async with write_stream:
                async with anyio.create_task_group() as tg:
                    async for item in read_stream:
                        tg.start_soon(reply_to, item)
        finally:
            dispatcher.close()

    async def run_stdio(self):
        await self.startup()
        try:
            async with stdio_server() as (read_stream, write_stream):
                await self.serve_streams(read_stream, write_stream)
        finally:
            await self.shutdown()

    def prune_connections(self) -> List[str]:
        """Close HTTP connections idle for longer than the session timeout."""
        timeout = self.config.tools.api_request.session_timeout
        pruned = []
        for connection_id, dispatcher in list(self.dispatchers.items()):
            if dispatcher.clock() - dispatcher.last_seen > timeout:
                dispatcher.close()
                del self.dispatchers[connection_id]
                pruned.append(connection_id)
        if pruned:
            logger.info(f"Pruned {len(pruned)} idle connection(s)")
        return pruned

    async def handle_mcp(self, request: Request) -> Response:
        """POST carries one JSON-RPC message; DELETE closes the connection."""
        self.prune_connections()
        connection_id = request.headers.get(SESSION_HEADER)

        if request.method == "DELETE":
            dispatcher = self.dispatchers.pop(connection_id, None) if connection_id else None
            if dispatcher is None:
                return JSONResponse({"error": f"Unknown connection: {connection_id}"}, status_code=404)
            dispatcher.close()
            return Response(status_code=204)

        dispatcher = self.dispatchers.get(connection_id) if connection_id else None
        if dispatcher is None:
            dispatcher = self.create_dispatcher()
        reply = await dispatcher.handle_raw(await request.body())

        headers = {}
        if dispatcher.state is not ConnectionState.UNINITIALIZED:
            self.dispatchers.setdefault(dispatcher.id, dispatcher)
            headers[SESSION_HEADER] = dispatcher.id
        if reply is None:
            return Response(status_code=202, headers=headers)
        return Response(encode_message(reply), media_type="application/json", headers=headers)

    async def handle_health(self, request: Request) -> JSONResponse:
        return JSONResponse({
            "status": "ok",
            "server": self.config.server.name,
            "version": self.config.server.version,
            "tools": [descriptor.name for descriptor in self.registry.list(self.config)],
            "connections": len(self.dispatchers),
            "sessions": len(self.session_manager.list_sessions()),
        })

    @contextlib.asynccontextmanager
    async def lifespan(self, app: Starlette):
        await self.startup()
        try:
            yield
        finally:
            await self.shutdown()

    def setup_routes(self) -> Starlette:
        """Set up Starlette routes."""
        return Starlette(
            debug=self.config.features.enable_debug_mode,
            routes=[
                Route("/mcp", endpoint=self.handle_mcp, methods=["POST", "DELETE"]),
                Route("/health", endpoint=self.handle_health, methods=["GET"]),
            ],
            lifespan=self.lifespan,
        )

    def run(self):
        """Start the MCP server on the configured transport."""
        self.config.log_summary()
        try:
            if self.config.server.transport == "http":
                server_config = uvicorn.Config(
                    self.setup_routes(),
                    host=self.config.server.host,
                    port=self.config.server.port,
                    log_level=self.config.logging.level,
                )
                server = uvicorn.Server(server_config)
                server.run()
            else:
                anyio.run(self.run_stdio)
        except KeyboardInterrupt:
            logger.info("Interrupted")
