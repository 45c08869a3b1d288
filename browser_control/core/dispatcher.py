"""
JSON-RPC 2.0 protocol dispatcher.

One dispatcher serves one client connection. It enforces the MCP handshake
(initialize -> notifications/initialized) and routes tools/list and
tools/call to the tool registry. Messages arrive already decoded into
mcp.types JSON-RPC models; replies go back the same way. Requests are
independent: replies carry the originating id, so callers may run them
concurrently.
"""
import json
import logging
import time
import uuid
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Union

from mcp import types as mcp_types
from mcp.types import (
    INVALID_REQUEST,
    PARSE_ERROR,
    ErrorData,
    JSONRPCError,
    JSONRPCMessage,
    JSONRPCNotification,
    JSONRPCRequest,
    JSONRPCResponse,
    jsonrpc_message_adapter,
)
from pydantic import ValidationError

from browser_control.core.config import EffectiveConfig
from browser_control.core.errors import (
    InvalidArgumentsError,
    MethodNotFoundError,
    ProtocolSequenceError,
    RateLimitedError,
    ToolExecutionError,
    ToolServerError,
)
from browser_control.core.tool_manager import ToolRegistry
from browser_control.utils.rate_limiter import RateLimiter
from browser_control.utils.tool_decorator import ToolContext

# Configure logging
logger = logging.getLogger(__name__)


class ConnectionState(str, Enum):
    UNINITIALIZED = "uninitialized"
    INITIALIZED = "initialized"
    SERVING = "serving"
    CLOSED = "closed"


def error_message(request_id: Any, code: int, message: str,
                  data: Optional[Dict[str, Any]] = None) -> JSONRPCError:
    error = ErrorData(code=code, message=message, data=data) if data else ErrorData(code=code, message=message)
    return JSONRPCError(jsonrpc="2.0", id=request_id, error=error)


def decode_message(raw: Union[str, bytes]) -> JSONRPCMessage:
    """Decode one JSON-RPC message; raises pydantic.ValidationError."""
    return jsonrpc_message_adapter.validate_json(raw)


def decode_failure(error: Exception) -> JSONRPCError:
    """Reply for a message that could not be decoded.

    Invalid JSON is a parse error; well-formed JSON that is not a JSON-RPC
    message is an invalid request.
    """
    if isinstance(error, ValidationError) and any(err["type"] == "json_invalid" for err in error.errors()):
        logger.warning(f"Unparseable message: {error}")
        return error_message(None, PARSE_ERROR, "Parse error")
    logger.warning(f"Invalid JSON-RPC message: {error}")
    return error_message(None, INVALID_REQUEST, "Invalid Request")


def encode_message(message: JSONRPCMessage) -> str:
    return message.model_dump_json(by_alias=True, exclude_unset=True)


def format_violations(error: ValidationError) -> List[Dict[str, Any]]:
    """Flatten pydantic errors into path/message pairs."""
    return [
        {
            "path": ".".join(str(part) for part in err["loc"]) or "<root>",
            "message": err["msg"],
            "type": err["type"],
        }
        for err in error.errors()
    ]


def dump(model) -> Dict[str, Any]:
    return model.model_dump(mode="json", by_alias=True, exclude_none=True)


class ProtocolDispatcher:
    """Per-connection JSON-RPC state machine."""

    def __init__(self, registry: ToolRegistry, config: EffectiveConfig, context: ToolContext,
                 dispatcher_id: Optional[str] = None, clock: Callable[[], float] = time.monotonic):
        self.id = dispatcher_id or uuid.uuid4().hex
        self.registry = registry
        self.config = config
        self.context = context
        self.clock = clock
        self.state = ConnectionState.UNINITIALIZED
        self.client_info: Optional[Dict[str, Any]] = None
        self.last_seen = clock()
        self._limiter = None
        if config.security.rate_limiting:
            self._limiter = RateLimiter(config.security.max_requests_per_minute, 60.0)
        self._methods = {
            "initialize": self._initialize,
            "notifications/initialized": self._initialized,
            "ping": self._ping,
            "tools/list": self._list_tools,
            "tools/call": self._call_tool,
        }

    def too_large(self, request_id: Any = None) -> JSONRPCError:
        limit = self.config.security.max_request_size
        return error_message(request_id, INVALID_REQUEST, "Request too large", {"max_request_size": limit})

    async def handle_raw(self, raw: Union[str, bytes]) -> Optional[JSONRPCMessage]:
        """Decode and handle one framed message; returns the reply or None."""
        if len(raw) > self.config.security.max_request_size:
            return self.too_large()
        try:
            message = decode_message(raw)
        except ValidationError as e:
            return decode_failure(e)
        return await self.handle(message)

    async def handle(self, message: JSONRPCMessage) -> Optional[JSONRPCMessage]:
        """Handle a decoded message; notifications produce no reply."""
        self.last_seen = self.clock()
        if isinstance(message, JSONRPCRequest):
            request_id = message.id
        elif isinstance(message, JSONRPCNotification):
            request_id = None
        else:
            logger.debug(f"Ignoring client response on connection {self.id}")
            return None

        is_notification = request_id is None
        if len(encode_message(message)) > self.config.security.max_request_size:
            return None if is_notification else self.too_large(request_id)

        method = message.method
        try:
            result = await self._dispatch(method, message.params or {})
        except ToolServerError as e:
            if is_notification:
                logger.warning(f"Notification {method} failed: {e.message}")
                return None
            logger.info(f"Request {request_id} ({method}) failed with {type(e).__name__}: {e.message}")
            return JSONRPCError(jsonrpc="2.0", id=request_id, error=ErrorData(**e.to_error()))

        if is_notification:
            return None
        return JSONRPCResponse(jsonrpc="2.0", id=request_id, result=result or {})

    async def _dispatch(self, method: str, params: Dict[str, Any]) -> Any:
        if self.state is ConnectionState.CLOSED:
            raise ProtocolSequenceError("Connection is closed", {"method": method})
        if self.state is ConnectionState.UNINITIALIZED and method != "initialize":
            raise ProtocolSequenceError(
                f"Received '{method}' before initialize",
                {"method": method, "state": self.state.value},
            )
        handler = self._methods.get(method)
        if handler is None:
            if method.startswith("notifications/"):
                logger.debug(f"Ignoring notification {method}")
                return None
            raise MethodNotFoundError(method)
        return await handler(params)

    async def _initialize(self, params: Dict[str, Any]) -> Dict[str, Any]:
        if self.state is not ConnectionState.UNINITIALIZED:
            raise ProtocolSequenceError("Connection is already initialized", {"state": self.state.value})
        self.state = ConnectionState.INITIALIZED
        self.client_info = params.get("clientInfo")
        logger.info(f"Connection {self.id} initialized by client {self.client_info}")
        return dump(mcp_types.InitializeResult(
            protocolVersion=self.config.server.protocol_version,
            capabilities=mcp_types.ServerCapabilities(tools=mcp_types.ToolsCapability(listChanged=False)),
            serverInfo=mcp_types.Implementation(name=self.config.server.name, version=self.config.server.version),
        ))

    async def _initialized(self, params: Dict[str, Any]) -> None:
        if self.state is ConnectionState.INITIALIZED:
            self.state = ConnectionState.SERVING
            logger.debug(f"Connection {self.id} is serving")

    async def _ping(self, params: Dict[str, Any]) -> Dict[str, Any]:
        return {}

    async def _list_tools(self, params: Dict[str, Any]) -> Dict[str, Any]:
        return dump(mcp_types.ListToolsResult(tools=self.registry.get_tool_list(self.config)))

    async def _call_tool(self, params: Dict[str, Any]) -> Dict[str, Any]:
        name = params.get("name")
        arguments = params.get("arguments")
        if arguments is None:
            arguments = {}
        if not isinstance(name, str) or not name:
            raise InvalidArgumentsError("tools/call requires a tool name", {"violations": [
                {"path": "name", "message": "Field required", "type": "missing"},
            ]})
        if not isinstance(arguments, dict):
            raise InvalidArgumentsError("Tool arguments must be an object", {"tool_name": name})

        if self._limiter is not None and not self._limiter.can_make_request():
            raise RateLimitedError(
                f"Rate limit of {self.config.security.max_requests_per_minute} tool calls per minute exceeded",
                {"retry_after": round(self._limiter.retry_after(), 3)},
            )

        descriptor = self.registry.resolve(name, self.config)
        try:
            validated = descriptor.validate(arguments)
        except ValidationError as e:
            violations = format_violations(e)
            first = violations[0]
            raise InvalidArgumentsError(
                f"Invalid arguments for tool '{name}': {first['path']}: {first['message']}",
                {"tool_name": name, "violations": violations},
            ) from e

        if self.config.logging.enable_tool_debug:
            logger.debug(f"Calling {name} with {arguments}")

        try:
            result = await descriptor.invoke(validated, self.context)
        except ToolServerError:
            raise
        except Exception as e:
            logger.error(f"Tool '{name}' execution failed: {e}", exc_info=True)
            raise ToolExecutionError(f"Tool '{name}' execution failed: {e}", {"tool_name": name}) from e

        return dump(mcp_types.CallToolResult(
            content=[mcp_types.TextContent(type="text", text=json.dumps(result, indent=2, default=str))],
            isError=False,
        ))

    def close(self):
        self.state = ConnectionState.CLOSED
        logger.info(f"Connection {self.id} closed")
