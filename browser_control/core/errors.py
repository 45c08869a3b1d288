"""
Error taxonomy for the browser control server.

Every error carries a stable JSON-RPC code. Startup errors (ConfigError,
DuplicateToolError) abort initialization; all others are per-call and are
converted into JSON-RPC error responses by the dispatcher.
"""
from typing import Any, Dict, Optional

from mcp.types import METHOD_NOT_FOUND


class ToolServerError(Exception):
    """Base class for all server errors."""
    code = -32000

    def __init__(self, message: str, data: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.data = data or {}

    def to_error(self) -> Dict[str, Any]:
        """Build the JSON-RPC error object."""
        return {
            "code": self.code,
            "message": self.message,
            "data": {"error": type(self).__name__, **self.data},
        }


class ConfigError(ToolServerError):
    code = -32050


class DuplicateToolError(ToolServerError):
    code = -32051

    def __init__(self, name: str):
        super().__init__(f"Tool '{name}' is already registered", {"tool_name": name})


class ProtocolSequenceError(ToolServerError):
    code = -32002


class InvalidArgumentsError(ToolServerError):
    code = -32602


class ToolNotFoundError(ToolServerError):
    code = -32003

    def __init__(self, name: str, available: Optional[list] = None):
        super().__init__(
            f"Tool '{name}' not found",
            {"requested_tool": name, "available_tools": available or []},
        )


class ToolDisabledError(ToolServerError):
    code = -32004

    def __init__(self, name: str, feature_flag: str):
        super().__init__(
            f"Tool '{name}' is disabled by feature flag '{feature_flag}'",
            {"tool_name": name, "feature_flag": feature_flag},
        )


class SessionLimitExceededError(ToolServerError):
    code = -32010


class SessionNotFoundError(ToolServerError):
    code = -32011

    def __init__(self, session_id: str):
        super().__init__(f"Session not found: {session_id}", {"session_id": session_id})


class RateLimitedError(ToolServerError):
    code = -32012


class RequestFailedError(ToolServerError):
    code = -32013


class ToolExecutionError(ToolServerError):
    """Failure reported by a collaborator (browser backend, persistence)."""
    code = -32000


class MethodNotFoundError(ToolServerError):
    code = METHOD_NOT_FOUND

    def __init__(self, method: str):
        super().__init__(f"Method not found: {method}", {"method": method})
