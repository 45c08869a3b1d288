"""
Decorator utilities for declaring tools.
"""
import functools
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Optional, Type

from pydantic import BaseModel

logger = logging.getLogger(__name__)

TOOL_CATEGORIES = ("browser", "advanced", "api", "file", "network", "other")


@dataclass(frozen=True)
class ToolDescriptor:
    """Static description of a tool, registered once at startup."""
    name: str
    description: str
    category: str
    input_model: Type[BaseModel]
    handler: Callable[..., Awaitable[Any]]
    required_feature_flag: str = ""
    input_schema: Dict[str, Any] = field(default_factory=dict, compare=False)

    def validate(self, arguments: Dict[str, Any]) -> BaseModel:
        """Validate raw arguments against the tool's input model."""
        return self.input_model.model_validate(arguments)

    async def invoke(self, params: BaseModel, context: "ToolContext") -> Any:
        """Run the handler with validated input and the tool context."""
        return await self.handler(params, context)


@dataclass
class ToolContext:
    """Collaborators handed to every tool handler."""
    config: Any
    session_manager: Any
    browser: Any
    artifacts: Any


def mcp_tool(
    name: str,
    description: str,
    *,
    category: str,
    input_model: Type[BaseModel],
    feature_flag: Optional[str] = None,
):
    """
    Decorator to declare a tool from an async function.

    The feature flag defaults to ``enable_<category>_tools``.

    Example:
    ```python
    class NavigateInput(BaseModel):
        browser_id: str = Field(alias="browserId")
        url: str

    @mcp_tool(
        name="browser_navigate",
        description="Navigate a browser instance to a URL",
        category="browser",
        input_model=NavigateInput,
    )
    async def navigate(params: NavigateInput, context: ToolContext) -> Dict:
        ...
    ```
    """
    if category not in TOOL_CATEGORIES:
        raise ValueError(f"Unknown tool category '{category}' for tool {name}")

    def decorator(func):
        @functools.wraps(func)
        async def wrapped_func(params, context):
            logger.debug(f"Tool handler called for {name}")
            return await func(params, context)

        wrapped_func.tool_descriptor = ToolDescriptor(
            name=name,
            description=description,
            category=category,
            input_model=input_model,
            handler=wrapped_func,
            required_feature_flag=feature_flag or f"enable_{category}_tools",
            input_schema=input_model.model_json_schema(by_alias=True),
        )
        return wrapped_func

    return decorator
