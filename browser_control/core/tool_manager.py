"""
Tool registry for the browser control server.
"""
import importlib
import logging
import pkgutil
from typing import Dict, List

from mcp import types as mcp_types

from browser_control.core.config import EffectiveConfig, FEATURE_FLAGS
from browser_control.core.errors import DuplicateToolError, ToolDisabledError, ToolNotFoundError
from browser_control.utils.tool_decorator import ToolDescriptor

# Configure logging
logger = logging.getLogger(__name__)

TOOLS_PACKAGE = "browser_control.tools"


class ToolRegistry:
    """Catalog of tool descriptors, read-only once startup is complete."""

    def __init__(self):
        self.tools: Dict[str, ToolDescriptor] = {}

    def register(self, descriptor: ToolDescriptor):
        """Register a tool descriptor; names are unique."""
        if descriptor.name in self.tools:
            raise DuplicateToolError(descriptor.name)
        self.tools[descriptor.name] = descriptor
        logger.debug(f"Registered tool: {descriptor.name} ({descriptor.category})")

    def load_tools_from_package(self, package_name: str = TOOLS_PACKAGE) -> List[str]:
        """Register every @mcp_tool declared in the modules of a package.

        Modules are visited in sorted order and tools in declaration order,
        so listings are deterministic.
        """
        loaded_tools = []
        package = importlib.import_module(package_name)

        logger.info(f"Scanning package for tools: {package_name}")
        module_names = sorted(
            info.name for info in pkgutil.iter_modules(package.__path__)
            if not info.name.startswith('_')
        )
        for module_name in module_names:
            module = importlib.import_module(f"{package_name}.{module_name}")
            for attr in vars(module).values():
                descriptor = getattr(attr, 'tool_descriptor', None)
                if isinstance(descriptor, ToolDescriptor):
                    self.register(descriptor)
                    loaded_tools.append(descriptor.name)

        logger.info(f"Finished loading tools. Loaded {len(loaded_tools)} tools: {loaded_tools}")
        return loaded_tools

    def list(self, config: EffectiveConfig) -> List[ToolDescriptor]:
        """Enabled tools in registration order."""
        return [
            descriptor for descriptor in self.tools.values()
            if config.is_feature_enabled(descriptor.required_feature_flag)
        ]

    def resolve(self, name: str, config: EffectiveConfig) -> ToolDescriptor:
        """Look up a tool by exact name, honouring feature flags."""
        descriptor = self.tools.get(name)
        if descriptor is None:
            raise ToolNotFoundError(name, [d.name for d in self.list(config)])
        if not config.is_feature_enabled(descriptor.required_feature_flag):
            raise ToolDisabledError(name, descriptor.required_feature_flag)
        return descriptor

    def get_tool_list(self, config: EffectiveConfig) -> List[mcp_types.Tool]:
        """Get the current list of enabled tools as MCP tool definitions."""
        return [
            mcp_types.Tool(
                name=descriptor.name,
                description=descriptor.description,
                inputSchema=descriptor.input_schema
            )
            for descriptor in self.list(config)
        ]

    def get_stats(self, config: EffectiveConfig) -> dict:
        """Registry statistics for startup logging and health checks."""
        categories: Dict[str, int] = {}
        enabled = self.list(config)
        for descriptor in enabled:
            categories[descriptor.category] = categories.get(descriptor.category, 0) + 1
        return {
            "total_tools": len(self.tools),
            "enabled_tools": [d.name for d in enabled],
            "categories": categories,
            "feature_flags": {flag: config.is_feature_enabled(flag) for flag in FEATURE_FLAGS},
        }
