"""
Tests for the tool registry and the @mcp_tool decorator.
"""
import pytest
from pydantic import BaseModel

from browser_control.core.errors import DuplicateToolError, ToolDisabledError, ToolNotFoundError
from browser_control.core.tool_manager import ToolRegistry
from browser_control.utils.tool_decorator import ToolDescriptor, mcp_tool

from conftest import make_config

API_TOOLS = ["api_request", "api_session_status", "api_session_report", "api_session_close"]
BROWSER_TOOLS = [
    "browser_launch",
    "browser_navigate",
    "browser_click",
    "browser_type",
    "browser_screenshot",
    "browser_dom",
    "browser_close",
]
ADVANCED_TOOLS = [
    "browser_evaluate",
    "browser_wait",
    "browser_tabs",
    "browser_keyboard",
    "browser_mouse",
    "browser_pdf",
    "browser_console",
    "browser_dialog",
]
FILE_TOOLS = ["browser_file"]
NETWORK_TOOLS = ["browser_network"]
ALL_TOOLS = API_TOOLS + BROWSER_TOOLS + ADVANCED_TOOLS + FILE_TOOLS + NETWORK_TOOLS


class EchoInput(BaseModel):
    text: str


def make_descriptor(name="echo", category="other"):
    @mcp_tool(name=name, description="Echo text back", category=category, input_model=EchoInput)
    async def echo(params, context):
        return {"text": params.text}
    return echo.tool_descriptor


class TestDecorator:
    def test_descriptor_defaults_flag_from_category(self):
        descriptor = make_descriptor(category="network")

        assert isinstance(descriptor, ToolDescriptor)
        assert descriptor.required_feature_flag == "enable_network_tools"
        assert descriptor.input_schema["properties"]["text"]["type"] == "string"

    def test_unknown_category_is_rejected(self):
        with pytest.raises(ValueError):
            make_descriptor(category="quantum")

    @pytest.mark.asyncio
    async def test_invoke_passes_validated_params(self):
        descriptor = make_descriptor()

        result = await descriptor.invoke(descriptor.validate({"text": "hi"}), context=None)

        assert result == {"text": "hi"}


class TestRegistry:
    def test_duplicate_name_is_rejected(self):
        registry = ToolRegistry()
        registry.register(make_descriptor())

        with pytest.raises(DuplicateToolError) as excinfo:
            registry.register(make_descriptor())

        assert excinfo.value.code == -32051

    def test_catalog_is_loaded_in_declaration_order(self, registry):
        assert list(registry.tools) == ALL_TOOLS

    def test_loading_the_catalog_twice_fails(self, registry):
        with pytest.raises(DuplicateToolError):
            registry.load_tools_from_package()

    def test_list_filters_by_feature_flag(self, registry, tmp_path):
        api_only = make_config(tmp_path, features=("enable_api_tools",))
        browser_only = make_config(tmp_path, features=("enable_browser_tools",))
        nothing = make_config(tmp_path, features=())

        assert [d.name for d in registry.list(api_only)] == API_TOOLS
        assert [d.name for d in registry.list(browser_only)] == BROWSER_TOOLS
        assert registry.list(nothing) == []

    def test_advanced_file_and_network_tools_have_their_own_flags(self, registry, tmp_path):
        advanced = make_config(tmp_path, features=("enable_advanced_tools",))
        extras = make_config(tmp_path, features=("enable_file_tools", "enable_network_tools"))

        assert [d.name for d in registry.list(advanced)] == ADVANCED_TOOLS
        assert [d.name for d in registry.list(extras)] == FILE_TOOLS + NETWORK_TOOLS
        assert registry.tools["browser_evaluate"].required_feature_flag == "enable_advanced_tools"

    def test_list_is_deterministic(self, registry, config):
        assert registry.list(config) == registry.list(config)

    def test_resolve_unknown_tool(self, registry, config):
        with pytest.raises(ToolNotFoundError) as excinfo:
            registry.resolve("teleport", config)

        assert excinfo.value.code == -32003
        assert "api_request" in excinfo.value.data["available_tools"]

    def test_resolve_disabled_tool(self, registry, tmp_path):
        config = make_config(tmp_path, features=("enable_api_tools",))

        with pytest.raises(ToolDisabledError) as excinfo:
            registry.resolve("browser_launch", config)

        assert excinfo.value.code == -32004
        assert excinfo.value.data["feature_flag"] == "enable_browser_tools"

    def test_names_are_case_sensitive(self, registry, config):
        with pytest.raises(ToolNotFoundError):
            registry.resolve("API_REQUEST", config)

    def test_tool_list_uses_camel_case_schemas(self, registry, config):
        tools = {tool.name: tool.model_dump(by_alias=True) for tool in registry.get_tool_list(config)}

        properties = tools["api_request"]["inputSchema"]["properties"]
        assert "sessionId" in properties
        assert "maxRetries" in properties
        assert "browserId" in tools["browser_click"]["inputSchema"]["properties"]

    def test_stats(self, registry, tmp_path):
        stats = registry.get_stats(make_config(tmp_path, features=("enable_api_tools",)))

        assert stats["total_tools"] == len(ALL_TOOLS)
        assert stats["categories"] == {"api": len(API_TOOLS)}
        assert stats["feature_flags"]["enable_browser_tools"] is False
