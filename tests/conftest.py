"""
Shared fixtures for the browser control server tests.
"""
import asyncio
import json
from typing import Any, Dict, List, Optional

import pytest
from mcp.types import jsonrpc_message_adapter

from browser_control.browser.state import CaptureState
from browser_control.core.config import EffectiveConfig
from browser_control.core.dispatcher import ProtocolDispatcher, encode_message
from browser_control.core.errors import ToolExecutionError
from browser_control.core.tool_manager import ToolRegistry
from browser_control.sessions.manager import SessionManager
from browser_control.sessions.models import ResponseRecord
from browser_control.utils.artifacts import ArtifactStore
from browser_control.utils.tool_decorator import ToolContext


def respond(status: int = 200, body: Any = None, headers: Optional[Dict[str, str]] = None,
            latency: float = 0.01) -> ResponseRecord:
    """Build a scripted response; JSON content type unless headers say otherwise."""
    if headers is None:
        headers = {"Content-Type": "application/json"}
    return ResponseRecord(status=status, headers=headers, body=body if body is not None else {}, latency=latency)


class FakeClock:
    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


class FakeTransport:
    """Scripted HTTP transport. Items are responses, exceptions or callables."""

    def __init__(self, responses: Optional[List[Any]] = None):
        self.responses = list(responses or [])
        self.calls: List[Dict[str, Any]] = []
        self.delay = 0.0
        self.closed = False

    def queue(self, *items):
        self.responses.extend(items)

    async def send(self, method, url, headers, body, timeout):
        self.calls.append({"method": method, "url": url, "headers": headers, "body": body, "timeout": timeout})
        if self.delay:
            await asyncio.sleep(self.delay)
        item = self.responses.pop(0) if self.responses else respond(200, {"ok": True})
        if isinstance(item, BaseException):
            raise item
        if callable(item):
            return item(method, url, headers, body)
        return item

    async def close(self):
        self.closed = True


class FakeBrowserBackend:
    """In-memory stand-in for the Playwright backend."""

    def __init__(self):
        self.instances: Dict[str, Dict[str, Any]] = {}
        self.actions: List[tuple] = []
        self.shut_down = False
        self._counter = 0

    def _require(self, browser_id):
        if browser_id not in self.instances:
            raise ToolExecutionError(f"Browser instance '{browser_id}' not found.", {"browser_id": browser_id})
        return self.instances[browser_id]

    async def launch(self, headless=None, user_data_dir=None):
        self._counter += 1
        browser_id = f"browser-{self._counter}"
        self.instances[browser_id] = {
            "url": "about:blank",
            "headless": headless,
            "tabs": {"tab-1": "about:blank"},
            "active": "tab-1",
            "scripts": {},
            "capture": CaptureState(),
        }
        return {"browserId": browser_id, "headless": headless, "userDataDir": user_data_dir}

    async def navigate(self, browser_id, url):
        instance = self._require(browser_id)
        instance["url"] = url
        instance["tabs"][instance["active"]] = url
        return {"url": url, "title": "Example Domain", "status": 200}

    async def click(self, browser_id, locator_type, locator_value, timeout, button="left", force=False):
        self._require(browser_id)
        self.actions.append(("click", browser_id, locator_type, locator_value, timeout))

    async def type(self, browser_id, locator_type, locator_value, text, timeout, delay=0, clear=True):
        self._require(browser_id)
        self.actions.append(("type", browser_id, locator_type, locator_value, text))

    async def screenshot(self, browser_id, full_page=False, selector=None, image_format="png", quality=None):
        self._require(browser_id)
        return b"\x89PNG\r\n\x1a\nfake-image"

    async def content(self, browser_id, selector=None):
        self._require(browser_id)
        if selector:
            return f"<div id='{selector}'>hello</div>"
        return "<html><body><h1>Example Domain</h1></body></html>"

    async def evaluate(self, browser_id, expression, selector=None, arg=None, timeout=30.0):
        instance = self._require(browser_id)
        self.actions.append(("evaluate", browser_id, expression, selector, arg))
        return instance["scripts"].get(expression)

    async def wait(self, browser_id, condition, value=None, timeout=30.0, seconds=None, state="visible"):
        instance = self._require(browser_id)
        self.actions.append(("wait", browser_id, condition, value, timeout))
        return {"waitedMs": 0.0, "url": instance["url"]}

    def _tab_info(self, instance, tab_id):
        return {"tabId": tab_id, "url": instance["tabs"][tab_id], "active": tab_id == instance["active"]}

    async def tabs(self, browser_id, action, tab_id=None, url=None):
        instance = self._require(browser_id)
        tabs = instance["tabs"]
        if action == "list":
            return {"tabs": [self._tab_info(instance, known) for known in tabs]}
        if action in ("create", "duplicate"):
            source = tabs[tab_id or instance["active"]] if action == "duplicate" else (url or "about:blank")
            new_id = f"tab-{len(tabs) + 1}"
            tabs[new_id] = source
            instance["active"] = new_id
            return {"tab": self._tab_info(instance, new_id)}
        target = tab_id or instance["active"]
        if target not in tabs:
            raise ToolExecutionError(f"Tab '{target}' not found in browser {browser_id}", {"tab_id": target})
        if action == "close":
            if len(tabs) == 1:
                raise ToolExecutionError("Cannot close the last tab; use browser_close to close the browser")
            del tabs[target]
            if instance["active"] == target:
                instance["active"] = list(tabs)[-1]
            return {"closed": target, "activeTab": instance["active"]}
        if action == "switch":
            instance["active"] = target
        self.actions.append((action, browser_id, target))
        return {"tab": self._tab_info(instance, target)}

    async def keyboard(self, browser_id, action, text=None, key=None, selector=None, delay=0):
        self._require(browser_id)
        self.actions.append(("keyboard", browser_id, action, text, key, selector))

    async def mouse(self, browser_id, action, x=None, y=None, selector=None, offset_x=0, offset_y=0,
                    drag_to=None, button="left", modifiers=()):
        self._require(browser_id)
        if selector:
            x, y = 100 + offset_x, 50 + offset_y
        self.actions.append(("mouse", browser_id, action, x, y, drag_to, button, tuple(modifiers)))
        return {"x": x, "y": y}

    async def pdf(self, browser_id, options, wait_for_selector=None, timeout=5.0):
        self._require(browser_id)
        self.actions.append(("pdf", browser_id, options, wait_for_selector))
        return b"%PDF-1.7 fake"

    async def upload(self, browser_id, selector, files, timeout):
        self._require(browser_id)
        self.actions.append(("upload", browser_id, selector, list(files)))

    async def download(self, browser_id, url=None, selector=None, timeout=30.0):
        self._require(browser_id)
        self.actions.append(("download", browser_id, url, selector))
        return "report.csv", b"id,name\n1,gadget\n"

    def capture(self, browser_id):
        return self._require(browser_id)["capture"]

    async def close(self, browser_id):
        self._require(browser_id)
        del self.instances[browser_id]

    async def shutdown(self):
        self.instances.clear()
        self.shut_down = True


async def no_sleep(seconds):
    """Retry delays are skipped in tests."""
    await asyncio.sleep(0)


def make_config(output_dir=".", features=("enable_api_tools", "enable_browser_tools"),
                api_request=None, report=None, security=None, **sections) -> EffectiveConfig:
    """Build an effective configuration with test-friendly defaults."""
    tools = {"api_request": {"retry_delay": 0, **(api_request or {})}}
    if report:
        tools["api_session_report"] = report
    tools.update(sections.pop("tools", {}))
    return EffectiveConfig.model_validate({
        "features": {flag: True for flag in features},
        "tools": tools,
        "security": security or {},
        "output_dir": str(output_dir),
        **sections,
    })


def as_dict(reply) -> Optional[Dict[str, Any]]:
    if reply is None:
        return None
    return json.loads(encode_message(reply))


async def send(dispatcher: ProtocolDispatcher, message: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    """Decode a message the way the transports do, handle it, return the reply as a dict."""
    return as_dict(await dispatcher.handle(jsonrpc_message_adapter.validate_python(message)))


async def send_raw(dispatcher: ProtocolDispatcher, raw) -> Optional[Dict[str, Any]]:
    return as_dict(await dispatcher.handle_raw(raw))


async def initialize(dispatcher: ProtocolDispatcher):
    """Complete the handshake on a dispatcher."""
    await send(dispatcher, {"jsonrpc": "2.0", "id": 0, "method": "initialize", "params": {
        "protocolVersion": "2024-11-05",
        "capabilities": {},
        "clientInfo": {"name": "pytest", "version": "1.0"},
    }})
    await send(dispatcher, {"jsonrpc": "2.0", "method": "notifications/initialized"})


def call_tool(request_id, name, arguments=None) -> Dict[str, Any]:
    return {
        "jsonrpc": "2.0",
        "id": request_id,
        "method": "tools/call",
        "params": {"name": name, "arguments": arguments or {}},
    }


def tool_payload(response: Dict[str, Any]) -> Any:
    """Decode the JSON text content of a successful tools/call response."""
    assert "result" in response, response
    return json.loads(response["result"]["content"][0]["text"])


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def browser():
    return FakeBrowserBackend()


@pytest.fixture
def config(tmp_path):
    return make_config(tmp_path)


@pytest.fixture
def manager_factory(transport, clock):
    """Build session managers over the fake transport and clock."""
    def factory(config: Optional[EffectiveConfig] = None, **api_request):
        config = config or make_config(api_request=api_request)
        return SessionManager.from_config(config, transport=transport, clock=clock, sleep=no_sleep)
    return factory


@pytest.fixture
def session_manager(manager_factory, config):
    return manager_factory(config)


@pytest.fixture
def registry():
    registry = ToolRegistry()
    registry.load_tools_from_package()
    return registry


@pytest.fixture
def context(config, session_manager, browser, tmp_path):
    return ToolContext(
        config=config,
        session_manager=session_manager,
        browser=browser,
        artifacts=ArtifactStore(tmp_path),
    )


@pytest.fixture
def dispatcher(registry, config, context):
    return ProtocolDispatcher(registry, config, context)
