"""
Advanced browser tools - scripting, waits, tabs, raw input, PDF export,
console and dialog capture, file transfer and network inspection
"""
import base64
import logging
import re
from pathlib import Path
from typing import Any, Dict, List, Literal, Optional, Sequence

from pydantic import Field, field_validator, model_validator

from browser_control.browser.state import DownloadRecord
from browser_control.core.errors import InvalidArgumentsError
from browser_control.tools.browser import (
    BrowserInput,
    BrowserToolInput,
    ensure_allowed_protocol,
    timestamped_name,
)
from browser_control.utils.tool_decorator import ToolContext, mcp_tool

# Configure logging
logger = logging.getLogger(__name__)

Modifier = Literal["ctrl", "shift", "alt", "meta"]

KEY_ALIASES = {
    "ctrl": "Control",
    "control": "Control",
    "cmd": "Meta",
    "command": "Meta",
    "meta": "Meta",
    "win": "Meta",
    "alt": "Alt",
    "option": "Alt",
    "shift": "Shift",
    "esc": "Escape",
    "return": "Enter",
    "del": "Delete",
    "space": "Space",
}

PERFORMANCE_SCRIPT = """() => {
    const nav = performance.getEntriesByType('navigation')[0];
    const resources = performance.getEntriesByType('resource');
    return {
        navigation: nav ? nav.toJSON() : null,
        resourceCount: resources.length,
        transferSize: resources.reduce((total, entry) => total + (entry.transferSize || 0), 0),
    };
}"""


def normalize_key(key: str) -> str:
    key = key.strip()
    return KEY_ALIASES.get(key.lower(), key)


def key_combo(keys: Sequence[str]) -> str:
    """Join keys into a Playwright combination such as Control+Shift+I."""
    return "+".join(normalize_key(key) for key in keys if key.strip())


def js_type(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, (int, float)):
        return "number"
    if isinstance(value, str):
        return "string"
    if isinstance(value, list):
        return "array"
    return "object"


def check_pattern(value: Optional[str]) -> Optional[str]:
    if value is not None:
        try:
            re.compile(value)
        except re.error as e:
            raise ValueError(f"Invalid regular expression: {e}") from e
    return value


class EvaluateInput(BrowserInput):
    expression: str = Field(min_length=1, description="JavaScript expression or function to execute")
    selector: Optional[str] = Field(
        default=None,
        description="CSS selector; when set the function receives the element as its first argument",
    )
    arg: Any = Field(default=None, description="Value passed to a function expression")
    timeout: int = Field(default=30000, ge=1, description="Execution timeout in milliseconds")


class WaitInput(BrowserInput):
    condition: Literal["time", "element", "text", "textGone", "url", "networkIdle", "domContentLoaded", "load"]
    value: Optional[str] = Field(
        default=None,
        description="Selector for 'element', text for 'text'/'textGone', URL substring or glob for 'url'",
    )
    timeout: int = Field(default=30000, ge=1, description="Maximum wait time in milliseconds")
    time: Optional[float] = Field(default=None, ge=0, description="Seconds to wait (for the 'time' condition)")
    state: Literal["visible", "hidden", "attached", "detached"] = "visible"

    @model_validator(mode="after")
    def check_condition(self):
        if self.condition in ("element", "text", "textGone", "url") and not self.value:
            raise ValueError(f"'value' is required for the '{self.condition}' condition")
        if self.condition == "time" and self.time is None:
            raise ValueError("'time' is required for the 'time' condition")
        return self


class TabsInput(BrowserInput):
    action: Literal["list", "create", "close", "switch", "duplicate", "refresh", "goBack", "goForward"]
    tab_id: Optional[str] = Field(default=None, description="Target tab; the active tab when omitted")
    url: Optional[str] = Field(default=None, description="URL to open in the new tab (for 'create')")

    @model_validator(mode="after")
    def check_action(self):
        if self.action == "switch" and not self.tab_id:
            raise ValueError("'tabId' is required for the 'switch' action")
        return self


class KeyboardInput(BrowserInput):
    action: Literal["type", "press", "down", "up", "shortcut"]
    text: Optional[str] = Field(default=None, description="Text to type (for 'type')")
    key: Optional[str] = Field(default=None, description="Key such as Enter, Tab, ArrowLeft or F1")
    shortcut: Optional[str] = Field(default=None, description="Combination such as Ctrl+C or Cmd+Shift+I")
    selector: Optional[str] = Field(default=None, description="CSS selector of an element to focus first")
    delay: int = Field(default=0, ge=0, description="Delay between keystrokes in milliseconds")
    modifiers: List[Modifier] = Field(default_factory=list, description="Modifiers held while pressing 'key'")

    @model_validator(mode="after")
    def check_action(self):
        if self.action == "type" and self.text is None:
            raise ValueError("'text' is required for the 'type' action")
        if self.action in ("press", "down", "up") and not self.key:
            raise ValueError(f"'key' is required for the '{self.action}' action")
        if self.action == "shortcut" and not self.shortcut:
            raise ValueError("'shortcut' is required for the 'shortcut' action")
        return self


class Point(BrowserToolInput):
    x: float
    y: float


class MouseInput(BrowserInput):
    action: Literal["click", "move", "drag", "hover", "rightClick", "doubleClick"]
    x: Optional[float] = Field(default=None, description="X coordinate")
    y: Optional[float] = Field(default=None, description="Y coordinate")
    selector: Optional[str] = Field(default=None, description="CSS selector; the element center is the target")
    offset: Optional[Point] = Field(default=None, description="Offset from the element center")
    drag_to: Optional[Point] = Field(default=None, description="End point for 'drag'")
    button: Literal["left", "right", "middle"] = "left"
    modifiers: List[Modifier] = Field(default_factory=list)

    @model_validator(mode="after")
    def check_target(self):
        if not self.selector and (self.x is None or self.y is None):
            raise ValueError("Provide either 'selector' or both 'x' and 'y'")
        if self.action == "drag" and self.drag_to is None:
            raise ValueError("'dragTo' is required for the 'drag' action")
        return self


class PdfMargin(BrowserToolInput):
    top: Optional[str] = None
    bottom: Optional[str] = None
    left: Optional[str] = None
    right: Optional[str] = None


class PdfOptions(BrowserToolInput):
    format: Literal["A3", "A4", "A5", "Legal", "Letter", "Tabloid"] = "A4"
    width: Optional[str] = Field(default=None, description="Paper width with units, overrides format")
    height: Optional[str] = Field(default=None, description="Paper height with units, overrides format")
    landscape: bool = False
    margin: Optional[PdfMargin] = None
    print_background: bool = True
    scale: float = Field(default=1.0, ge=0.1, le=2.0)
    page_ranges: Optional[str] = Field(default=None, description="Pages to print, e.g. '1-5, 8'")
    header_template: Optional[str] = None
    footer_template: Optional[str] = None
    display_header_footer: bool = False
    prefer_css_page_size: bool = False

    def to_playwright(self) -> Dict[str, Any]:
        options = self.model_dump(exclude_none=True)
        if self.width or self.height:
            options.pop("format")
        return options


class PdfInput(BrowserInput):
    file_name: Optional[str] = Field(
        default=None,
        description="File name under the pdfs directory; a timestamped name is used when omitted",
    )
    options: PdfOptions = Field(default_factory=PdfOptions)
    wait_for_selector: Optional[str] = Field(default=None, description="Wait for this element before printing")
    wait_for_timeout: int = Field(default=5000, ge=1, description="Milliseconds to wait for the selector")
    generate_base64: bool = Field(default=False, description="Also return the PDF as base64")


class ConsoleFilter(BrowserToolInput):
    level: Optional[Literal["log", "info", "warn", "warning", "error", "debug", "trace"]] = None
    text: Optional[str] = Field(default=None, description="Case-insensitive substring of the message")
    source: Optional[str] = Field(default=None, description="Substring of the source URL")


class ConsoleInput(BrowserInput):
    action: Literal["get", "clear", "monitor", "stopMonitor"]
    filter: ConsoleFilter = Field(default_factory=ConsoleFilter)
    limit: int = Field(default=100, ge=1, description="Maximum number of messages returned")


class DialogResponse(BrowserToolInput):
    accept: bool = True
    prompt_text: Optional[str] = None


class DialogInput(BrowserInput):
    action: Literal["handle", "dismiss", "accept", "getInfo", "setupHandler"]
    accept: bool = Field(default=True, description="Accept or dismiss (for 'handle' and 'setupHandler')")
    prompt_text: Optional[str] = Field(default=None, description="Text entered into prompt dialogs")
    default_response: Optional[DialogResponse] = Field(
        default=None,
        description="Answer used for every dialog (for 'setupHandler')",
    )


class FileInput(BrowserInput):
    action: Literal["upload", "download", "getDownloads", "clearDownloads"]
    selector: Optional[str] = Field(
        default=None,
        description="File input to fill (upload) or element whose click starts a download",
    )
    files: List[str] = Field(default_factory=list, description="Local paths to upload")
    url: Optional[str] = Field(default=None, description="URL to download directly")
    file_name: Optional[str] = Field(default=None, description="File name under the downloads directory")
    timeout: int = Field(default=30000, ge=1, description="Timeout in milliseconds")

    @model_validator(mode="after")
    def check_action(self):
        if self.action == "upload" and (not self.selector or not self.files):
            raise ValueError("'selector' and 'files' are required for the 'upload' action")
        if self.action == "download" and not (self.url or self.selector):
            raise ValueError("'url' or 'selector' is required for the 'download' action")
        return self


class NetworkFilter(BrowserToolInput):
    url: Optional[str] = Field(default=None, description="Regular expression matched against the URL")
    method: Optional[str] = None
    status: Optional[int] = Field(default=None, ge=100, le=599)
    resource_type: Optional[str] = Field(default=None, description="document, stylesheet, script, xhr, fetch, ...")

    @field_validator("url")
    @classmethod
    def check_url_pattern(cls, value: Optional[str]) -> Optional[str]:
        return check_pattern(value)


class NetworkInput(BrowserInput):
    action: Literal["list", "filter", "clear", "monitor", "stopMonitor", "performance"]
    filter: NetworkFilter = Field(default_factory=NetworkFilter)
    limit: int = Field(default=50, ge=1, description="Maximum number of requests returned")


@mcp_tool(
    name="browser_evaluate",
    description=(
        "Execute JavaScript in the page, or on an element when a selector is given, "
        "and return the JSON-serializable result."
    ),
    category="advanced",
    input_model=EvaluateInput,
    feature_flag="enable_advanced_tools",
)
async def browser_evaluate(params: EvaluateInput, context: ToolContext) -> Dict[str, Any]:
    result = await context.browser.evaluate(
        params.browser_id,
        params.expression,
        selector=params.selector,
        arg=params.arg,
        timeout=params.timeout / 1000,
    )
    return {
        "success": True,
        "browserId": params.browser_id,
        "result": result,
        "type": js_type(result),
        "target": params.selector,
    }


@mcp_tool(
    name="browser_wait",
    description="Wait for time to pass, an element state, text, a URL or a page load state.",
    category="advanced",
    input_model=WaitInput,
    feature_flag="enable_advanced_tools",
)
async def browser_wait(params: WaitInput, context: ToolContext) -> Dict[str, Any]:
    outcome = await context.browser.wait(
        params.browser_id,
        params.condition,
        value=params.value,
        timeout=params.timeout / 1000,
        seconds=params.time,
        state=params.state,
    )
    return {"success": True, "browserId": params.browser_id, "condition": params.condition, **outcome}


@mcp_tool(
    name="browser_tabs",
    description="List, open, close, switch, duplicate, reload and navigate the history of browser tabs.",
    category="advanced",
    input_model=TabsInput,
    feature_flag="enable_advanced_tools",
)
async def browser_tabs(params: TabsInput, context: ToolContext) -> Dict[str, Any]:
    if params.url:
        ensure_allowed_protocol(params.url, context)
    outcome = await context.browser.tabs(params.browser_id, params.action, tab_id=params.tab_id, url=params.url)
    return {"success": True, "browserId": params.browser_id, "action": params.action, **outcome}


@mcp_tool(
    name="browser_keyboard",
    description="Type text, press or hold keys, and send shortcuts such as Ctrl+C to the focused element.",
    category="advanced",
    input_model=KeyboardInput,
    feature_flag="enable_advanced_tools",
)
async def browser_keyboard(params: KeyboardInput, context: ToolContext) -> Dict[str, Any]:
    key = None
    if params.action == "press":
        key = key_combo([*params.modifiers, params.key])
    elif params.action == "shortcut":
        key = key_combo(params.shortcut.split("+"))
    elif params.action in ("down", "up"):
        key = normalize_key(params.key)
    await context.browser.keyboard(
        params.browser_id,
        params.action,
        text=params.text,
        key=key,
        selector=params.selector,
        delay=params.delay,
    )
    return {"success": True, "browserId": params.browser_id, "action": params.action, "key": key}


@mcp_tool(
    name="browser_mouse",
    description="Click, double-click, right-click, hover, move or drag at coordinates or on an element.",
    category="advanced",
    input_model=MouseInput,
    feature_flag="enable_advanced_tools",
)
async def browser_mouse(params: MouseInput, context: ToolContext) -> Dict[str, Any]:
    offset = params.offset or Point(x=0, y=0)
    position = await context.browser.mouse(
        params.browser_id,
        params.action,
        x=params.x,
        y=params.y,
        selector=params.selector,
        offset_x=offset.x,
        offset_y=offset.y,
        drag_to=(params.drag_to.x, params.drag_to.y) if params.drag_to else None,
        button=params.button,
        modifiers=[normalize_key(modifier) for modifier in params.modifiers],
    )
    return {"success": True, "browserId": params.browser_id, "action": params.action, **position}


@mcp_tool(
    name="browser_pdf",
    description="Print the current page to PDF and save it under the pdfs directory. Requires a headless browser.",
    category="advanced",
    input_model=PdfInput,
    feature_flag="enable_advanced_tools",
)
async def browser_pdf(params: PdfInput, context: ToolContext) -> Dict[str, Any]:
    document = await context.browser.pdf(
        params.browser_id,
        params.options.to_playwright(),
        wait_for_selector=params.wait_for_selector,
        timeout=params.wait_for_timeout / 1000,
    )
    filename = params.file_name or timestamped_name("page", "pdf")
    path = context.artifacts.save(document, filename, "pdfs")
    result: Dict[str, Any] = {
        "success": True,
        "browserId": params.browser_id,
        "path": str(path),
        "size": len(document),
    }
    if params.generate_base64:
        result["base64"] = base64.b64encode(document).decode("ascii")
    return result


@mcp_tool(
    name="browser_console",
    description="Read, filter or clear captured console messages, and pause or resume capturing.",
    category="advanced",
    input_model=ConsoleInput,
    feature_flag="enable_advanced_tools",
)
async def browser_console(params: ConsoleInput, context: ToolContext) -> Dict[str, Any]:
    console = context.browser.capture(params.browser_id).console
    result: Dict[str, Any] = {"success": True, "browserId": params.browser_id, "action": params.action}
    if params.action == "get":
        messages = console.query(params.filter.level, params.filter.text, params.filter.source, params.limit)
        result.update(messages=messages, count=len(messages), counts=console.counts())
    elif params.action == "clear":
        result["cleared"] = console.clear()
    else:
        console.monitoring = params.action == "monitor"
    result["monitoring"] = console.monitoring
    return result


@mcp_tool(
    name="browser_dialog",
    description=(
        "Control how alert, confirm and prompt dialogs are answered. Dialogs are answered as they open: "
        "'accept', 'dismiss' and 'handle' set the answer for the next dialog, 'setupHandler' sets the default."
    ),
    category="advanced",
    input_model=DialogInput,
    feature_flag="enable_advanced_tools",
)
async def browser_dialog(params: DialogInput, context: ToolContext) -> Dict[str, Any]:
    dialogs = context.browser.capture(params.browser_id).dialogs
    if params.action == "accept":
        dialogs.set_next(True, params.prompt_text)
    elif params.action == "dismiss":
        dialogs.set_next(False)
    elif params.action == "handle":
        dialogs.set_next(params.accept, params.prompt_text)
    elif params.action == "setupHandler":
        response = params.default_response or DialogResponse(accept=params.accept, prompt_text=params.prompt_text)
        dialogs.set_default(response.accept, response.prompt_text)
    return {"success": True, "browserId": params.browser_id, "action": params.action, **dialogs.info()}


@mcp_tool(
    name="browser_file",
    description="Upload local files into a file input, download files into the downloads directory, and list downloads.",
    category="file",
    input_model=FileInput,
)
async def browser_file(params: FileInput, context: ToolContext) -> Dict[str, Any]:
    capture = context.browser.capture(params.browser_id)
    result: Dict[str, Any] = {"success": True, "browserId": params.browser_id, "action": params.action}

    if params.action == "upload":
        paths = [Path(name).expanduser().resolve() for name in params.files]
        missing = [str(path) for path in paths if not path.is_file()]
        if missing:
            raise InvalidArgumentsError(f"Files not found: {', '.join(missing)}", {"missing": missing})
        await context.browser.upload(params.browser_id, params.selector, [str(path) for path in paths],
                                     timeout=params.timeout / 1000)
        result["files"] = [str(path) for path in paths]
    elif params.action == "download":
        if params.url:
            ensure_allowed_protocol(params.url, context)
        suggested, payload = await context.browser.download(
            params.browser_id, url=params.url, selector=params.selector, timeout=params.timeout / 1000,
        )
        filename = params.file_name or suggested
        path = context.artifacts.save(payload, filename, "downloads")
        record = DownloadRecord(file_name=filename, path=str(path), size=len(payload), url=params.url)
        capture.downloads.append(record)
        result["download"] = record.to_dict()
    elif params.action == "getDownloads":
        result["downloads"] = [record.to_dict() for record in capture.downloads]
    else:
        result["cleared"] = len(capture.downloads)
        capture.downloads.clear()
    return result


@mcp_tool(
    name="browser_network",
    description="List, filter or clear captured network requests, pause or resume capturing, and read page timing.",
    category="network",
    input_model=NetworkInput,
)
async def browser_network(params: NetworkInput, context: ToolContext) -> Dict[str, Any]:
    network = context.browser.capture(params.browser_id).network
    result: Dict[str, Any] = {"success": True, "browserId": params.browser_id, "action": params.action}
    if params.action in ("list", "filter"):
        criteria = params.filter if params.action == "filter" else NetworkFilter()
        requests = network.query(criteria.url, criteria.method, criteria.status, criteria.resource_type, params.limit)
        result.update(requests=requests, count=len(requests), summary=network.summary())
    elif params.action == "clear":
        result["cleared"] = network.clear()
    elif params.action == "performance":
        result["performance"] = await context.browser.evaluate(params.browser_id, PERFORMANCE_SCRIPT)
    else:
        network.monitoring = params.action == "monitor"
    result["monitoring"] = network.monitoring
    return result
