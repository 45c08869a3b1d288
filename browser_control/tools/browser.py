"""
Browser automation tools - launch, drive and capture Chromium instances
"""
import base64
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Literal, Optional
from urllib.parse import urlparse

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

from browser_control.core.errors import InvalidArgumentsError
from browser_control.utils.tool_decorator import ToolContext, mcp_tool

# Configure logging
logger = logging.getLogger(__name__)

LocatorType = Literal["css", "xpath", "text", "role", "label", "placeholder", "testId", "altText"]


class BrowserToolInput(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="forbid")


class LaunchInput(BrowserToolInput):
    headless: Optional[bool] = Field(
        default=None,
        description="Launch without a UI; set to false for manual login. Defaults to the server setting",
    )
    user_data_dir: Optional[str] = Field(
        default=None,
        description="Directory for a persistent profile (cookies, logins); a temporary profile is used otherwise",
    )


class BrowserInput(BrowserToolInput):
    browser_id: str = Field(min_length=1, description="The ID of the browser instance")


class NavigateInput(BrowserInput):
    url: str = Field(min_length=1, description="The URL to navigate to")


class ElementInput(BrowserInput):
    locator_type: LocatorType = Field(default="css", description="The type of locator to use")
    locator_value: str = Field(min_length=1, description="CSS selector, XPath, text content, etc.")
    timeout: int = Field(default=30000, ge=1, description="Timeout in milliseconds")


class ClickInput(ElementInput):
    button: Literal["left", "right", "middle"] = "left"
    force: bool = Field(default=False, description="Click even if the element is not actionable")


class TypeInput(ElementInput):
    text: str = Field(description="The text to type into the element")
    delay: int = Field(default=0, ge=0, description="Delay between keystrokes in milliseconds")
    clear: bool = Field(default=True, description="Clear the field before typing")


class ScreenshotInput(BrowserInput):
    file_name: Optional[str] = Field(
        default=None,
        description="File name under the screenshots directory; a timestamped name is used when omitted",
    )
    save_to_disk: bool = Field(default=True, description="Set to false to only receive base64 data")
    full_page: bool = Field(default=False, description="Capture the full scrollable page")
    element: Optional[str] = Field(default=None, description="CSS selector of a single element to capture")
    format: Optional[Literal["png", "jpeg"]] = None
    quality: Optional[int] = Field(default=None, ge=0, le=100, description="JPEG quality, ignored for PNG")


class DomInput(BrowserInput):
    action: Literal["content", "click", "type"] = Field(
        default="content",
        description="'content' returns the page (or element) HTML; 'click' and 'type' act on the selector",
    )
    selector: Optional[str] = Field(default=None, description="CSS selector of the element")
    text: Optional[str] = Field(default=None, description="Text to type (for the 'type' action)")

    @model_validator(mode="after")
    def check_action(self):
        if self.action in ("click", "type") and not self.selector:
            raise ValueError(f"'selector' is required for the '{self.action}' action")
        if self.action == "type" and self.text is None:
            raise ValueError("'text' is required for the 'type' action")
        return self


def timestamped_name(prefix: str, extension: str) -> str:
    stamp = datetime.now(timezone.utc).strftime("%Y%m%d-%H%M%S-%f")
    return f"{prefix}-{stamp}.{extension}"


def ensure_allowed_protocol(url: str, context: ToolContext):
    allowed = context.config.tools.browser.allowed_protocols
    scheme = urlparse(url).scheme
    if scheme not in allowed:
        raise InvalidArgumentsError(
            f"Protocol '{scheme}' is not allowed for navigation",
            {"url": url, "allowed_protocols": list(allowed)},
        )


@mcp_tool(
    name="browser_launch",
    description="Launches a new web browser instance and returns its browserId. Use this before any other browser action.",
    category="browser",
    input_model=LaunchInput,
)
async def browser_launch(params: LaunchInput, context: ToolContext) -> Dict[str, Any]:
    return await context.browser.launch(params.headless, params.user_data_dir)


@mcp_tool(
    name="browser_navigate",
    description="Navigates a browser instance to a URL.",
    category="browser",
    input_model=NavigateInput,
)
async def browser_navigate(params: NavigateInput, context: ToolContext) -> Dict[str, Any]:
    ensure_allowed_protocol(params.url, context)
    page = await context.browser.navigate(params.browser_id, params.url)
    return {"success": True, "browserId": params.browser_id, **page}


@mcp_tool(
    name="browser_click",
    description="Clicks an element located by CSS, XPath, text, role, label, placeholder, test id or alt text.",
    category="browser",
    input_model=ClickInput,
)
async def browser_click(params: ClickInput, context: ToolContext) -> Dict[str, Any]:
    await context.browser.click(
        params.browser_id,
        params.locator_type,
        params.locator_value,
        timeout=params.timeout / 1000,
        button=params.button,
        force=params.force,
    )
    return {
        "success": True,
        "browserId": params.browser_id,
        "locatorType": params.locator_type,
        "locatorValue": params.locator_value,
    }


@mcp_tool(
    name="browser_type",
    description="Types text into an input element.",
    category="browser",
    input_model=TypeInput,
)
async def browser_type(params: TypeInput, context: ToolContext) -> Dict[str, Any]:
    await context.browser.type(
        params.browser_id,
        params.locator_type,
        params.locator_value,
        params.text,
        timeout=params.timeout / 1000,
        delay=params.delay,
        clear=params.clear,
    )
    return {
        "success": True,
        "browserId": params.browser_id,
        "locatorType": params.locator_type,
        "locatorValue": params.locator_value,
        "text": params.text,
    }


@mcp_tool(
    name="browser_screenshot",
    description="Captures a screenshot of the page or of a single element, optionally saving it to disk.",
    category="browser",
    input_model=ScreenshotInput,
)
async def browser_screenshot(params: ScreenshotInput, context: ToolContext) -> Dict[str, Any]:
    image_format = params.format or context.config.tools.browser.screenshot_format
    image = await context.browser.screenshot(
        params.browser_id,
        full_page=params.full_page,
        selector=params.element,
        image_format=image_format,
        quality=params.quality,
    )
    result: Dict[str, Any] = {
        "success": True,
        "browserId": params.browser_id,
        "format": image_format,
        "size": len(image),
        "base64": base64.b64encode(image).decode("ascii"),
    }
    if params.save_to_disk:
        filename = params.file_name or timestamped_name("screenshot", image_format)
        result["path"] = str(context.artifacts.save(image, filename, "screenshots"))
    return result


@mcp_tool(
    name="browser_dom",
    description="Reads the HTML of the current page or an element, or clicks/types on an element by CSS selector.",
    category="browser",
    input_model=DomInput,
)
async def browser_dom(params: DomInput, context: ToolContext) -> Dict[str, Any]:
    browser = context.browser
    timeout = context.config.tools.browser.navigation_timeout
    if params.action == "click":
        await browser.click(params.browser_id, "css", params.selector, timeout=timeout)
        return {"success": True, "browserId": params.browser_id, "action": "click"}
    if params.action == "type":
        await browser.type(params.browser_id, "css", params.selector, params.text, timeout=timeout)
        return {"success": True, "browserId": params.browser_id, "action": "type"}

    html = await browser.content(params.browser_id, params.selector)
    return {
        "success": True,
        "browserId": params.browser_id,
        "action": "content",
        "selector": params.selector,
        "html": html,
    }


@mcp_tool(
    name="browser_close",
    description="Closes a browser instance.",
    category="browser",
    input_model=BrowserInput,
)
async def browser_close(params: BrowserInput, context: ToolContext) -> Dict[str, Any]:
    await context.browser.close(params.browser_id)
    return {"success": True, "browserId": params.browser_id}
