"""
Browser backend used by the browser tool family.

The tools only need "launch instance -> perform action -> capture artifact ->
terminate instance"; PlaywrightBrowserBackend provides that with Chromium.
Each instance tracks its open tabs and captures console messages, network
traffic and dialogs from every page it opens.
"""
import asyncio
import functools
import logging
import time
import uuid
from dataclasses import dataclass, field
from pathlib import PurePosixPath
from typing import Any, Dict, Optional, Protocol, Sequence, Tuple
from urllib.parse import urlparse

import anyio
from playwright.async_api import Browser, BrowserContext, Error as PlaywrightError, Page, Playwright
from playwright.async_api import TimeoutError as PlaywrightTimeout
from playwright.async_api import async_playwright

from browser_control.browser.state import CaptureState
from browser_control.core.config import BrowserSettings
from browser_control.core.errors import ToolExecutionError

# Configure logging
logger = logging.getLogger(__name__)

LOCATOR_TYPES = ("css", "xpath", "text", "role", "label", "placeholder", "testId", "altText")


class BrowserBackend(Protocol):
    async def launch(self, headless: Optional[bool] = None, user_data_dir: Optional[str] = None) -> Dict[str, Any]:
        ...

    async def navigate(self, browser_id: str, url: str) -> Dict[str, Any]:
        ...

    async def click(self, browser_id: str, locator_type: str, locator_value: str,
                    timeout: float, button: str = "left", force: bool = False) -> None:
        ...

    async def type(self, browser_id: str, locator_type: str, locator_value: str, text: str,
                   timeout: float, delay: float = 0, clear: bool = True) -> None:
        ...

    async def screenshot(self, browser_id: str, full_page: bool = False, selector: Optional[str] = None,
                         image_format: str = "png", quality: Optional[int] = None) -> bytes:
        ...

    async def content(self, browser_id: str, selector: Optional[str] = None) -> str:
        ...

    async def close(self, browser_id: str) -> None:
        ...

    async def evaluate(self, browser_id: str, expression: str, selector: Optional[str] = None,
                       arg: Any = None, timeout: float = 30.0) -> Any:
        ...

    async def wait(self, browser_id: str, condition: str, value: Optional[str] = None,
                   timeout: float = 30.0, seconds: Optional[float] = None, state: str = "visible") -> Dict[str, Any]:
        ...

    async def tabs(self, browser_id: str, action: str, tab_id: Optional[str] = None,
                   url: Optional[str] = None) -> Dict[str, Any]:
        ...

    async def keyboard(self, browser_id: str, action: str, text: Optional[str] = None, key: Optional[str] = None,
                       selector: Optional[str] = None, delay: float = 0) -> None:
        ...

    async def mouse(self, browser_id: str, action: str, x: Optional[float] = None, y: Optional[float] = None,
                    selector: Optional[str] = None, offset_x: float = 0, offset_y: float = 0,
                    drag_to: Optional[Tuple[float, float]] = None, button: str = "left",
                    modifiers: Sequence[str] = ()) -> Dict[str, Any]:
        ...

    async def pdf(self, browser_id: str, options: Dict[str, Any], wait_for_selector: Optional[str] = None,
                  timeout: float = 5.0) -> bytes:
        ...

    async def upload(self, browser_id: str, selector: str, files: Sequence[str], timeout: float) -> None:
        ...

    async def download(self, browser_id: str, url: Optional[str] = None, selector: Optional[str] = None,
                       timeout: float = 30.0) -> Tuple[str, bytes]:
        ...

    def capture(self, browser_id: str) -> CaptureState:
        ...

    async def shutdown(self) -> None:
        ...


@dataclass
class BrowserInstance:
    browser_id: str
    context: BrowserContext
    browser: Optional[Browser] = None
    headless: bool = True
    user_data_dir: Optional[str] = None
    tabs: Dict[str, Page] = field(default_factory=dict)
    active_tab: Optional[str] = None
    capture: CaptureState = field(default_factory=CaptureState)
    tab_counter: int = 0

    @property
    def page(self) -> Page:
        page = self.tabs.get(self.active_tab)
        if page is None:
            raise ToolExecutionError(f"Browser {self.browser_id} has no open tab", {"browser_id": self.browser_id})
        return page

    def tab_id_for(self, page: Page) -> Optional[str]:
        for tab_id, tab in self.tabs.items():
            if tab is page:
                return tab_id
        return None


def translate_errors(action: str):
    """Turn Playwright failures into tool execution errors."""
    def decorator(func):
        @functools.wraps(func)
        async def wrapper(self, browser_id, *args, **kwargs):
            try:
                return await func(self, browser_id, *args, **kwargs)
            except PlaywrightTimeout as e:
                raise ToolExecutionError(
                    f"Timed out during {action} in browser {browser_id}: {e}",
                    {"browser_id": browser_id, "action": action},
                ) from e
            except PlaywrightError as e:
                raise ToolExecutionError(
                    f"Failed to {action} in browser {browser_id}: {e}",
                    {"browser_id": browser_id, "action": action},
                ) from e
        return wrapper
    return decorator


class PlaywrightBrowserBackend:
    """Chromium instances driven through Playwright, keyed by browser id."""

    def __init__(self, settings: BrowserSettings):
        self.settings = settings
        self.instances: Dict[str, BrowserInstance] = {}
        self._playwright: Optional[Playwright] = None
        self._lock = asyncio.Lock()

    async def _driver(self) -> Playwright:
        if self._playwright is None:
            self._playwright = await async_playwright().start()
        return self._playwright

    def _instance(self, browser_id: str) -> BrowserInstance:
        instance = self.instances.get(browser_id)
        if instance is None:
            raise ToolExecutionError(
                f"Browser instance '{browser_id}' not found. Please launch a browser first using browser_launch.",
                {"browser_id": browser_id, "available": list(self.instances)},
            )
        return instance

    def _locate(self, page: Page, locator_type: str, value: str):
        if locator_type == "css":
            return page.locator(value)
        if locator_type == "xpath":
            return page.locator(f"xpath={value}")
        if locator_type == "text":
            return page.get_by_text(value)
        if locator_type == "role":
            return page.get_by_role(value)
        if locator_type == "label":
            return page.get_by_label(value)
        if locator_type == "placeholder":
            return page.get_by_placeholder(value)
        if locator_type == "testId":
            return page.get_by_test_id(value)
        if locator_type == "altText":
            return page.get_by_alt_text(value)
        raise ToolExecutionError(f"Unknown locator type: {locator_type}", {"locator_type": locator_type})

    def _attach_page(self, instance: BrowserInstance, page: Page) -> str:
        """Track a page as a tab and wire its capture listeners; idempotent."""
        existing = instance.tab_id_for(page)
        if existing is not None:
            return existing
        instance.tab_counter += 1
        tab_id = f"tab-{instance.tab_counter}"
        instance.tabs[tab_id] = page
        capture = instance.capture

        def on_console(message):
            location = message.location or {}
            capture.console.record(message.type, message.text, location.get("url"),
                                   location.get("lineNumber"), location.get("columnNumber"), tab_id)

        def on_response(response):
            request = response.request
            started = request.timing.get("responseStart", -1)
            capture.network.record(request.url, request.method, request.resource_type, response.status,
                                   response.status_text, duration_ms=started if started >= 0 else None)

        def on_request_failed(request):
            capture.network.record(request.url, request.method, request.resource_type, failure=request.failure)

        async def on_dialog(dialog):
            accept, prompt_text = capture.dialogs.respond(dialog.type, dialog.message, dialog.default_value)
            try:
                if not accept:
                    await dialog.dismiss()
                elif dialog.type == "prompt":
                    await dialog.accept(prompt_text)
                else:
                    await dialog.accept()
            except PlaywrightError as e:
                logger.warning(f"Could not answer {dialog.type} dialog in {instance.browser_id}: {e}")

        def on_close(closed_page):
            self._forget_tab(instance, tab_id)

        page.on("console", on_console)
        page.on("response", on_response)
        page.on("requestfailed", on_request_failed)
        page.on("dialog", on_dialog)
        page.on("close", on_close)
        logger.debug(f"Tracking {tab_id} in browser {instance.browser_id}")
        return tab_id

    def _forget_tab(self, instance: BrowserInstance, tab_id: str):
        if instance.tabs.pop(tab_id, None) is None:
            return
        if instance.active_tab == tab_id:
            instance.active_tab = next(reversed(list(instance.tabs)), None)

    def _tab(self, instance: BrowserInstance, tab_id: Optional[str]) -> Tuple[str, Page]:
        tab_id = tab_id or instance.active_tab
        page = instance.tabs.get(tab_id)
        if page is None:
            raise ToolExecutionError(
                f"Tab '{tab_id}' not found in browser {instance.browser_id}",
                {"browser_id": instance.browser_id, "tab_id": tab_id, "available": list(instance.tabs)},
            )
        return tab_id, page

    async def launch(self, headless: Optional[bool] = None, user_data_dir: Optional[str] = None) -> Dict[str, Any]:
        headless = self.settings.default_headless if headless is None else headless
        async with self._lock:
            if len(self.instances) >= self.settings.max_instances:
                raise ToolExecutionError(
                    f"Maximum of {self.settings.max_instances} browser instances reached",
                    {"max_instances": self.settings.max_instances},
                )
            driver = await self._driver()
            launch_timeout = self.settings.launch_timeout * 1000
            browser = None
            try:
                if user_data_dir:
                    context = await driver.chromium.launch_persistent_context(
                        user_data_dir,
                        headless=headless,
                        args=list(self.settings.chrome_flags),
                        timeout=launch_timeout,
                    )
                else:
                    browser = await driver.chromium.launch(
                        headless=headless,
                        args=list(self.settings.chrome_flags),
                        timeout=launch_timeout,
                    )
                    context = await browser.new_context(viewport={'width': 1920, 'height': 1080})
                page = context.pages[0] if context.pages else await context.new_page()
            except PlaywrightError as e:
                raise ToolExecutionError(f"Failed to launch browser: {e}") from e

            browser_id = f"browser-{uuid.uuid4().hex[:12]}"
            instance = BrowserInstance(
                browser_id=browser_id,
                context=context,
                browser=browser,
                headless=headless,
                user_data_dir=user_data_dir,
            )
            instance.active_tab = self._attach_page(instance, page)
            context.on("page", lambda new_page: self._attach_page(instance, new_page))
            self.instances[browser_id] = instance
        logger.info(f"Launched browser {browser_id} (headless={headless})")
        return {"browserId": browser_id, "headless": headless, "userDataDir": user_data_dir}

    @translate_errors("navigate")
    async def navigate(self, browser_id: str, url: str) -> Dict[str, Any]:
        instance = self._instance(browser_id)
        try:
            response = await instance.page.goto(
                url, wait_until="load", timeout=self.settings.navigation_timeout * 1000
            )
        except PlaywrightTimeout:
            logger.warning("Initial page load timed out, trying with domcontentloaded")
            response = await instance.page.goto(
                url, wait_until="domcontentloaded", timeout=self.settings.navigation_timeout * 1000
            )
        return {
            "url": instance.page.url,
            "title": await instance.page.title(),
            "status": response.status if response is not None else None,
        }

    @translate_errors("click")
    async def click(self, browser_id: str, locator_type: str, locator_value: str,
                    timeout: float, button: str = "left", force: bool = False) -> None:
        instance = self._instance(browser_id)
        locator = self._locate(instance.page, locator_type, locator_value)
        await locator.first.click(timeout=timeout * 1000, button=button, force=force)

    @translate_errors("type")
    async def type(self, browser_id: str, locator_type: str, locator_value: str, text: str,
                   timeout: float, delay: float = 0, clear: bool = True) -> None:
        instance = self._instance(browser_id)
        locator = self._locate(instance.page, locator_type, locator_value).first
        if clear:
            await locator.fill("", timeout=timeout * 1000)
        await locator.press_sequentially(text, delay=delay, timeout=timeout * 1000)

    @translate_errors("screenshot")
    async def screenshot(self, browser_id: str, full_page: bool = False, selector: Optional[str] = None,
                         image_format: str = "png", quality: Optional[int] = None) -> bytes:
        instance = self._instance(browser_id)
        options: Dict[str, Any] = {"type": image_format}
        if quality is not None and image_format == "jpeg":
            options["quality"] = quality
        if selector:
            return await instance.page.locator(selector).first.screenshot(**options)
        return await instance.page.screenshot(full_page=full_page, **options)

    @translate_errors("read DOM")
    async def content(self, browser_id: str, selector: Optional[str] = None) -> str:
        instance = self._instance(browser_id)
        if selector:
            return await instance.page.locator(selector).first.evaluate("element => element.outerHTML")
        return await instance.page.content()

    @translate_errors("evaluate script")
    async def evaluate(self, browser_id: str, expression: str, selector: Optional[str] = None,
                       arg: Any = None, timeout: float = 30.0) -> Any:
        page = self._instance(browser_id).page
        if selector:
            return await page.locator(selector).first.evaluate(expression, arg, timeout=timeout * 1000)
        try:
            return await asyncio.wait_for(page.evaluate(expression, arg), timeout)
        except asyncio.TimeoutError as e:
            raise ToolExecutionError(
                f"Script in browser {browser_id} did not finish within {timeout} seconds",
                {"browser_id": browser_id, "action": "evaluate script"},
            ) from e

    @translate_errors("wait")
    async def wait(self, browser_id: str, condition: str, value: Optional[str] = None,
                   timeout: float = 30.0, seconds: Optional[float] = None, state: str = "visible") -> Dict[str, Any]:
        page = self._instance(browser_id).page
        ms = timeout * 1000
        started = time.monotonic()
        if condition == "time":
            await asyncio.sleep(min(seconds or 0, timeout))
        elif condition == "element":
            await page.wait_for_selector(value, state=state, timeout=ms)
        elif condition == "text":
            await page.get_by_text(value).first.wait_for(state="visible", timeout=ms)
        elif condition == "textGone":
            await page.get_by_text(value).first.wait_for(state="hidden", timeout=ms)
        elif condition == "url":
            if "*" in value:
                await page.wait_for_url(value, timeout=ms)
            else:
                await page.wait_for_url(lambda url: value in url, timeout=ms)
        elif condition == "networkIdle":
            await page.wait_for_load_state("networkidle", timeout=ms)
        elif condition == "domContentLoaded":
            await page.wait_for_load_state("domcontentloaded", timeout=ms)
        elif condition == "load":
            await page.wait_for_load_state("load", timeout=ms)
        else:
            raise ToolExecutionError(f"Unknown wait condition: {condition}", {"condition": condition})
        return {"waitedMs": round((time.monotonic() - started) * 1000, 3), "url": page.url}

    async def _tab_info(self, instance: BrowserInstance, tab_id: str) -> Dict[str, Any]:
        page = instance.tabs[tab_id]
        return {
            "tabId": tab_id,
            "url": page.url,
            "title": await page.title(),
            "active": tab_id == instance.active_tab,
        }

    @translate_errors("manage tabs")
    async def tabs(self, browser_id: str, action: str, tab_id: Optional[str] = None,
                   url: Optional[str] = None) -> Dict[str, Any]:
        instance = self._instance(browser_id)
        navigation_timeout = self.settings.navigation_timeout * 1000

        if action == "list":
            return {"tabs": [await self._tab_info(instance, known) for known in list(instance.tabs)]}

        if action in ("create", "duplicate"):
            source_url = url
            if action == "duplicate":
                source_url = self._tab(instance, tab_id)[1].url
            page = await instance.context.new_page()
            new_id = self._attach_page(instance, page)
            if source_url and source_url != "about:blank":
                await page.goto(source_url, timeout=navigation_timeout)
            instance.active_tab = new_id
            await page.bring_to_front()
            return {"tab": await self._tab_info(instance, new_id)}

        target_id, page = self._tab(instance, tab_id)
        if action == "close":
            if len(instance.tabs) == 1:
                raise ToolExecutionError(
                    "Cannot close the last tab; use browser_close to close the browser",
                    {"browser_id": browser_id, "tab_id": target_id},
                )
            await page.close()
            self._forget_tab(instance, target_id)
            return {"closed": target_id, "activeTab": instance.active_tab}
        if action == "switch":
            instance.active_tab = target_id
            await page.bring_to_front()
        elif action == "refresh":
            await page.reload(timeout=navigation_timeout)
        elif action == "goBack":
            await page.go_back(timeout=navigation_timeout)
        elif action == "goForward":
            await page.go_forward(timeout=navigation_timeout)
        else:
            raise ToolExecutionError(f"Unknown tab action: {action}", {"action": action})
        return {"tab": await self._tab_info(instance, target_id)}

    @translate_errors("use the keyboard")
    async def keyboard(self, browser_id: str, action: str, text: Optional[str] = None, key: Optional[str] = None,
                       selector: Optional[str] = None, delay: float = 0) -> None:
        page = self._instance(browser_id).page
        if selector:
            await page.focus(selector)
        if action == "type":
            await page.keyboard.type(text, delay=delay)
        elif action in ("press", "shortcut"):
            await page.keyboard.press(key, delay=delay)
        elif action == "down":
            await page.keyboard.down(key)
        elif action == "up":
            await page.keyboard.up(key)
        else:
            raise ToolExecutionError(f"Unknown keyboard action: {action}", {"action": action})

    @translate_errors("use the mouse")
    async def mouse(self, browser_id: str, action: str, x: Optional[float] = None, y: Optional[float] = None,
                    selector: Optional[str] = None, offset_x: float = 0, offset_y: float = 0,
                    drag_to: Optional[Tuple[float, float]] = None, button: str = "left",
                    modifiers: Sequence[str] = ()) -> Dict[str, Any]:
        page = self._instance(browser_id).page
        if selector:
            box = await page.locator(selector).first.bounding_box()
            if box is None:
                raise ToolExecutionError(f"Element is not visible: {selector}", {"selector": selector})
            x = box["x"] + box["width"] / 2 + offset_x
            y = box["y"] + box["height"] / 2 + offset_y

        for modifier in modifiers:
            await page.keyboard.down(modifier)
        try:
            if action == "click":
                await page.mouse.click(x, y, button=button)
            elif action == "rightClick":
                await page.mouse.click(x, y, button="right")
            elif action == "doubleClick":
                await page.mouse.dblclick(x, y, button=button)
            elif action in ("move", "hover"):
                await page.mouse.move(x, y)
            elif action == "drag":
                await page.mouse.move(x, y)
                await page.mouse.down(button=button)
                await page.mouse.move(drag_to[0], drag_to[1], steps=10)
                await page.mouse.up(button=button)
            else:
                raise ToolExecutionError(f"Unknown mouse action: {action}", {"action": action})
        finally:
            for modifier in reversed(list(modifiers)):
                await page.keyboard.up(modifier)
        return {"x": x, "y": y}

    @translate_errors("print PDF")
    async def pdf(self, browser_id: str, options: Dict[str, Any], wait_for_selector: Optional[str] = None,
                  timeout: float = 5.0) -> bytes:
        page = self._instance(browser_id).page
        if wait_for_selector:
            await page.wait_for_selector(wait_for_selector, timeout=timeout * 1000)
        return await page.pdf(**options)

    @translate_errors("upload files")
    async def upload(self, browser_id: str, selector: str, files: Sequence[str], timeout: float) -> None:
        page = self._instance(browser_id).page
        await page.set_input_files(selector, list(files), timeout=timeout * 1000)

    @translate_errors("download")
    async def download(self, browser_id: str, url: Optional[str] = None, selector: Optional[str] = None,
                       timeout: float = 30.0) -> Tuple[str, bytes]:
        instance = self._instance(browser_id)
        if url:
            response = await instance.context.request.get(url, timeout=timeout * 1000)
            if not response.ok:
                raise ToolExecutionError(
                    f"Download of {url} failed with HTTP {response.status}",
                    {"url": url, "status": response.status},
                )
            return PurePosixPath(urlparse(url).path).name or "download", await response.body()

        page = instance.page
        async with page.expect_download(timeout=timeout * 1000) as download_info:
            await page.click(selector, timeout=timeout * 1000)
        download = await download_info.value
        path = await download.path()
        return download.suggested_filename, await anyio.Path(path).read_bytes()

    def capture(self, browser_id: str) -> CaptureState:
        return self._instance(browser_id).capture

    async def close(self, browser_id: str) -> None:
        async with self._lock:
            instance = self._instance(browser_id)
            del self.instances[browser_id]
        try:
            await instance.context.close()
            if instance.browser is not None:
                await instance.browser.close()
        except PlaywrightError as e:
            logger.warning(f"Error while closing browser {browser_id}: {e}")
        logger.info(f"Closed browser {browser_id}")

    async def shutdown(self) -> None:
        """Close every instance and stop the Playwright driver."""
        for browser_id in list(self.instances):
            await self.close(browser_id)
        if self._playwright is not None:
            await self._playwright.stop()
            self._playwright = None
