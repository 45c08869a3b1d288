"""
Tests for the browser tools over a fake backend.
"""
import base64

import pytest
from pydantic import ValidationError

from browser_control.core.errors import InvalidArgumentsError, ToolExecutionError
from browser_control.tools.browser import DomInput


async def run(registry, context, name, arguments=None):
    descriptor = registry.tools[name]
    return await descriptor.invoke(descriptor.validate(arguments or {}), context)


async def launch(registry, context):
    result = await run(registry, context, "browser_launch", {"headless": True})
    return result["browserId"]


@pytest.mark.asyncio
async def test_launch_navigate_close(registry, context, browser):
    browser_id = await launch(registry, context)

    page = await run(registry, context, "browser_navigate", {"browserId": browser_id, "url": "https://example.com"})
    assert page["title"] == "Example Domain"
    assert page["status"] == 200

    await run(registry, context, "browser_close", {"browserId": browser_id})
    assert browser.instances == {}


@pytest.mark.asyncio
async def test_disallowed_protocol(registry, context):
    browser_id = await launch(registry, context)

    with pytest.raises(InvalidArgumentsError) as excinfo:
        await run(registry, context, "browser_navigate", {"browserId": browser_id, "url": "file:///etc/passwd"})

    assert excinfo.value.data["allowed_protocols"] == ["http", "https"]


@pytest.mark.asyncio
async def test_click_and_type_pass_locators(registry, context, browser):
    browser_id = await launch(registry, context)

    await run(registry, context, "browser_click", {
        "browserId": browser_id, "locatorType": "role", "locatorValue": "button", "timeout": 5000,
    })
    await run(registry, context, "browser_type", {
        "browserId": browser_id, "locatorType": "placeholder", "locatorValue": "Email", "text": "ada@example.com",
    })

    assert browser.actions == [
        ("click", browser_id, "role", "button", 5.0),
        ("type", browser_id, "placeholder", "Email", "ada@example.com"),
    ]


@pytest.mark.asyncio
async def test_screenshot_is_saved_and_returned(registry, context, tmp_path):
    browser_id = await launch(registry, context)

    result = await run(registry, context, "browser_screenshot", {"browserId": browser_id, "fileName": "home.png"})

    saved = tmp_path / "screenshots" / "home.png"
    assert result["path"] == str(saved.resolve())
    assert saved.read_bytes() == base64.b64decode(result["base64"])
    assert result["format"] == "png"


@pytest.mark.asyncio
async def test_screenshot_without_saving(registry, context, tmp_path):
    browser_id = await launch(registry, context)

    result = await run(registry, context, "browser_screenshot", {"browserId": browser_id, "saveToDisk": False})

    assert "path" not in result
    assert not (tmp_path / "screenshots").exists()


@pytest.mark.asyncio
async def test_dom_content_and_actions(registry, context, browser):
    browser_id = await launch(registry, context)

    page = await run(registry, context, "browser_dom", {"browserId": browser_id})
    element = await run(registry, context, "browser_dom", {"browserId": browser_id, "selector": "#main"})
    await run(registry, context, "browser_dom", {"browserId": browser_id, "action": "click", "selector": "#go"})

    assert "<h1>Example Domain</h1>" in page["html"]
    assert element["selector"] == "#main"
    assert browser.actions[-1][:4] == ("click", browser_id, "css", "#go")


def test_dom_actions_need_a_selector():
    with pytest.raises(ValidationError):
        DomInput.model_validate({"browserId": "b", "action": "type", "selector": "#q"})
    with pytest.raises(ValidationError):
        DomInput.model_validate({"browserId": "b", "action": "click"})


@pytest.mark.asyncio
async def test_unknown_browser_id(registry, context):
    with pytest.raises(ToolExecutionError):
        await run(registry, context, "browser_navigate", {"browserId": "missing", "url": "https://example.com"})
