"""
Tests for the API testing tools.
"""
import gzip
import json

import pytest
from pydantic import ValidationError

from browser_control.core.errors import (
    RateLimitedError,
    SessionLimitExceededError,
    SessionNotFoundError,
    ToolExecutionError,
)
from browser_control.tools.api import ApiRequestInput
from browser_control.utils.artifacts import ArtifactStore
from browser_control.utils.tool_decorator import ToolContext

from conftest import make_config, respond


async def run(registry, context, name, arguments):
    descriptor = registry.tools[name]
    return await descriptor.invoke(descriptor.validate(arguments), context)


class TestApiRequestInput:
    def test_url_or_chain_is_required(self):
        with pytest.raises(ValidationError):
            ApiRequestInput.model_validate({"method": "GET"})

    def test_url_and_chain_are_exclusive(self):
        with pytest.raises(ValidationError):
            ApiRequestInput.model_validate({
                "url": "http://api.test/",
                "chain": [{"name": "a", "url": "http://api.test/a"}],
            })

    def test_unknown_method_is_rejected(self):
        with pytest.raises(ValidationError):
            ApiRequestInput.model_validate({"url": "http://api.test/", "method": "FETCH"})

    def test_invalid_body_regex_is_rejected(self):
        with pytest.raises(ValidationError) as excinfo:
            ApiRequestInput.model_validate({"url": "http://api.test/", "expect": {"bodyRegex": "order ("}})

        assert "Invalid regular expression" in str(excinfo.value)

    def test_invalid_body_regex_in_a_chain_step_is_rejected(self):
        with pytest.raises(ValidationError):
            ApiRequestInput.model_validate({"chain": [
                {"name": "a", "url": "http://api.test/a", "expect": {"bodyRegex": "[unclosed"}},
            ]})

    def test_valid_body_regex_is_kept(self):
        params = ApiRequestInput.model_validate({"url": "http://api.test/", "expect": {"bodyRegex": r"order \d+"}})

        assert params.expect.to_expectation().body_regex == r"order \d+"


class TestApiRequest:
    @pytest.mark.asyncio
    async def test_single_request(self, registry, context, transport):
        transport.queue(respond(201, {"id": 42}))

        result = await run(registry, context, "api_request", {
            "method": "POST",
            "url": "http://api.test/items",
            "headers": {"Authorization": "Bearer t"},
            "data": {"name": "widget"},
            "expect": {"status": 201, "contentType": "application/json", "body": {"id": 42}},
            "timeout": 2500,
        })

        assert result["mode"] == "single"
        assert result["result"]["ok"] is True
        assert result["result"]["status"] == 201
        assert result["result"]["validation"]["passed"] is True
        assert transport.calls[0]["body"] == {"name": "widget"}
        assert transport.calls[0]["timeout"] == 2.5

    @pytest.mark.asyncio
    async def test_failed_expectation_is_reported_not_ok(self, registry, context, transport):
        transport.queue(respond(200, {"status": "degraded"}))

        result = await run(registry, context, "api_request", {
            "url": "http://api.test/health",
            "expect": {"body": {"status": "ok"}},
        })

        assert result["success"] is True
        assert result["result"]["ok"] is False
        assert result["result"]["validation"]["body"]["matched"] is False

    @pytest.mark.asyncio
    async def test_requests_share_a_named_session(self, registry, context, session_manager):
        first = await run(registry, context, "api_request", {"sessionId": "suite", "url": "http://api.test/1"})
        second = await run(registry, context, "api_request", {"sessionId": "suite", "url": "http://api.test/2"})

        assert first["sessionId"] == second["sessionId"] == "suite"
        assert session_manager.status("suite")["requestCount"] == 2

    @pytest.mark.asyncio
    async def test_chain(self, registry, context, transport):
        transport.queue(respond(200, {"data": {"token": "xyz"}}), respond(200, {"orders": []}))

        result = await run(registry, context, "api_request", {
            "chain": [
                {"name": "auth", "method": "POST", "url": "http://api.test/auth", "extract": {"token": "data.token"}},
                {"name": "orders", "url": "http://api.test/orders",
                 "headers": {"Authorization": "Bearer {{token}}"}, "expect": {"status": 200}},
            ],
        })

        assert result["mode"] == "chain"
        assert [step["name"] for step in result["results"]] == ["auth", "orders"]
        assert result["results"][0]["extracted"] == {"token": "xyz"}
        assert transport.calls[1]["headers"] == {"Authorization": "Bearer xyz"}

    @pytest.mark.asyncio
    async def test_session_limit_surfaces(self, registry, context, session_manager):
        limit = session_manager.settings.session_limit
        for i in range(limit):
            session_manager.get_or_create(f"s{i}")

        with pytest.raises(SessionLimitExceededError):
            await run(registry, context, "api_request", {"url": "http://api.test/"})

    @pytest.mark.asyncio
    async def test_rate_limited_call_does_not_create_a_session(self, registry, config, browser, manager_factory,
                                                                 tmp_path, transport):
        manager = manager_factory(rate_limit_enabled=True, max_requests_per_second=1)
        context = ToolContext(config=config, session_manager=manager, browser=browser,
                              artifacts=ArtifactStore(tmp_path))
        await run(registry, context, "api_request", {"sessionId": "first", "url": "http://api.test/"})

        with pytest.raises(RateLimitedError):
            await run(registry, context, "api_request", {"sessionId": "second", "url": "http://api.test/"})
        with pytest.raises(RateLimitedError):
            await run(registry, context, "api_request", {"url": "http://api.test/"})

        assert [session["sessionId"] for session in manager.list_sessions()] == ["first"]
        assert len(transport.calls) == 1

    @pytest.mark.asyncio
    async def test_session_scoped_limit_checks_the_named_session(self, registry, config, browser, manager_factory,
                                                                   tmp_path):
        manager = manager_factory(rate_limit_enabled=True, max_requests_per_second=1, rate_limit_scope="session")
        context = ToolContext(config=config, session_manager=manager, browser=browser,
                              artifacts=ArtifactStore(tmp_path))
        await run(registry, context, "api_request", {"sessionId": "a", "url": "http://api.test/"})

        with pytest.raises(RateLimitedError):
            await run(registry, context, "api_request", {"sessionId": "a", "url": "http://api.test/"})
        await run(registry, context, "api_request", {"sessionId": "b", "url": "http://api.test/"})

        assert len(manager.list_sessions()) == 2


class TestSessionTools:
    @pytest.mark.asyncio
    async def test_status(self, registry, context):
        await run(registry, context, "api_request", {"sessionId": "st", "url": "http://api.test/"})

        status = await run(registry, context, "api_session_status", {"sessionId": "st", "includeDetails": False})

        assert status["sessionId"] == "st"
        assert status["status"] == "idle"
        assert status["history"][0]["request"] == {
            "method": "GET", "url": "http://api.test/", "hasHeaders": False, "hasBody": False,
        }

    @pytest.mark.asyncio
    async def test_report_is_written_to_the_reports_dir(self, registry, context, tmp_path):
        await run(registry, context, "api_request", {"sessionId": "rep", "url": "http://api.test/"})

        result = await run(registry, context, "api_session_report", {
            "sessionId": "rep",
            "outputPath": "nightly.html",
            "title": "Nightly",
            "theme": "dark",
        })

        path = tmp_path / "reports" / "nightly.html"
        assert result["reportPath"] == str(path.resolve())
        assert "<h1>Nightly</h1>" in path.read_text()
        assert result["sessionSummary"]["totalRequests"] == 1

    @pytest.mark.asyncio
    async def test_report_json_format(self, registry, context, tmp_path):
        await run(registry, context, "api_request", {"sessionId": "rep", "url": "http://api.test/"})

        result = await run(registry, context, "api_session_report", {"sessionId": "rep", "format": "json"})

        assert result["format"] == "json"
        assert result["reportPath"].endswith(".json")
        with open(result["reportPath"]) as f:
            assert json.load(f)["session"]["sessionId"] == "rep"

    @pytest.mark.asyncio
    async def test_report_compression(self, registry, context, manager_factory, tmp_path):
        config = make_config(tmp_path, report={"max_report_size": 100})
        manager = manager_factory(config)
        small_context = ToolContext(config, manager, context.browser, ArtifactStore(tmp_path))
        manager.get_or_create("big")

        result = await run(registry, small_context, "api_session_report", {"sessionId": "big", "outputPath": "big.html"})

        assert result["compressed"] is True
        assert result["reportPath"].endswith("big.html.gz")
        with open(result["reportPath"], "rb") as f:
            assert b"<!DOCTYPE html>" in gzip.decompress(f.read())

    @pytest.mark.asyncio
    async def test_report_path_cannot_escape(self, registry, context):
        await run(registry, context, "api_request", {"sessionId": "rep", "url": "http://api.test/"})

        with pytest.raises(ToolExecutionError):
            await run(registry, context, "api_session_report", {"sessionId": "rep", "outputPath": "../../x.html"})

    @pytest.mark.asyncio
    async def test_close(self, registry, context):
        await run(registry, context, "api_request", {"sessionId": "bye", "url": "http://api.test/"})

        result = await run(registry, context, "api_session_close", {"sessionId": "bye"})

        assert result["session"]["status"] == "closed"
        with pytest.raises(SessionNotFoundError):
            await run(registry, context, "api_session_status", {"sessionId": "bye"})
