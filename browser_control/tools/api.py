"""
API testing tools - HTTP requests and request chains with validation, backed by sessions
"""
import logging
import re
import time
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from browser_control.sessions.models import ChainStep, Expectation, HistoryEntry, RequestSpec
from browser_control.sessions.report import ReportOptions
from browser_control.utils.tool_decorator import ToolContext, mcp_tool

# Configure logging
logger = logging.getLogger(__name__)

HttpMethod = Literal["GET", "POST", "PUT", "DELETE", "PATCH", "HEAD", "OPTIONS"]


class ApiToolInput(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="forbid")


class ExpectInput(ApiToolInput):
    """Expectations checked against the response."""
    status: Optional[int] = Field(default=None, ge=100, le=599, description="Expected HTTP status code")
    content_type: Optional[str] = Field(default=None, description="Expected Content-Type (substring match)")
    body: Any = Field(default=None, description="Expected body: exact string or partial object match")
    body_regex: Optional[str] = Field(default=None, description="Regex the body must match")

    @field_validator("body_regex")
    @classmethod
    def check_body_regex(cls, value: Optional[str]) -> Optional[str]:
        if value is not None:
            try:
                re.compile(value)
            except re.error as e:
                raise ValueError(f"Invalid regular expression: {e}") from e
        return value

    def to_expectation(self) -> Expectation:
        return Expectation(
            status=self.status,
            content_type=self.content_type,
            body=self.body,
            body_regex=self.body_regex,
        )


class ChainStepInput(ApiToolInput):
    name: str = Field(min_length=1, description="Step name, used to reference its results as {{name.field}}")
    url: str = Field(min_length=1, description="Request URL, may contain {{templates}}")
    method: HttpMethod = "GET"
    headers: Dict[str, str] = Field(default_factory=dict)
    data: Any = Field(default=None, description="Request body")
    expect: Optional[ExpectInput] = None
    extract: Dict[str, str] = Field(
        default_factory=dict,
        description="Variables to extract from the response body, as name -> dot path",
    )

    def to_chain_step(self) -> ChainStep:
        return ChainStep(
            name=self.name,
            url=self.url,
            method=self.method,
            headers=dict(self.headers),
            body=self.data,
            expect=self.expect.to_expectation() if self.expect else None,
            extract=dict(self.extract),
        )


class ApiRequestInput(ApiToolInput):
    """Input model for api_request: a single request or a chain."""
    session_id: Optional[str] = Field(
        default=None,
        description="Session to record the request in; a new session is created when omitted or unknown",
    )
    method: HttpMethod = "GET"
    url: Optional[str] = Field(default=None, description="Request URL (single request mode)")
    headers: Dict[str, str] = Field(default_factory=dict)
    data: Any = Field(default=None, description="Request body")
    expect: Optional[ExpectInput] = None
    timeout: Optional[int] = Field(default=None, ge=1, description="Request timeout in milliseconds")
    max_retries: Optional[int] = Field(default=None, ge=0, le=10)
    chain: Optional[List[ChainStepInput]] = Field(
        default=None,
        min_length=1,
        description="Ordered requests; values extracted by earlier steps feed later ones",
    )

    @model_validator(mode="after")
    def check_mode(self):
        if self.chain and self.url:
            raise ValueError("Provide either 'url' or 'chain', not both")
        if not self.chain and not self.url:
            raise ValueError("'url' is required for single request mode")
        return self


class SessionStatusInput(ApiToolInput):
    session_id: str = Field(min_length=1)
    include_details: bool = Field(default=True, description="Include full request/response data")
    limit: Optional[int] = Field(default=None, ge=1, description="Only return the most recent entries")


class SessionReportInput(ApiToolInput):
    session_id: str = Field(min_length=1)
    output_path: Optional[str] = Field(
        default=None,
        description="File name under the reports directory; a timestamped name is used when omitted",
    )
    title: str = "API Test Session Report"
    format: Optional[Literal["html", "json", "markdown"]] = None
    theme: Optional[Literal["light", "dark", "auto"]] = None
    include_request_data: Optional[bool] = None
    include_response_data: Optional[bool] = None
    include_timing: Optional[bool] = None


class SessionCloseInput(ApiToolInput):
    session_id: str = Field(min_length=1)


def format_entry(entry: HistoryEntry) -> Dict[str, Any]:
    response = entry.response
    passed = entry.validation_passed
    return {
        "ok": entry.succeeded and passed is not False,
        "status": response.status if response else None,
        "contentType": response.content_type if response else None,
        "body": response.body if response else None,
        "latency": round(response.latency, 6) if response else None,
        "attempts": entry.attempt,
        "validation": entry.validation,
    }


@mcp_tool(
    name="api_request",
    description=(
        "Execute HTTP API requests with response validation and request chaining. "
        "Requests are recorded in a session for later status checks and reports."
    ),
    category="api",
    input_model=ApiRequestInput,
)
async def api_request(params: ApiRequestInput, context: ToolContext) -> Dict[str, Any]:
    manager = context.session_manager
    manager.check_rate_limit(params.session_id)
    session = manager.get_or_create(params.session_id)
    timeout = params.timeout / 1000 if params.timeout is not None else None
    started = time.monotonic()

    if params.chain:
        steps = [step.to_chain_step() for step in params.chain]
        results = await manager.execute_chain(session, steps, timeout)
        return {
            "success": True,
            "sessionId": session.id,
            "mode": "chain",
            "results": [
                {"name": result.name, **format_entry(result.entry), "extracted": result.extracted}
                for result in results
            ],
            "requestCount": len(results),
            "executionTime": round(time.monotonic() - started, 6),
        }

    spec = RequestSpec(
        method=params.method,
        url=params.url,
        headers=dict(params.headers),
        body=params.data,
        timeout=timeout,
        max_retries=params.max_retries,
        expect=params.expect.to_expectation() if params.expect else None,
    )
    entry = await manager.execute(session, spec)
    return {
        "success": True,
        "sessionId": session.id,
        "mode": "single",
        "result": format_entry(entry),
        "requestCount": 1,
        "executionTime": round(time.monotonic() - started, 6),
    }


@mcp_tool(
    name="api_session_status",
    description="Get status, metrics and recent history of an API test session.",
    category="api",
    input_model=SessionStatusInput,
)
async def api_session_status(params: SessionStatusInput, context: ToolContext) -> Dict[str, Any]:
    include_details = params.include_details and context.config.tools.api_session_status.include_detailed_logs
    return context.session_manager.status(params.session_id, include_details, params.limit)


@mcp_tool(
    name="api_session_report",
    description="Render an HTML, JSON or Markdown report of an API test session and save it to disk.",
    category="api",
    input_model=SessionReportInput,
)
async def api_session_report(params: SessionReportInput, context: ToolContext) -> Dict[str, Any]:
    settings = context.config.tools.api_session_report

    def pick(value, default):
        return default if value is None else value

    options = ReportOptions(
        format=pick(params.format, settings.default_format),
        theme=pick(params.theme, settings.default_theme),
        title=params.title,
        include_request_data=pick(params.include_request_data, settings.include_request_data),
        include_response_data=pick(params.include_response_data, settings.include_response_data),
        include_timing=pick(params.include_timing, settings.include_timing),
    )
    report = context.session_manager.report(params.session_id, options, params.output_path)
    path = context.artifacts.save(report.content, report.filename, settings.output_subdir)
    return {
        "success": True,
        "sessionId": report.session_id,
        "reportPath": str(path),
        "format": options.format,
        "fileSize": report.size,
        "compressed": report.compressed,
        "sessionSummary": report.summary,
    }


@mcp_tool(
    name="api_session_close",
    description="Close an API test session and return its final status.",
    category="api",
    input_model=SessionCloseInput,
)
async def api_session_close(params: SessionCloseInput, context: ToolContext) -> Dict[str, Any]:
    return {"success": True, "session": context.session_manager.close(params.session_id)}
