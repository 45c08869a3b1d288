"""
Response validation and request-chain templating.

Chain steps reference earlier results with jinja2 expressions such as
``{{ login.body.token }}`` or ``{{ items.0.id }}``. Missing values render as
an empty string; mappings and lists render as JSON.
"""
import json
import re
from typing import Any, Dict, Mapping, Optional

from jinja2 import ChainableUndefined, TemplateError
from jinja2.sandbox import SandboxedEnvironment

from browser_control.core.errors import InvalidArgumentsError
from browser_control.sessions.models import ChainStep, Expectation, RequestSpec, ResponseRecord


def lookup_path(value: Any, path: str) -> Any:
    """Follow a dot path through nested mappings and lists; None when missing."""
    for part in path.split("."):
        if isinstance(value, Mapping):
            value = value.get(part)
        elif isinstance(value, list) and part.isdigit() and int(part) < len(value):
            value = value[int(part)]
        else:
            return None
    return value


def _finalize(value: Any) -> Any:
    if value is None:
        return ""
    if isinstance(value, (dict, list)):
        return json.dumps(value)
    return value


class ChainTemplateEnvironment(SandboxedEnvironment):
    """Sandboxed environment where dotted access on mappings means key lookup."""

    def getattr(self, obj, attribute):
        if isinstance(obj, Mapping):
            return self.getitem(obj, attribute)
        return super().getattr(obj, attribute)


template_env = ChainTemplateEnvironment(undefined=ChainableUndefined, finalize=_finalize, autoescape=False,
                                        keep_trailing_newline=True)


def render_template(template: Any, variables: Mapping[str, Any]) -> Any:
    """Render a string template against chain variables; other values pass through."""
    if not isinstance(template, str) or ("{{" not in template and "{%" not in template):
        return template
    try:
        return template_env.from_string(template).render(variables)
    except TemplateError as e:
        raise InvalidArgumentsError(
            f"Invalid template {template[:100]!r}: {e}",
            {"template": template[:100], "variables": sorted(variables)},
        ) from e


def extract_fields(body: Any, extract: Mapping[str, str]) -> Dict[str, Any]:
    """Pull variables out of a response body using dot paths."""
    return {name: lookup_path(body, path) for name, path in extract.items()}


def render_step(step: ChainStep, variables: Mapping[str, Any], timeout: Optional[float]) -> RequestSpec:
    """Build the concrete request for a chain step."""
    return RequestSpec(
        method=step.method,
        url=render_template(step.url, variables),
        headers={key: render_template(value, variables) for key, value in step.headers.items()},
        body=render_template(step.body, variables),
        timeout=timeout,
        expect=step.expect,
    )


def _validate_body(body: Any, expect: Expectation) -> Dict[str, Any]:
    result = {"matched": True, "reason": "No body expectation set."}

    if expect.body is not None:
        if isinstance(body, dict) and isinstance(expect.body, dict):
            matched = all(body.get(key) == value for key, value in expect.body.items())
            result = {
                "matched": matched,
                "reason": "Partial/exact body match succeeded." if matched else "Partial/exact body match failed.",
            }
        elif isinstance(expect.body, str):
            matched = body == expect.body or json.dumps(body) == expect.body
            result = {
                "matched": matched,
                "reason": "Exact string match succeeded." if matched else "Exact string match failed.",
            }
        else:
            matched = body == expect.body
            result = {
                "matched": matched,
                "reason": "Exact match succeeded." if matched else "Body type mismatch.",
            }

    if expect.body_regex:
        target = body if isinstance(body, str) else json.dumps(body)
        matched = re.search(expect.body_regex, target) is not None
        result = {
            "matched": matched,
            "reason": "Regex match succeeded." if matched else "Regex match failed.",
        }

    return result


def validate_response(response: ResponseRecord, expect: Optional[Expectation]) -> Optional[Dict[str, Any]]:
    """Check a response against caller expectations; None when there are none."""
    if expect is None:
        return None
    status_ok = expect.status is None or response.status == expect.status
    content_type_ok = expect.content_type is None or expect.content_type in response.content_type
    body = _validate_body(response.body, expect)
    return {
        "status": status_ok,
        "contentType": content_type_ok,
        "body": body,
        "passed": status_ok and content_type_ok and body["matched"],
    }
