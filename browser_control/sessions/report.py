"""
Session report rendering.

Formats:
  - HTML (.html): styled, light/dark/auto theme
  - JSON (.json): machine-readable
  - Markdown (.md): plain text summary

Sections:
  1. Session summary
  2. Validation summary
  3. Timing analysis
  4. Request history
"""
import gzip
import json
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Sequence

from jinja2 import Environment, PackageLoader, select_autoescape

from browser_control.sessions.models import HistoryEntry, Session, to_iso

logger = logging.getLogger(__name__)

FORMAT_EXTENSIONS = {"html": "html", "json": "json", "markdown": "md"}
MEDIA_TYPES = {"html": "text/html", "json": "application/json", "markdown": "text/markdown"}

THEMES = {
    "light": {"bg": "#ffffff", "fg": "#1f2328", "card": "#f6f8fa", "border": "#d0d7de",
              "ok": "#1a7f37", "bad": "#cf222e", "muted": "#656d76"},
    "dark": {"bg": "#0d1117", "fg": "#e6edf3", "card": "#161b22", "border": "#30363d",
             "ok": "#3fb950", "bad": "#f85149", "muted": "#8b949e"},
}


@dataclass(frozen=True)
class ReportOptions:
    format: str = "html"
    theme: str = "light"
    title: str = "API Test Session Report"
    include_request_data: bool = True
    include_response_data: bool = True
    include_timing: bool = True


@dataclass(frozen=True)
class RenderedReport:
    """A rendered report ready for the persistence layer."""
    session_id: str
    content: bytes
    filename: str
    media_type: str
    compressed: bool
    summary: Dict[str, Any]

    @property
    def size(self) -> int:
        return len(self.content)


def summarize(entries: Sequence[HistoryEntry]) -> Dict[str, Any]:
    """Summary statistics over a session's retained history."""
    total = len(entries)
    successful = sum(1 for entry in entries if entry.succeeded)
    latencies = [entry.response.latency for entry in entries if entry.response is not None]
    validated = [entry for entry in entries if entry.validation is not None]
    passed = sum(1 for entry in validated if entry.validation_passed)
    return {
        "totalRequests": total,
        "successfulRequests": successful,
        "failedRequests": total - successful,
        "successRate": round(successful / total, 4) if total else 0.0,
        "averageLatency": round(sum(latencies) / len(latencies), 6) if latencies else 0.0,
        "validation": {
            "totalValidations": len(validated),
            "passedValidations": passed,
            "failedValidations": len(validated) - passed,
            "validationRate": round(passed / len(validated), 2) if validated else 0.0,
        },
    }


def timing_analysis(session: Session, entries: Sequence[HistoryEntry]) -> Dict[str, Any]:
    """Intervals between consecutive attempts and their latencies."""
    timings = []
    previous = session.created_at
    for index, entry in enumerate(entries):
        timings.append({
            "index": index,
            "timestamp": to_iso(entry.timestamp),
            "intervalMs": round((entry.timestamp - previous) * 1000, 3),
            "latencyMs": round(entry.response.latency * 1000, 3) if entry.response else None,
        })
        previous = entry.timestamp
    duration = (entries[-1].timestamp - session.created_at) if entries else 0.0
    return {
        "sessionDurationMs": round(duration * 1000, 3),
        "averageIntervalMs": round(sum(t["intervalMs"] for t in timings) / len(timings), 3) if timings else 0.0,
        "timings": timings,
    }


def build_report_data(session: Session, entries: Sequence[HistoryEntry],
                      options: ReportOptions) -> Dict[str, Any]:
    logs = []
    for entry in entries:
        item = entry.to_dict(include_details=True)
        if not options.include_request_data:
            item["request"] = {"method": entry.request.method, "url": entry.request.url}
        if not options.include_response_data and entry.response is not None:
            item["response"] = {"status": entry.response.status, "latency": round(entry.response.latency, 6)}
        logs.append(item)

    return {
        "title": options.title,
        "generatedAt": datetime.now(timezone.utc).isoformat(),
        "session": {
            "sessionId": session.id,
            "status": session.status.value,
            "createdAt": to_iso(session.created_at),
            "lastActivityAt": to_iso(session.last_activity_at),
            "lastOutcome": session.last_outcome.value if session.last_outcome else None,
        },
        "summary": summarize(entries),
        "timing": timing_analysis(session, entries) if options.include_timing else None,
        "logs": logs,
    }


SUMMARY_CARDS = (
    ("Requests", "totalRequests"),
    ("Successful", "successfulRequests"),
    ("Failed", "failedRequests"),
    ("Success rate", "successRate"),
    ("Avg latency (s)", "averageLatency"),
)


def _pretty(value: Any) -> str:
    if isinstance(value, str):
        return value
    return json.dumps(value, indent=2, default=str)


def _theme_css(theme: str) -> str:
    def block(colors: Dict[str, str]) -> str:
        return "; ".join(f"--{name}: {value}" for name, value in colors.items())

    if theme == "auto":
        return (
            f":root {{ {block(THEMES['light'])} }}\n"
            f"@media (prefers-color-scheme: dark) {{ :root {{ {block(THEMES['dark'])} }} }}"
        )
    return f":root {{ {block(THEMES.get(theme, THEMES['light']))} }}"


report_env = Environment(
    loader=PackageLoader("browser_control.sessions", "templates"),
    autoescape=select_autoescape(["html"]),
    trim_blocks=True,
    lstrip_blocks=True,
)
report_env.filters["pretty"] = _pretty


def render_html(data: Dict[str, Any], theme: str) -> str:
    template = report_env.get_template("report.html")
    return template.render(theme_css=_theme_css(theme), cards=SUMMARY_CARDS, **data)


def render_markdown(data: Dict[str, Any]) -> str:
    summary = data["summary"]
    session = data["session"]
    lines = [
        f"# {data['title']}",
        "",
        f"Session `{session['sessionId']}` ({session['status']}), generated {data['generatedAt']}",
        "",
        "## Summary",
        "",
        f"- Requests: {summary['totalRequests']}",
        f"- Successful: {summary['successfulRequests']}",
        f"- Failed: {summary['failedRequests']}",
        f"- Success rate: {summary['successRate']}",
        f"- Average latency (s): {summary['averageLatency']}",
        "",
    ]
    timing = data.get("timing")
    if timing:
        lines += ["## Timing", "", f"Session duration: {timing['sessionDurationMs']} ms", ""]
    lines += ["## Request history", ""]
    for index, log in enumerate(data["logs"], start=1):
        request = log["request"]
        response = log.get("response") or {}
        status = response.get("status", "-")
        lines.append(f"{index}. `{request['method']} {request['url']}` attempt {log['attempt']}: "
                     f"{log['outcome']} (status {status})")
        if log.get("error"):
            lines.append(f"   - error: {log['error']}")
    return "\n".join(lines) + "\n"


def render(session: Session, entries: Sequence[HistoryEntry], options: ReportOptions) -> str:
    """Render a report for the retained history of a session."""
    data = build_report_data(session, entries, options)
    if options.format == "json":
        return json.dumps(data, indent=2, default=str)
    if options.format == "markdown":
        return render_markdown(data)
    return render_html(data, options.theme)


def package_report(session: Session, entries: Sequence[HistoryEntry], options: ReportOptions,
                   filename: Optional[str], max_size: int, compress: bool,
                   compression_level: int) -> RenderedReport:
    """Render and, when larger than max_size, gzip-compress a report."""
    content = render(session, entries, options).encode("utf-8")
    extension = FORMAT_EXTENSIONS.get(options.format, "html")
    if not filename:
        stamp = datetime.now(timezone.utc).strftime("%Y%m%d-%H%M%S")
        filename = f"{session.id}-{stamp}.{extension}"

    compressed = False
    if len(content) > max_size:
        if compress:
            content = gzip.compress(content, compresslevel=compression_level)
            filename = f"{filename}.gz"
            compressed = True
        else:
            logger.warning(f"Report for {session.id} is {len(content)} bytes, above the {max_size} byte limit")

    return RenderedReport(
        session_id=session.id,
        content=content,
        filename=filename,
        media_type=MEDIA_TYPES.get(options.format, "text/html"),
        compressed=compressed,
        summary=summarize(entries),
    )
