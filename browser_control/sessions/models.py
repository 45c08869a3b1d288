"""
Data model for API test sessions.
"""
import asyncio
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Deque, Dict, List, Optional


class SessionStatus(str, Enum):
    ACTIVE = "active"
    IDLE = "idle"
    EXPIRED = "expired"
    CLOSED = "closed"


class Outcome(str, Enum):
    SUCCESS = "success"
    RETRIED = "retried"
    FAILED = "failed"


def to_iso(timestamp: float) -> str:
    return datetime.fromtimestamp(timestamp, tz=timezone.utc).isoformat()


@dataclass(frozen=True)
class Expectation:
    """Caller expectations checked against each response."""
    status: Optional[int] = None
    content_type: Optional[str] = None
    body: Any = None
    body_regex: Optional[str] = None


@dataclass(frozen=True)
class RequestSpec:
    """An outbound request and its per-call policy overrides."""
    method: str
    url: str
    headers: Dict[str, str] = field(default_factory=dict)
    body: Any = None
    timeout: Optional[float] = None
    max_retries: Optional[int] = None
    retryable_statuses: Optional[List[int]] = None
    expect: Optional[Expectation] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "method": self.method,
            "url": self.url,
            "headers": dict(self.headers),
            "body": self.body,
        }


@dataclass(frozen=True)
class ChainStep:
    """A templated request in a chain; extract maps variable names to body paths."""
    name: str
    url: str
    method: str = "GET"
    headers: Dict[str, str] = field(default_factory=dict)
    body: Any = None
    expect: Optional[Expectation] = None
    extract: Dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class ChainResult:
    name: str
    entry: "HistoryEntry"
    extracted: Dict[str, Any]


@dataclass(frozen=True)
class ResponseRecord:
    status: int
    headers: Dict[str, str]
    body: Any
    latency: float

    @property
    def content_type(self) -> str:
        for key, value in self.headers.items():
            if key.lower() == "content-type":
                return value
        return ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status,
            "headers": dict(self.headers),
            "contentType": self.content_type,
            "body": self.body,
            "latency": round(self.latency, 6),
        }


@dataclass(frozen=True)
class HistoryEntry:
    """One recorded request/response attempt."""
    request: RequestSpec
    response: Optional[ResponseRecord]
    attempt: int
    timestamp: float
    outcome: Outcome
    error: Optional[str] = None
    validation: Optional[Dict[str, Any]] = None
    step: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.outcome is Outcome.SUCCESS

    @property
    def validation_passed(self) -> Optional[bool]:
        if self.validation is None:
            return None
        return bool(self.validation.get("passed"))

    def to_dict(self, include_details: bool = True) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "attempt": self.attempt,
            "timestamp": to_iso(self.timestamp),
            "outcome": self.outcome.value,
        }
        if self.step:
            data["step"] = self.step
        if include_details:
            data["request"] = self.request.to_dict()
            data["response"] = self.response.to_dict() if self.response else None
        else:
            data["request"] = {
                "method": self.request.method,
                "url": self.request.url,
                "hasHeaders": bool(self.request.headers),
                "hasBody": self.request.body is not None,
            }
            data["response"] = {
                "status": self.response.status,
                "contentType": self.response.content_type,
                "hasBody": self.response.body not in (None, ""),
            } if self.response else None
        if self.error:
            data["error"] = self.error
        if self.validation is not None:
            data["validation"] = self.validation
        return data


@dataclass
class SessionMetrics:
    request_count: int = 0
    error_count: int = 0
    total_latency: float = 0.0
    timed_requests: int = 0

    @property
    def average_latency(self) -> float:
        if not self.timed_requests:
            return 0.0
        return self.total_latency / self.timed_requests

    def record(self, entry: HistoryEntry):
        self.request_count += 1
        if not entry.succeeded:
            self.error_count += 1
        if entry.response is not None:
            self.total_latency += entry.response.latency
            self.timed_requests += 1


@dataclass
class Session:
    """Stateful, bounded-history context for related outbound test calls."""
    id: str
    created_at: float
    last_activity_at: float
    max_history_entries: int
    status: SessionStatus = SessionStatus.ACTIVE
    metrics: SessionMetrics = field(default_factory=SessionMetrics)
    last_outcome: Optional[Outcome] = None
    last_error: Optional[str] = None
    history: Deque[HistoryEntry] = field(init=False)
    lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False)

    def __post_init__(self):
        self.history = deque(maxlen=self.max_history_entries)

    @property
    def is_live(self) -> bool:
        return self.status in (SessionStatus.ACTIVE, SessionStatus.IDLE)

    @property
    def is_busy(self) -> bool:
        return self.lock.locked()

    def append(self, entry: HistoryEntry):
        """Append an attempt; the oldest entry is evicted once the bound is reached."""
        self.history.append(entry)
        self.metrics.record(entry)
        self.last_outcome = entry.outcome
        self.last_error = entry.error
