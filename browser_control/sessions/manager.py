"""
Session manager for API test sessions.

Owns every session for the life of the process: creation and lookup,
per-session serialized execution with retry and timeout policy, rate
limiting, bounded history, status snapshots, reports and expiry.
"""
import asyncio
import contextlib
import logging
import threading
import time
import uuid
from typing import Any, Callable, Dict, List, Optional, Sequence

from browser_control.core.config import (
    ApiRequestSettings,
    EffectiveConfig,
    SessionReportSettings,
)
from browser_control.core.errors import (
    RateLimitedError,
    RequestFailedError,
    SessionLimitExceededError,
    SessionNotFoundError,
)
from browser_control.sessions.http_client import AiohttpTransport, HttpTransport, TransportError
from browser_control.sessions.models import (
    ChainResult,
    ChainStep,
    HistoryEntry,
    Outcome,
    RequestSpec,
    Session,
    SessionStatus,
    to_iso,
)
from browser_control.sessions.report import RenderedReport, ReportOptions, package_report, summarize
from browser_control.sessions.validation import extract_fields, render_step, validate_response
from browser_control.utils.rate_limiter import RateLimiter

logger = logging.getLogger(__name__)


def generate_session_id() -> str:
    return f"session-{int(time.time() * 1000)}-{uuid.uuid4().hex[:8]}"


class SessionManager:
    """Process-wide owner of API test sessions."""

    def __init__(
        self,
        settings: ApiRequestSettings,
        max_history_entries: int = 1000,
        report_settings: Optional[SessionReportSettings] = None,
        transport: Optional[HttpTransport] = None,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], Any] = asyncio.sleep,
    ):
        self.settings = settings
        self.max_history_entries = max_history_entries
        self.report_settings = report_settings or SessionReportSettings()
        self.transport = transport or AiohttpTransport(settings.user_agent)
        self.clock = clock
        self.sleep = sleep
        self._sessions: Dict[str, Session] = {}
        self._lock = threading.Lock()
        self._process_limiter = RateLimiter(settings.max_requests_per_second, 1.0, clock=clock)
        self._session_limiters: Dict[str, RateLimiter] = {}
        self._reaper: Optional[asyncio.Task] = None

    @classmethod
    def from_config(cls, config: EffectiveConfig, transport: Optional[HttpTransport] = None,
                    **kwargs) -> "SessionManager":
        return cls(
            settings=config.tools.api_request,
            max_history_entries=config.tools.api_session_status.max_history_entries,
            report_settings=config.tools.api_session_report,
            transport=transport,
            **kwargs,
        )

    def get_or_create(self, session_id: Optional[str] = None) -> Session:
        """Return the live session for an id, creating one if needed.

        New sessions are rejected rather than evicting live ones once the
        session limit is reached.
        """
        with self._lock:
            if session_id:
                existing = self._sessions.get(session_id)
                if existing is not None and existing.is_live:
                    existing.last_activity_at = self.clock()
                    return existing

            live = sum(1 for session in self._sessions.values() if session.is_live)
            limit = self.settings.session_limit
            if live >= limit:
                raise SessionLimitExceededError(
                    f"Session limit reached ({live}/{limit}); close or wait for an existing session to expire",
                    {"live_sessions": live, "limit": limit},
                )

            new_id = session_id or generate_session_id()
            now = self.clock()
            session = Session(
                id=new_id,
                created_at=now,
                last_activity_at=now,
                max_history_entries=self.max_history_entries,
            )
            self._sessions[new_id] = session
            self._session_limiters.pop(new_id, None)
            logger.info(f"Created API test session {new_id} ({live + 1}/{limit} live)")
            return session

    def get(self, session_id: str) -> Session:
        """Return a tracked session or raise SessionNotFoundError."""
        with self._lock:
            session = self._sessions.get(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)
        return session

    def list_sessions(self) -> List[Dict[str, Any]]:
        with self._lock:
            sessions = list(self._sessions.values())
        return [
            {
                "sessionId": session.id,
                "status": session.status.value,
                "createdAt": to_iso(session.created_at),
                "requestCount": session.metrics.request_count,
            }
            for session in sessions
        ]

    def close(self, session_id: str) -> Dict[str, Any]:
        """Close a session on demand and return its final snapshot."""
        with self._lock:
            session = self._sessions.pop(session_id, None)
            self._session_limiters.pop(session_id, None)
        if session is None:
            raise SessionNotFoundError(session_id)
        session.status = SessionStatus.CLOSED
        logger.info(f"Closed API test session {session_id}")
        return self._snapshot(session)

    def expire(self) -> List[str]:
        """Reap sessions idle for longer than the session timeout.

        Sessions with a request in flight are skipped.
        """
        now = self.clock()
        expired = []
        with self._lock:
            for session_id, session in list(self._sessions.items()):
                if session.is_busy:
                    continue
                if now - session.last_activity_at > self.settings.session_timeout:
                    session.status = SessionStatus.EXPIRED
                    del self._sessions[session_id]
                    self._session_limiters.pop(session_id, None)
                    expired.append(session_id)
        if expired:
            logger.info(f"Expired {len(expired)} idle session(s): {expired}")
        return expired

    def start_reaper(self, interval: Optional[float] = None) -> asyncio.Task:
        """Run expire() periodically on the current event loop."""
        if self._reaper is None or self._reaper.done():
            interval = interval or max(1.0, min(60.0, self.settings.session_timeout / 4))
            self._reaper = asyncio.create_task(self._reap_periodically(interval))
        return self._reaper

    async def _reap_periodically(self, interval: float):
        while True:
            await asyncio.sleep(interval)
            self.expire()

    async def shutdown(self):
        """Stop the reaper, close every session and release the HTTP client."""
        if self._reaper is not None:
            self._reaper.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._reaper
            self._reaper = None
        with self._lock:
            for session in self._sessions.values():
                session.status = SessionStatus.CLOSED
            count = len(self._sessions)
            self._sessions.clear()
            self._session_limiters.clear()
        await self.transport.close()
        logger.info(f"Session manager shut down, closed {count} session(s)")

    def check_rate_limit(self, session_id: Optional[str] = None):
        """Fail fast, before any session is created, when no request token is left."""
        if not self.settings.rate_limit_enabled:
            return
        if self.settings.rate_limit_scope == "session":
            with self._lock:
                limiter = self._session_limiters.get(session_id) if session_id else None
        else:
            limiter = self._process_limiter
        if limiter is not None and not limiter.has_capacity():
            raise RateLimitedError(
                f"Rate limit of {self.settings.max_requests_per_second} requests per second exceeded",
                {"session_id": session_id, "retry_after": round(limiter.retry_after(), 3)},
            )

    def _acquire_rate_token(self, session: Session):
        if not self.settings.rate_limit_enabled:
            return
        if self.settings.rate_limit_scope == "session":
            with self._lock:
                limiter = self._session_limiters.get(session.id)
                if limiter is None:
                    limiter = RateLimiter(self.settings.max_requests_per_second, 1.0, clock=self.clock)
                    self._session_limiters[session.id] = limiter
        else:
            limiter = self._process_limiter
        if not limiter.can_make_request():
            raise RateLimitedError(
                f"Rate limit of {self.settings.max_requests_per_second} requests per second exceeded",
                {"session_id": session.id, "retry_after": round(limiter.retry_after(), 3)},
            )

    @contextlib.asynccontextmanager
    async def _critical_section(self, session: Session):
        async with session.lock:
            if not session.is_live:
                raise SessionNotFoundError(session.id)
            session.status = SessionStatus.ACTIVE
            try:
                yield session
            finally:
                session.last_activity_at = self.clock()
                if session.status is SessionStatus.ACTIVE:
                    session.status = SessionStatus.IDLE

    def _timeout_for(self, spec: RequestSpec) -> float:
        timeout = spec.timeout if spec.timeout is not None else self.settings.default_timeout
        return min(timeout, self.settings.max_session_timeout)

    def _retry_delay(self, attempt: int) -> float:
        if self.settings.retry_backoff == "exponential":
            return self.settings.retry_delay * (2 ** (attempt - 1))
        return self.settings.retry_delay

    async def _attempt(self, spec: RequestSpec, timeout: float):
        return await asyncio.wait_for(
            self.transport.send(spec.method, spec.url, dict(spec.headers), spec.body, timeout),
            timeout,
        )

    async def _execute_attempts(self, session: Session, spec: RequestSpec,
                                step: Optional[str] = None) -> HistoryEntry:
        timeout = self._timeout_for(spec)
        max_retries = spec.max_retries if spec.max_retries is not None else self.settings.max_retries
        if not self.settings.enable_retries:
            max_retries = 0
        retryable = set(
            spec.retryable_statuses if spec.retryable_statuses is not None
            else self.settings.retryable_statuses
        )
        attempts = max_retries + 1

        for attempt in range(1, attempts + 1):
            if self.settings.enable_request_logging:
                logger.info(f"[{session.id}] {spec.method} {spec.url} (attempt {attempt}/{attempts})")

            response = None
            error = None
            try:
                response = await self._attempt(spec, timeout)
                if response.status in retryable:
                    error = f"HTTP {response.status} is a retryable status"
            except asyncio.TimeoutError:
                error = f"Request timeout after {timeout}s"
            except TransportError as e:
                error = str(e)

            final = error is None or attempt == attempts
            if error is None:
                outcome = Outcome.SUCCESS
            else:
                outcome = Outcome.FAILED if final else Outcome.RETRIED

            entry = HistoryEntry(
                request=spec,
                response=response,
                attempt=attempt,
                timestamp=self.clock(),
                outcome=outcome,
                error=error,
                validation=validate_response(response, spec.expect) if response is not None else None,
                step=step,
            )
            session.append(entry)
            session.last_activity_at = entry.timestamp

            if self.settings.enable_response_logging:
                status = response.status if response is not None else "-"
                logger.info(f"[{session.id}] {spec.method} {spec.url} -> {status} ({outcome.value})")

            if error is None:
                return entry
            if final:
                raise RequestFailedError(
                    f"Request {spec.method} {spec.url} failed after {attempt} attempt(s): {error}",
                    {"session_id": session.id, "attempts": attempt, "last_attempt": entry.to_dict()},
                )

            logger.warning(f"[{session.id}] Attempt {attempt} failed: {error}; retrying")
            await self.sleep(self._retry_delay(attempt))

    async def execute(self, session: Session, spec: RequestSpec) -> HistoryEntry:
        """Perform an outbound request with the retry and timeout policy.

        Every attempt is appended to the session history. Raises
        RequestFailedError with the last attempt once retries are exhausted.
        """
        self._acquire_rate_token(session)
        async with self._critical_section(session):
            return await self._execute_attempts(session, spec)

    async def execute_chain(self, session: Session, steps: Sequence[ChainStep],
                            timeout: Optional[float] = None) -> List[ChainResult]:
        """Run templated steps in order, feeding extracted values forward."""
        results: List[ChainResult] = []
        variables: Dict[str, Any] = {}
        async with self._critical_section(session):
            for step in steps:
                self._acquire_rate_token(session)
                spec = render_step(step, variables, timeout)
                entry = await self._execute_attempts(session, spec, step=step.name)
                body = entry.response.body if entry.response is not None else None
                extracted = extract_fields(body, step.extract)
                variables.update(extracted)
                variables[step.name] = {
                    **extracted,
                    "body": body,
                    "status": entry.response.status if entry.response is not None else None,
                }
                results.append(ChainResult(name=step.name, entry=entry, extracted=extracted))
        return results

    def _snapshot(self, session: Session, include_details: bool = True,
                  limit: Optional[int] = None) -> Dict[str, Any]:
        entries = list(session.history)
        recent = entries[-limit:] if limit else entries
        return {
            "sessionId": session.id,
            "status": session.status.value,
            "createdAt": to_iso(session.created_at),
            "lastActivityAt": to_iso(session.last_activity_at),
            "requestCount": session.metrics.request_count,
            "errorCount": session.metrics.error_count,
            "averageLatency": round(session.metrics.average_latency, 6),
            "historySize": len(entries),
            "lastOutcome": session.last_outcome.value if session.last_outcome else None,
            "lastError": session.last_error,
            "summary": summarize(entries),
            "history": [entry.to_dict(include_details) for entry in recent],
        }

    def status(self, session_id: str, include_details: bool = True,
               limit: Optional[int] = None) -> Dict[str, Any]:
        """Read-only snapshot of a session."""
        return self._snapshot(self.get(session_id), include_details, limit)

    def report(self, session_id: str, options: Optional[ReportOptions] = None,
               filename: Optional[str] = None) -> RenderedReport:
        """Render a report over the retained history of a session."""
        session = self.get(session_id)
        options = options or ReportOptions(
            format=self.report_settings.default_format,
            theme=self.report_settings.default_theme,
        )
        return package_report(
            session,
            list(session.history),
            options,
            filename=filename,
            max_size=self.report_settings.max_report_size,
            compress=self.report_settings.enable_compression,
            compression_level=self.report_settings.compression_level,
        )
