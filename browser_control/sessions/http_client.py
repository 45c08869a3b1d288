"""
Outbound HTTP client used by the session manager.
"""
import json
import logging
import time
from typing import Any, Dict, Optional, Protocol

import aiohttp

from browser_control.sessions.models import ResponseRecord

logger = logging.getLogger(__name__)


class TransportError(Exception):
    """The request could not be completed (connection, DNS, protocol)."""


class HttpTransport(Protocol):
    async def send(self, method: str, url: str, headers: Dict[str, str],
                   body: Any, timeout: float) -> ResponseRecord:
        ...

    async def close(self) -> None:
        ...


def encode_body(body: Any, headers: Dict[str, str]) -> Optional[bytes]:
    """Serialize a request body, setting a Content-Type when none is given."""
    if body is None:
        return None
    has_content_type = any(key.lower() == "content-type" for key in headers)
    if isinstance(body, (dict, list)):
        if not has_content_type:
            headers["Content-Type"] = "application/json"
        return json.dumps(body).encode("utf-8")
    if isinstance(body, bytes):
        return body
    if not has_content_type:
        headers["Content-Type"] = "text/plain"
    return str(body).encode("utf-8")


def decode_body(raw: bytes, content_type: str) -> Any:
    """Decode a response body, parsing JSON when the content type says so."""
    text = raw.decode("utf-8", errors="replace")
    if "json" in content_type.lower():
        try:
            return json.loads(text)
        except ValueError:
            return text
    return text


class AiohttpTransport:
    """HttpTransport backed by a shared aiohttp ClientSession."""

    def __init__(self, user_agent: str, max_redirects: int = 5):
        self.user_agent = user_agent
        self.max_redirects = max_redirects
        self._session: Optional[aiohttp.ClientSession] = None

    def _client(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(headers={"User-Agent": self.user_agent})
        return self._session

    async def send(self, method: str, url: str, headers: Dict[str, str],
                   body: Any, timeout: float) -> ResponseRecord:
        request_headers = dict(headers)
        data = encode_body(body, request_headers)
        started = time.perf_counter()
        try:
            async with self._client().request(
                method.upper(),
                url,
                headers=request_headers,
                data=data,
                max_redirects=self.max_redirects,
                timeout=aiohttp.ClientTimeout(total=timeout),
            ) as response:
                raw = await response.read()
                latency = time.perf_counter() - started
                response_headers = {key: value for key, value in response.headers.items()}
                return ResponseRecord(
                    status=response.status,
                    headers=response_headers,
                    body=decode_body(raw, response.headers.get("Content-Type", "")),
                    latency=latency,
                )
        except aiohttp.ClientError as e:
            raise TransportError(f"Request failed: {e}") from e

    async def close(self):
        if self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None
