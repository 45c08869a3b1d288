"""
Per-instance capture state: console messages, network traffic, dialogs and
downloads. Page event listeners feed these; the advanced browser tools query
them.
"""
import re
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Callable, Deque, Dict, List, Optional, Tuple

MAX_CONSOLE_ENTRIES = 1000
MAX_NETWORK_ENTRIES = 1000
MAX_DIALOG_HISTORY = 100

# Playwright reports console.warn as "warning"
LEVEL_ALIASES = {"warn": "warning"}


def normalize_level(level: str) -> str:
    return LEVEL_ALIASES.get(level, level)


@dataclass
class ConsoleEntry:
    level: str
    text: str
    source: Optional[str] = None
    line: Optional[int] = None
    column: Optional[int] = None
    timestamp: float = 0.0
    tab_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "level": self.level,
            "text": self.text,
            "source": self.source,
            "line": self.line,
            "column": self.column,
            "timestamp": self.timestamp,
            "tabId": self.tab_id,
        }


class ConsoleLog:
    """Bounded console message buffer; recording can be paused."""

    def __init__(self, max_entries: int = MAX_CONSOLE_ENTRIES, clock: Callable[[], float] = time.time):
        self.entries: Deque[ConsoleEntry] = deque(maxlen=max_entries)
        self.monitoring = True
        self.clock = clock

    def record(self, level: str, text: str, source: Optional[str] = None, line: Optional[int] = None,
               column: Optional[int] = None, tab_id: Optional[str] = None) -> bool:
        if not self.monitoring:
            return False
        self.entries.append(ConsoleEntry(normalize_level(level), text, source, line, column, self.clock(), tab_id))
        return True

    def query(self, level: Optional[str] = None, text: Optional[str] = None, source: Optional[str] = None,
              limit: int = 100) -> List[Dict[str, Any]]:
        """Most recent matching entries, oldest first."""
        matches = [
            entry for entry in self.entries
            if (level is None or entry.level == normalize_level(level))
            and (text is None or text.lower() in entry.text.lower())
            and (source is None or (entry.source is not None and source in entry.source))
        ]
        return [entry.to_dict() for entry in matches[-limit:]]

    def counts(self) -> Dict[str, int]:
        counts: Dict[str, int] = {}
        for entry in self.entries:
            counts[entry.level] = counts.get(entry.level, 0) + 1
        return counts

    def clear(self) -> int:
        cleared = len(self.entries)
        self.entries.clear()
        return cleared


@dataclass
class NetworkEntry:
    url: str
    method: str
    resource_type: str
    status: Optional[int] = None
    status_text: Optional[str] = None
    failure: Optional[str] = None
    duration_ms: Optional[float] = None
    timestamp: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "url": self.url,
            "method": self.method,
            "resourceType": self.resource_type,
            "status": self.status,
            "statusText": self.status_text,
            "failure": self.failure,
            "durationMs": self.duration_ms,
            "timestamp": self.timestamp,
        }


class NetworkLog:
    """Bounded record of finished and failed requests."""

    def __init__(self, max_entries: int = MAX_NETWORK_ENTRIES, clock: Callable[[], float] = time.time):
        self.entries: Deque[NetworkEntry] = deque(maxlen=max_entries)
        self.monitoring = True
        self.clock = clock

    def record(self, url: str, method: str, resource_type: str, status: Optional[int] = None,
               status_text: Optional[str] = None, failure: Optional[str] = None,
               duration_ms: Optional[float] = None) -> bool:
        if not self.monitoring:
            return False
        self.entries.append(NetworkEntry(url, method.upper(), resource_type, status, status_text,
                                         failure, duration_ms, self.clock()))
        return True

    def query(self, url: Optional[str] = None, method: Optional[str] = None, status: Optional[int] = None,
              resource_type: Optional[str] = None, limit: int = 50) -> List[Dict[str, Any]]:
        """Most recent matching entries; url is a regular expression."""
        pattern = re.compile(url) if url else None
        matches = [
            entry for entry in self.entries
            if (pattern is None or pattern.search(entry.url))
            and (method is None or entry.method == method.upper())
            and (status is None or entry.status == status)
            and (resource_type is None or entry.resource_type.lower() == resource_type.lower())
        ]
        return [entry.to_dict() for entry in matches[-limit:]]

    def summary(self) -> Dict[str, Any]:
        by_type: Dict[str, int] = {}
        for entry in self.entries:
            by_type[entry.resource_type] = by_type.get(entry.resource_type, 0) + 1
        return {
            "total": len(self.entries),
            "failed": sum(1 for entry in self.entries if entry.failure or (entry.status or 0) >= 400),
            "byResourceType": by_type,
        }

    def clear(self) -> int:
        cleared = len(self.entries)
        self.entries.clear()
        return cleared


@dataclass
class DialogPolicy:
    """How JavaScript dialogs are answered.

    A one-shot response set by accept/dismiss/handle wins over the default.
    Every dialog seen is kept in history.
    """
    accept: bool = True
    prompt_text: Optional[str] = None
    next_response: Optional[Tuple[bool, Optional[str]]] = None
    history: Deque[Dict[str, Any]] = field(default_factory=lambda: deque(maxlen=MAX_DIALOG_HISTORY))

    def set_default(self, accept: bool, prompt_text: Optional[str] = None):
        self.accept = accept
        self.prompt_text = prompt_text

    def set_next(self, accept: bool, prompt_text: Optional[str] = None):
        self.next_response = (accept, prompt_text)

    def respond(self, dialog_type: str, message: str, default_value: str = "",
                timestamp: Optional[float] = None) -> Tuple[bool, Optional[str]]:
        """Decide the answer for a dialog and record it."""
        if self.next_response is not None:
            accept, prompt_text = self.next_response
            self.next_response = None
        else:
            accept, prompt_text = self.accept, self.prompt_text
        if prompt_text is None and dialog_type == "prompt":
            prompt_text = default_value
        self.history.append({
            "type": dialog_type,
            "message": message,
            "defaultValue": default_value,
            "accepted": accept,
            "promptText": prompt_text if accept and dialog_type == "prompt" else None,
            "timestamp": time.time() if timestamp is None else timestamp,
        })
        return accept, prompt_text

    def info(self) -> Dict[str, Any]:
        return {
            "defaultResponse": {"accept": self.accept, "promptText": self.prompt_text},
            "pendingResponse": (
                {"accept": self.next_response[0], "promptText": self.next_response[1]}
                if self.next_response else None
            ),
            "lastDialog": self.history[-1] if self.history else None,
            "history": list(self.history),
        }


@dataclass
class DownloadRecord:
    file_name: str
    path: str
    size: int
    url: Optional[str] = None
    timestamp: float = field(default_factory=time.time)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "fileName": self.file_name,
            "path": self.path,
            "size": self.size,
            "url": self.url,
            "timestamp": self.timestamp,
        }


@dataclass
class CaptureState:
    """Everything captured for one browser instance."""
    console: ConsoleLog = field(default_factory=ConsoleLog)
    network: NetworkLog = field(default_factory=NetworkLog)
    dialogs: DialogPolicy = field(default_factory=DialogPolicy)
    downloads: List[DownloadRecord] = field(default_factory=list)
