"""
API test session management.
"""
from .manager import SessionManager
from .models import ChainStep, Expectation, HistoryEntry, Outcome, RequestSpec, Session, SessionStatus
from .report import ReportOptions

__all__ = [
    'SessionManager', 'ChainStep', 'Expectation', 'HistoryEntry', 'Outcome',
    'RequestSpec', 'Session', 'SessionStatus', 'ReportOptions',
]
