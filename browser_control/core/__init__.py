"""
Core server components.
"""
from .config import EffectiveConfig
from .errors import ToolServerError
from .tool_manager import ToolRegistry

__all__ = ['EffectiveConfig', 'ToolServerError', 'ToolRegistry']
