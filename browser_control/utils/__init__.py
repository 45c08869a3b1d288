"""
Utility functions and classes.
"""
from .rate_limiter import RateLimiter
from .config_manager import ConfigManager, load_config

__all__ = ['RateLimiter', 'ConfigManager', 'load_config']
