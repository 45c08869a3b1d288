"""
Browser automation backend.
"""
from .backend import BrowserBackend, PlaywrightBrowserBackend

__all__ = ['BrowserBackend', 'PlaywrightBrowserBackend']
