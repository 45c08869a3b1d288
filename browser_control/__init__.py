"""
Browser control server: browser automation and API testing tools over MCP.
"""
__version__ = "1.0.0"
