"""
Tool catalog. Every module in this package is scanned for @mcp_tool declarations.
"""
