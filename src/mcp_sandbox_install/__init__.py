"""Install packages into sandboxed dev environments over MCP."""

__version__ = "0.1.0"
