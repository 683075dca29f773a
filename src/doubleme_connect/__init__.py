"""DoubleMe Connect - Granola and Google Calendar integrations.

This package connects a user's Granola and Google Calendar accounts over
OAuth 2.0 with PKCE, reads meetings and transcripts from the Granola MCP
server, and extracts action items from them.
"""
from .actions import ActionResult
from .mcp import McpClient

__version__ = "0.1.0"
__all__ = ["ActionResult", "McpClient"]
