"""Granola MCP protocol client."""
from .client import McpClient, GranolaDocument, Transcript, ToolCatalog
from .tool_selection import pick_list_tool, pick_transcript_tool

__all__ = [
    "McpClient",
    "GranolaDocument",
    "Transcript",
    "ToolCatalog",
    "pick_list_tool",
    "pick_transcript_tool",
]
