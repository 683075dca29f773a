"""MCP Server initialization."""

from fastmcp import FastMCP

# Initialize MCP Server
mcp = FastMCP("DoubleMe Connect")
