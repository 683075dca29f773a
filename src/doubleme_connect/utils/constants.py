"""Centralized constants for DoubleMe Connect."""

# Provider keys used by the stores
PROVIDER_GRANOLA = "granola"
PROVIDER_GOOGLE_CALENDAR = "google_calendar"

# Granola endpoints
DEFAULT_GRANOLA_MCP_URL = "https://mcp.granola.ai/mcp"
DEFAULT_GRANOLA_METADATA_URL = (
    "https://mcp.granola.ai/.well-known/oauth-authorization-server"
)

# Google endpoints
GOOGLE_AUTH_URI = "https://accounts.google.com/o/oauth2/v2/auth"
GOOGLE_TOKEN_URI = "https://oauth2.googleapis.com/token"

# Callback routes, relative to the application origin
GRANOLA_CALLBACK_PATH = "/api/auth/granola/callback"
GOOGLE_CALENDAR_CALLBACK_PATH = "/api/auth/google-calendar/callback"
DEFAULT_RETURN_PATH = "/projects"

# Dynamic Client Registration
CLIENT_NAME = "DoubleMe"

# MCP protocol
MCP_PROTOCOL_VERSION = "2024-11-05"
MCP_CLIENT_INFO = {"name": "doubleme-web", "version": "0.1.0"}
MCP_ACCEPT_HEADER = "application/json, text/event-stream"

# Tool names known to list meetings, in order of preference
KNOWN_LIST_TOOLS = [
    "search_meetings",
    "list_granola_documents",
    "list_meetings",
    "query_granola_meetings",
    "get_meetings",
    "search_granola_transcripts",
]

# Tool names known to return one transcript, in order of preference
KNOWN_TRANSCRIPT_TOOLS = [
    "get_granola_transcript",
    "get_meeting_transcript",
    "get_granola_document",
]

# Keys under which list tools wrap their results
DOCUMENT_COLLECTION_KEYS = ["documents", "transcripts", "meetings", "results"]

# Default values
DEFAULT_LIST_LIMIT = 100
DEFAULT_TRANSCRIPT_TITLE = "Meeting transcript"
DEFAULT_HTTP_TIMEOUT = 30.0
DEFAULT_PENDING_TTL_SECONDS = 600

# Action item extraction
ACTION_ITEM_MIN_LENGTH = 3
ACTION_ITEM_MAX_LENGTH = 500
ACTION_ITEM_LIMIT = 50
