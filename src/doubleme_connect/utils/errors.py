"""Custom exceptions for DoubleMe Connect.

This module provides structured error handling with specific exception types
for each failure kind of the OAuth and MCP flows. All exceptions inherit from
ConnectError, so host-facing code can catch a single type and show
``error.message`` to the user.
"""
from typing import Optional, List, Union

MAX_BODY_LENGTH = 500


def truncate_body(body: Optional[str], limit: int = MAX_BODY_LENGTH) -> str:
    """Trim a provider response body for inclusion in an error message."""
    if not body:
        return ""
    body = body.strip()
    if len(body) <= limit:
        return body
    return body[:limit] + "..."


class ConnectError(Exception):
    """Base exception for all doubleme-connect errors.

    Attributes:
        message: Human-readable error description.
        provider: Optional provider name ("granola", "google_calendar").
    """

    def __init__(self, message: str, provider: Optional[str] = None) -> None:
        self.message = message
        self.provider = provider
        super().__init__(self.format_message())

    def format_message(self) -> str:
        """Format the error message."""
        return self.message


class ConfigurationMissingError(ConnectError):
    """Raised when client credentials or the application origin are not set."""
    pass


class PersistenceError(ConnectError):
    """Raised when a store cannot read or write its records."""
    pass


class InvalidOrExpiredStateError(ConnectError):
    """Raised when an OAuth callback carries a state with no pending record."""

    def __init__(self, provider: Optional[str] = None) -> None:
        super().__init__("Invalid or expired state", provider)


class HttpStatusError(ConnectError):
    """Base for errors derived from a non-success provider response.

    Attributes:
        status: HTTP status code, or None when the request never completed.
        body: Response body truncated to MAX_BODY_LENGTH characters.
    """

    def __init__(
        self,
        message: str,
        status: Optional[int] = None,
        body: Optional[str] = None,
        provider: Optional[str] = None,
    ) -> None:
        self.status = status
        self.body = truncate_body(body)
        super().__init__(message, provider)

    def format_message(self) -> str:
        details = " ".join(
            part for part in (str(self.status) if self.status is not None else "", self.body) if part
        )
        if details:
            return f"{self.message}: {details}"
        return self.message


class DiscoveryError(HttpStatusError):
    """Raised when authorization-server metadata cannot be fetched."""
    pass


class RegistrationError(HttpStatusError):
    """Raised when Dynamic Client Registration is rejected."""
    pass


class TokenExchangeError(HttpStatusError):
    """Raised when an authorization code cannot be exchanged for tokens."""
    pass


class McpError(ConnectError):
    """Base exception for MCP protocol client failures."""
    pass


class AuthenticationRequiredError(McpError):
    """Raised when the MCP endpoint answers 401."""

    def __init__(self) -> None:
        super().__init__(
            "Granola MCP requires OAuth sign-in (401 Unauthorized). Connect your "
            "Granola account in project settings, or set GRANOLA_API_TOKEN to a "
            "bearer token for the MCP endpoint.",
            "granola",
        )


class NotAcceptableError(McpError):
    """Raised when the MCP endpoint answers 406."""

    def __init__(self) -> None:
        super().__init__(
            "Granola MCP rejected the request (406 Not Acceptable). The server "
            "requires the header 'Accept: application/json, text/event-stream'.",
            "granola",
        )


class TransportError(McpError):
    """Raised for any other non-2xx status or a failed HTTP request.

    Attributes:
        status: HTTP status code, or None for network failures.
        status_text: Reason phrase or network error description.
    """

    def __init__(self, status: Optional[int], status_text: str) -> None:
        self.status = status
        self.status_text = status_text
        if status is None:
            message = f"Granola MCP: request failed ({status_text})"
        else:
            message = f"Granola MCP: {status} {status_text}".rstrip()
        super().__init__(message, "granola")


class ProtocolError(McpError):
    """Raised when a response is not a usable JSON-RPC message."""

    def __init__(self, message: str) -> None:
        super().__init__(f"Granola MCP: {message}", "granola")


class NoSuitableToolError(McpError):
    """Raised when no remote tool matches the selection heuristic.

    Attributes:
        purpose: What the tool was needed for.
        available: All tool names the server exposed.
    """

    def __init__(self, purpose: str, available: List[str]) -> None:
        self.purpose = purpose
        self.available = list(available)
        listing = ", ".join(self.available) if self.available else "none"
        super().__init__(
            f"Granola MCP does not expose a suitable tool to {purpose}. Available: {listing}",
            "granola",
        )


def error_for_mcp_status(status: int, reason: str = "") -> McpError:
    """Convert a non-success MCP HTTP status to a specific exception.

    Args:
        status: The HTTP status code.
        reason: The HTTP reason phrase.

    Returns:
        An appropriate McpError subclass.
    """
    if status == 401:
        return AuthenticationRequiredError()
    elif status == 406:
        return NotAcceptableError()
    else:
        return TransportError(status, reason)


def format_error(action: str, error: Union[Exception, str]) -> str:
    """Format an error message consistently.

    Args:
        action: The action that failed (e.g., "Connect", "List meetings").
        error: The exception that occurred, or its message.

    Returns:
        Formatted error string.
    """
    return f"{action} failed: {error}"
