"""
Minimal MCP client for the Granola MCP endpoint.

Speaks JSON-RPC 2.0 over HTTP POST (``initialize``, ``tools/list``,
``tools/call``) and accepts either a plain JSON body or a Server-Sent-Events
stream in response. Used server-side to list meetings and fetch transcripts.
"""

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import requests

from .tool_selection import (
    list_tool_arguments,
    list_tool_candidates,
    pick_list_tool,
    pick_transcript_tool,
    transcript_tool_arguments,
)
from ..utils.constants import (
    DEFAULT_HTTP_TIMEOUT,
    DEFAULT_TRANSCRIPT_TITLE,
    DOCUMENT_COLLECTION_KEYS,
    MCP_ACCEPT_HEADER,
    MCP_CLIENT_INFO,
    MCP_PROTOCOL_VERSION,
)
from ..utils.errors import (
    NoSuitableToolError,
    ProtocolError,
    TransportError,
    error_for_mcp_status,
)

logger = logging.getLogger(__name__)


@dataclass
class GranolaDocument:
    """A meeting, document or transcript listed by the remote server."""

    id: str
    title: Optional[str] = None
    type: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


@dataclass
class Transcript:
    title: str
    content: str
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


@dataclass
class ToolCatalog:
    """Tool names of one session, with the list-tool candidates highlighted."""

    all_tools: List[str] = field(default_factory=list)
    list_tools: List[str] = field(default_factory=list)
    default_list_tool: Optional[str] = None


def _is_rpc_response(message: Any) -> bool:
    return isinstance(message, dict) and ("result" in message or "error" in message)


def parse_sse_response(body: str, request_id: Any) -> Dict[str, Any]:
    """
    Pick the JSON-RPC response out of an SSE body.

    Every ``data:`` line that decodes to a message carrying ``result`` or
    ``error`` is a candidate. The candidate whose id matches ``request_id``
    wins; otherwise the last candidate is used.

    Raises:
        ProtocolError: If no candidate is found.
    """
    candidates = []
    for line in body.splitlines():
        if not line.startswith("data:"):
            continue
        payload = line[len("data:"):].strip()
        if not payload:
            continue
        try:
            message = json.loads(payload)
        except ValueError:
            continue
        if _is_rpc_response(message):
            candidates.append(message)

    if not candidates:
        raise ProtocolError("no valid JSON-RPC message in SSE response")

    for message in candidates:
        if message.get("id") == request_id:
            return message

    logger.warning(
        "SSE response had no message with id %r; falling back to the last of %d",
        request_id,
        len(candidates),
    )
    return candidates[-1]


def _first_text_block(result: Any) -> Optional[str]:
    """Text of the first ``text`` content block of a tools/call result."""
    if not isinstance(result, dict):
        return None
    content = result.get("content")
    if not isinstance(content, list):
        return None
    for block in content:
        if isinstance(block, dict) and block.get("type") == "text":
            return block.get("text") or ""
    return None


def _first_present(item: Dict[str, Any], keys: List[str]) -> Optional[str]:
    for key in keys:
        value = item.get(key)
        if value not in (None, ""):
            return str(value)
    return None


def normalize_documents(parsed: Any) -> List[GranolaDocument]:
    """
    Map a list tool's decoded output to documents.

    Accepts a bare array or an object wrapping the array under one of the
    known collection keys. Items without any id are skipped.
    """
    items: Any = None
    if isinstance(parsed, list):
        items = parsed
    elif isinstance(parsed, dict):
        for key in DOCUMENT_COLLECTION_KEYS:
            if isinstance(parsed.get(key), list):
                items = parsed[key]
                break
    if not items:
        return []

    documents = []
    for item in items:
        if not isinstance(item, dict):
            continue
        doc_id = _first_present(item, ["id", "meeting_id", "document_id"])
        if not doc_id:
            logger.debug("Skipping listed item without id: %s", sorted(item.keys()))
            continue
        documents.append(
            GranolaDocument(
                id=doc_id,
                title=_first_present(item, ["title", "name", "subject"]),
                type=_first_present(item, ["type"]),
                created_at=_first_present(item, ["created_at"]),
                updated_at=_first_present(item, ["updated_at"]),
            )
        )
    return documents


class McpClient:
    """JSON-RPC client for one MCP endpoint and one bearer token."""

    def __init__(
        self,
        url: str,
        token: Optional[str] = None,
        session: Optional[requests.Session] = None,
        timeout: float = DEFAULT_HTTP_TIMEOUT,
    ) -> None:
        self.url = url
        self.token = token
        self.session = session or requests.Session()
        self.timeout = timeout

    def close(self) -> None:
        self.session.close()

    def __enter__(self) -> "McpClient":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    def post_message(self, message: Dict[str, Any]) -> Dict[str, Any]:
        """
        POST one JSON-RPC request and return the decoded response.

        Raises:
            AuthenticationRequiredError: On HTTP 401.
            NotAcceptableError: On HTTP 406.
            TransportError: On other non-2xx statuses or network failure.
            ProtocolError: On undecodable bodies or a JSON-RPC error.
        """
        headers = {
            "Content-Type": "application/json",
            "Accept": MCP_ACCEPT_HEADER,
        }
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"

        method = message.get("method")
        try:
            response = self.session.post(
                self.url, json=message, headers=headers, timeout=self.timeout
            )
        except requests.RequestException as e:
            logger.error(f"MCP request {method} failed: {e}")
            raise TransportError(None, str(e)) from e

        if not response.ok:
            logger.warning(f"MCP request {method} returned HTTP {response.status_code}")
            raise error_for_mcp_status(response.status_code, response.reason or "")

        content_type = response.headers.get("Content-Type", "")
        if "text/event-stream" in content_type:
            data = parse_sse_response(response.text, message.get("id"))
        else:
            try:
                data = json.loads(response.text)
            except ValueError as e:
                raise ProtocolError("invalid JSON response") from e
            if not isinstance(data, dict):
                raise ProtocolError("invalid JSON response")

        error = data.get("error")
        if error:
            if isinstance(error, dict):
                raise ProtocolError(str(error.get("message") or error))
            raise ProtocolError(str(error))

        return data

    def _request(self, request_id: str, method: str, params: Dict[str, Any]) -> Any:
        response = self.post_message(
            {"jsonrpc": "2.0", "id": request_id, "method": method, "params": params}
        )
        return response.get("result")

    def ensure_initialized(self) -> None:
        """Perform the initialize handshake; the result is discarded."""
        self._request(
            "init-1",
            "initialize",
            {
                "protocolVersion": MCP_PROTOCOL_VERSION,
                "capabilities": {},
                "clientInfo": dict(MCP_CLIENT_INFO),
            },
        )

    def list_tools(self) -> List[str]:
        """Names of all tools the server exposes."""
        result = self._request("tools-list", "tools/list", {})
        tools = result.get("tools") if isinstance(result, dict) else None
        if not isinstance(tools, list):
            return []
        names = [t.get("name") for t in tools if isinstance(t, dict)]
        return [name for name in names if isinstance(name, str) and name]

    def call_tool(self, request_id: str, name: str, arguments: Dict[str, Any]) -> Any:
        logger.debug("Calling MCP tool %s with %s", name, sorted(arguments.keys()))
        return self._request(request_id, "tools/call", {"name": name, "arguments": arguments})

    def describe_tools(self) -> ToolCatalog:
        """Handshake and describe the catalog, for letting a user pick a list tool."""
        self.ensure_initialized()
        names = self.list_tools()
        return ToolCatalog(
            all_tools=names,
            list_tools=list_tool_candidates(names),
            default_list_tool=pick_list_tool(names),
        )

    def list_documents(
        self, preferred_tool: Optional[str] = None, query: Optional[str] = None
    ) -> List[GranolaDocument]:
        """
        List meetings through the best matching list tool.

        Undecodable tool output yields an empty list rather than an error.

        Raises:
            NoSuitableToolError: If no list tool can be identified.
        """
        self.ensure_initialized()
        names = self.list_tools()
        tool = pick_list_tool(names, preferred_tool)
        if not tool:
            raise NoSuitableToolError("list meetings", names)

        result = self.call_tool("tools-call-list", tool, list_tool_arguments(tool, query))
        text = _first_text_block(result)
        if not text:
            return []
        try:
            parsed = json.loads(text)
        except ValueError:
            logger.info("List tool %s returned non-JSON text; treating as no documents", tool)
            return []

        documents = normalize_documents(parsed)
        logger.info("Listed %d documents with %s", len(documents), tool)
        return documents

    def get_transcript(self, document_id: str) -> Transcript:
        """
        Fetch one transcript by id.

        Raises:
            NoSuitableToolError: If no transcript tool can be identified.
            ProtocolError: If the response has no text content, cannot be
                decoded, or carries an ``error`` field.
        """
        self.ensure_initialized()
        names = self.list_tools()
        tool = pick_transcript_tool(names)
        if not tool:
            raise NoSuitableToolError("get a meeting transcript", names)

        result = self.call_tool(
            "tools-call-get", tool, transcript_tool_arguments(tool, document_id)
        )
        text = _first_text_block(result)
        if text is None:
            raise ProtocolError("empty transcript response")

        try:
            parsed = json.loads(text)
        except ValueError as e:
            raise ProtocolError("invalid transcript response") from e
        if not isinstance(parsed, dict):
            raise ProtocolError("invalid transcript response")
        if parsed.get("error"):
            raise ProtocolError(str(parsed["error"]))

        title = str(parsed.get("title") or "").strip()
        content = parsed.get("content") or parsed.get("text") or parsed.get("transcript") or ""
        return Transcript(
            title=title or DEFAULT_TRANSCRIPT_TITLE,
            content=str(content),
            created_at=parsed.get("created_at"),
            updated_at=parsed.get("updated_at"),
        )
