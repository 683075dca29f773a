"""
OAuth Callback routes for DoubleMe Connect.

Both providers redirect the browser back to a callback route with ``code`` and
``state`` (or ``error``). The route finishes the flow and always answers with
a redirect to the app; failures travel as a query parameter, never as an
error page.

For local use a minimal server runs the routes in a background thread.
"""

import asyncio
import logging
import socket
import threading
import time
from dataclasses import dataclass
from typing import Callable, Mapping, Optional, Tuple
from urllib.parse import urlparse

import uvicorn
from fastapi import FastAPI, Request
from fastapi.responses import RedirectResponse

from ..auth.google_calendar_oauth import (
    GoogleCalendarOAuthClient,
    get_google_calendar_oauth_client,
)
from ..auth.granola_oauth import (
    GranolaOAuthClient,
    add_query_params,
    get_granola_oauth_client,
)
from ..auth.oauth_config import OAuthConfig, get_oauth_config
from ..auth.pending_store import PendingAuthorizationStore, is_safe_return_path
from ..auth.token_store import TokenResponse
from ..utils.constants import (
    GOOGLE_CALENDAR_CALLBACK_PATH,
    GRANOLA_CALLBACK_PATH,
    PROVIDER_GOOGLE_CALENDAR,
    PROVIDER_GRANOLA,
)
from ..utils.errors import ConnectError, InvalidOrExpiredStateError

logger = logging.getLogger(__name__)


@dataclass
class CallbackFlow:
    """What a callback needs to know about one provider's OAuth flow."""

    provider: str
    pending_store: PendingAuthorizationStore
    redirect_uri: Optional[str]
    exchange_code: Callable[[str, str, str], TokenResponse]
    save_tokens: Callable[[str, TokenResponse], None]
    config: OAuthConfig

    @property
    def success_param(self) -> str:
        return self.provider

    @property
    def error_param(self) -> str:
        return f"{self.provider}_error"


def granola_flow(client: Optional[GranolaOAuthClient] = None) -> CallbackFlow:
    client = client or get_granola_oauth_client()
    return CallbackFlow(
        provider=PROVIDER_GRANOLA,
        pending_store=client.pending_store,
        redirect_uri=client.redirect_uri,
        exchange_code=client.exchange_code,
        save_tokens=client.save_tokens,
        config=client.config,
    )


def google_calendar_flow(client: Optional[GoogleCalendarOAuthClient] = None) -> CallbackFlow:
    client = client or get_google_calendar_oauth_client()
    return CallbackFlow(
        provider=PROVIDER_GOOGLE_CALENDAR,
        pending_store=client.pending_store,
        redirect_uri=client.redirect_uri,
        exchange_code=client.exchange_code,
        save_tokens=client.save_tokens,
        config=client.config,
    )


def _return_url(config: OAuthConfig, return_path: Optional[str]) -> str:
    if return_path and is_safe_return_path(return_path) and config.app_origin:
        return f"{config.app_origin}{return_path}"
    return config.get_default_return_url()


def complete_authorization(flow: CallbackFlow, params: Mapping[str, str]) -> str:
    """
    Finish an OAuth flow from the callback's query parameters.

    Consumes the pending authorization for ``state``, exchanges the code and
    stores the tokens.

    Returns:
        The URL to redirect the browser to. On success it carries
        ``<provider>=connected``; on failure ``<provider>_error=<message>``.
    """
    config = flow.config
    error = params.get("error")
    if error:
        message = params.get("error_description") or error
        logger.warning(f"{flow.provider} OAuth callback returned error: {message}")
        return add_query_params(config.get_default_return_url(), {flow.error_param: message})

    code = params.get("code")
    state = params.get("state")
    if not code or not state:
        return add_query_params(
            config.get_default_return_url(), {flow.error_param: "Missing code or state"}
        )

    try:
        pending = flow.pending_store.consume(state)
        if pending is None:
            raise InvalidOrExpiredStateError(flow.provider)

        if not flow.redirect_uri:
            raise ConnectError("App URL not configured", flow.provider)

        logger.info(f"{flow.provider} OAuth callback: received code (state: {state[:8]}...)")
        tokens = flow.exchange_code(code, pending.code_verifier, flow.redirect_uri)
        flow.save_tokens(pending.user_id, tokens)

    except ConnectError as e:
        logger.error(f"{flow.provider} OAuth callback failed: {e}")
        return add_query_params(config.get_default_return_url(), {flow.error_param: str(e)})
    except Exception as e:
        logger.error(f"Error processing {flow.provider} OAuth callback: {e}", exc_info=True)
        return add_query_params(
            config.get_default_return_url(),
            {flow.error_param: f"Unexpected error ({type(e).__name__})"},
        )

    logger.info(f"{flow.provider} OAuth callback: connected {pending.user_id}")
    return add_query_params(
        _return_url(config, pending.return_path), {flow.success_param: "connected"}
    )


def create_callback_app(
    granola_flow_factory: Callable[[], CallbackFlow] = granola_flow,
    google_calendar_flow_factory: Callable[[], CallbackFlow] = google_calendar_flow,
) -> FastAPI:
    """Build the FastAPI app serving both provider callback routes."""
    app = FastAPI()

    @app.get(GRANOLA_CALLBACK_PATH)
    async def granola_callback(request: Request) -> RedirectResponse:
        """Handle OAuth callback from Granola."""
        url = complete_authorization(granola_flow_factory(), dict(request.query_params))
        return RedirectResponse(url, status_code=302)

    @app.get(GOOGLE_CALENDAR_CALLBACK_PATH)
    async def google_calendar_callback(request: Request) -> RedirectResponse:
        """Handle OAuth callback from Google."""
        url = complete_authorization(
            google_calendar_flow_factory(), dict(request.query_params)
        )
        return RedirectResponse(url, status_code=302)

    return app


class MinimalCallbackServer:
    """
    Minimal HTTP server for OAuth callbacks when running over stdio.
    Only starts when needed and runs in a background thread.
    """

    def __init__(self, host: str = "localhost", port: int = 8000) -> None:
        self.host = host
        self.port = port
        self.app = create_callback_app()
        self.server: Optional[uvicorn.Server] = None
        self.server_thread: Optional[threading.Thread] = None
        self.is_running = False

    def start(self) -> Tuple[bool, str]:
        """
        Start the callback server.

        Returns:
            Tuple of (success: bool, error_message: str)
        """
        if self.is_running:
            logger.info("Callback server is already running")
            return True, ""

        # Check if port is available
        try:
            with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
                s.bind((self.host, self.port))
        except OSError:
            error_msg = f"Port {self.port} is already in use"
            logger.error(error_msg)
            return False, error_msg

        def run_server() -> None:
            """Run the server in a separate thread."""
            try:
                config = uvicorn.Config(
                    self.app,
                    host=self.host,
                    port=self.port,
                    log_level="warning",
                    access_log=False,
                )
                self.server = uvicorn.Server(config)
                asyncio.run(self.server.serve())
            except Exception as e:
                logger.error(f"Callback server error: {e}", exc_info=True)
                self.is_running = False

        self.server_thread = threading.Thread(target=run_server, daemon=True)
        self.server_thread.start()

        # Wait for server to start
        max_wait = 3.0
        start_time = time.time()
        while time.time() - start_time < max_wait:
            with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
                if s.connect_ex((self.host, self.port)) == 0:
                    self.is_running = True
                    logger.info(f"Callback server started on {self.host}:{self.port}")
                    return True, ""
            time.sleep(0.1)

        error_msg = f"Failed to start callback server on {self.host}:{self.port}"
        logger.error(error_msg)
        return False, error_msg

    def stop(self) -> None:
        """Stop the callback server."""
        if not self.is_running:
            return

        if self.server:
            self.server.should_exit = True
        if self.server_thread and self.server_thread.is_alive():
            self.server_thread.join(timeout=3.0)

        self.is_running = False
        logger.info("Callback server stopped")


# Global instance for stdio mode
_callback_server: Optional[MinimalCallbackServer] = None


def callback_address(config: OAuthConfig) -> Optional[Tuple[str, int]]:
    """Host and port the callback routes are reachable on, from DOUBLEME_APP_URL."""
    if not config.app_origin:
        return None
    parsed = urlparse(config.app_origin)
    host = parsed.hostname or "localhost"
    port = parsed.port or (443 if parsed.scheme == "https" else 80)
    return host, port


def ensure_callback_server(config: Optional[OAuthConfig] = None) -> Tuple[bool, str]:
    """
    Ensure the OAuth callback routes are being served locally.

    Returns:
        Tuple of (success: bool, error_message: str)
    """
    global _callback_server

    config = config or get_oauth_config()
    address = callback_address(config)
    if address is None:
        return False, "App URL not configured. Set DOUBLEME_APP_URL."

    if _callback_server is None:
        host, port = address
        logger.info(f"Creating callback server on {host}:{port}")
        _callback_server = MinimalCallbackServer(host, port)

    return _callback_server.start()


def cleanup_callback_server() -> None:
    """Stop the callback server if it was started."""
    global _callback_server
    if _callback_server:
        _callback_server.stop()
        _callback_server = None
