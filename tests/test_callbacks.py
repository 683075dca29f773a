"""Unit tests for the OAuth callback routes."""

import os
import shutil
import sys
import tempfile
from unittest.mock import Mock, patch
from urllib.parse import parse_qs, urlsplit

from fastapi.testclient import TestClient

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "../src"))

from doubleme_connect.auth.oauth_config import OAuthConfig
from doubleme_connect.auth.pending_store import LocalPendingAuthorizationStore
from doubleme_connect.auth.token_store import TokenResponse
from doubleme_connect.utils.errors import TokenExchangeError
from doubleme_connect.web.callbacks import (
    CallbackFlow,
    callback_address,
    complete_authorization,
    create_callback_app,
)

REDIRECT_URI = "https://app.example/api/auth/granola/callback"


def make_config(temp_dir, app_url="https://app.example"):
    env = {"DOUBLEME_DATA_DIR": temp_dir}
    if app_url:
        env["DOUBLEME_APP_URL"] = app_url
    with patch.dict(os.environ, env, clear=True):
        return OAuthConfig()


def query_of(url):
    return {k: v[0] for k, v in parse_qs(urlsplit(url).query).items()}


class TestCompleteAuthorization:
    """Tests for complete_authorization."""

    def setup_method(self):
        self.temp_dir = tempfile.mkdtemp()
        self.config = make_config(self.temp_dir)
        self.pending = LocalPendingAuthorizationStore(
            os.path.join(self.temp_dir, "pending.json")
        )
        self.exchange = Mock(return_value=TokenResponse("at", "rt", 3600))
        self.save = Mock()
        self.flow = self.make_flow("granola", REDIRECT_URI)

    def make_flow(self, provider, redirect_uri):
        return CallbackFlow(
            provider=provider,
            pending_store=self.pending,
            redirect_uri=redirect_uri,
            exchange_code=self.exchange,
            save_tokens=self.save,
            config=self.config,
        )

    def teardown_method(self):
        if os.path.exists(self.temp_dir):
            shutil.rmtree(self.temp_dir)

    def test_success_default_page(self):
        self.pending.store("state-1", "verifier-1", "user-1")

        url = complete_authorization(self.flow, {"code": "code-1", "state": "state-1"})

        assert url == "https://app.example/projects?granola=connected"
        self.exchange.assert_called_once_with("code-1", "verifier-1", REDIRECT_URI)
        self.save.assert_called_once_with("user-1", TokenResponse("at", "rt", 3600))

    def test_success_return_path(self):
        self.pending.store("state-1", "verifier-1", "user-1", "/projects/42")

        url = complete_authorization(self.flow, {"code": "code-1", "state": "state-1"})

        assert url == "https://app.example/projects/42?granola=connected"

    def test_unsafe_return_path_uses_default(self):
        self.pending.store("state-1", "verifier-1", "user-1", "//evil.example/x")

        url = complete_authorization(self.flow, {"code": "code-1", "state": "state-1"})

        assert url.startswith("https://app.example/projects?")

    def test_unknown_state(self):
        url = complete_authorization(self.flow, {"code": "code-1", "state": "forged"})

        assert url.startswith("https://app.example/projects?")
        assert query_of(url)["granola_error"] == "Invalid or expired state"
        self.exchange.assert_not_called()
        self.save.assert_not_called()

    def test_state_is_single_use(self):
        self.pending.store("state-1", "verifier-1", "user-1")
        complete_authorization(self.flow, {"code": "code-1", "state": "state-1"})

        url = complete_authorization(self.flow, {"code": "code-1", "state": "state-1"})

        assert query_of(url)["granola_error"] == "Invalid or expired state"
        assert self.exchange.call_count == 1

    def test_provider_error(self):
        url = complete_authorization(
            self.flow, {"error": "access_denied", "error_description": "User said no"}
        )
        assert query_of(url)["granola_error"] == "User said no"
        self.exchange.assert_not_called()

    def test_missing_code(self):
        url = complete_authorization(self.flow, {"state": "state-1"})
        assert query_of(url)["granola_error"] == "Missing code or state"

    def test_exchange_failure(self):
        self.pending.store("state-1", "verifier-1", "user-1")
        self.exchange.side_effect = TokenExchangeError(
            "Granola token exchange failed", status=400, body="invalid_grant"
        )

        url = complete_authorization(self.flow, {"code": "code-1", "state": "state-1"})

        assert query_of(url)["granola_error"] == "Granola token exchange failed: 400 invalid_grant"
        self.save.assert_not_called()

    def test_app_url_not_configured(self):
        self.pending.store("state-1", "verifier-1", "user-1")
        flow = self.make_flow("granola", None)

        url = complete_authorization(flow, {"code": "code-1", "state": "state-1"})

        assert query_of(url)["granola_error"] == "App URL not configured"
        self.exchange.assert_not_called()

    def test_google_calendar_params(self):
        self.pending.store("state-1", "verifier-1", "user-1")
        flow = self.make_flow("google_calendar", "https://app.example/cb")

        url = complete_authorization(flow, {"code": "code-1", "state": "state-1"})
        assert query_of(url) == {"google_calendar": "connected"}

        url = complete_authorization(flow, {"code": "code-1", "state": "state-1"})
        assert "google_calendar_error" in query_of(url)


class TestCallbackApp:
    """Tests for the FastAPI callback routes."""

    def setup_method(self):
        self.temp_dir = tempfile.mkdtemp()
        self.pending = LocalPendingAuthorizationStore(
            os.path.join(self.temp_dir, "pending.json")
        )
        self.exchange = Mock(return_value=TokenResponse("at"))
        self.flow = CallbackFlow(
            provider="granola",
            pending_store=self.pending,
            redirect_uri=REDIRECT_URI,
            exchange_code=self.exchange,
            save_tokens=Mock(),
            config=make_config(self.temp_dir),
        )
        app = create_callback_app(
            granola_flow_factory=lambda: self.flow,
            google_calendar_flow_factory=lambda: self.flow,
        )
        self.http = TestClient(app)

    def teardown_method(self):
        if os.path.exists(self.temp_dir):
            shutil.rmtree(self.temp_dir)

    def test_granola_route_redirects(self):
        self.pending.store("state-1", "verifier-1", "user-1")

        response = self.http.get(
            "/api/auth/granola/callback",
            params={"code": "code-1", "state": "state-1"},
            follow_redirects=False,
        )

        assert response.status_code == 302
        assert response.headers["location"] == "https://app.example/projects?granola=connected"

    def test_error_is_a_redirect_not_a_page(self):
        response = self.http.get(
            "/api/auth/google-calendar/callback",
            params={"code": "code-1", "state": "unknown"},
            follow_redirects=False,
        )

        assert response.status_code == 302
        assert "Invalid or expired state" in query_of(response.headers["location"])["granola_error"]


class TestCallbackAddress:
    def test_from_origin(self):
        temp_dir = tempfile.mkdtemp()
        try:
            assert callback_address(make_config(temp_dir, "http://localhost:3000")) == ("localhost", 3000)
            assert callback_address(make_config(temp_dir, "https://app.example")) == ("app.example", 443)
            assert callback_address(make_config(temp_dir, None)) is None
        finally:
            shutil.rmtree(temp_dir)
