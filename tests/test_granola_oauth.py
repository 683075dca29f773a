"""Unit tests for the Granola OAuth client."""

import os
import shutil
import sys
import tempfile
from unittest.mock import Mock, patch
from urllib.parse import parse_qs, urlsplit

import pytest
import requests

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "../src"))

from doubleme_connect.auth.granola_oauth import (
    GranolaOAuthClient,
    MetadataCache,
    OAuthMetadata,
    add_query_params,
)
from doubleme_connect.auth.oauth_config import OAuthConfig
from doubleme_connect.auth.pending_store import LocalPendingAuthorizationStore
from doubleme_connect.auth.pkce import compute_code_challenge
from doubleme_connect.auth.registration_store import (
    ClientRegistration,
    LocalClientRegistrationStore,
)
from doubleme_connect.auth.token_store import LocalDirectoryTokenStore, TokenResponse
from doubleme_connect.utils.errors import (
    ConfigurationMissingError,
    DiscoveryError,
    RegistrationError,
    TokenExchangeError,
)

METADATA = {
    "authorization_endpoint": "https://auth.granola.test/authorize",
    "token_endpoint": "https://auth.granola.test/token",
    "registration_endpoint": "https://auth.granola.test/register",
    "scopes_supported": ["openid", "offline_access"],
}


def make_response(status=200, json_data=None, text=""):
    response = Mock()
    response.status_code = status
    response.ok = 200 <= status < 300
    response.text = text
    if json_data is not None:
        response.json.return_value = json_data
    else:
        response.json.side_effect = ValueError("no json")
    return response


def make_config(temp_dir, app_url="https://app.example"):
    env = {"DOUBLEME_DATA_DIR": temp_dir}
    if app_url:
        env["DOUBLEME_APP_URL"] = app_url
    with patch.dict(os.environ, env, clear=True):
        return OAuthConfig()


class GranolaTestBase:
    def setup_method(self):
        self.temp_dir = tempfile.mkdtemp()
        self.config = make_config(self.temp_dir)
        self.session = Mock()
        self.session.get.return_value = make_response(json_data=METADATA)
        self.registrations = LocalClientRegistrationStore(
            os.path.join(self.temp_dir, "client.json")
        )
        self.tokens = LocalDirectoryTokenStore(os.path.join(self.temp_dir, "tokens"))
        self.pending = LocalPendingAuthorizationStore(
            os.path.join(self.temp_dir, "pending.json")
        )
        self.client = self.make_client(self.config)

    def make_client(self, config):
        return GranolaOAuthClient(
            config=config,
            registration_store=self.registrations,
            token_store=self.tokens,
            pending_store=self.pending,
            session=self.session,
        )

    def teardown_method(self):
        if os.path.exists(self.temp_dir):
            shutil.rmtree(self.temp_dir)


class TestMetadata(GranolaTestBase):
    """Tests for discovery and the metadata cache."""

    def test_metadata_fetched_once(self):
        self.client.get_metadata()
        self.client.get_metadata()
        assert self.session.get.call_count == 1

    def test_discovery_http_error(self):
        self.session.get.return_value = make_response(503, text="unavailable")
        with pytest.raises(DiscoveryError) as exc_info:
            self.client.get_metadata()
        assert exc_info.value.status == 503
        assert "503 unavailable" in str(exc_info.value)

    def test_discovery_network_error(self):
        self.session.get.side_effect = requests.ConnectionError("refused")
        with pytest.raises(DiscoveryError):
            self.client.get_metadata()

    def test_discovery_missing_fields(self):
        self.session.get.return_value = make_response(json_data={"token_endpoint": "x"})
        with pytest.raises(DiscoveryError) as exc_info:
            self.client.get_metadata()
        assert "authorization_endpoint" in str(exc_info.value)

    def test_discovery_document_not_an_object(self):
        self.session.get.return_value = make_response(json_data=[])
        with pytest.raises(DiscoveryError) as exc_info:
            self.client.get_metadata()
        assert "not a JSON object" in str(exc_info.value)

    def test_failed_fetch_is_not_cached(self):
        self.session.get.return_value = make_response(500)
        with pytest.raises(DiscoveryError):
            self.client.get_metadata()

        self.session.get.return_value = make_response(json_data=METADATA)
        assert self.client.get_metadata().token_endpoint == METADATA["token_endpoint"]

    def test_scope_falls_back_to_defaults(self):
        data = dict(METADATA)
        del data["scopes_supported"]
        assert OAuthMetadata.from_dict(data).scope == "openid profile email offline_access"

    def test_cache_ttl(self):
        now = [0.0]
        fetch = Mock(return_value=OAuthMetadata.from_dict(METADATA))
        cache = MetadataCache(fetch, ttl_seconds=60, clock=lambda: now[0])

        cache.get()
        now[0] = 59
        cache.get()
        assert fetch.call_count == 1

        now[0] = 61
        cache.get()
        assert fetch.call_count == 2

        cache.invalidate()
        cache.get()
        assert fetch.call_count == 3


class TestRegistration(GranolaTestBase):
    """Tests for Dynamic Client Registration."""

    def test_registers_public_pkce_client(self):
        self.session.post.return_value = make_response(201, json_data={"client_id": "cid"})

        registration = self.client.get_or_register_client("https://app.example/cb")

        assert registration.client_id == "cid"
        url = self.session.post.call_args[0][0]
        payload = self.session.post.call_args[1]["json"]
        assert url == METADATA["registration_endpoint"]
        assert payload["redirect_uris"] == ["https://app.example/cb"]
        assert payload["client_name"] == "DoubleMe"
        assert payload["grant_types"] == ["authorization_code", "refresh_token"]
        assert payload["response_types"] == ["code"]
        assert payload["token_endpoint_auth_method"] == "none"
        assert payload["code_challenge_method"] == "S256"
        assert payload["application_type"] == "web"
        assert self.registrations.get().client_id == "cid"

    def test_reuses_matching_registration(self):
        self.registrations.save(
            ClientRegistration(client_id="existing", redirect_uri="https://app.example/cb")
        )
        registration = self.client.get_or_register_client("https://app.example/cb")
        assert registration.client_id == "existing"
        self.session.post.assert_not_called()

    def test_redirect_uri_change_re_registers(self):
        self.registrations.save(
            ClientRegistration(client_id="old-client", redirect_uri="https://old.example/cb")
        )
        self.session.post.return_value = make_response(
            201, json_data={"client_id": "new-client", "client_secret": "s3cret"}
        )

        with patch.object(
            self.registrations, "clear", wraps=self.registrations.clear
        ) as mock_clear:
            registration = self.client.get_or_register_client("https://new.example/cb")

        mock_clear.assert_called_once()
        self.session.post.assert_called_once()
        assert registration.client_id == "new-client"
        stored = self.registrations.get()
        assert stored.redirect_uri == "https://new.example/cb"
        assert stored.client_secret == "s3cret"

    def test_registration_rejected(self):
        self.session.post.return_value = make_response(400, text="invalid_redirect_uri")
        with pytest.raises(RegistrationError) as exc_info:
            self.client.get_or_register_client("https://app.example/cb")
        assert "400 invalid_redirect_uri" in str(exc_info.value)
        assert self.registrations.get() is None

    def test_registration_without_client_id(self):
        self.session.post.return_value = make_response(201, json_data={})
        with pytest.raises(RegistrationError):
            self.client.get_or_register_client("https://app.example/cb")


class TestConnect(GranolaTestBase):
    """Tests for the authorize URL and start_connect."""

    def test_authorize_url(self):
        self.session.post.return_value = make_response(201, json_data={"client_id": "cid"})

        url = self.client.build_authorize_url("https://app.example/cb", "state-1", "verifier-1")

        parts = urlsplit(url)
        assert f"{parts.scheme}://{parts.netloc}{parts.path}" == METADATA["authorization_endpoint"]
        query = parse_qs(parts.query)
        assert query["response_type"] == ["code"]
        assert query["client_id"] == ["cid"]
        assert query["redirect_uri"] == ["https://app.example/cb"]
        assert query["scope"] == ["openid offline_access"]
        assert query["state"] == ["state-1"]
        assert query["code_challenge"] == [compute_code_challenge("verifier-1")]
        assert query["code_challenge_method"] == ["S256"]

    def test_start_connect_stores_pending(self):
        self.session.post.return_value = make_response(201, json_data={"client_id": "cid"})

        url = self.client.start_connect("user-1", "/projects/3")

        state = parse_qs(urlsplit(url).query)["state"][0]
        pending = self.pending.consume(state)
        assert pending.user_id == "user-1"
        assert pending.return_path == "/projects/3"
        assert parse_qs(urlsplit(url).query)["code_challenge"] == [
            compute_code_challenge(pending.code_verifier)
        ]
        assert parse_qs(urlsplit(url).query)["redirect_uri"] == [
            "https://app.example/api/auth/granola/callback"
        ]

    def test_start_connect_without_origin(self):
        client = self.make_client(make_config(self.temp_dir, app_url=None))
        with pytest.raises(ConfigurationMissingError):
            client.start_connect("user-1")
        assert self.pending.count() == 0

    def test_start_connect_discovery_failure_stores_nothing(self):
        self.session.get.return_value = make_response(503, text="unavailable")
        with pytest.raises(DiscoveryError):
            self.client.start_connect("user-1")
        assert self.pending.count() == 0

    def test_add_query_params_keeps_existing(self):
        url = add_query_params("https://a.test/authorize?tenant=x", {"state": "s 1"})
        assert parse_qs(urlsplit(url).query) == {"tenant": ["x"], "state": ["s 1"]}


class TestExchange(GranolaTestBase):
    """Tests for the code exchange and stored tokens."""

    def setup_method(self):
        super().setup_method()
        self.registrations.save(
            ClientRegistration(client_id="cid", redirect_uri="https://app.example/cb")
        )

    def test_exchange_posts_form(self):
        self.session.post.return_value = make_response(
            json_data={"access_token": "at", "refresh_token": "rt", "expires_in": 3600}
        )

        tokens = self.client.exchange_code("code-1", "verifier-1", "https://app.example/cb")

        assert tokens == TokenResponse("at", "rt", 3600.0)
        args, kwargs = self.session.post.call_args
        assert args[0] == METADATA["token_endpoint"]
        assert kwargs["data"] == {
            "grant_type": "authorization_code",
            "code": "code-1",
            "redirect_uri": "https://app.example/cb",
            "code_verifier": "verifier-1",
            "client_id": "cid",
        }
        assert kwargs["headers"]["Content-Type"] == "application/x-www-form-urlencoded"

    def test_exchange_includes_secret_when_registered(self):
        self.registrations.save(
            ClientRegistration(
                client_id="cid", client_secret="sec", redirect_uri="https://app.example/cb"
            )
        )
        self.session.post.return_value = make_response(json_data={"access_token": "at"})

        self.client.exchange_code("code-1", "verifier-1", "https://app.example/cb")

        assert self.session.post.call_args[1]["data"]["client_secret"] == "sec"

    def test_exchange_rejected(self):
        self.session.post.return_value = make_response(400, text="x" * 2000)
        with pytest.raises(TokenExchangeError) as exc_info:
            self.client.exchange_code("bad", "verifier-1", "https://app.example/cb")
        assert exc_info.value.status == 400
        assert len(exc_info.value.body) <= 503

    def test_exchange_without_access_token(self):
        self.session.post.return_value = make_response(json_data={"token_type": "bearer"})
        with pytest.raises(TokenExchangeError):
            self.client.exchange_code("code-1", "verifier-1", "https://app.example/cb")

    def test_exchange_without_registration(self):
        self.registrations.clear()
        with pytest.raises(TokenExchangeError):
            self.client.exchange_code("code-1", "verifier-1", "https://app.example/cb")
        self.session.post.assert_not_called()

    def test_access_token_lifecycle(self):
        assert self.client.get_access_token("user-1") is None
        assert not self.client.is_connected("user-1")

        self.client.save_tokens("user-1", TokenResponse("at", "rt", 3600))
        assert self.client.get_access_token("user-1") == "at"
        assert self.client.is_connected("user-1")

    def test_expired_token_is_not_refreshed(self):
        self.client.save_tokens("user-1", TokenResponse("at", "rt", -5))
        assert self.client.get_access_token("user-1") is None
        self.session.post.assert_not_called()

    def test_reset_connection(self):
        self.client.save_tokens("user-1", TokenResponse("at-1"))
        self.client.save_tokens("user-2", TokenResponse("at-2"))

        self.client.reset_connection("user-1")

        assert self.registrations.get() is None
        assert self.client.get_access_token("user-1") is None
        assert self.client.get_access_token("user-2") == "at-2"

    def test_reset_connection_refetches_metadata(self):
        self.client.get_metadata()
        self.client.reset_connection("user-1")
        self.client.get_metadata()
        assert self.session.get.call_count == 2
