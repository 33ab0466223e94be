"""
Tests for the adapter layer — apply bookkeeping, HTTP transport,
authentication, registry and factory.
"""

import base64
import json
import socket
import urllib.error
import urllib.parse

import pytest

from accountctl.adapters.atlassian.jira import JiraProvisioner
from accountctl.adapters.auth import (
    BasicAuth,
    BearerToken,
    ClientCredentials,
    GoogleServiceAccount,
    GraphAppCredentials,
)
from accountctl.adapters.chat.slack import SlackProvisioner
from accountctl.adapters.factory import build_registry, missing_credentials
from accountctl.adapters.http import HttpClient, post_form
from accountctl.adapters.mock import MockProvisioner
from accountctl.adapters.outcome import ApplyOutcome, Step, StepWarning
from accountctl.adapters.registry import ProvisionerRegistry
from accountctl.core.config.loader import Settings
from accountctl.core.errors import (
    AuthError,
    ConflictError,
    NotFoundError,
    VendorError,
    VendorTimeoutError,
)


def _raise(exc):
    def step():
        raise exc
    return step


# ── Apply bookkeeping ───────────────────────────────────────────────


class TestApplyOutcome:
    def test_clean_run_is_success(self):
        outcome = ApplyOutcome("slack")
        outcome.run(Step("group", lambda: "ok"))
        assert outcome.to_result().status == "success"

    def test_run_returns_value(self):
        assert ApplyOutcome("slack").run(Step("lookup", lambda: 42)) == 42

    def test_step_failure_is_partial(self):
        outcome = ApplyOutcome("google-workspace")
        outcome.run(Step("license", _raise(VendorError("quota"))))

        result = outcome.to_result()
        assert result.status == "partial"
        assert result.errors == ["license: Vendor error: quota"]

    def test_required_failure_is_error(self):
        outcome = ApplyOutcome("microsoft-365")
        outcome.run(Step("licenses", _raise(VendorError("denied")), required=True))
        assert outcome.to_result().status == "error"

    def test_advisory_failure_is_warning(self):
        outcome = ApplyOutcome("slack")
        outcome.run(Step("channels", _raise(RuntimeError("boom")), advisory=True))

        result = outcome.to_result()
        assert result.status == "partial"
        assert result.errors == []
        assert result.warnings == ["channels: Unexpected error: boom"]

    def test_step_warning(self):
        outcome = ApplyOutcome("slack")
        outcome.run(Step("channel #x", _raise(StepWarning("Channel not found: x"))))
        assert outcome.to_result().warnings == ["channel #x: Channel not found: x"]

    def test_primary_failure(self):
        outcome = ApplyOutcome("zoom")
        result = outcome.fail("user", AuthError("expired token"))
        assert result.status == "error"
        assert result.errors == ["user: Authentication failed: expired token"]

    def test_concurrent_failures_in_step_order(self):
        outcome = ApplyOutcome("jira")
        outcome.run_all([
            Step("group a", _raise(VendorError("a"))),
            Step("group b", lambda: None),
            Step("group c", _raise(VendorError("c"))),
        ], concurrent=True)
        assert [e.split(":")[0] for e in outcome.errors] == ["group a", "group c"]


# ── HTTP transport ──────────────────────────────────────────────────


@pytest.fixture
def http(opener):
    return HttpClient("https://api.example.com/v1/", provider="test",
                      auth=BearerToken("tok"), opener=opener)


class TestHttpClient:
    def test_get_json(self, http, opener):
        opener.add({"id": 1})
        assert http.get("users/1") == {"id": 1}
        request = opener.requests[0]
        assert request.full_url == "https://api.example.com/v1/users/1"
        assert request.get_header("Authorization") == "Bearer tok"

    def test_params_drop_none(self, http):
        url = http.url_for("users", {"q": "a b", "cursor": None})
        assert url == "https://api.example.com/v1/users?q=a+b"

    def test_absolute_url_passthrough(self, http):
        assert http.url_for("https://other.example.com/x") == "https://other.example.com/x"

    def test_json_body(self, http, opener):
        opener.add(None, status=204)
        assert http.post("users", json_body={"name": "Jane"}) is None
        assert opener.sent_json() == {"name": "Jane"}
        assert opener.requests[0].get_header("Content-type") == "application/json"

    @pytest.mark.parametrize("status,error", [
        (401, AuthError),
        (403, AuthError),
        (404, NotFoundError),
        (409, ConflictError),
        (400, VendorError),
    ])
    def test_status_mapping(self, http, opener, status, error):
        opener.add({"error": {"message": "nope"}}, status=status)
        with pytest.raises(error) as exc:
            http.get("users/1")
        assert "nope" in str(exc.value)

    @pytest.mark.parametrize("status,retryable", [(429, True), (503, True), (400, False)])
    def test_retryable(self, http, opener, status, retryable):
        opener.add({"message": "slow down"}, status=status)
        with pytest.raises(VendorError) as exc:
            http.get("x")
        assert exc.value.retryable is retryable
        assert exc.value.status_code == status

    def test_oauth_style_error_message(self, http, opener):
        opener.add({"error": "invalid_grant", "error_description": "expired"}, status=400)
        with pytest.raises(VendorError, match="invalid_grant: expired"):
            http.get("x")

    def test_non_json_body(self, http, opener):
        opener.add(b"<html>maintenance</html>")
        with pytest.raises(VendorError, match="non-JSON"):
            http.get("x")

    def test_socket_timeout(self, http, opener):
        opener.add(urllib.error.URLError(socket.timeout("timed out")))
        with pytest.raises(VendorTimeoutError):
            http.get("x")

    def test_connection_error_is_retryable(self, http, opener):
        opener.add(urllib.error.URLError(ConnectionRefusedError("refused")))
        with pytest.raises(VendorError) as exc:
            http.get("x")
        assert exc.value.retryable

    def test_rebased_keeps_auth(self, http, opener):
        other = http.rebased("https://eu.example.com")
        opener.add({})
        other.get("ping")
        assert opener.requests[0].full_url == "https://eu.example.com/ping"
        assert opener.requests[0].get_header("Authorization") == "Bearer tok"

    def test_post_form(self, opener):
        opener.add({"access_token": "t"})
        post_form("https://login.example.com/token", {"grant_type": "client_credentials"},
                  provider="test", opener=opener)
        request = opener.requests[0]
        assert request.data == b"grant_type=client_credentials"
        assert request.get_header("Content-type") == "application/x-www-form-urlencoded"


# ── Authentication ──────────────────────────────────────────────────


class TestClientCredentials:
    def _auth(self, opener, **kwargs):
        return ClientCredentials("https://login.example.com/token", "cid", "csecret",
                                 provider="test", opener=opener, **kwargs)

    def test_token_cached(self, opener):
        opener.add({"access_token": "t1", "expires_in": 3600})
        auth = self._auth(opener)

        assert auth.headers() == {"Authorization": "Bearer t1"}
        assert auth.headers() == {"Authorization": "Bearer t1"}
        assert len(opener.requests) == 1

    def test_secret_in_form(self, opener):
        opener.add({"access_token": "t1"})
        self._auth(opener, scope="https://graph.microsoft.com/.default").access_token()
        form = urllib.parse.parse_qs(opener.requests[0].data.decode())
        assert form["client_secret"] == ["csecret"]
        assert form["scope"] == ["https://graph.microsoft.com/.default"]

    def test_basic_auth_variant(self, opener):
        opener.add({"access_token": "t1"})
        auth = self._auth(opener, basic_auth=True,
                          extra={"grant_type": "account_credentials", "account_id": "acct"})
        auth.access_token()

        request = opener.requests[0]
        expected = base64.b64encode(b"cid:csecret").decode()
        assert request.get_header("Authorization") == f"Basic {expected}"
        form = urllib.parse.parse_qs(request.data.decode())
        assert form["grant_type"] == ["account_credentials"]
        assert form["account_id"] == ["acct"]
        assert "client_secret" not in form

    def test_rejected_credentials(self, opener):
        opener.add({"error": "invalid_client"}, status=400)
        with pytest.raises(AuthError, match="invalid_client"):
            self._auth(opener).access_token()

    def test_missing_access_token(self, opener):
        opener.add({"token_type": "Bearer"})
        with pytest.raises(AuthError):
            self._auth(opener).access_token()

    def test_invalidate_refetches(self, opener):
        opener.add({"access_token": "t1"})
        opener.add({"access_token": "t2"})
        auth = self._auth(opener)
        auth.access_token()
        auth.invalidate()
        assert auth.access_token() == "t2"


class FakeMsalApp:
    """Stands in for msal.ConfidentialClientApplication."""

    def __init__(self, *results):
        self.results = list(results)
        self.scopes = []

    def acquire_token_for_client(self, scopes):
        self.scopes.append(scopes)
        return self.results.pop(0)


class TestGraphAppCredentials:
    def _auth(self, app):
        return GraphAppCredentials("tenant", "cid", "csecret",
                                   scopes=["https://graph.microsoft.com/.default"], app=app)

    def test_bearer_header(self):
        app = FakeMsalApp({"access_token": "g1", "token_type": "Bearer", "expires_in": 3599})
        assert self._auth(app).headers() == {"Authorization": "Bearer g1"}
        assert app.scopes == [["https://graph.microsoft.com/.default"]]

    def test_every_call_goes_through_msal_cache(self):
        app = FakeMsalApp({"access_token": "g1"}, {"access_token": "g1"})
        auth = self._auth(app)
        auth.access_token()
        auth.access_token()
        assert len(app.scopes) == 2

    def test_error_result(self):
        app = FakeMsalApp({"error": "invalid_client",
                           "error_description": "AADSTS7000215: Invalid client secret"})
        with pytest.raises(AuthError, match="AADSTS7000215") as exc:
            self._auth(app).access_token()
        assert exc.value.provider == "microsoft-365"

    def test_result_without_token(self):
        with pytest.raises(AuthError, match="no access_token returned"):
            self._auth(FakeMsalApp({})).access_token()

    def test_builds_msal_client(self, monkeypatch):
        built = {}

        def fake_client(**kwargs):
            built.update(kwargs)
            return FakeMsalApp({"access_token": "g2"})

        monkeypatch.setattr("accountctl.adapters.auth.msal.ConfidentialClientApplication",
                            fake_client)
        auth = GraphAppCredentials("contoso-id", "cid", "csecret", scopes=["s"])

        assert auth.access_token() == "g2"
        assert built == {"client_id": "cid", "client_credential": "csecret",
                         "authority": "https://login.microsoftonline.com/contoso-id"}


class TestBasicAuth:
    def test_header(self):
        value = BasicAuth("ops@example.com", "api-token").headers()["Authorization"]
        assert base64.b64decode(value.split()[1]) == b"ops@example.com:api-token"


class TestGoogleServiceAccount:
    @pytest.fixture
    def private_key(self):
        from cryptography.hazmat.primitives import serialization
        from cryptography.hazmat.primitives.asymmetric import rsa

        key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
        pem = key.private_bytes(
            serialization.Encoding.PEM,
            serialization.PrivateFormat.PKCS8,
            serialization.NoEncryption(),
        ).decode()
        return key, pem

    def test_missing_fields(self):
        with pytest.raises(AuthError, match="private_key"):
            GoogleServiceAccount({"client_email": "sa@p.iam.gserviceaccount.com"}, [])

    def test_assertion_signed(self, private_key):
        from cryptography.hazmat.primitives import hashes
        from cryptography.hazmat.primitives.asymmetric import padding

        key, pem = private_key
        auth = GoogleServiceAccount(
            {"client_email": "sa@p.iam.gserviceaccount.com", "private_key": pem},
            ["scope-a", "scope-b"],
            subject="admin@example.com",
        )
        header, claims, signature = auth.build_assertion(now=1_700_000_000).split(".")

        def decode(part):
            return base64.urlsafe_b64decode(part + "=" * (-len(part) % 4))

        body = json.loads(decode(claims))
        assert json.loads(decode(header)) == {"alg": "RS256", "typ": "JWT"}
        assert body["iss"] == "sa@p.iam.gserviceaccount.com"
        assert body["sub"] == "admin@example.com"
        assert body["scope"] == "scope-a scope-b"
        assert body["exp"] - body["iat"] == 3600
        key.public_key().verify(decode(signature), f"{header}.{claims}".encode(),
                                padding.PKCS1v15(), hashes.SHA256())

    def test_bad_key(self):
        auth = GoogleServiceAccount(
            {"client_email": "sa@p.iam.gserviceaccount.com", "private_key": "not a key"}, [],
        )
        with pytest.raises(AuthError, match="Invalid service account private key"):
            auth.build_assertion()

    def test_token_exchange(self, opener, private_key):
        _, pem = private_key
        opener.add({"access_token": "ya29", "expires_in": 3599})
        auth = GoogleServiceAccount(
            {"client_email": "sa@p.iam.gserviceaccount.com", "private_key": pem},
            ["scope-a"], opener=opener,
        )
        assert auth.access_token() == "ya29"
        form = urllib.parse.parse_qs(opener.requests[0].data.decode())
        assert form["grant_type"] == ["urn:ietf:params:oauth:grant-type:jwt-bearer"]
        assert opener.requests[0].full_url == "https://oauth2.googleapis.com/token"


# ── Registry ────────────────────────────────────────────────────────


class TestRegistry:
    def test_register_and_get(self):
        registry = ProvisionerRegistry()
        mock = MockProvisioner("slack")
        registry.register(mock)
        assert registry.get("slack") is mock
        assert "slack" in registry
        assert "zoom" not in registry

    def test_unregister(self):
        registry = ProvisionerRegistry()
        registry.register(MockProvisioner("slack"))
        registry.unregister("slack")
        assert registry.list_providers() == []

    def test_mock_mode_resolves_everything(self, mock_registry):
        assert len(mock_registry.list_providers()) == 5
        assert isinstance(mock_registry.get("jira"), MockProvisioner)
        assert mock_registry.get("jira") is mock_registry.get("jira")
        assert mock_registry.get("salesforce") is None

    def test_provider_status(self):
        registry = ProvisionerRegistry()
        registry.register(MockProvisioner("zoom", available=False))
        status = registry.provider_status()
        assert status["zoom"]["registered"] is True
        assert status["zoom"]["available"] is False
        assert status["slack"]["registered"] is False


class TestMockProvisioner:
    def test_stable_ids(self, jane):
        mock = MockProvisioner("slack")
        validated = mock.validate(jane)
        first = mock.apply(validated)
        second = mock.apply(validated)
        assert first.external_ids == second.external_ids
        assert first.metadata["created"] is True
        assert second.metadata["created"] is False

    def test_validates_like_real_adapter(self, jane):
        from accountctl.core.errors import ValidationError

        with pytest.raises(ValidationError):
            MockProvisioner("zoom").validate({**jane, "licenseType": "gold"})

    def test_describe_defaults(self):
        info = MockProvisioner("slack").describe()
        assert info["id"] == "slack"
        assert info["defaults"]["defaultChannels"] == ["general"]
        assert info["defaults"]["userRole"] == "member"


# ── Factory ─────────────────────────────────────────────────────────


SLACK_ENV = {"SLACK_SCIM_TOKEN": "xoxp-1", "SLACK_BOT_TOKEN": "xoxb-1"}
JIRA_ENV = {"JIRA_EMAIL": "ops@example.com", "JIRA_API_TOKEN": "t"}


class TestFactory:
    def test_missing_credentials(self):
        assert missing_credentials("slack", {"SLACK_SCIM_TOKEN": "x"}) == ["SLACK_BOT_TOKEN"]
        assert missing_credentials("google-workspace", {}) == ["GOOGLE_CREDENTIALS_JSON"]

    def test_no_credentials_no_providers(self):
        assert build_registry(Settings(), environ={}).list_providers() == []

    def test_registers_configured_providers(self):
        registry = build_registry(Settings(), environ=SLACK_ENV)
        assert isinstance(registry.get("slack"), SlackProvisioner)
        assert registry.list_providers() == ["slack"]

    def test_jira_needs_site(self):
        assert build_registry(Settings(), environ=JIRA_ENV).get("jira") is None

        registry = build_registry(Settings(), environ={**JIRA_ENV, "JIRA_SITE": "acme"})
        jira = registry.get("jira")
        assert isinstance(jira, JiraProvisioner)
        assert jira.client.site == "https://acme.atlassian.net"

    def test_enabled_providers_filter(self):
        settings = Settings(enabled_providers=["jira"])
        assert build_registry(settings, environ=SLACK_ENV).get("slack") is None

    def test_bad_google_credentials_skipped(self):
        env = {"GOOGLE_CREDENTIALS_JSON": "{not json", "GOOGLE_ADMIN_SUBJECT": "a@example.com"}
        assert build_registry(Settings(), environ=env).get("google-workspace") is None

    def test_google_registered(self):
        creds = json.dumps({"client_email": "sa@p.iam.gserviceaccount.com", "private_key": "k"})
        env = {"GOOGLE_CREDENTIALS_JSON": creds, "GOOGLE_ADMIN_SUBJECT": "admin@example.com"}
        assert build_registry(Settings(), environ=env).get("google-workspace") is not None

    def test_microsoft_uses_msal(self):
        env = {"MS_GRAPH_TENANT_ID": "t", "MS_GRAPH_CLIENT_ID": "c", "MS_GRAPH_CLIENT_SECRET": "s"}
        microsoft = build_registry(Settings(), environ=env).get("microsoft-365")
        auth = microsoft.client.http.auth
        assert isinstance(auth, GraphAppCredentials)
        assert auth.scopes == ["https://graph.microsoft.com/.default"]

    def test_mock(self):
        assert build_registry(Settings(), environ={}, mock=True).mock_mode
