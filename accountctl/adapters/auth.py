"""
Vendor authentication — header providers for ``HttpClient``.

    BearerToken            static token (Slack)
    BasicAuth              e-mail + API token (Jira)
    GraphAppCredentials    MSAL confidential client (Microsoft Graph)
    ClientCredentials      OAuth2 client-credentials grant (Zoom)
    GoogleServiceAccount   RS256 JWT assertion via python-jose (Admin SDK)

Token-based providers cache the access token until shortly before it
expires (MSAL keeps its own cache) and are safe to share across threads.
"""

from __future__ import annotations

import base64
import logging
import threading
import time
from abc import ABC, abstractmethod
from typing import Any

import msal
from jose import jwt
from jose.exceptions import JOSEError

from accountctl.adapters.http import DEFAULT_TIMEOUT, Opener, post_form
from accountctl.core.errors import AuthError, VendorError

logger = logging.getLogger(__name__)

# Refresh this many seconds before the vendor-declared expiry
EXPIRY_SKEW = 60

GOOGLE_TOKEN_URI = "https://oauth2.googleapis.com/token"
JWT_BEARER_GRANT = "urn:ietf:params:oauth:grant-type:jwt-bearer"
MS_AUTHORITY = "https://login.microsoftonline.com/{tenant}"


class AuthProvider(ABC):
    """Supplies request headers for one vendor."""

    @abstractmethod
    def headers(self) -> dict[str, str]:
        """Headers to attach to every request."""


class BearerToken(AuthProvider):
    def __init__(self, token: str):
        self._token = token

    def headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self._token}"}


class BasicAuth(AuthProvider):
    def __init__(self, username: str, password: str):
        raw = f"{username}:{password}".encode("utf-8")
        self._value = base64.b64encode(raw).decode("ascii")

    def headers(self) -> dict[str, str]:
        return {"Authorization": f"Basic {self._value}"}


class CachedTokenAuth(AuthProvider):
    """Base for providers that exchange credentials for an expiring token."""

    def __init__(self, *, provider: str, timeout: float = DEFAULT_TIMEOUT,
                 opener: Opener | None = None):
        self.provider = provider
        self.timeout = timeout
        self._opener = opener
        self._token: str | None = None
        self._expires_at = 0.0
        self._lock = threading.Lock()

    @abstractmethod
    def _request_token(self) -> dict[str, Any]:
        """Call the token endpoint and return its JSON body."""

    def access_token(self) -> str:
        with self._lock:
            if self._token and time.monotonic() < self._expires_at:
                return self._token
            try:
                body = self._request_token()
            except VendorError as e:
                # Token endpoints answer bad credentials with 400
                raise AuthError(
                    f"Token request failed: {e}", provider=self.provider
                ) from e
            if not isinstance(body, dict) or not body.get("access_token"):
                raise AuthError("Token endpoint returned no access_token", provider=self.provider)

            expires_in = int(body.get("expires_in") or 3600)
            self._token = str(body["access_token"])
            self._expires_at = time.monotonic() + max(expires_in - EXPIRY_SKEW, 0)
            logger.debug("%s: obtained access token (expires in %ss)", self.provider, expires_in)
            return self._token

    def invalidate(self) -> None:
        with self._lock:
            self._token = None
            self._expires_at = 0.0

    def headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.access_token()}"}


class ClientCredentials(CachedTokenAuth):
    """OAuth2 client-credentials grant.

    Secrets go in the form by default; Zoom expects them as HTTP basic
    auth (``basic_auth=True``) with an ``account_id``.
    """

    def __init__(
        self,
        token_url: str,
        client_id: str,
        client_secret: str,
        *,
        provider: str,
        scope: str | None = None,
        extra: dict[str, str] | None = None,
        basic_auth: bool = False,
        timeout: float = DEFAULT_TIMEOUT,
        opener: Opener | None = None,
    ):
        super().__init__(provider=provider, timeout=timeout, opener=opener)
        self.token_url = token_url
        self.client_id = client_id
        self._client_secret = client_secret
        self.scope = scope
        self.extra = dict(extra or {})
        self.basic_auth = basic_auth

    def _request_token(self) -> dict[str, Any]:
        form = {"grant_type": "client_credentials", **self.extra}
        headers: dict[str, str] = {}
        if self.scope:
            form["scope"] = self.scope
        if self.basic_auth:
            headers.update(BasicAuth(self.client_id, self._client_secret).headers())
        else:
            form["client_id"] = self.client_id
            form["client_secret"] = self._client_secret
        return post_form(
            self.token_url,
            form,
            provider=self.provider,
            headers=headers,
            timeout=self.timeout,
            opener=self._opener,
        )


class GraphAppCredentials(AuthProvider):
    """App-only Microsoft Graph token from an MSAL confidential client.

    MSAL caches the token and refreshes it when it nears expiry. The
    client application is built on first use; ``app`` replaces it.
    """

    def __init__(
        self,
        tenant_id: str,
        client_id: str,
        client_secret: str,
        *,
        scopes: list[str],
        provider: str = "microsoft-365",
        app: Any = None,
    ):
        self.tenant_id = tenant_id
        self.client_id = client_id
        self._client_secret = client_secret
        self.scopes = list(scopes)
        self.provider = provider
        self._app = app
        self._lock = threading.Lock()

    def _client(self) -> Any:
        if self._app is None:
            try:
                self._app = msal.ConfidentialClientApplication(
                    client_id=self.client_id,
                    client_credential=self._client_secret,
                    authority=MS_AUTHORITY.format(tenant=self.tenant_id),
                )
            except ValueError as e:
                raise AuthError(f"Invalid Microsoft tenant: {e}", provider=self.provider) from e
        return self._app

    def access_token(self) -> str:
        with self._lock:
            result = self._client().acquire_token_for_client(scopes=self.scopes)
        if not result or not result.get("access_token"):
            result = result or {}
            reason = (result.get("error_description") or result.get("error")
                      or "no access_token returned")
            raise AuthError(f"Token request failed: {reason}", provider=self.provider)
        return str(result["access_token"])

    def headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.access_token()}"}


class GoogleServiceAccount(CachedTokenAuth):
    """Service-account credentials with domain-wide delegation.

    ``credentials`` is the parsed service-account key file; ``subject``
    is the admin user to impersonate.
    """

    def __init__(
        self,
        credentials: dict[str, Any],
        scopes: list[str],
        *,
        subject: str | None = None,
        provider: str = "google-workspace",
        timeout: float = DEFAULT_TIMEOUT,
        opener: Opener | None = None,
    ):
        super().__init__(provider=provider, timeout=timeout, opener=opener)
        missing = [k for k in ("client_email", "private_key") if not credentials.get(k)]
        if missing:
            raise AuthError(
                f"Service account credentials missing: {', '.join(missing)}",
                provider=provider,
            )
        self.client_email = credentials["client_email"]
        self.token_uri = credentials.get("token_uri") or GOOGLE_TOKEN_URI
        self._private_key_pem = credentials["private_key"]
        self.scopes = list(scopes)
        self.subject = subject

    def build_assertion(self, now: int | None = None) -> str:
        """Signed JWT for the token exchange."""
        issued = int(now if now is not None else time.time())
        claims: dict[str, Any] = {
            "iss": self.client_email,
            "scope": " ".join(self.scopes),
            "aud": self.token_uri,
            "iat": issued,
            "exp": issued + 3600,
        }
        if self.subject:
            claims["sub"] = self.subject
        try:
            return jwt.encode(claims, self._private_key_pem, algorithm="RS256")
        except JOSEError as e:
            raise AuthError(f"Invalid service account private key: {e}",
                            provider=self.provider) from e

    def _request_token(self) -> dict[str, Any]:
        return post_form(
            self.token_uri,
            {"grant_type": JWT_BEARER_GRANT, "assertion": self.build_assertion()},
            provider=self.provider,
            timeout=self.timeout,
            opener=self._opener,
        )
