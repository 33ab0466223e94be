"""
JSON-over-HTTP transport shared by every vendor client.

Built on ``urllib.request``. Maps transport and HTTP failures onto the
provisioning error taxonomy so adapters never see raw ``HTTPError``s:

    401 / 403           → AuthError
    404                 → NotFoundError
    409                 → ConflictError
    429 / 5xx           → VendorError(retryable=True)
    other 4xx           → VendorError
    unparseable body    → VendorError
    socket timeout      → VendorTimeoutError
"""

from __future__ import annotations

import json
import logging
import socket
import urllib.error
import urllib.parse
import urllib.request
from typing import TYPE_CHECKING, Any, Callable

from accountctl.core.errors import (
    AuthError,
    ConflictError,
    NotFoundError,
    VendorError,
    VendorTimeoutError,
)

if TYPE_CHECKING:
    from accountctl.adapters.auth import AuthProvider

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30.0

# urlopen-compatible callable: (request, timeout=...) → response
Opener = Callable[..., Any]


def _extract_message(body: Any, fallback: str) -> str:
    """Pull a human-readable message out of a vendor error payload."""
    if isinstance(body, dict):
        err = body.get("error")
        if isinstance(err, dict) and err.get("message"):
            return str(err["message"])
        if isinstance(err, str) and err:
            desc = body.get("error_description")
            return f"{err}: {desc}" if desc else err
        for key in ("detail", "message", "errorMessages", "errors"):
            val = body.get(key)
            if isinstance(val, list) and val:
                return "; ".join(str(v) for v in val)
            if isinstance(val, dict) and val:
                return "; ".join(f"{k}: {v}" for k, v in val.items())
            if val:
                return str(val)
    if isinstance(body, str) and body.strip():
        return body.strip()[:200]
    return fallback


def _decode(raw: bytes) -> Any:
    if not raw:
        return None
    text = raw.decode("utf-8", errors="replace")
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        return text


def map_http_error(
    status: int,
    body: Any,
    *,
    provider: str,
    method: str,
    url: str,
) -> VendorError | AuthError:
    """Translate an HTTP status + payload into a provisioning error."""
    message = _extract_message(body, f"HTTP {status}")
    context = f"{method} {urllib.parse.urlsplit(url).path} → {status}: {message}"

    if status in (401, 403):
        return AuthError(context, provider=provider)
    if status == 404:
        return NotFoundError(context, provider=provider, status_code=status, payload=body)
    if status == 409:
        return ConflictError(context, provider=provider, status_code=status, payload=body)
    retryable = status == 429 or status >= 500
    return VendorError(
        context,
        provider=provider,
        status_code=status,
        retryable=retryable,
        payload=body,
    )


def send(
    request: urllib.request.Request,
    *,
    provider: str,
    timeout: float,
    opener: Opener | None = None,
) -> Any:
    """Send a prepared request and return the decoded body.

    Raises:
        AuthError, VendorError, VendorTimeoutError.
    """
    opener = opener or urllib.request.urlopen
    method = request.get_method()
    url = request.full_url

    try:
        with opener(request, timeout=timeout) as resp:
            raw = resp.read()
    except urllib.error.HTTPError as e:
        try:
            body = _decode(e.read() or b"")
        except OSError:
            body = None
        raise map_http_error(e.code, body, provider=provider, method=method, url=url) from e
    except urllib.error.URLError as e:
        if isinstance(e.reason, (socket.timeout, TimeoutError)):
            raise VendorTimeoutError(
                f"{method} {url} exceeded {timeout:.0f}s", provider=provider
            ) from e
        raise VendorError(
            f"{method} {url} failed: {e.reason}", provider=provider, retryable=True
        ) from e
    except (socket.timeout, TimeoutError) as e:
        raise VendorTimeoutError(
            f"{method} {url} exceeded {timeout:.0f}s", provider=provider
        ) from e

    body = _decode(raw)
    if raw and isinstance(body, str):
        raise VendorError(
            f"{method} {url} returned a non-JSON body", provider=provider, payload=body
        )
    return body


class HttpClient:
    """Small JSON client bound to one vendor base URL and one auth provider."""

    def __init__(
        self,
        base_url: str,
        *,
        provider: str = "",
        auth: AuthProvider | None = None,
        timeout: float = DEFAULT_TIMEOUT,
        headers: dict[str, str] | None = None,
        opener: Opener | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.provider = provider
        self.auth = auth
        self.timeout = timeout
        self._headers = dict(headers or {})
        self._opener = opener

    def rebased(self, base_url: str) -> HttpClient:
        """Same auth and settings, different base URL."""
        return HttpClient(
            base_url,
            provider=self.provider,
            auth=self.auth,
            timeout=self.timeout,
            headers=self._headers,
            opener=self._opener,
        )

    def url_for(self, path: str, params: dict[str, Any] | None = None) -> str:
        """Absolute URL for ``path`` (absolute URLs pass through)."""
        if path.startswith(("http://", "https://")):
            url = path
        else:
            url = f"{self.base_url}/{path.lstrip('/')}"
        if params:
            clean = {k: v for k, v in params.items() if v is not None}
            sep = "&" if "?" in url else "?"
            url = f"{url}{sep}{urllib.parse.urlencode(clean, doseq=True)}"
        return url

    def request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        json_body: Any = None,
        headers: dict[str, str] | None = None,
    ) -> Any:
        """Perform a request and return the decoded JSON body (or None)."""
        url = self.url_for(path, params)
        all_headers = {"Accept": "application/json", **self._headers}
        if self.auth is not None:
            all_headers.update(self.auth.headers())
        if headers:
            all_headers.update(headers)

        data = None
        if json_body is not None:
            data = json.dumps(json_body).encode("utf-8")
            all_headers.setdefault("Content-Type", "application/json")

        req = urllib.request.Request(url, data=data, headers=all_headers, method=method)
        logger.debug("%s %s %s", self.provider or "http", method, url)
        return send(req, provider=self.provider, timeout=self.timeout, opener=self._opener)

    def get(self, path: str, **kwargs: Any) -> Any:
        return self.request("GET", path, **kwargs)

    def post(self, path: str, **kwargs: Any) -> Any:
        return self.request("POST", path, **kwargs)

    def put(self, path: str, **kwargs: Any) -> Any:
        return self.request("PUT", path, **kwargs)

    def patch(self, path: str, **kwargs: Any) -> Any:
        return self.request("PATCH", path, **kwargs)

    def delete(self, path: str, **kwargs: Any) -> Any:
        return self.request("DELETE", path, **kwargs)


def post_form(
    url: str,
    form: dict[str, str],
    *,
    provider: str,
    headers: dict[str, str] | None = None,
    timeout: float = DEFAULT_TIMEOUT,
    opener: Opener | None = None,
) -> Any:
    """POST an ``application/x-www-form-urlencoded`` body (token endpoints)."""
    data = urllib.parse.urlencode(form).encode("utf-8")
    all_headers = {
        "Accept": "application/json",
        "Content-Type": "application/x-www-form-urlencoded",
        **(headers or {}),
    }
    req = urllib.request.Request(url, data=data, headers=all_headers, method="POST")
    return send(req, provider=provider, timeout=timeout, opener=opener)
