"""
Secret redaction for anything that leaves the process boundary.

Logs, the audit ledger, the job store and CLI output all pass payloads
through ``redact`` unless the operator explicitly opted in to seeing
secrets.
"""

from __future__ import annotations

from typing import Any

REDACTED = "***redacted***"

SENSITIVE_KEYS: frozenset[str] = frozenset({
    "password",
    "custompassword",
    "temppassword",
    "initialpassword",
    "secret",
    "clientsecret",
    "token",
    "accesstoken",
    "apitoken",
    "authorization",
    "privatekey",
})


def is_sensitive(key: str) -> bool:
    normalized = key.replace("_", "").replace("-", "").lower()
    return normalized in SENSITIVE_KEYS


def redact(value: Any) -> Any:
    """Return a deep copy of ``value`` with secret-bearing keys masked."""
    if isinstance(value, dict):
        return {
            k: (REDACTED if is_sensitive(str(k)) and v not in (None, "") else redact(v))
            for k, v in value.items()
        }
    if isinstance(value, list):
        return [redact(v) for v in value]
    if isinstance(value, tuple):
        return tuple(redact(v) for v in value)
    return value


def contains_redacted(value: Any) -> bool:
    """True if ``value`` went through ``redact`` and lost a secret."""
    if isinstance(value, dict):
        return any(contains_redacted(v) for v in value.values())
    if isinstance(value, (list, tuple)):
        return any(contains_redacted(v) for v in value)
    return value == REDACTED
