"""
Error taxonomy — what can go wrong while provisioning an account.

Adapters raise these; the orchestrator and the per-step bookkeeping
convert them into Result entries at their boundaries. A partial failure
is never an exception: it is a ``Result.status`` value.

    ProvisioningError
    ├── ValidationError      bad/missing input, no vendor call made
    ├── AuthError            vendor rejected our credentials
    ├── VendorError          vendor call failed (rate limit, 5xx, bad payload)
    │   ├── NotFoundError
    │   └── ConflictError
    └── VendorTimeoutError   vendor call exceeded its time budget
"""

from __future__ import annotations


class ProvisioningError(Exception):
    """Base class for every provisioning failure."""

    kind = "error"
    label = "Provisioning error"

    def __init__(self, message: str, *, provider: str = "") -> None:
        super().__init__(message)
        self.provider = provider

    @property
    def message(self) -> str:
        return str(self)

    def describe(self) -> str:
        """Operator-facing one-liner, prefixed with the error kind."""
        return f"{self.label}: {self}"


class ValidationError(ProvisioningError):
    """Input is structurally invalid. Never retried automatically."""

    kind = "validation"
    label = "Validation failed"

    def __init__(
        self,
        message: str,
        *,
        provider: str = "",
        errors: list[str] | None = None,
    ) -> None:
        super().__init__(message, provider=provider)
        self.errors = errors or [message]


class AuthError(ProvisioningError):
    """The vendor rejected the adapter's credentials."""

    kind = "auth"
    label = "Authentication failed"


class VendorError(ProvisioningError):
    """A vendor API call failed."""

    kind = "vendor"
    label = "Vendor error"

    def __init__(
        self,
        message: str,
        *,
        provider: str = "",
        status_code: int | None = None,
        retryable: bool = False,
        payload: object = None,
    ) -> None:
        super().__init__(message, provider=provider)
        self.status_code = status_code
        self.retryable = retryable
        self.payload = payload


class NotFoundError(VendorError):
    """The requested vendor resource does not exist (HTTP 404)."""


class ConflictError(VendorError):
    """The vendor reports the resource already exists (HTTP 409)."""


class VendorTimeoutError(ProvisioningError, TimeoutError):
    """A vendor call exceeded its allotted time."""

    kind = "timeout"
    label = "Timed out"


def describe_exception(exc: BaseException) -> str:
    """Render any exception the way it should appear in a Result."""
    if isinstance(exc, ProvisioningError):
        return exc.describe()
    return f"Unexpected error: {exc}"
