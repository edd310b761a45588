"""
Exception hierarchy for qbapi.

Every failure surfaced by the package derives from ``QuickBooksError`` so a
host can catch the whole family in one place, or pick out the specific
failure mode it wants to react to.
"""

from __future__ import annotations


class QuickBooksError(Exception):
    """Base exception for all qbapi errors."""


class DiscoveryError(QuickBooksError):
    """Raised when the OAuth discovery document cannot be resolved."""

    def __init__(self, environment: str, reason: str = "") -> None:
        self.environment = environment
        self.reason = reason
        message = f"Cannot discover endpoints for QuickBooks ({environment})"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)


class AuthError(QuickBooksError):
    """Raised when a token exchange or refresh yields no usable access token."""

    def __init__(
        self,
        message: str,
        *,
        error: str | None = None,
        error_description: str | None = None,
    ) -> None:
        self.error = error
        self.error_description = error_description
        if error:
            message = f"{message} ({error}: {error_description or 'no description'})"
        super().__init__(message)


class NetworkError(QuickBooksError):
    """Raised when the API call produced no parseable response body."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        self.status_code = status_code
        super().__init__(message)


class ApiError(QuickBooksError):
    """The API answered with a fault envelope.

    Carries the message and detail of the first error listed in the fault.
    """

    def __init__(
        self,
        message: str,
        detail: str = "",
        *,
        code: str | None = None,
        fault_type: str | None = None,
        status_code: int | None = None,
    ) -> None:
        self.message = message
        self.detail = detail
        self.code = code
        self.fault_type = fault_type
        self.status_code = status_code
        super().__init__(f"{message}: {detail}")


class MissingRealmIdError(QuickBooksError):
    """Raised for a company-scoped call made without a realm id.

    Only raised when the dispatcher is configured with ``require_realm_id``.
    """

    def __init__(self, path: str) -> None:
        self.path = path
        super().__init__(f"No realm id set for request to '{path}'")
