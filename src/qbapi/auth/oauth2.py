"""
OAuth2 token manager: authorization-code and refresh-token exchange.

Talks to the token endpoint resolved by endpoint discovery. Tokens are
returned to the caller and never written anywhere; keeping them across
process restarts is up to the host application.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any
from urllib.parse import urlencode

import httpx

from qbapi.auth.discovery import EndpointSet
from qbapi.config import DEFAULT_SCOPE, DEFAULT_TIMEOUT
from qbapi.exceptions import AuthError

logger = logging.getLogger("qbapi.auth.oauth2")

_TOKEN_FIELDS = {"access_token", "refresh_token", "token_type", "expires_in", "created_at"}


@dataclass(frozen=True)
class Credentials:
    """OAuth2 client credentials of the Intuit app."""

    client_id: str
    client_secret: str

    def __repr__(self) -> str:
        return f"Credentials(client_id={self.client_id!r}, client_secret='***')"


@dataclass
class Token:
    """Holds OAuth2 token data with expiry tracking."""

    access_token: str
    refresh_token: str = ""
    token_type: str = "bearer"
    expires_in: int = 3600
    created_at: float = 0.0
    extra: dict[str, Any] = field(default_factory=dict)

    @property
    def expires_at(self) -> float:
        return self.created_at + self.expires_in

    @property
    def is_expired(self) -> bool:
        """Check if the access token is expired (with 5-minute buffer)."""
        return time.time() > (self.expires_at - 300)

    def to_dict(self) -> dict[str, Any]:
        return {
            "access_token": self.access_token,
            "refresh_token": self.refresh_token,
            "token_type": self.token_type,
            "expires_in": self.expires_in,
            "created_at": self.created_at,
            **self.extra,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Token:
        """Rebuild a token from ``to_dict`` output or a raw token response."""
        return cls(
            access_token=data.get("access_token", ""),
            refresh_token=data.get("refresh_token", ""),
            token_type=data.get("token_type", "bearer"),
            expires_in=int(data.get("expires_in") or 3600),
            created_at=float(data.get("created_at", 0.0)),
            extra={k: v for k, v in data.items() if k not in _TOKEN_FIELDS},
        )

    @classmethod
    def from_oauth_response(cls, data: dict[str, Any], created_at: float | None = None) -> Token:
        """Parse a standard OAuth2 token response."""
        return cls(
            access_token=data["access_token"],
            refresh_token=data.get("refresh_token", ""),
            token_type=data.get("token_type", "bearer"),
            expires_in=int(data.get("expires_in") or 3600),
            created_at=time.time() if created_at is None else created_at,
            extra={k: v for k, v in data.items() if k not in _TOKEN_FIELDS},
        )


class OAuth2TokenManager:
    """Exchanges authorization codes and refresh tokens for access tokens.

    Usage::

        manager = OAuth2TokenManager(endpoints, Credentials("id", "secret"))
        url = manager.build_authorization_url("https://myapp.com/callback", state="xyz")
        # ... the host redirects the user, Intuit calls back with ?code=...
        token = manager.exchange_code(code, "https://myapp.com/callback")
        token = manager.refresh(token=token)

    Each call is a single round trip; nothing is retried.
    """

    def __init__(
        self,
        endpoints: EndpointSet,
        credentials: Credentials,
        *,
        http_client: httpx.Client | None = None,
        timeout: float = DEFAULT_TIMEOUT,
        verify_tls: bool = True,
    ) -> None:
        self.endpoints = endpoints
        self.credentials = credentials
        self.timeout = timeout
        self.verify_tls = verify_tls
        self._http_client = http_client
        self._owns_client = http_client is None

    def _get_client(self) -> httpx.Client:
        """Get or create a reusable httpx client. A borrowed client is never replaced."""
        if self._http_client is None or (self._owns_client and self._http_client.is_closed):
            if not self.verify_tls:
                logger.warning("TLS certificate verification is disabled for token requests")
            self._http_client = httpx.Client(timeout=self.timeout, verify=self.verify_tls)
        elif self._http_client.is_closed:
            raise AuthError("HTTP client is closed")
        return self._http_client

    def close(self) -> None:
        """Close the HTTP client if this instance created it."""
        if self._owns_client and self._http_client and not self._http_client.is_closed:
            self._http_client.close()

    # ------------------------------------------------------------------
    # Authorization URL
    # ------------------------------------------------------------------

    def build_authorization_url(
        self,
        redirect_uri: str,
        scope: str | None = None,
        state: str | None = None,
    ) -> str:
        """Build the URL the user must visit to grant access.

        Args:
            redirect_uri: Where Intuit redirects after authorization.
            scope: Space-separated scopes; defaults to accounting, payments
                and basic profile access.
            state: Opaque CSRF protection value echoed back on the callback.

        Returns:
            The full authorization URL. Redirecting the user is the host's job.
        """
        params: dict[str, str] = {
            "client_id": self.credentials.client_id,
            "redirect_uri": redirect_uri,
            "response_type": "code",
            "scope": scope or DEFAULT_SCOPE,
        }
        if state is not None:
            params["state"] = state

        return f"{self.endpoints.authorization_endpoint}?{urlencode(params)}"

    # ------------------------------------------------------------------
    # Token exchange
    # ------------------------------------------------------------------

    def exchange_code(self, code: str, redirect_uri: str) -> Token:
        """Exchange an authorization code for tokens.

        Args:
            code: The authorization code from the callback URL.
            redirect_uri: The redirect URI used in the authorization request.

        Raises:
            AuthError: If the response carries no access token.
        """
        token = self._request_token({
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": redirect_uri,
        })
        logger.info("Exchanged authorization code for tokens")
        return token

    def refresh(self, refresh_token: str | None = None, *, token: Token | None = None) -> Token:
        """Obtain a new access token from a refresh token.

        Uses ``refresh_token`` when given, otherwise the refresh token held
        by ``token``.

        Raises:
            AuthError: If no refresh token is available or the response
                carries no access token.
        """
        refresh_token = refresh_token or (token.refresh_token if token else None)
        if not refresh_token:
            raise AuthError("No refresh token available. Please authenticate first.")

        new_token = self._request_token({
            "grant_type": "refresh_token",
            "refresh_token": refresh_token,
        })
        logger.info("Refreshed access token (expires in %ds)", new_token.expires_in)
        return new_token

    def _request_token(self, payload: dict[str, str]) -> Token:
        """POST a grant to the token endpoint and parse the token response."""
        client = self._get_client()
        grant_type = payload["grant_type"]
        logger.debug("Requesting %s grant at %s", grant_type, self.endpoints.token_endpoint)

        try:
            resp = client.post(
                self.endpoints.token_endpoint,
                data=payload,
                headers={"Accept": "application/json"},
                auth=(self.credentials.client_id, self.credentials.client_secret),
                timeout=self.timeout,
            )
        except httpx.HTTPError as e:
            raise AuthError(f"HTTP error during {grant_type} exchange: {e}") from e

        try:
            data = resp.json()
        except ValueError as e:
            raise AuthError(
                f"Invalid token response (HTTP {resp.status_code}): body is not JSON"
            ) from e

        if not isinstance(data, dict) or not data.get("access_token"):
            details = data if isinstance(data, dict) else {}
            logger.warning("Token endpoint returned no access token (HTTP %s)", resp.status_code)
            raise AuthError(
                "Invalid token response: missing access_token",
                error=details.get("error"),
                error_description=details.get("error_description"),
            )

        try:
            return Token.from_oauth_response(data)
        except (TypeError, ValueError) as e:
            raise AuthError(f"Invalid token response: {e}") from e
