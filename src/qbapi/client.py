"""
QuickBooks Online API client.

``QuickBooksAPI`` ties the pieces together: it resolves the environment's
OAuth endpoints when constructed, runs the token exchanges through
``OAuth2TokenManager`` and sends company-scoped calls through
``RequestDispatcher`` using the token and realm id held in its session.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

import httpx

from qbapi.auth.discovery import EndpointCache, EndpointDiscovery, EndpointSet
from qbapi.auth.oauth2 import Credentials, OAuth2TokenManager, Token
from qbapi.config import DEFAULT_SCOPE, DEFAULT_TIMEOUT, Environment, QuickBooksConfig
from qbapi.dispatcher import RequestDispatcher

logger = logging.getLogger("qbapi.client")


@dataclass
class Session:
    """The company a client talks to and the token it talks with."""

    realm_id: str | None = None
    token: Token | None = None


class QuickBooksAPI:
    """Authenticated client for the QuickBooks Online Accounting API.

    Usage::

        api = QuickBooksAPI("client-id", "client-secret", environment="sandbox")
        url = api.authorization_url("https://myapp.com/callback", state="xyz")
        # ... user authorizes, Intuit redirects with ?code=...&realmId=...
        api.exchange_code(code, "https://myapp.com/callback")
        api.set_realm_id(realm_id)

        customer = api.get("customer/1", {"minorversion": "65"})
        created = api.post({"DisplayName": "Acme"}, "customer")

    Construction fetches the environment's discovery document unless another
    client sharing the same endpoint cache already did.

    Raises:
        DiscoveryError: If the environment's endpoints cannot be resolved.
    """

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        token: Token | dict[str, Any] | None = None,
        realm_id: str | None = None,
        environment: Environment | str = Environment.SANDBOX,
        *,
        endpoint_cache: EndpointCache | None = None,
        http_client: httpx.Client | None = None,
        timeout: float = DEFAULT_TIMEOUT,
        verify_tls: bool = True,
        require_realm_id: bool = False,
        scope: str = DEFAULT_SCOPE,
    ) -> None:
        self.credentials = Credentials(client_id, client_secret)
        self.environment = Environment.parse(environment)
        self.session = Session(realm_id=realm_id)
        self.scope = scope
        self.set_token(token)

        if not verify_tls:
            logger.warning("TLS certificate verification is disabled")

        self._owns_http = http_client is None
        self._http = http_client or httpx.Client(timeout=timeout, verify=verify_tls)

        self._discovery = EndpointDiscovery(
            endpoint_cache, http_client=self._http, timeout=timeout, verify_tls=verify_tls,
        )
        try:
            self.endpoints: EndpointSet = self._discovery.discover(self.environment)
        except Exception:
            self.close()
            raise

        self._token_manager = OAuth2TokenManager(
            self.endpoints,
            self.credentials,
            http_client=self._http,
            timeout=timeout,
            verify_tls=verify_tls,
        )
        self._dispatcher = RequestDispatcher(
            self.environment,
            realm_id=lambda: self.session.realm_id,
            access_token=lambda: self.session.token.access_token if self.session.token else None,
            http_client=self._http,
            timeout=timeout,
            verify_tls=verify_tls,
            require_realm_id=require_realm_id,
        )

    @classmethod
    def from_config(
        cls,
        config: QuickBooksConfig,
        *,
        endpoint_cache: EndpointCache | None = None,
        http_client: httpx.Client | None = None,
    ) -> QuickBooksAPI:
        """Build a client from a loaded ``QuickBooksConfig``."""
        token = None
        if config.access_token or config.refresh_token:
            token = Token(
                access_token=config.access_token or "",
                refresh_token=config.refresh_token or "",
            )
        return cls(
            config.client_id,
            config.client_secret,
            token=token,
            realm_id=config.realm_id,
            environment=config.environment,
            endpoint_cache=endpoint_cache,
            http_client=http_client,
            timeout=config.timeout,
            verify_tls=config.verify_tls,
            require_realm_id=config.require_realm_id,
            scope=config.scope,
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def __enter__(self) -> QuickBooksAPI:
        return self

    def __exit__(self, *args: Any) -> None:
        self.close()

    def close(self) -> None:
        """Close the HTTP client unless it was supplied by the caller.

        The components borrow this client and never replace it, so calls made
        after closing raise ``NetworkError``, ``AuthError`` or ``DiscoveryError``.
        """
        if self._owns_http and not self._http.is_closed:
            self._http.close()

    # ------------------------------------------------------------------
    # Session
    # ------------------------------------------------------------------

    @property
    def token(self) -> Token | None:
        return self.session.token

    @property
    def realm_id(self) -> str | None:
        return self.session.realm_id

    def set_token(self, token: Token | dict[str, Any] | None) -> None:
        """Replace the session token. Mappings are read with ``Token.from_dict``."""
        if isinstance(token, dict):
            token = Token.from_dict(token)
        self.session.token = token

    def get_realm_id(self) -> str | None:
        return self.session.realm_id

    def set_realm_id(self, realm_id: str | None) -> None:
        self.session.realm_id = realm_id

    # ------------------------------------------------------------------
    # OAuth2
    # ------------------------------------------------------------------

    def authorization_url(
        self,
        redirect_uri: str,
        state: str | None = None,
        scope: str | None = None,
    ) -> str:
        """URL to send the user to for granting access to a company.

        ``scope`` defaults to the client's configured scope.
        """
        return self._token_manager.build_authorization_url(
            redirect_uri, scope=scope or self.scope, state=state
        )

    def exchange_code(self, code: str, redirect_uri: str) -> Token:
        """Exchange an authorization code and store the token in the session."""
        token = self._token_manager.exchange_code(code, redirect_uri)
        self.session.token = token
        return token

    def refresh_token(self, refresh_token: str | None = None) -> Token:
        """Refresh the access token and store the new token in the session.

        Falls back to the refresh token of the current session token.
        """
        token = self._token_manager.refresh(refresh_token, token=self.session.token)
        self.session.token = token
        return token

    # ------------------------------------------------------------------
    # API calls
    # ------------------------------------------------------------------

    def get(self, path: str, params: dict[str, Any] | None = None) -> Any:
        """Authenticated GET of a company resource."""
        return self._dispatcher.fetch(path, "GET", params, authenticate=True)

    def post(self, data: dict[str, Any], path: str) -> Any:
        """Authenticated POST of a JSON payload to a company resource."""
        return self._dispatcher.fetch(path, "POST", data, authenticate=True)

    def fetch(
        self,
        path: str,
        verb: str = "GET",
        params: dict[str, Any] | None = None,
        authenticate: bool = False,
    ) -> Any:
        """Send any request through the dispatcher."""
        return self._dispatcher.fetch(path, verb, params, authenticate)
