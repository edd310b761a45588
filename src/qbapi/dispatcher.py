"""
Request dispatcher: authenticated calls against the QBO Accounting API v3.

Builds company-scoped request paths, encodes parameters per verb, attaches
bearer credentials and turns fault envelopes into ``ApiError``.

Success is decided by the shape of the response body, not by the HTTP status:
QuickBooks reports application errors as fault envelopes, sometimes on 200
responses, and sometimes returns a regular payload on non-2xx statuses.

QuickBooks API docs:
  https://developer.intuit.com/app/developer/qbo/docs/api/accounting/all-entities
"""

from __future__ import annotations

import json
import logging
from collections.abc import Callable, Mapping
from typing import Any
from urllib.parse import urlencode

import httpx

from qbapi.config import DEFAULT_TIMEOUT, Environment
from qbapi.exceptions import ApiError, MissingRealmIdError, NetworkError

logger = logging.getLogger("qbapi.dispatcher")

BASE_PATH = "/v3/company"

# Fault envelope paths, probed in this order
_FAULT_SHAPES = (
    ("Fault", "Error", "Message", "Detail", "code", "type"),
    ("fault", "error", "message", "detail", "code", "type"),
)


def parse_fault(body: Any, status_code: int | None = None) -> ApiError | None:
    """Return an ``ApiError`` for a fault envelope, or None for a normal payload.

    QuickBooks sends ``{"Fault": {"Error": [{"Message", "Detail"}]}}`` most of
    the time and ``{"fault": {"error": [{"message", "detail"}]}}`` on some
    endpoints. Only the first listed error is reported.
    """
    if not isinstance(body, dict):
        return None

    for fault_key, error_key, message_key, detail_key, code_key, type_key in _FAULT_SHAPES:
        fault = body.get(fault_key)
        if not isinstance(fault, dict):
            continue
        errors = fault.get(error_key)
        if not errors or not isinstance(errors, list):
            continue

        first = errors[0] if isinstance(errors[0], dict) else {}
        code = first.get(code_key, first.get(code_key.capitalize()))
        return ApiError(
            str(first.get(message_key, "")),
            str(first.get(detail_key, "")),
            code=str(code) if code is not None else None,
            fault_type=fault.get(type_key, fault.get(type_key.capitalize())),
            status_code=status_code,
        )

    return None


class RequestDispatcher:
    """Sends requests to ``{api_url}/v3/company/{realm_id}/{path}``.

    The realm id and access token are read through callables on every call,
    so the dispatcher always sees the owning client's current session.

    Usage::

        dispatcher = RequestDispatcher(
            Environment.SANDBOX,
            realm_id=lambda: "4620816365213515760",
            access_token=lambda: token.access_token,
        )
        dispatcher.fetch("customer/1", "GET", {"minorversion": "65"}, authenticate=True)
    """

    def __init__(
        self,
        environment: Environment,
        *,
        realm_id: Callable[[], str | None],
        access_token: Callable[[], str | None],
        http_client: httpx.Client | None = None,
        timeout: float = DEFAULT_TIMEOUT,
        verify_tls: bool = True,
        require_realm_id: bool = False,
    ) -> None:
        self.environment = environment
        self.timeout = timeout
        self.verify_tls = verify_tls
        self.require_realm_id = require_realm_id
        self._realm_id = realm_id
        self._access_token = access_token
        self._http_client = http_client
        self._owns_client = http_client is None

    def _get_client(self) -> httpx.Client:
        """Get or create a reusable httpx client.

        A client passed in by the caller is never replaced; once it is closed
        every request fails with ``NetworkError``.
        """
        if self._http_client is None or (self._owns_client and self._http_client.is_closed):
            if not self.verify_tls:
                logger.warning("TLS certificate verification is disabled for API requests")
            self._http_client = httpx.Client(timeout=self.timeout, verify=self.verify_tls)
        elif self._http_client.is_closed:
            raise NetworkError("HTTP client is closed")
        return self._http_client

    def close(self) -> None:
        """Close the HTTP client if this instance created it."""
        if self._owns_client and self._http_client and not self._http_client.is_closed:
            self._http_client.close()

    # ------------------------------------------------------------------
    # Request building
    # ------------------------------------------------------------------

    def build_path(self, path: str) -> str:
        """Join the company base path, realm id and resource path."""
        realm_id = self._realm_id()
        if not realm_id and self.require_realm_id:
            raise MissingRealmIdError(path)
        # An unset realm id leaves an empty segment; the API rejects the call
        return f"{BASE_PATH.rstrip('/')}/{realm_id or ''}/{path.lstrip('/')}"

    def build_url(self, path: str, verb: str = "GET", params: Mapping[str, Any] | None = None) -> str:
        url = self.environment.api_url + self.build_path(path)
        if verb.upper() == "GET" and params:
            url = f"{url}?{urlencode(_stringify(params))}"
        return url

    def build_headers(self, body: bytes | None, authenticate: bool) -> dict[str, str]:
        headers = {"Accept": "application/json"}
        if body is not None:
            headers["Content-Type"] = "application/json"
            headers["Content-Length"] = str(len(body))
        if authenticate:
            headers["Authorization"] = f"Bearer {self._access_token() or ''}"
        return headers

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    def fetch(
        self,
        path: str,
        verb: str = "GET",
        params: Mapping[str, Any] | None = None,
        authenticate: bool = False,
    ) -> Any:
        """Send one request and return the decoded JSON body.

        Args:
            path: Resource path relative to the company, e.g. ``customer/1``.
            verb: HTTP method. GET sends ``params`` as a query string, every
                other verb sends them as a JSON body.
            params: Query parameters or request payload.
            authenticate: Attach the session's bearer token.

        Raises:
            ApiError: If the body is a fault envelope (either casing).
            NetworkError: If the transport failed or the body is not JSON.
            MissingRealmIdError: If no realm id is set and ``require_realm_id``
                is enabled.
        """
        verb = verb.upper()
        url = self.build_url(path, verb, params)

        body: bytes | None = None
        if verb != "GET":
            body = json.dumps(params if params is not None else {}).encode("utf-8")

        headers = self.build_headers(body, authenticate)
        logger.debug("%s %s", verb, url)

        try:
            resp = self._get_client().request(
                verb, url, headers=headers, content=body, timeout=self.timeout,
            )
        except httpx.HTTPError as e:
            raise NetworkError(f"{verb} {path} failed: {e}") from e

        return self._parse_response(resp, verb, path)

    def _parse_response(self, resp: httpx.Response, verb: str, path: str) -> Any:
        if not resp.content:
            raise NetworkError(
                f"{verb} {path} returned an empty body (HTTP {resp.status_code})",
                status_code=resp.status_code,
            )

        try:
            data = resp.json()
        except ValueError as e:
            raise NetworkError(
                f"{verb} {path} returned a non-JSON body (HTTP {resp.status_code})",
                status_code=resp.status_code,
            ) from e

        fault = parse_fault(data, resp.status_code)
        if fault is not None:
            logger.debug("QBO fault on %s %s: %s", verb, path, fault)
            raise fault

        return data


def _stringify(params: Mapping[str, Any]) -> dict[str, str]:
    """Coerce scalar parameter values to the strings QBO expects."""
    encoded: dict[str, str] = {}
    for key, value in params.items():
        if isinstance(value, bool):
            encoded[key] = "true" if value else "false"
        elif value is None:
            encoded[key] = ""
        else:
            encoded[key] = str(value)
    return encoded
