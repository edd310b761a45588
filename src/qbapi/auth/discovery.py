"""
OAuth endpoint discovery for QuickBooks environments.

Intuit publishes an OpenID discovery document per environment. The
authorization and token endpoints it advertises are resolved once per
process and cached, since the document does not change during a run.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass

import httpx
from pydantic import BaseModel, Field, ValidationError

from qbapi.config import DEFAULT_TIMEOUT, Environment
from qbapi.exceptions import DiscoveryError

logger = logging.getLogger("qbapi.auth.discovery")


class DiscoveryDocument(BaseModel):
    """The subset of the OpenID discovery document qbapi relies on.

    Other fields in the document are ignored.
    """

    authorization_endpoint: str = Field(min_length=1)
    token_endpoint: str = Field(min_length=1)


@dataclass(frozen=True)
class EndpointSet:
    """OAuth endpoints resolved for one environment."""

    environment: Environment
    authorization_endpoint: str
    token_endpoint: str


class EndpointCache:
    """Thread-safe, compute-once store of resolved endpoints.

    Each key gets its own lock, so concurrent first-time lookups for the same
    environment run the factory once while other environments proceed
    independently. A failing factory stores nothing.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._key_locks: dict[Environment, threading.Lock] = {}
        self._entries: dict[Environment, EndpointSet] = {}

    def __contains__(self, key: Environment) -> bool:
        return key in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, key: Environment) -> EndpointSet | None:
        return self._entries.get(key)

    def get_or_compute(
        self, key: Environment, factory: Callable[[], EndpointSet]
    ) -> EndpointSet:
        """Return the cached entry for ``key``, building it on first use."""
        entry = self._entries.get(key)
        if entry is not None:
            return entry

        with self._lock:
            key_lock = self._key_locks.setdefault(key, threading.Lock())

        with key_lock:
            entry = self._entries.get(key)
            if entry is None:
                entry = factory()
                self._entries[key] = entry
            return entry

    def clear(self) -> None:
        """Forget every resolved environment."""
        with self._lock:
            self._entries.clear()
            self._key_locks.clear()


# Shared by every client that does not bring its own cache
default_cache = EndpointCache()


class EndpointDiscovery:
    """Resolves and caches the OAuth endpoints of a QuickBooks environment.

    Usage::

        discovery = EndpointDiscovery()
        endpoints = discovery.discover(Environment.SANDBOX)
        endpoints.token_endpoint
    """

    def __init__(
        self,
        cache: EndpointCache | None = None,
        *,
        http_client: httpx.Client | None = None,
        timeout: float = DEFAULT_TIMEOUT,
        verify_tls: bool = True,
    ) -> None:
        self.cache = cache if cache is not None else default_cache
        self.timeout = timeout
        self.verify_tls = verify_tls
        self._http_client = http_client
        self._owns_client = http_client is None

    def _get_client(self, environment: Environment) -> httpx.Client:
        """Get or create a reusable httpx client. A borrowed client is never replaced."""
        if self._http_client is None or (self._owns_client and self._http_client.is_closed):
            if not self.verify_tls:
                logger.warning("TLS certificate verification is disabled for discovery")
            self._http_client = httpx.Client(timeout=self.timeout, verify=self.verify_tls)
        elif self._http_client.is_closed:
            raise DiscoveryError(environment.value, "HTTP client is closed")
        return self._http_client

    def close(self) -> None:
        """Close the HTTP client if this instance created it."""
        if self._owns_client and self._http_client and not self._http_client.is_closed:
            self._http_client.close()

    def discover(self, environment: Environment | str) -> EndpointSet:
        """Return the endpoints for ``environment``, fetching them at most once.

        Raises:
            DiscoveryError: If the document cannot be fetched or lacks the
                authorization/token endpoints. Nothing is cached in that case.
        """
        env = Environment.parse(environment)
        return self.cache.get_or_compute(env, lambda: self._fetch(env))

    def _fetch(self, environment: Environment) -> EndpointSet:
        url = environment.discovery_url
        logger.debug("Fetching discovery document for %s from %s", environment.value, url)

        client = self._get_client(environment)
        try:
            resp = client.get(url, headers={"Accept": "application/json"})
            resp.raise_for_status()
            document = DiscoveryDocument.model_validate_json(resp.content)
        except httpx.HTTPError as e:
            logger.warning("Discovery failed for %s: %s", environment.value, e)
            raise DiscoveryError(environment.value, str(e)) from e
        except ValidationError as e:
            logger.warning("Invalid discovery document for %s", environment.value)
            raise DiscoveryError(
                environment.value, "document is not JSON or lacks authorization/token endpoints"
            ) from e

        logger.info("Discovered OAuth endpoints for %s", environment.value)
        return EndpointSet(
            environment=environment,
            authorization_endpoint=document.authorization_endpoint,
            token_endpoint=document.token_endpoint,
        )
