"""Tests for OAuth endpoint discovery and the endpoint cache."""

from __future__ import annotations

import threading
import time

import httpx
import pytest

from conftest import AUTH_URL, DISCOVERY_DOC, TOKEN_URL, FakeQuickBooks
from qbapi.auth.discovery import EndpointCache, EndpointDiscovery, EndpointSet
from qbapi.config import Environment
from qbapi.exceptions import DiscoveryError


# ---------------------------------------------------------------------------
# EndpointDiscovery
# ---------------------------------------------------------------------------


class TestEndpointDiscovery:
    def test_discover_parses_document(
        self, http_client: httpx.Client, endpoint_cache: EndpointCache
    ) -> None:
        discovery = EndpointDiscovery(endpoint_cache, http_client=http_client)
        endpoints = discovery.discover(Environment.SANDBOX)

        assert endpoints.authorization_endpoint == AUTH_URL
        assert endpoints.token_endpoint == TOKEN_URL
        assert endpoints.environment is Environment.SANDBOX

    def test_fetches_environment_discovery_url(
        self,
        fake_qbo: FakeQuickBooks,
        http_client: httpx.Client,
        endpoint_cache: EndpointCache,
    ) -> None:
        discovery = EndpointDiscovery(endpoint_cache, http_client=http_client)
        discovery.discover("production")

        (request,) = fake_qbo.discovery_calls()
        assert str(request.url) == Environment.PRODUCTION.discovery_url

    def test_second_call_uses_cache(
        self,
        fake_qbo: FakeQuickBooks,
        http_client: httpx.Client,
        endpoint_cache: EndpointCache,
    ) -> None:
        discovery = EndpointDiscovery(endpoint_cache, http_client=http_client)
        first = discovery.discover(Environment.SANDBOX)
        second = discovery.discover(Environment.SANDBOX)

        assert second is first
        assert len(fake_qbo.discovery_calls()) == 1

    def test_cache_is_per_environment(
        self,
        fake_qbo: FakeQuickBooks,
        http_client: httpx.Client,
        endpoint_cache: EndpointCache,
    ) -> None:
        discovery = EndpointDiscovery(endpoint_cache, http_client=http_client)
        discovery.discover(Environment.SANDBOX)
        discovery.discover(Environment.PRODUCTION)

        assert len(fake_qbo.discovery_calls()) == 2
        assert Environment.SANDBOX in endpoint_cache
        assert Environment.PRODUCTION in endpoint_cache

    def test_cache_shared_between_instances(
        self,
        fake_qbo: FakeQuickBooks,
        http_client: httpx.Client,
        endpoint_cache: EndpointCache,
    ) -> None:
        EndpointDiscovery(endpoint_cache, http_client=http_client).discover("sandbox")
        EndpointDiscovery(endpoint_cache, http_client=http_client).discover("sandbox")

        assert len(fake_qbo.discovery_calls()) == 1

    def test_missing_token_endpoint_raises(
        self,
        fake_qbo: FakeQuickBooks,
        http_client: httpx.Client,
        endpoint_cache: EndpointCache,
    ) -> None:
        fake_qbo.discovery_response = httpx.Response(
            200, json={"authorization_endpoint": AUTH_URL}
        )
        discovery = EndpointDiscovery(endpoint_cache, http_client=http_client)

        with pytest.raises(DiscoveryError) as exc_info:
            discovery.discover(Environment.SANDBOX)

        assert exc_info.value.environment == "sandbox"
        assert len(endpoint_cache) == 0

    def test_empty_endpoint_raises(
        self,
        fake_qbo: FakeQuickBooks,
        http_client: httpx.Client,
        endpoint_cache: EndpointCache,
    ) -> None:
        fake_qbo.discovery_response = httpx.Response(
            200, json={**DISCOVERY_DOC, "authorization_endpoint": ""}
        )
        discovery = EndpointDiscovery(endpoint_cache, http_client=http_client)

        with pytest.raises(DiscoveryError):
            discovery.discover(Environment.SANDBOX)

    def test_http_error_raises(
        self,
        fake_qbo: FakeQuickBooks,
        http_client: httpx.Client,
        endpoint_cache: EndpointCache,
    ) -> None:
        fake_qbo.discovery_response = httpx.Response(503, text="Service Unavailable")
        discovery = EndpointDiscovery(endpoint_cache, http_client=http_client)

        with pytest.raises(DiscoveryError, match="production"):
            discovery.discover(Environment.PRODUCTION)

    def test_non_json_document_raises(
        self,
        fake_qbo: FakeQuickBooks,
        http_client: httpx.Client,
        endpoint_cache: EndpointCache,
    ) -> None:
        fake_qbo.discovery_response = httpx.Response(200, text="<html>maintenance</html>")
        discovery = EndpointDiscovery(endpoint_cache, http_client=http_client)

        with pytest.raises(DiscoveryError):
            discovery.discover(Environment.SANDBOX)

    def test_connection_error_raises(self, endpoint_cache: EndpointCache) -> None:
        def refuse(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        client = httpx.Client(transport=httpx.MockTransport(refuse))
        discovery = EndpointDiscovery(endpoint_cache, http_client=client)

        with pytest.raises(DiscoveryError) as exc_info:
            discovery.discover(Environment.SANDBOX)
        assert isinstance(exc_info.value.__cause__, httpx.ConnectError)

    def test_failure_is_not_cached(
        self,
        fake_qbo: FakeQuickBooks,
        http_client: httpx.Client,
        endpoint_cache: EndpointCache,
    ) -> None:
        fake_qbo.discovery_response = httpx.Response(500, text="oops")
        discovery = EndpointDiscovery(endpoint_cache, http_client=http_client)

        with pytest.raises(DiscoveryError):
            discovery.discover(Environment.SANDBOX)

        fake_qbo.discovery_response = None
        endpoints = discovery.discover(Environment.SANDBOX)

        assert endpoints.token_endpoint == TOKEN_URL
        assert endpoint_cache.get(Environment.SANDBOX) is endpoints
        assert len(fake_qbo.discovery_calls()) == 2

    def test_injected_client_not_closed(
        self, http_client: httpx.Client, endpoint_cache: EndpointCache
    ) -> None:
        discovery = EndpointDiscovery(endpoint_cache, http_client=http_client)
        discovery.close()
        assert not http_client.is_closed

    def test_closed_injected_client_raises(self, endpoint_cache: EndpointCache) -> None:
        client = httpx.Client()
        client.close()
        discovery = EndpointDiscovery(endpoint_cache, http_client=client)

        with pytest.raises(DiscoveryError, match="closed"):
            discovery.discover(Environment.SANDBOX)
        assert Environment.SANDBOX not in endpoint_cache


# ---------------------------------------------------------------------------
# EndpointCache
# ---------------------------------------------------------------------------


class TestEndpointCache:
    def _endpoints(self) -> EndpointSet:
        return EndpointSet(Environment.SANDBOX, AUTH_URL, TOKEN_URL)

    def test_get_or_compute_runs_factory_once(self) -> None:
        cache = EndpointCache()
        calls: list[int] = []

        def factory() -> EndpointSet:
            calls.append(1)
            return self._endpoints()

        first = cache.get_or_compute(Environment.SANDBOX, factory)
        second = cache.get_or_compute(Environment.SANDBOX, factory)

        assert first is second
        assert len(calls) == 1

    def test_failing_factory_stores_nothing(self) -> None:
        cache = EndpointCache()

        def factory() -> EndpointSet:
            raise DiscoveryError("sandbox", "boom")

        with pytest.raises(DiscoveryError):
            cache.get_or_compute(Environment.SANDBOX, factory)

        assert cache.get(Environment.SANDBOX) is None
        assert Environment.SANDBOX not in cache

    def test_concurrent_first_use_computes_once(self) -> None:
        cache = EndpointCache()
        calls: list[int] = []
        results: list[EndpointSet] = []

        def slow_factory() -> EndpointSet:
            calls.append(1)
            time.sleep(0.05)
            return self._endpoints()

        def worker() -> None:
            results.append(cache.get_or_compute(Environment.SANDBOX, slow_factory))

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(calls) == 1
        assert len(results) == 8
        assert all(r is results[0] for r in results)

    def test_clear(self) -> None:
        cache = EndpointCache()
        cache.get_or_compute(Environment.SANDBOX, self._endpoints)
        cache.clear()
        assert len(cache) == 0
        assert cache._key_locks == {}

        calls: list[int] = []
        cache.get_or_compute(Environment.SANDBOX, lambda: calls.append(1) or self._endpoints())
        assert calls == [1]
