"""Shared fixtures for citekey_resolver tests."""

from __future__ import annotations

import logging
import socket
import threading
from typing import Any

import httpx
import pytest
from pyzotero import zotero

from citekey_resolver import (
    AbstractConnector,
    Candidate,
    GroupScope,
    HttpClient,
    ResolverConfig,
    SearchTerm,
)


@pytest.fixture
def make_csl_item():
    """Factory fixture for creating CSL items."""

    def _make_item(**kwargs) -> dict[str, Any]:
        item = {
            "id": kwargs.pop("id", "ITEM0001"),
            "type": "article-journal",
            "title": "Example Title",
            "author": [{"family": "Doe", "given": "Jane"}],
            "issued": {"date-parts": [[2020]]},
        }
        item.update(kwargs)
        return item

    return _make_item


@pytest.fixture
def make_candidate(make_csl_item):
    """Factory fixture for creating connector candidates."""

    def _make_candidate(record_id: str = "ITEM0001", pinned: str | None = None, source: str = "fake", **kwargs):
        return Candidate(
            record_id=record_id,
            payload=make_csl_item(id=record_id, **kwargs),
            pinned_citekey=pinned,
            source=source,
        )

    return _make_candidate


@pytest.fixture
def config():
    """Config without a bibliography file or Web API credentials."""
    return ResolverConfig()


@pytest.fixture
def logger():
    """Create a test logger."""
    return logging.getLogger("test")


@pytest.fixture
def make_http():
    """Factory fixture for HTTP clients backed by an httpx mock transport."""
    clients = []

    def _make_http(handler, retries: int = 2) -> HttpClient:
        client = HttpClient(timeout=1.0, retries=retries, backoff=0, transport=httpx.MockTransport(handler))
        clients.append(client)
        return client

    yield _make_http
    for client in clients:
        client.close()


@pytest.fixture
def refused_http(make_http):
    """HTTP client for which every connection is refused."""

    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("Connection refused", request=request)

    return make_http(handler)


@pytest.fixture
def refused_url():
    """Base URL of a local port nobody listens on."""
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    sock.bind(("127.0.0.1", 0))
    port = sock.getsockname()[1]
    sock.close()
    return f"http://127.0.0.1:{port}"


@pytest.fixture
def silent_url():
    """Base URL of a local server that accepts connections but never answers."""
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    sock.bind(("127.0.0.1", 0))
    sock.listen(16)
    yield f"http://127.0.0.1:{sock.getsockname()[1]}"
    # Resets pending connections, releasing any request still waiting
    sock.close()


@pytest.fixture
def pyzotero_factory():
    """Factory fixture building real pyzotero clients aimed at a local endpoint."""

    def _make_factory(endpoint: str):
        def _client(library_id, library_type, api_key):
            zot = zotero.Zotero(library_id, library_type, api_key)
            zot.endpoint = endpoint
            return zot

        return _client

    return _make_factory


class FakeConnector(AbstractConnector):
    """Connector returning canned candidates and recording every search.

    ``results`` maps a query string, or a (query, scope) pair, to the
    candidates returned for it. Queries listed in ``failures`` raise
    RuntimeError.
    """

    def __init__(
        self,
        config: ResolverConfig,
        name: str = "fake",
        results: dict[Any, list[Candidate]] | None = None,
        scopes: list[GroupScope | None] | None = None,
        available: bool = True,
        applicable: bool = True,
        failures: set[str] | None = None,
    ):
        super().__init__(config)
        self.name = name
        self.results = results or {}
        self.failures = failures or set()
        self._scopes = scopes or [None]
        self._available = available
        self._applicable = applicable
        self.calls: list[tuple[str, str, GroupScope | None]] = []
        self.scope_calls = 0
        self.closed = False
        self._lock = threading.Lock()

    @property
    def available(self) -> bool:
        return self._available

    def applicable(self, config: ResolverConfig) -> bool:
        return self._applicable

    def scopes(self) -> list[GroupScope | None]:
        with self._lock:
            self.scope_calls += 1
        return list(self._scopes)

    def search(self, term: SearchTerm, scope: GroupScope | None = None) -> list[Candidate]:
        with self._lock:
            self.calls.append((term.key_type.value, term.query, scope))
        if term.query in self.failures:
            raise RuntimeError(f"unexpected failure for {term.query!r}")
        if (term.query, scope) in self.results:
            return list(self.results[(term.query, scope)])
        return list(self.results.get(term.query, []))

    def close(self) -> None:
        self.closed = True


@pytest.fixture
def fake_connector(config):
    """Factory fixture for creating fake connectors."""

    def _create(name: str = "fake", results=None, **kwargs) -> FakeConnector:
        return FakeConnector(config, name=name, results=results, **kwargs)

    return _create
