"""Tests for the Zotero Web API connector."""

from __future__ import annotations

import threading
import time
from typing import Any
from unittest.mock import MagicMock

import httpx
import pytest
from pyzotero import zotero_errors

from citekey_resolver import GroupScope, KeyType, ResolverConfig, tokenize
from citekey_resolver.connectors.webapi import INCLUDE, WebApiConnector

# ------------- Fixtures -------------


class FakeClientFactory:
    """Stands in for ``zotero.Zotero``, handing out one mock per library."""

    def __init__(self):
        self.calls: list[tuple[Any, str, str | None]] = []
        self.clients: dict[tuple[str, Any], MagicMock] = {}

    def client(self, library_type: str, library_id: Any) -> MagicMock:
        key = (library_type, library_id)
        if key not in self.clients:
            zot = MagicMock(name=f"zot-{library_type}-{library_id}")
            zot.groups.return_value = []
            zot.items.return_value = []
            self.clients[key] = zot
        return self.clients[key]

    def __call__(self, library_id, library_type, api_key):
        self.calls.append((library_id, library_type, api_key))
        return self.client(library_type, library_id)


@pytest.fixture
def client_factory():
    return FakeClientFactory()


@pytest.fixture
def make_webapi(client_factory, refused_http):
    """Factory fixture creating a Web API connector with mocked pyzotero clients."""

    def _make_webapi(http=None, **options) -> WebApiConnector:
        cfg = ResolverConfig(**options)
        return WebApiConnector(cfg, http or refused_http, client_factory=client_factory)

    return _make_webapi


@pytest.fixture
def make_zotero_item(make_csl_item):
    """Factory fixture for Web API items carrying data and csljson."""

    def _make_item(key: str = "ABCD2345", extra: str = "", **csl) -> dict[str, Any]:
        return {
            "key": key,
            "version": 1,
            "data": {"key": key, "itemType": "journalArticle", "title": "Example Title", "extra": extra},
            "csljson": make_csl_item(id=f"1/{key}", **csl),
        }

    return _make_item


# ------------- User ID and Scopes -------------


class TestUserId:
    """Tests for the API key lookup."""

    def test_configured_user_id_needs_no_request(self, make_webapi):
        connector = make_webapi(api_key="secret", user_id=42)
        assert connector.user_id() == "42"

    def test_user_id_looked_up_once(self, make_webapi, make_http):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, json={"userID": 12345, "username": "jdoe"})

        connector = make_webapi(http=make_http(handler), api_key="secret")
        assert connector.user_id() == "12345"
        assert connector.user_id() == "12345"
        assert len(seen) == 1
        assert seen[0].url.path == "/keys/current"
        assert seen[0].headers["Zotero-API-Key"] == "secret"

    def test_rejected_key_gives_no_user_id(self, make_webapi, make_http):
        connector = make_webapi(http=make_http(lambda r: httpx.Response(403, text="Forbidden")), api_key="bad")
        assert connector.user_id() is None

    def test_unreachable_api_gives_no_user_id(self, make_webapi):
        assert make_webapi(api_key="secret").user_id() is None

    def test_no_api_key_no_lookup(self, make_webapi):
        assert make_webapi(public_groups=["30"]).user_id() is None


class TestScopes:
    """Tests for scope discovery."""

    def test_personal_then_groups_then_public(self, make_webapi):
        connector = make_webapi(api_key="secret", user_id="1", groups=["10", "20"], public_groups=["30", "10"])
        assert connector.scopes() == [
            GroupScope.PERSONAL,
            GroupScope("10"),
            GroupScope("20"),
            GroupScope("30", public=True),
        ]

    def test_member_groups_discovered_without_configured_groups(self, make_webapi, client_factory):
        client_factory.client("user", "1").groups.return_value = [{"id": 111, "data": {"name": "Lab"}}]
        connector = make_webapi(api_key="secret", user_id="1")
        assert connector.scopes() == [GroupScope.PERSONAL, GroupScope("111")]

    def test_scopes_discovered_once(self, make_webapi, client_factory):
        personal = client_factory.client("user", "1")
        connector = make_webapi(api_key="secret", user_id="1")
        connector.scopes()
        connector.scopes()
        assert personal.groups.call_count == 1

    def test_group_listing_failure_keeps_personal_library(self, make_webapi, client_factory):
        client_factory.client("user", "1").groups.side_effect = zotero_errors.PyZoteroError("boom")
        connector = make_webapi(api_key="secret", user_id="1")
        assert connector.scopes() == [GroupScope.PERSONAL]

    def test_groups_without_api_key_are_skipped(self, make_webapi):
        connector = make_webapi(groups=["10"], public_groups=["30"])
        assert connector.scopes() == [GroupScope("30", public=True)]

    def test_no_user_id_no_personal_library(self, make_webapi, make_http):
        connector = make_webapi(
            http=make_http(lambda r: httpx.Response(403)), api_key="bad", public_groups=["30"]
        )
        assert connector.scopes() == [GroupScope("30", public=True)]


class TestApplicable:
    """Tests for applicable."""

    def test_needs_credential_or_public_groups(self, make_webapi):
        connector = make_webapi()
        assert not connector.applicable(connector.config)

    def test_api_key(self, make_webapi):
        connector = make_webapi(api_key="secret")
        assert connector.applicable(connector.config)

    def test_public_groups(self, make_webapi):
        connector = make_webapi(public_groups=["30"])
        assert connector.applicable(connector.config)

    def test_not_configured(self, make_webapi):
        connector = make_webapi(api_key="secret", connectors=["desktop"])
        assert not connector.applicable(connector.config)


# ------------- Search -------------


class TestSearch:
    """Tests for searching one scope."""

    def test_item_id_lookup(self, make_webapi, client_factory, make_zotero_item):
        zot = client_factory.client("user", "1")
        zot.item.return_value = make_zotero_item("ABCD2345")
        connector = make_webapi(api_key="secret", user_id="1")

        [candidate] = connector.search(tokenize("ABCD2345", KeyType.ITEM_ID), GroupScope.PERSONAL)

        zot.item.assert_called_once_with("ABCD2345", include=INCLUDE)
        assert candidate.record_id == "ABCD2345"
        assert candidate.payload["id"] == "1/ABCD2345"

    def test_quick_search(self, make_webapi, client_factory, make_zotero_item):
        zot = client_factory.client("user", "1")
        zot.items.return_value = [make_zotero_item("AAAA1111"), make_zotero_item("BBBB2222")]
        connector = make_webapi(api_key="secret", user_id="1", search_limit=10)

        candidates = connector.search(tokenize("DoeTitle2020", KeyType.BETTER_BIBTEX), GroupScope.PERSONAL)

        zot.items.assert_called_once_with(q="Doe Title 2020", qmode="everything", include=INCLUDE, limit=10)
        assert [c.record_id for c in candidates] == ["AAAA1111", "BBBB2222"]
        assert candidates[0].source == "webapi (personal library)"

    def test_pinned_key_from_personal_library(self, make_webapi, client_factory, make_zotero_item):
        client_factory.client("user", "1").items.return_value = [
            make_zotero_item("AAAA1111", extra="Citation Key: DoeTitle2020")
        ]
        connector = make_webapi(api_key="secret", user_id="1")
        [candidate] = connector.search(tokenize("DoeTitle2020", KeyType.BETTER_BIBTEX), GroupScope.PERSONAL)
        assert candidate.pinned_citekey == "DoeTitle2020"

    def test_group_items_are_never_pinned(self, make_webapi, client_factory, make_zotero_item):
        client_factory.client("group", "10").items.return_value = [
            make_zotero_item("AAAA1111", extra="Citation Key: DoeTitle2020")
        ]
        connector = make_webapi(api_key="secret", user_id="1", groups=["10"])
        [candidate] = connector.search(tokenize("DoeTitle2020", KeyType.BETTER_BIBTEX), GroupScope("10"))
        assert candidate.pinned_citekey is None
        assert candidate.source == "webapi (group 10)"

    def test_clients_per_scope(self, make_webapi, client_factory):
        connector = make_webapi(api_key="secret", user_id="1", groups=["10"], public_groups=["30"])
        term = tokenize("DoeTitle2020", KeyType.BETTER_BIBTEX)
        for scope in connector.scopes():
            connector.search(term, scope)
        connector.search(term, GroupScope("10"))

        assert client_factory.calls == [
            ("1", "user", "secret"),
            ("10", "group", "secret"),
            ("30", "group", None),
        ]

    def test_not_found(self, make_webapi, client_factory):
        client_factory.client("user", "1").item.side_effect = zotero_errors.ResourceNotFoundError("Not found")
        connector = make_webapi(api_key="secret", user_id="1")
        assert connector.search(tokenize("ABCD2345", KeyType.ITEM_ID), GroupScope.PERSONAL) == []

    @pytest.mark.parametrize(
        "error",
        [zotero_errors.PyZoteroError("server error"), httpx.ConnectError("Connection refused")],
    )
    def test_failures_return_no_candidates(self, make_webapi, client_factory, error):
        client_factory.client("user", "1").items.side_effect = error
        connector = make_webapi(api_key="secret", user_id="1")
        assert connector.search(tokenize("DoeTitle2020", KeyType.BETTER_BIBTEX), GroupScope.PERSONAL) == []

    def test_items_without_csl_are_skipped(self, make_webapi, client_factory, make_zotero_item):
        broken = make_zotero_item("AAAA1111")
        del broken["csljson"]
        client_factory.client("user", "1").items.return_value = [broken, make_zotero_item("BBBB2222")]
        connector = make_webapi(api_key="secret", user_id="1")
        candidates = connector.search(tokenize("DoeTitle2020", KeyType.BETTER_BIBTEX), GroupScope.PERSONAL)
        assert [c.record_id for c in candidates] == ["BBBB2222"]

    def test_no_scope_no_search(self, make_webapi, client_factory):
        connector = make_webapi(api_key="secret", user_id="1")
        assert connector.search(tokenize("DoeTitle2020", KeyType.BETTER_BIBTEX), None) == []
        assert client_factory.calls == []


class TestTimeoutsAndClosing:
    """Tests for bounding pyzotero calls and releasing clients."""

    def test_slow_call_gives_up_after_timeout(self, make_webapi, client_factory):
        release = threading.Event()
        client_factory.client("user", "1").items.side_effect = lambda **kwargs: release.wait(5) and []
        connector = make_webapi(api_key="secret", user_id="1", timeout=0.2)
        try:
            start = time.monotonic()
            assert connector.search(tokenize("DoeTitle2020", KeyType.BETTER_BIBTEX), GroupScope.PERSONAL) == []
            assert time.monotonic() - start < 2
        finally:
            release.set()
            connector.close()

    def test_close_releases_clients(self, make_webapi, client_factory):
        connector = make_webapi(api_key="secret", user_id="1", groups=["10"])
        term = tokenize("DoeTitle2020", KeyType.BETTER_BIBTEX)
        for scope in connector.scopes():
            connector.search(term, scope)
        connector.close()
        assert client_factory.client("user", "1").client.close.call_count == 1
        assert client_factory.client("group", "10").client.close.call_count == 1


class TestPyzoteroClient:
    """Tests against real pyzotero clients talking to local endpoints."""

    def test_refused_connection_returns_no_candidates(self, refused_http, refused_url, pyzotero_factory):
        cfg = ResolverConfig(api_key="secret", user_id="1", timeout=5.0)
        connector = WebApiConnector(cfg, refused_http, client_factory=pyzotero_factory(refused_url))
        try:
            assert connector.search(tokenize("DoeTitle2020", KeyType.BETTER_BIBTEX), GroupScope.PERSONAL) == []
            assert connector.search(tokenize("ABCD2345", KeyType.ITEM_ID), GroupScope.PERSONAL) == []
        finally:
            connector.close()

    def test_refused_group_listing_keeps_personal_library(self, refused_http, refused_url, pyzotero_factory):
        cfg = ResolverConfig(api_key="secret", user_id="1", timeout=5.0)
        connector = WebApiConnector(cfg, refused_http, client_factory=pyzotero_factory(refused_url))
        try:
            assert connector.scopes() == [GroupScope.PERSONAL]
        finally:
            connector.close()

    def test_silent_server_bounded_by_configured_timeout(self, refused_http, silent_url, pyzotero_factory):
        cfg = ResolverConfig(api_key="secret", user_id="1", timeout=0.5)
        connector = WebApiConnector(cfg, refused_http, client_factory=pyzotero_factory(silent_url))
        try:
            start = time.monotonic()
            assert connector.search(tokenize("DoeTitle2020", KeyType.BETTER_BIBTEX), GroupScope.PERSONAL) == []
            assert time.monotonic() - start < 5
        finally:
            connector.close()
