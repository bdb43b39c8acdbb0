"""Connector for the Zotero Web API.

Searches the personal library first, then groups, then public groups, one
scope per call. Requests go through pyzotero; the one-off API key lookup
uses the shared HTTP client.

pyzotero applies its own fixed timeout to every request, so each call runs
on a small worker pool and is abandoned once ``config.timeout`` has passed.
"""

from __future__ import annotations

import concurrent.futures
import logging
import threading
from collections.abc import Callable
from typing import Any

from pyzotero import zotero, zotero_errors

from citekey_resolver.connectors.base import AbstractConnector, Candidate, GroupScope
from citekey_resolver.config import ResolverConfig
from citekey_resolver.errors import ConnectorUnreachable
from citekey_resolver.keys import SearchTerm, parse_pinned_citekey
from citekey_resolver.utils import HttpClient, unique

logger = logging.getLogger(__name__)

# Ask for the raw item data (for the "extra" field) and its CSL rendering
INCLUDE = "data,csljson"


class WebApiConnector(AbstractConnector):
    """Searches zotero.org libraries.

    Only the personal library contributes pinned citation keys; group items
    are taken as they come, so several matches in a group stay ambiguous.
    """

    name = "webapi"

    def __init__(
        self,
        config: ResolverConfig,
        http: HttpClient,
        client_factory: Callable[..., Any] | None = None,
    ) -> None:
        """Initialize the connector.

        Args:
            config: ResolverConfig instance
            http: Shared HTTP client (rate limiters, API key lookup)
            client_factory: Callable building a library client from
                (library_id, library_type, api_key); defaults to pyzotero's
                ``zotero.Zotero``
        """
        super().__init__(config)
        self.http = http
        self.base_url = config.webapi_url.rstrip("/")
        self._client_factory = client_factory or zotero.Zotero
        self._lock = threading.Lock()
        self._clients: dict[GroupScope, Any] = {}
        self._user_id: str | None = config.user_id
        self._user_id_known = config.user_id is not None
        self._scopes: list[GroupScope] | None = None
        self._executor = concurrent.futures.ThreadPoolExecutor(
            max_workers=config.max_workers, thread_name_prefix="zotero-webapi"
        )

    def applicable(self, config: ResolverConfig) -> bool:
        return "webapi" in config.connectors and config.webapi_applicable

    # ------------- Scopes -------------

    def user_id(self) -> str | None:
        """Return the user ID, looking it up from the API key once per run."""
        with self._lock:
            if self._user_id_known:
                return self._user_id
        user_id = self._lookup_user_id()
        with self._lock:
            if not self._user_id_known:
                self._user_id = user_id
                self._user_id_known = True
            return self._user_id

    def _lookup_user_id(self) -> str | None:
        if not self.config.api_key:
            return None
        url = f"{self.base_url}/keys/current"
        try:
            data = self.http.get_json(url, headers={"Zotero-API-Key": self.config.api_key}, service="webapi")
        except ConnectorUnreachable as e:
            logger.warning("Could not look up the Zotero user ID: %s", e)
            return None
        if not isinstance(data, dict) or data.get("userID") in (None, ""):
            logger.warning("Zotero did not return a user ID for the configured API key")
            return None
        return str(data["userID"])

    def _member_groups(self) -> list[str]:
        """List the groups the API key's user belongs to."""
        zot = self._client(GroupScope.PERSONAL)
        self.http.rate_limiter.wait("webapi")
        try:
            groups = self._call(zot.groups) or []
        except concurrent.futures.TimeoutError:
            logger.warning("Listing Zotero groups timed out after %gs", self.config.timeout)
            return []
        except Exception as e:
            logger.warning("Could not list Zotero groups: %s", e)
            return []
        return [str(g["id"]) for g in groups if isinstance(g, dict) and g.get("id") is not None]

    def _discover_scopes(self) -> list[GroupScope]:
        api_key = self.config.api_key
        user_id = self.user_id() if api_key else None
        scopes: list[GroupScope] = []
        if api_key and user_id:
            scopes.append(GroupScope.PERSONAL)

        group_ids = list(self.config.groups)
        if group_ids and not api_key:
            logger.warning("Zotero groups %s need an API key; skipping them", ", ".join(group_ids))
            group_ids = []
        elif not group_ids and api_key and user_id:
            group_ids = self._member_groups()
        group_ids = unique(group_ids)
        scopes.extend(GroupScope(g) for g in group_ids)

        scopes.extend(GroupScope(g, public=True) for g in unique(self.config.public_groups) if g not in group_ids)
        return scopes

    def scopes(self) -> list[GroupScope | None]:
        """Scopes in search order: personal library, groups, public groups."""
        with self._lock:
            scopes = self._scopes
        if scopes is None:
            discovered = self._discover_scopes()
            with self._lock:
                if self._scopes is None:
                    self._scopes = discovered
                    logger.debug("webapi scopes: %s", ", ".join(map(str, discovered)) or "none")
                scopes = self._scopes
        return list(scopes)

    # ------------- Search -------------

    def _client(self, scope: GroupScope) -> Any:
        with self._lock:
            zot = self._clients.get(scope)
            if zot is None:
                if scope.is_group:
                    library_id = scope.group_id
                    api_key = None if scope.public else self.config.api_key
                else:
                    library_id = self._user_id
                    api_key = self.config.api_key
                zot = self._client_factory(library_id, scope.library_type, api_key)
                self._clients[scope] = zot
            return zot

    def _call(self, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        """Run a pyzotero call, giving up after ``config.timeout`` seconds.

        Raises:
            concurrent.futures.TimeoutError: If the call did not finish in time
        """
        future = self._executor.submit(fn, *args, **kwargs)
        return future.result(timeout=self.config.timeout)

    def search(self, term: SearchTerm, scope: GroupScope | None = None) -> list[Candidate]:
        if not term or scope is None:
            return []
        zot = self._client(scope)
        self.http.rate_limiter.wait("webapi")
        try:
            if term.is_item_id:
                result = self._call(zot.item, term.query, include=INCLUDE)
            else:
                result = self._call(
                    zot.items, q=term.query, qmode="everything", include=INCLUDE, limit=self.config.search_limit
                )
        except zotero_errors.ResourceNotFoundError:
            logger.debug("webapi: %s not found in %s", term.query, scope)
            return []
        except concurrent.futures.TimeoutError:
            logger.warning(
                "Zotero Web API lookup of %r in %s timed out after %gs", term.query, scope, self.config.timeout
            )
            return []
        except Exception as e:
            # pyzotero raises its own errors and those of its HTTP library
            logger.warning("Zotero Web API lookup of %r in %s failed: %s", term.query, scope, e)
            return []

        items = [result] if isinstance(result, dict) else list(result or [])
        candidates = []
        for item in items:
            candidate = self._to_candidate(item, scope)
            if candidate is not None:
                candidates.append(candidate)
        logger.debug("webapi: %d match(es) for %r in %s", len(candidates), term.query, scope)
        return candidates

    def _to_candidate(self, item: Any, scope: GroupScope) -> Candidate | None:
        if not isinstance(item, dict):
            return None
        data = item.get("data") or {}
        payload = item.get("csljson")
        if not isinstance(payload, dict) or not payload:
            logger.debug("webapi: item %s has no CSL data, skipping", item.get("key"))
            return None
        # Group libraries never contribute pinned keys
        pinned = None if scope.is_group else parse_pinned_citekey(data.get("extra"))
        return Candidate(
            record_id=item.get("key") or data.get("key"),
            payload=payload,
            pinned_citekey=pinned,
            source=f"{self.name} ({scope})",
        )

    def close(self) -> None:
        with self._lock:
            clients = list(self._clients.values())
            self._clients.clear()
        self._executor.shutdown(wait=False, cancel_futures=True)
        for zot in clients:
            close = getattr(getattr(zot, "client", None), "close", None)
            if callable(close):
                close()
