"""Connector for the Zotero desktop client (via the zotxt add-on).

zotxt answers on a fixed local port. Item IDs are looked up directly,
other citation keys are searched for by title, creator and year.
"""

from __future__ import annotations

import logging
import threading
from typing import Any

from citekey_resolver.connectors.base import AbstractConnector, Candidate, GroupScope
from citekey_resolver.config import ResolverConfig
from citekey_resolver.errors import ConnectorUnreachable
from citekey_resolver.keys import SearchTerm, parse_pinned_citekey
from citekey_resolver.utils import HttpClient

logger = logging.getLogger(__name__)


class DesktopConnector(AbstractConnector):
    """Searches the user's local Zotero library through zotxt.

    The desktop client has no notion of group scopes; it searches everything
    it has synced. Once a connection is refused the connector reports itself
    unavailable for the rest of the run, so later citations do not wait for
    it again.
    """

    name = "desktop"

    def __init__(self, config: ResolverConfig, http: HttpClient) -> None:
        super().__init__(config)
        self.http = http
        self.base_url = config.desktop_url.rstrip("/")
        self._lock = threading.Lock()
        self._available = True

    @property
    def available(self) -> bool:
        with self._lock:
            return self._available

    def applicable(self, config: ResolverConfig) -> bool:
        return "desktop" in config.connectors

    def _request(self, term: SearchTerm) -> tuple[str, dict[str, Any]]:
        if term.is_item_id:
            return f"{self.base_url}/items", {"key": term.query, "format": "json"}
        return f"{self.base_url}/search", {"q": term.query, "method": "titleCreatorYear", "format": "json"}

    def search(self, term: SearchTerm, scope: GroupScope | None = None) -> list[Candidate]:
        if not term:
            return []
        url, params = self._request(term)
        try:
            data = self.http.get_json(url, params=params, service="desktop")
        except ConnectorUnreachable as e:
            if e.refused:
                with self._lock:
                    if self._available:
                        logger.warning("Zotero desktop is not reachable at %s; falling back", self.base_url)
                    self._available = False
            else:
                logger.warning("Zotero desktop lookup failed: %s", e)
            return []

        # zotxt replies with an error status or an empty body if nothing matches
        if not data:
            logger.debug("desktop: no match for %s %r", term.key_type.value, term.query)
            return []
        if not isinstance(data, list):
            logger.warning("desktop: unexpected response for %r: %s", term.query, type(data).__name__)
            return []
        return [self._to_candidate(item) for item in data if isinstance(item, dict)]

    def _to_candidate(self, item: dict[str, Any]) -> Candidate:
        record_id = item.get("id")
        return Candidate(
            record_id=str(record_id) if record_id is not None else None,
            payload=item,
            # CSL exports carry Zotero's "extra" field as "note"
            pinned_citekey=parse_pinned_citekey(item.get("note")),
            source=self.name,
        )
