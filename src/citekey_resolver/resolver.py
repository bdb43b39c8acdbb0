"""Fallback orchestration of citation key lookups.

For every citation key the resolver checks the bibliography cache, then
walks the key's interpretations (item ID, Better BibTeX key, easy citekey),
asking each connector in priority order and, for the Web API, each library
scope in turn. The first record found wins and is appended to the cache.
"""

from __future__ import annotations

import concurrent.futures
import logging
from collections.abc import Iterable
from dataclasses import dataclass, field

from citekey_resolver.bibliography import BibliographyCache
from citekey_resolver.config import ResolverConfig
from citekey_resolver.connectors.base import AbstractConnector, ResolvedRecord, Unresolved
from citekey_resolver.connectors.factory import ConnectorFactory
from citekey_resolver.disambiguate import disambiguate
from citekey_resolver.errors import AmbiguityError
from citekey_resolver.keys import SearchTerm, classify, tokenize
from citekey_resolver.utils import HttpClient, unique

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Citation:
    """A citation key found in a document.

    Attributes:
        key: The citation key
        has_data: Whether the document already provides data for it
    """

    key: str
    has_data: bool = False


@dataclass
class ResolutionReport:
    """Outcome of resolving a batch of citation keys.

    Attributes:
        results: Record or Unresolved marker per key, in input order
        added: Keys newly written to the bibliography file
        bibliography_path: The bibliography file, if any
    """

    results: dict[str, ResolvedRecord | Unresolved] = field(default_factory=dict)
    added: list[str] = field(default_factory=list)
    bibliography_path: str | None = None

    @property
    def resolved(self) -> dict[str, ResolvedRecord]:
        return {k: r for k, r in self.results.items() if isinstance(r, ResolvedRecord)}

    @property
    def unresolved(self) -> list[Unresolved]:
        return [r for r in self.results.values() if isinstance(r, Unresolved)]


class Resolver:
    """Resolves single citation keys against the configured connectors.

    Resolution order per key:
    1. Bibliography cache (no connector is asked for cached keys)
    2. For each key type from ``classify``, each applicable connector in
       priority order, and each of the connector's scopes: search, then
       disambiguate
    3. First record found is cached and returned; otherwise ``Unresolved``

    Ambiguous matches abandon the current key type and move on to the next
    one. There is no check that different key types agree on a record.
    """

    def __init__(
        self,
        config: ResolverConfig,
        connectors: list[AbstractConnector] | None = None,
        cache: BibliographyCache | None = None,
        http: HttpClient | None = None,
    ) -> None:
        """Initialize the resolver.

        Args:
            config: ResolverConfig instance
            connectors: Connectors in priority order; built from config if omitted
            cache: Bibliography cache; an in-memory cache if omitted
            http: Shared HTTP client; created (and closed by ``close``) if omitted
        """
        self.config = config
        self._owns_http = http is None
        self.http = http or HttpClient(timeout=config.timeout, user_agent=config.user_agent)
        self.connectors = connectors if connectors is not None else ConnectorFactory.build(config, self.http)
        self.cache = cache if cache is not None else BibliographyCache(None)

    def prepare(self) -> None:
        """Do per-run lookups (user ID, group scopes) before resolving in parallel."""
        for connector in self.connectors:
            if connector.applicable(self.config) and connector.available:
                connector.scopes()

    def resolve(self, key: str) -> ResolvedRecord | Unresolved:
        """Resolve one citation key.

        Returns:
            The cached or newly found record, or an Unresolved marker.
        """
        cached = self.cache.get(key)
        if cached is not None:
            logger.debug("%s: already in the bibliography", key)
            return cached

        result = self._resolve_uncached(key)
        if isinstance(result, ResolvedRecord):
            self.cache.append(result)
            logger.debug("%s: found via %s", key, result.source)
        return result

    def _resolve_uncached(self, key: str) -> ResolvedRecord | Unresolved:
        reason = "not_found"
        for key_type in classify(key, self.config.citekey_types):
            term = tokenize(key, key_type)
            if not term:
                continue
            try:
                record = self._try_connectors(key, term)
            except AmbiguityError as e:
                logger.warning("%s: ambiguous as %s (%s)", key, key_type.value, e)
                reason = "ambiguous"
                continue
            if record:
                return record
        return Unresolved(key, reason)

    def _try_connectors(self, key: str, term: SearchTerm) -> ResolvedRecord | None:
        for connector in self.connectors:
            if not connector.applicable(self.config) or not connector.available:
                continue
            record = self._try_scopes(connector, key, term)
            if record:
                return record
        return None

    def _try_scopes(self, connector: AbstractConnector, key: str, term: SearchTerm) -> ResolvedRecord | None:
        for scope in connector.scopes():
            where = f"{connector.name} ({scope})" if scope else connector.name
            logger.debug("%s: trying %s %r via %s", key, term.key_type.value, term.query, where)
            record = disambiguate(key, connector.search(term, scope))
            if record:
                return record
        return None

    def close(self) -> None:
        for connector in self.connectors:
            connector.close()
        if self._owns_http:
            self.http.close()

    def __enter__(self) -> Resolver:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


def _citation_keys(citations: Iterable[str | Citation]) -> list[str]:
    keys = []
    for c in citations:
        if isinstance(c, Citation):
            if c.has_data:
                continue
            keys.append(c.key)
        else:
            keys.append(c)
    return unique(k for k in keys if k)


def resolve_citations(
    citations: Iterable[str | Citation],
    config: ResolverConfig,
    connectors: list[AbstractConnector] | None = None,
    cache: BibliographyCache | None = None,
    http: HttpClient | None = None,
) -> ResolutionReport:
    """Resolve a batch of citation keys and update the bibliography file.

    Keys are resolved concurrently, up to ``config.max_workers`` at a time.
    The bibliography file is written once, after every key has been tried.

    Args:
        citations: Citation keys, or Citation objects (those flagged as
            already having data are skipped)
        config: ResolverConfig instance
        connectors: Connectors in priority order; built from config if omitted
        cache: Bibliography cache; loaded from ``config.bibliography_path``
            if omitted
        http: Shared HTTP client

    Returns:
        ResolutionReport with one result per key, in input order

    Raises:
        CacheCorrupt: If the existing bibliography file cannot be parsed
        CacheWriteFailed: If the bibliography file cannot be written
    """
    keys = _citation_keys(citations)
    if cache is None:
        cache = BibliographyCache.load(config.bibliography_path)
    results: dict[str, ResolvedRecord | Unresolved] = {}

    with Resolver(config, connectors=connectors, cache=cache, http=http) as resolver:
        uncached = [k for k in keys if not cache.contains(k)]
        if uncached:
            resolver.prepare()
        workers = max(1, min(config.max_workers, len(keys)))
        with concurrent.futures.ThreadPoolExecutor(max_workers=workers) as ex:
            futures = {ex.submit(resolver.resolve, key): key for key in keys}
            for fut in concurrent.futures.as_completed(futures):
                key = futures[fut]
                try:
                    results[key] = fut.result()
                except Exception:
                    logger.exception("%s: lookup failed", key)
                    results[key] = Unresolved(key, "error")

    added = cache.pending
    cache.flush()
    return ResolutionReport(
        results={k: results[k] for k in keys},
        added=added,
        bibliography_path=cache.path,
    )


def log_summary(report: ResolutionReport, logger: logging.Logger) -> dict[str, int]:
    """Log counts and every unresolved key; return the counts."""
    unresolved = report.unresolved
    counts = {
        "total": len(report.results),
        "resolved": len(report.results) - len(unresolved),
        "added": len(report.added),
        "not_found": sum(1 for u in unresolved if u.reason == "not_found"),
        "ambiguous": sum(1 for u in unresolved if u.reason == "ambiguous"),
        "error": sum(1 for u in unresolved if u.reason == "error"),
    }
    logger.info(
        "Summary: total=%d, resolved=%d, added=%d, not_found=%d, ambiguous=%d, error=%d",
        counts["total"],
        counts["resolved"],
        counts["added"],
        counts["not_found"],
        counts["ambiguous"],
        counts["error"],
    )
    for u in unresolved:
        logger.warning("%s: %s", u.key, u.reason.replace("_", " "))
    return counts
