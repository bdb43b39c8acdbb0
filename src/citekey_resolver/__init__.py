"""Citekey Resolver - Resolve citation keys against Zotero libraries.

This package provides tools for:
- Classifying citation keys (Zotero item IDs, Better BibTeX keys, easy citekeys)
- Looking them up in the Zotero desktop client and the Zotero Web API
- Keeping found records in an append-only CSL JSON/YAML bibliography file

Example usage:
    from citekey_resolver import ResolverConfig, resolve_citations

    config = ResolverConfig(bibliography_path="refs.json", api_key="...")
    report = resolve_citations(["DoeTitle2020", "doe:2020title"], config)
    for key, result in report.results.items():
        print(key, result)
"""

from citekey_resolver._version import __version__

from citekey_resolver.bibliography import BibliographyCache, atomic_write, codec_for
from citekey_resolver.config import ResolverConfig
from citekey_resolver.connectors import (
    AbstractConnector,
    Candidate,
    ConnectorFactory,
    GroupScope,
    ResolvedRecord,
    Unresolved,
)
from citekey_resolver.disambiguate import disambiguate
from citekey_resolver.errors import (
    AmbiguityError,
    CacheCorrupt,
    CacheWriteFailed,
    CitekeyResolverError,
    ConnectorUnreachable,
    UnsupportedFormatError,
)
from citekey_resolver.keys import KeyType, SearchTerm, classify, parse_pinned_citekey, tokenize
from citekey_resolver.resolver import (
    Citation,
    ResolutionReport,
    Resolver,
    log_summary,
    resolve_citations,
)
from citekey_resolver.utils import HttpClient, RateLimiter, RateLimiterRegistry

__all__ = [
    "__version__",
    # Keys
    "KeyType",
    "SearchTerm",
    "classify",
    "parse_pinned_citekey",
    "tokenize",
    # Connectors
    "AbstractConnector",
    "Candidate",
    "ConnectorFactory",
    "GroupScope",
    "ResolvedRecord",
    "Unresolved",
    "disambiguate",
    # Resolution
    "Citation",
    "ResolutionReport",
    "Resolver",
    "log_summary",
    "resolve_citations",
    # Bibliography
    "BibliographyCache",
    "atomic_write",
    "codec_for",
    # Config
    "ResolverConfig",
    # HTTP
    "HttpClient",
    "RateLimiter",
    "RateLimiterRegistry",
    # Errors
    "AmbiguityError",
    "CacheCorrupt",
    "CacheWriteFailed",
    "CitekeyResolverError",
    "ConnectorUnreachable",
    "UnsupportedFormatError",
]
