"""Abstract base class and data structures for connectors."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, ClassVar

from citekey_resolver.utils import lower_keys

if TYPE_CHECKING:
    from citekey_resolver.config import ResolverConfig
    from citekey_resolver.keys import SearchTerm

# Preferred order of fields in CSL items written to bibliography files.
# Unlisted fields follow in lexical order.
CSL_KEY_ORDER = (
    "id",
    "type",
    "author",
    "recipient",
    "status",
    "issued",
    "title",
    "title-short",
    "short-title",
    "original-title",
    "translator",
    "editor",
    "container-title",
    "container-title-short",
    "collection-editor",
    "collection-title",
    "collection-title-short",
    "edition",
    "volume",
    "issue",
    "page-first",
    "page",
    "publisher",
    "publisher-place",
    "original-publisher",
    "original-publisher-place",
    "doi",
    "pmcid",
    "pmid",
    "url",
    "accessed",
    "isbn",
    "issn",
    "call-number",
    "language",
    "abstract",
)

_CSL_KEY_RANK = {k: i for i, k in enumerate(CSL_KEY_ORDER)}


def order_csl_fields(item: dict[str, Any]) -> dict[str, Any]:
    """Return a copy of a CSL item with its fields in ``CSL_KEY_ORDER``."""
    ranked = sorted(item, key=lambda k: (_CSL_KEY_RANK.get(k, len(CSL_KEY_ORDER)), k))
    return {k: item[k] for k in ranked}


@dataclass(frozen=True)
class GroupScope:
    """A library partition searched by the Web API connector.

    Attributes:
        group_id: Zotero group ID, or None for the personal library
        public: Whether the group is searched without a credential
    """

    group_id: str | None = None
    public: bool = False

    PERSONAL: ClassVar[GroupScope]

    @property
    def is_group(self) -> bool:
        return self.group_id is not None

    @property
    def library_type(self) -> str:
        return "group" if self.is_group else "user"

    def __str__(self) -> str:
        if not self.is_group:
            return "personal library"
        return f"{'public ' if self.public else ''}group {self.group_id}"


GroupScope.PERSONAL = GroupScope()


@dataclass(frozen=True)
class Candidate:
    """A bibliographic record returned by a connector.

    Attributes:
        record_id: Identifier assigned by the source (item key or CSL id)
        payload: CSL item, passed through untouched
        pinned_citekey: Citation key pinned in the item's annotation field
        source: Name of the connector (and scope) that returned it
    """

    record_id: str | None
    payload: dict[str, Any] = field(default_factory=dict)
    pinned_citekey: str | None = None
    source: str | None = None


@dataclass(frozen=True)
class ResolvedRecord:
    """A candidate bound to the citation key that found it."""

    key: str
    payload: dict[str, Any] = field(default_factory=dict)
    record_id: str | None = None
    source: str | None = None

    @classmethod
    def from_candidate(cls, key: str, candidate: Candidate) -> ResolvedRecord:
        return cls(
            key=key,
            payload=candidate.payload,
            record_id=candidate.record_id,
            source=candidate.source,
        )

    def to_item(self) -> dict[str, Any]:
        """Return the CSL item to store, with ``id`` set to the citation key."""
        item = lower_keys(self.payload)
        item["id"] = self.key
        return order_csl_fields(item)


@dataclass(frozen=True)
class Unresolved:
    """Marker for a citation key that could not be resolved.

    Attributes:
        key: The citation key
        reason: "not_found", "ambiguous", or "error" for a lookup that raised
    """

    key: str
    reason: str = "not_found"


class AbstractConnector(ABC):
    """Abstract base class for data sources.

    Subclasses must implement:
    - applicable(): Whether the configuration allows using the source at all
    - search(): Run one lookup and return zero or more candidates

    ``search`` must not raise on transport problems; it logs and returns an
    empty list so the resolver can fall through to the next source.
    """

    name: ClassVar[str] = "abstract"

    def __init__(self, config: ResolverConfig) -> None:
        """Initialize the connector.

        Args:
            config: ResolverConfig instance
        """
        self.config = config

    @property
    def available(self) -> bool:
        """Whether the source is still worth asking during this run."""
        return True

    @abstractmethod
    def applicable(self, config: ResolverConfig) -> bool:
        """Check whether the configuration makes this source usable."""
        ...

    def scopes(self) -> list[GroupScope | None]:
        """Scopes to search, in order. Scope-less sources return ``[None]``."""
        return [None]

    @abstractmethod
    def search(self, term: SearchTerm, scope: GroupScope | None = None) -> list[Candidate]:
        """Look up a search term.

        Args:
            term: Terms derived from a citation key
            scope: Library partition to search, if the source has any

        Returns:
            Candidate records, possibly empty
        """
        ...

    def close(self) -> None:
        """Release resources held by the connector."""

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.name}>"
