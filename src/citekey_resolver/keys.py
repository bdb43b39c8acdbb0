"""Citation key classification and tokenization.

A citation key such as ``DoeTitle2020`` or ``doe:2020title`` does not say
which syntax it uses. ``classify`` lists the plausible interpretations and
``tokenize`` turns one interpretation into the terms a connector searches
for. Both are pure functions and never raise.
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Iterator
from dataclasses import dataclass
from enum import Enum


class KeyType(Enum):
    """Citation key syntaxes, named after zotxt's key types."""

    ITEM_ID = "key"
    BETTER_BIBTEX = "betterbibtexkey"
    EASY_CITEKEY = "easykey"

    @classmethod
    def parse(cls, name: str | KeyType) -> KeyType:
        """Look up a key type by value, member name or common alias."""
        if isinstance(name, KeyType):
            return name
        norm = re.sub(r"[\s_-]", "", str(name)).lower()
        for member in cls:
            if norm in (member.value, member.name.replace("_", "").lower()):
                return member
        alias = _KEY_TYPE_ALIASES.get(norm)
        if alias is None:
            raise ValueError(f"Unknown citation key type: {name!r}")
        return alias


_KEY_TYPE_ALIASES = {
    "itemkey": KeyType.ITEM_ID,
    "zoteroid": KeyType.ITEM_ID,
    "betterbibtex": KeyType.BETTER_BIBTEX,
    "bbt": KeyType.BETTER_BIBTEX,
    "easycitekey": KeyType.EASY_CITEKEY,
    "easy": KeyType.EASY_CITEKEY,
}

# Item IDs are a direct lookup, so they are tried first.
KEY_TYPE_ORDER = (KeyType.ITEM_ID, KeyType.BETTER_BIBTEX, KeyType.EASY_CITEKEY)

# Zotero item keys, e.g. "ABCD2345"
ITEM_ID_RE = re.compile(r"[A-Z0-9]{8}")

# Boundaries before and after every digit run, and at lower-to-upper
# camel-case transitions. Splitting after digits too keeps a year its own
# term when a title word follows it ("doe2020title").
_BBT_BOUNDARY_RE = re.compile(r"(?<=\D)(?=\d)|(?<=\d)(?=\D)|(?<=[a-z])(?=[A-Z])")
_DIGITS_RE = re.compile(r"\d+")

# "Citation Key: doe2020Title" as written by Better BibTeX into the extra field
PINNED_CITEKEY_RE = re.compile(r"^\s*(?:citation key|citekey)\s*:\s*(\S+)\s*$", re.IGNORECASE | re.MULTILINE)


@dataclass(frozen=True)
class SearchTerm:
    """Terms derived from one citation key under one interpretation.

    Order matters to connectors that support positional queries; everyone
    else treats the parts as a conjunctive filter.
    """

    key_type: KeyType
    parts: tuple[str, ...]

    def __iter__(self) -> Iterator[str]:
        return iter(self.parts)

    def __len__(self) -> int:
        return len(self.parts)

    def __bool__(self) -> bool:
        return bool(self.parts)

    @property
    def is_item_id(self) -> bool:
        return self.key_type is KeyType.ITEM_ID

    @property
    def query(self) -> str:
        return " ".join(self.parts)


def classify(key: str, allowed: Iterable[KeyType] | None = None) -> tuple[KeyType, ...]:
    """List the plausible interpretations of a citation key.

    Args:
        key: The citation key as it appears in the document
        allowed: Key types to consider; empty or None means all of them

    Returns:
        Key types in priority order. ``ITEM_ID`` is only included when the
        key looks like a Zotero item key.
    """
    allowed_set = set(allowed or ()) or set(KEY_TYPE_ORDER)
    types = []
    for key_type in KEY_TYPE_ORDER:
        if key_type not in allowed_set:
            continue
        if key_type is KeyType.ITEM_ID and not ITEM_ID_RE.fullmatch(key or ""):
            continue
        types.append(key_type)
    return tuple(types)


def _split_better_bibtex(key: str) -> list[str]:
    return _BBT_BOUNDARY_RE.split(key)


def _split_easy_citekey(key: str) -> list[str]:
    head, sep, rest = key.partition(":")
    if not sep:
        head, rest = "", key
    runs = list(_DIGITS_RE.finditer(rest))
    if not runs:
        return [head, rest]
    last = runs[-1]
    return [head, rest[: last.start()], last.group(), rest[last.end() :]]


def tokenize(key: str, key_type: KeyType) -> SearchTerm:
    """Split a citation key into search terms.

    Examples:
        >>> tokenize("DoeTitle2020", KeyType.BETTER_BIBTEX).parts
        ('Doe', 'Title', '2020')
        >>> tokenize("doe:2020title", KeyType.EASY_CITEKEY).parts
        ('doe', '2020', 'title')
    """
    if not key:
        return SearchTerm(key_type, ())
    if key_type is KeyType.ITEM_ID:
        return SearchTerm(key_type, (key,))
    if key_type is KeyType.BETTER_BIBTEX:
        parts = _split_better_bibtex(key)
    else:
        parts = _split_easy_citekey(key)
    return SearchTerm(key_type, tuple(p for p in parts if p))


def parse_pinned_citekey(text: str | None) -> str | None:
    """Extract the pinned citation key from a free-text annotation field."""
    if not text:
        return None
    m = PINNED_CITEKEY_RE.search(text)
    return m.group(1) if m else None
