"""Configuration for citation key resolution."""

from __future__ import annotations

import os
import re
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any

import yaml

from citekey_resolver.keys import KeyType
from citekey_resolver.utils import USER_AGENT, ZOTERO_API, ZOTXT_BASE_URL, as_tuple

CONNECTOR_NAMES = ("desktop", "webapi")

_CONNECTOR_ALIASES = {
    "zotxt": "desktop",
    "zotero": "desktop",
    "web": "webapi",
    "zoteroweb": "webapi",
    "zotweb": "webapi",
}


def _connector_name(name: str) -> str:
    norm = re.sub(r"[\s_-]", "", str(name)).lower()
    norm = _CONNECTOR_ALIASES.get(norm, norm)
    if norm not in CONNECTOR_NAMES:
        raise ValueError(f"Unknown connector: {name!r}. Supported connectors: {', '.join(CONNECTOR_NAMES)}")
    return norm


@dataclass(frozen=True)
class ResolverConfig:
    """Immutable settings threaded through a resolution run.

    Attributes:
        api_key: Zotero Web API key; None disables personal and private-group access
        bibliography_path: CSL JSON/YAML file to read and append to; None keeps
            resolved records in memory only
        citekey_types: Key types to consider; empty means all
        connectors: Data sources in priority order
        groups: Group IDs to search after the personal library
        public_groups: Public group IDs, searched last and without credential
        user_id: Zotero user ID; looked up from the API key if None
        timeout: Per-request timeout in seconds
        max_workers: Upper bound on citations resolved concurrently
        search_limit: Maximum items requested per Web API search
        desktop_url: Base URL of the zotxt endpoint
        webapi_url: Base URL of the Zotero Web API
        user_agent: User-Agent header sent with every request
    """

    api_key: str | None = field(default=None, repr=False)
    bibliography_path: str | None = None
    citekey_types: frozenset[KeyType] = frozenset()
    connectors: tuple[str, ...] = CONNECTOR_NAMES
    groups: tuple[str, ...] = ()
    public_groups: tuple[str, ...] = ()
    user_id: str | None = None
    timeout: float = 10.0
    max_workers: int = 4
    search_limit: int = 25
    desktop_url: str = ZOTXT_BASE_URL
    webapi_url: str = ZOTERO_API
    user_agent: str = USER_AGENT

    def __post_init__(self) -> None:
        """Normalise collection-valued options so callers may pass lists or strings."""
        object.__setattr__(
            self, "citekey_types", frozenset(KeyType.parse(t) for t in _key_type_names(self.citekey_types))
        )
        object.__setattr__(self, "connectors", tuple(_connector_name(c) for c in as_tuple(self.connectors)))
        object.__setattr__(self, "groups", as_tuple(self.groups))
        object.__setattr__(self, "public_groups", as_tuple(self.public_groups))
        if self.user_id is not None:
            object.__setattr__(self, "user_id", str(self.user_id))
        if self.bibliography_path is not None:
            object.__setattr__(self, "bibliography_path", os.fspath(self.bibliography_path))
        if self.timeout <= 0:
            raise ValueError("timeout must be positive")
        if self.max_workers < 1:
            raise ValueError("max_workers must be at least 1")

    @property
    def webapi_applicable(self) -> bool:
        """Whether the Web API can be used at all."""
        return bool(self.api_key or self.public_groups)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ResolverConfig:
        """Create config from a mapping (e.g., loaded from YAML or document metadata).

        Option names may be hyphenated (``api-key``), carry the ``zotero-``
        prefix used in document metadata (``zotero-api-key``), or use
        underscores (``api_key``).

        Raises:
            ValueError: If an option is unknown or has an invalid value
        """
        known = {f.name for f in fields(cls)}
        kwargs: dict[str, Any] = {}
        for raw_name, value in data.items():
            name = str(raw_name).lower()
            if name.startswith("zotero-") or name.startswith("zotero_"):
                name = name[len("zotero-") :]
            name = name.replace("-", "_")
            if name == "bibliography":
                name = "bibliography_path"
            if name not in known:
                raise ValueError(f"Unknown configuration option: {raw_name!r}")
            kwargs[name] = value
        return cls(**kwargs)

    @classmethod
    def from_yaml(cls, path: str | Path) -> ResolverConfig:
        """Load config from a YAML mapping.

        Args:
            path: Path to the YAML file

        Raises:
            ValueError: If the file does not contain a mapping
        """
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
        if not isinstance(data, dict):
            raise ValueError(f"{path}: expected a mapping of options")
        return cls.from_dict(data)

    @classmethod
    def from_env(cls, **overrides: Any) -> ResolverConfig:
        """Create config from ZOTERO_API_KEY, ZOTERO_USER_ID and ZOTERO_BIBLIOGRAPHY."""
        kwargs: dict[str, Any] = {
            "api_key": os.environ.get("ZOTERO_API_KEY") or None,
            "user_id": os.environ.get("ZOTERO_USER_ID") or None,
            "bibliography_path": os.environ.get("ZOTERO_BIBLIOGRAPHY") or None,
        }
        kwargs.update(overrides)
        return cls(**kwargs)

    def to_dict(self) -> dict[str, Any]:
        """Convert config to a dictionary for serialization (without the API key)."""
        return {
            "bibliography-path": self.bibliography_path,
            "citekey-types": sorted(t.value for t in self.citekey_types),
            "connectors": list(self.connectors),
            "groups": list(self.groups),
            "public-groups": list(self.public_groups),
            "user-id": self.user_id,
            "timeout": self.timeout,
            "max-workers": self.max_workers,
            "search-limit": self.search_limit,
            "desktop-url": self.desktop_url,
            "webapi-url": self.webapi_url,
            "user-agent": self.user_agent,
        }


def _key_type_names(value: Any) -> tuple[Any, ...]:
    if isinstance(value, KeyType):
        return (value,)
    if isinstance(value, (frozenset, set, list, tuple)):
        return tuple(v for v in value if v is not None and v != "")
    return as_tuple(value)
