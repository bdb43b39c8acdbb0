"""Data sources for citation key lookups.

This package provides the connector interface and its implementations:
- desktop: Zotero desktop client via zotxt
- webapi: Zotero Web API via pyzotero
"""

from citekey_resolver.connectors.base import (
    AbstractConnector,
    Candidate,
    GroupScope,
    ResolvedRecord,
    Unresolved,
)
from citekey_resolver.connectors.factory import ConnectorFactory

__all__ = [
    "AbstractConnector",
    "Candidate",
    "ConnectorFactory",
    "GroupScope",
    "ResolvedRecord",
    "Unresolved",
]
