"""Connector factory for building data sources in priority order."""

from __future__ import annotations

import logging

from citekey_resolver.config import CONNECTOR_NAMES, ResolverConfig
from citekey_resolver.connectors.base import AbstractConnector
from citekey_resolver.utils import HttpClient

logger = logging.getLogger(__name__)


class ConnectorFactory:
    """Factory for creating connector instances.

    Supported connectors:
    - "desktop": Zotero desktop client with the zotxt add-on
    - "webapi": Zotero Web API (requires an API key or public groups)
    """

    @staticmethod
    def create(name: str, config: ResolverConfig, http: HttpClient) -> AbstractConnector:
        """Create a connector by name.

        Raises:
            ValueError: If the connector is not supported
        """
        if name == "desktop":
            from citekey_resolver.connectors.desktop import DesktopConnector

            return DesktopConnector(config, http)

        elif name == "webapi":
            from citekey_resolver.connectors.webapi import WebApiConnector

            return WebApiConnector(config, http)

        else:
            raise ValueError(f"Unsupported connector: {name}. Supported connectors: {', '.join(CONNECTOR_NAMES)}")

    @classmethod
    def build(cls, config: ResolverConfig, http: HttpClient) -> list[AbstractConnector]:
        """Create the applicable connectors in the configured priority order."""
        connectors = []
        for name in config.connectors:
            connector = cls.create(name, config, http)
            if connector.applicable(config):
                connectors.append(connector)
            else:
                logger.debug("Connector %s is not applicable with this configuration", name)
        return connectors
