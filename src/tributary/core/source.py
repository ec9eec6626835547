"""
Source base class.

A source bundles the streams of one external system and exposes the four
connector commands: spec, check, discover and read.
"""

import copy
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator, Sequence
from typing import Any

from tributary.config.settings import COMMON_PROPERTIES, SyncSettings
from tributary.core.orchestrator import SyncOrchestrator
from tributary.core.stream import Stream
from tributary.protocol import (
    CatalogMessage,
    ConfiguredCatalog,
    ConnectionStatus,
    ConnectionStatusMessage,
    Message,
    SpecMessage,
)
from tributary.utils.logging import get_logger

logger = get_logger("tributary.source")


class Source(ABC):
    """
    Base class for connectors that read from an external system.

    Subclasses implement ``streams`` and ``check_connection`` and usually
    override ``connection_specification`` to describe their own settings.
    """

    version: str | None = None

    @property
    def type(self) -> str:
        """Source name reported in status signals."""
        return type(self).__name__

    def connection_specification(self) -> dict[str, Any]:
        """JSON schema of the connector's own configuration."""
        return {"$schema": "http://json-schema.org/draft-07/schema#", "type": "object", "properties": {}}

    @abstractmethod
    def streams(self, config: dict[str, Any]) -> Sequence[Stream]:
        """Every stream this source can read with ``config``."""

    @abstractmethod
    async def check_connection(self, config: dict[str, Any]) -> tuple[bool, str | None]:
        """
        Check that the external system is reachable with ``config``.

        Returns:
            (True, None) on success, otherwise (False, reason)
        """

    def spec(self) -> SpecMessage:
        """Connection specification with the common sync properties added."""
        specification = copy.deepcopy(self.connection_specification())
        properties = specification.setdefault("properties", {})
        for key, prop in COMMON_PROPERTIES.items():
            properties.setdefault(key, copy.deepcopy(prop))
        return SpecMessage(spec={"connectionSpecification": specification})

    async def check(self, config: dict[str, Any]) -> ConnectionStatusMessage:
        """Run ``check_connection``; failures are reported, never raised."""
        try:
            succeeded, message = await self.check_connection(config)
        except Exception as e:
            logger.error(f"Connection check failed: {e}")
            return ConnectionStatusMessage(status=ConnectionStatus.FAILED, message=str(e))
        if not succeeded:
            return ConnectionStatusMessage(status=ConnectionStatus.FAILED, message=message)
        return ConnectionStatusMessage(status=ConnectionStatus.SUCCEEDED)

    def discover(self, config: dict[str, Any]) -> CatalogMessage:
        """Describe every stream of the source."""
        return CatalogMessage(streams=[stream.as_catalog_entry() for stream in self.streams(config)])

    def orchestrator(self, config: dict[str, Any]) -> SyncOrchestrator:
        return SyncOrchestrator(
            self.streams(config),
            settings=SyncSettings.from_config(config),
            source_type=self.type,
            source_version=self.version,
            spec=self.spec().connection_specification,
        )

    def read(
        self,
        config: dict[str, Any],
        catalog: ConfiguredCatalog,
        state: Any = None,
    ) -> AsyncIterator[Message]:
        """
        Sync the streams selected by ``catalog``.

        Args:
            config: Connector configuration
            catalog: Streams to read and their sync modes
            state: Persisted sync-wide state from a previous run, if any

        Returns:
            Async iterator of RECORD and STATE messages
        """
        return self.orchestrator(config).read(config, catalog, state)
