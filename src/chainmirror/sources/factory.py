# src/chainmirror/sources/factory.py
"""Build a ChainSource from settings."""

from __future__ import annotations

from chainmirror.contracts.enums import SourceBackend
from chainmirror.contracts.errors import ConfigurationError
from chainmirror.contracts.source import ChainSource
from chainmirror.core.config import SourceSettings
from chainmirror.sources.sidecar import SidecarSource
from chainmirror.sources.substrate import SubstrateSource


def open_chain_source(settings: SourceSettings) -> ChainSource:
    """Open the source selected by ``settings.backend``.

    The caller owns the returned source and must close() it.

    Raises:
        ConfigurationError: If the backend is unknown or its library is missing
        FetchError: If the backend connects eagerly and the endpoint is unreachable
    """
    if settings.backend == SourceBackend.SIDECAR:
        return SidecarSource(settings.url, timeout=settings.timeout_seconds)
    if settings.backend == SourceBackend.SUBSTRATE:
        return SubstrateSource.connect(
            settings.url,
            type_definitions=settings.type_definitions,
            timeout=settings.timeout_seconds,
        )
    raise ConfigurationError(f"Unknown source backend: {settings.backend}")
