# src/chainmirror/sources/__init__.py
"""Chain source implementations.

- SidecarSource: HTTP JSON API (default)
- SubstrateSource: direct node RPC, needs the ``substrate`` extra
"""

from chainmirror.sources.factory import open_chain_source
from chainmirror.sources.sidecar import SidecarSource
from chainmirror.sources.substrate import SubstrateSource

__all__ = [
    "SidecarSource",
    "SubstrateSource",
    "open_chain_source",
]
