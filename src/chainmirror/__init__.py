"""
chainmirror: resumable, bounded-concurrency mirroring of an append-only chain.

Blocks and their extrinsics are fetched from a remote node and written to a
local relational store so that historical queries never touch the network.
"""

__version__ = "0.1.0"
