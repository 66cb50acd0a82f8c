# src/chainmirror/core/__init__.py
"""Core infrastructure: configuration, logging, canonical JSON and the record store."""
