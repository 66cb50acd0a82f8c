"""Relational record store: schema, connection management and the repository."""

from chainmirror.core.store.database import StoreDB
from chainmirror.core.store.repository import RecordStore
from chainmirror.core.store.schema import metadata, records_table, subrecords_table

__all__ = [
    "RecordStore",
    "StoreDB",
    "metadata",
    "records_table",
    "subrecords_table",
]
