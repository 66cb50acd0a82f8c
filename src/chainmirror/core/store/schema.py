# src/chainmirror/core/store/schema.py
"""SQLAlchemy table definitions for the record store.

Uses SQLAlchemy Core (not ORM) for explicit control over upserts and
compatibility with SQLite and PostgreSQL. Column layout is the stable
contract downstream consumers query against.
"""

from sqlalchemy import (
    Boolean,
    Column,
    Index,
    Integer,
    MetaData,
    PrimaryKeyConstraint,
    Table,
    Text,
)

# Shared metadata for all tables
metadata = MetaData()

# === Records (blocks) ===

records_table = Table(
    "records",
    metadata,
    Column("identity", Text, primary_key=True),
    Column("parent", Text),  # NULL for genesis
    Column("sequence_number", Integer),
    # Set only after every subrecord of this record is written
    Column("complete", Boolean, nullable=False, default=False),
)

Index("ix_records_sequence_number", records_table.c.sequence_number)

# === Subrecords (extrinsics) ===

subrecords_table = Table(
    "subrecords",
    metadata,
    Column("record_identity", Text, nullable=False),
    Column("position", Integer, nullable=False),
    Column("origin", Text),
    Column("sequence_tag", Integer),
    Column("category", Text),
    Column("operation", Text),
    Column("payload", Text),  # canonical JSON of call arguments
    Column("outcome", Boolean),
    Column("failure_detail", Text),  # canonical JSON, only when outcome is false
    PrimaryKeyConstraint("record_identity", "position"),
)
