# src/chainmirror/core/store/repository.py
"""RecordStore: idempotent reads and writes against the record tables.

Every write is a single upsert keyed by primary key and runs in its own
transaction. Nothing here groups a record's writes into one transaction: a
crash mid-record leaves the record row with ``complete = false`` and a
partial set of subrecords, which the next run's planner picks up again and
the upserts converge to the correct final rows.
"""

from __future__ import annotations

from typing import Any

from sqlalchemy import Table, case, func, select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import SQLAlchemyError

from chainmirror.contracts.errors import PersistenceError
from chainmirror.contracts.records import Record, StoreSummary, SubRecord
from chainmirror.core.store.database import StoreDB
from chainmirror.core.store.schema import records_table, subrecords_table


class RecordStore:
    """Persistence for records and subrecords.

    Safe to share across worker threads: StoreDB serializes statements on
    SQLite, other backends rely on their own transaction isolation.

    Example:
        store = RecordStore(StoreDB("sqlite:///./chain.sqlite"))
        store.upsert_record(Record(identity="0xab", parent_identity=None, sequence_number=0))
        store.set_complete("0xab")
        assert store.completed_sequence_numbers() == {0}
    """

    def __init__(self, db: StoreDB) -> None:
        self._db = db

    # === Writes ===

    def upsert_record(self, record: Record) -> None:
        """Insert a record row, or refresh parent/number of an existing one.

        The ``complete`` flag is written only on insert. An existing row keeps
        its flag, so re-ingesting a finished record never un-completes it.
        """
        values = {
            "identity": record.identity,
            "parent": record.parent_identity,
            "sequence_number": record.sequence_number,
            "complete": record.complete,
        }
        self._upsert(
            records_table,
            values,
            key_columns=("identity",),
            update_columns=("parent", "sequence_number"),
        )

    def upsert_sub_record(self, sub_record: SubRecord) -> None:
        """Insert or fully replace a subrecord row."""
        values = {
            "record_identity": sub_record.record_identity,
            "position": sub_record.position,
            "origin": sub_record.origin,
            "sequence_tag": sub_record.sequence_tag,
            "category": sub_record.category,
            "operation": sub_record.operation,
            "payload": sub_record.payload,
            "outcome": sub_record.outcome,
            "failure_detail": sub_record.failure_detail,
        }
        self._upsert(
            subrecords_table,
            values,
            key_columns=("record_identity", "position"),
            update_columns=tuple(k for k in values if k not in ("record_identity", "position")),
        )

    def set_complete(self, identity: str) -> None:
        """Mark a record complete. Idempotent.

        Raises:
            PersistenceError: If no record row exists for identity
        """
        stmt = update(records_table).where(records_table.c.identity == identity).values(complete=True)
        try:
            with self._db.connection() as conn:
                result = conn.execute(stmt)
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to mark record {identity} complete: {e}") from e
        if result.rowcount == 0:
            raise PersistenceError(f"Cannot mark record {identity} complete: no such record")

    # === Reads ===

    def completed_sequence_numbers(self) -> set[int]:
        """Sequence numbers of every record with ``complete = true``."""
        stmt = select(records_table.c.sequence_number).where(records_table.c.complete.is_(True))
        rows = self._fetch_all(stmt, "completed sequence numbers")
        return {row.sequence_number for row in rows}

    def get_record(self, identity: str) -> Record | None:
        stmt = select(records_table).where(records_table.c.identity == identity)
        rows = self._fetch_all(stmt, f"record {identity}")
        if not rows:
            return None
        return _record_from_row(rows[0])

    def record_for_sequence(self, sequence_number: int) -> Record | None:
        """Look up the record stored for a sequence number, if any."""
        stmt = select(records_table).where(records_table.c.sequence_number == sequence_number)
        rows = self._fetch_all(stmt, f"record #{sequence_number}")
        if not rows:
            return None
        return _record_from_row(rows[0])

    def get_sub_records(self, identity: str) -> list[SubRecord]:
        """Subrecords of a record, ordered by position."""
        stmt = (
            select(subrecords_table)
            .where(subrecords_table.c.record_identity == identity)
            .order_by(subrecords_table.c.position)
        )
        rows = self._fetch_all(stmt, f"subrecords of {identity}")
        return [
            SubRecord(
                record_identity=row.record_identity,
                position=row.position,
                origin=row.origin,
                sequence_tag=row.sequence_tag,
                category=row.category,
                operation=row.operation,
                payload=row.payload,
                outcome=bool(row.outcome),
                failure_detail=row.failure_detail,
            )
            for row in rows
        ]

    def summary(self) -> StoreSummary:
        """Counts of stored and completed records."""
        complete = records_table.c.complete.is_(True)
        stmt = select(
            func.count(),
            func.coalesce(func.sum(case((complete, 1), else_=0)), 0),
            func.max(case((complete, records_table.c.sequence_number), else_=None)),
        ).select_from(records_table)
        rows = self._fetch_all(stmt, "store summary")
        total, complete_count, highest = rows[0]
        return StoreSummary(
            total_records=total,
            complete_records=complete_count,
            highest_complete=highest,
        )

    # === Internals ===

    def _upsert(
        self,
        table: Table,
        values: dict[str, Any],
        *,
        key_columns: tuple[str, ...],
        update_columns: tuple[str, ...],
    ) -> None:
        """INSERT ... ON CONFLICT (key) DO UPDATE for the store's dialect."""
        dialect = self._db.engine.dialect.name
        if dialect == "sqlite":
            insert_stmt: Any = sqlite.insert(table).values(**values)
        elif dialect == "postgresql":
            insert_stmt = postgresql.insert(table).values(**values)
        else:
            raise PersistenceError(f"Upsert is not supported for database dialect '{dialect}'")
        stmt = insert_stmt.on_conflict_do_update(
            index_elements=list(key_columns),
            set_={column: insert_stmt.excluded[column] for column in update_columns},
        )
        key = ", ".join(str(values[k]) for k in key_columns)
        try:
            with self._db.connection() as conn:
                conn.execute(stmt)
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to upsert {table.name} row ({key}): {e}") from e

    def _fetch_all(self, stmt: Any, what: str) -> list[Any]:
        try:
            with self._db.connection() as conn:
                return list(conn.execute(stmt).fetchall())
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to read {what}: {e}") from e


def _record_from_row(row: Any) -> Record:
    return Record(
        identity=row.identity,
        parent_identity=row.parent,
        sequence_number=row.sequence_number,
        complete=bool(row.complete),
    )
