"""caselaw_etl.store

Persistence layer for case rows and the two reference dimensions.

The importer only talks to the CaseStore protocol; PostgresCaseStore is the
psycopg 3 implementation used by the CLI and the integration tests.  Every
method runs inside ``conn.transaction()``: on an autocommit connection each
call commits on its own, and inside an outer transaction (dry-run) each call
becomes a savepoint.
"""

from __future__ import annotations

from contextlib import AbstractContextManager
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Mapping, Protocol

import psycopg
from psycopg import sql
from psycopg.rows import dict_row
from psycopg.types.json import Jsonb

if TYPE_CHECKING:
    from caselaw_etl.transform import PersistableCase


# ---------------------------------------------------------------------------
# Reference dimensions
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ReferenceDimension:
    """A normalized lookup table that legal_case rows foreign-key into."""

    name: str
    table: str
    fk_column: str
    fields: tuple[str, ...]


COURT = ReferenceDimension(
    name="court",
    table="court",
    fk_column="court_id",
    fields=("name_abbreviation", "name"),
)
JURISDICTION = ReferenceDimension(
    name="jurisdiction",
    table="jurisdiction",
    fk_column="jurisdiction_id",
    fields=("name_long", "name"),
)
DIMENSIONS: dict[str, ReferenceDimension] = {
    COURT.name: COURT,
    JURISDICTION.name: JURISDICTION,
}

CASE_COLUMNS = (
    "id",
    "name",
    "name_abbreviation",
    "decision_date",
    "docket_number",
    "first_page",
    "last_page",
    "citations",
    "cites_to",
    "analysis",
    "provenance",
    "casebody",
    "last_updated",
    "file_name",
    "first_page_order",
    "last_page_order",
    "court_id",
    "jurisdiction_id",
)
JSON_COLUMNS = frozenset({"citations", "cites_to", "analysis", "provenance", "casebody"})


# ---------------------------------------------------------------------------
# Protocol
# ---------------------------------------------------------------------------

class CaseStore(Protocol):
    def transaction(self) -> AbstractContextManager[Any]:
        """Group several calls so they commit (or roll back) together."""
        ...

    def list_references(self, dimension: ReferenceDimension) -> list[dict[str, Any]]:
        """Return every row of the dimension as dicts with 'id' + fields, ordered by id."""
        ...

    def create_reference(
        self, dimension: ReferenceDimension, values: Mapping[str, Any]
    ) -> int:
        """Insert a reference row and return its new id."""
        ...

    def insert_case(self, case: PersistableCase) -> bool:
        """Insert-if-absent by case id.  True if inserted, False if it already existed."""
        ...

    def repoint_cases(
        self, dimension: ReferenceDimension, old_id: int, new_id: int
    ) -> int:
        """Move every case referencing old_id to new_id; return rows updated."""
        ...

    def delete_reference(self, dimension: ReferenceDimension, ref_id: int) -> None:
        ...


# ---------------------------------------------------------------------------
# PostgreSQL implementation
# ---------------------------------------------------------------------------

def connect(db_dsn: str) -> psycopg.Connection:
    """Open an autocommit connection; transactions are scoped per store call."""
    return psycopg.connect(db_dsn, autocommit=True)


class PostgresCaseStore:
    def __init__(self, conn: psycopg.Connection) -> None:
        self._conn = conn

    def transaction(self) -> AbstractContextManager[Any]:
        return self._conn.transaction()

    def list_references(self, dimension: ReferenceDimension) -> list[dict[str, Any]]:
        query = sql.SQL("SELECT id, {fields} FROM {table} ORDER BY id ASC").format(
            fields=sql.SQL(", ").join(map(sql.Identifier, dimension.fields)),
            table=sql.Identifier(dimension.table),
        )
        with self._conn.transaction():
            with self._conn.cursor(row_factory=dict_row) as cur:
                cur.execute(query)
                return cur.fetchall()

    def create_reference(
        self, dimension: ReferenceDimension, values: Mapping[str, Any]
    ) -> int:
        query = sql.SQL(
            "INSERT INTO {table} ({fields}) VALUES ({placeholders}) RETURNING id"
        ).format(
            table=sql.Identifier(dimension.table),
            fields=sql.SQL(", ").join(map(sql.Identifier, dimension.fields)),
            placeholders=sql.SQL(", ").join([sql.Placeholder()] * len(dimension.fields)),
        )
        params = tuple(values.get(f) for f in dimension.fields)
        with self._conn.transaction():
            row = self._conn.execute(query, params).fetchone()
        return int(row[0])

    def insert_case(self, case: PersistableCase) -> bool:
        query = sql.SQL(
            """
            INSERT INTO legal_case ({columns})
            VALUES ({placeholders})
            ON CONFLICT (id) DO NOTHING
            RETURNING id
            """
        ).format(
            columns=sql.SQL(", ").join(map(sql.Identifier, CASE_COLUMNS)),
            placeholders=sql.SQL(", ").join([sql.Placeholder()] * len(CASE_COLUMNS)),
        )
        row_values = case.to_row()
        params = tuple(
            Jsonb(row_values[c]) if c in JSON_COLUMNS and row_values[c] is not None
            else row_values[c]
            for c in CASE_COLUMNS
        )
        with self._conn.transaction():
            row = self._conn.execute(query, params).fetchone()
        return row is not None

    def repoint_cases(
        self, dimension: ReferenceDimension, old_id: int, new_id: int
    ) -> int:
        query = sql.SQL("UPDATE legal_case SET {fk} = %s WHERE {fk} = %s").format(
            fk=sql.Identifier(dimension.fk_column),
        )
        with self._conn.transaction():
            cur = self._conn.execute(query, (new_id, old_id))
            return cur.rowcount

    def delete_reference(self, dimension: ReferenceDimension, ref_id: int) -> None:
        query = sql.SQL("DELETE FROM {table} WHERE id = %s").format(
            table=sql.Identifier(dimension.table),
        )
        with self._conn.transaction():
            self._conn.execute(query, (ref_id,))
