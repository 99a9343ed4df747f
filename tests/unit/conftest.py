"""Unit test fixtures.

InMemoryCaseStore implements the CaseStore protocol with plain dicts so the
importer can be exercised without PostgreSQL.  Failure injection:

  store.fail_case_writes[case_id] = n   → next n insert_case calls raise
  store.fail_reference_creates = n      → next n create_reference calls raise
"""

from __future__ import annotations

import copy
from contextlib import contextmanager
from typing import Any, Iterator, Mapping

import pytest

from caselaw_etl.store import ReferenceDimension


class TransientWriteError(Exception):
    pass


class InMemoryCaseStore:
    def __init__(self) -> None:
        self.references: dict[str, dict[int, dict[str, Any]]] = {
            "court": {},
            "jurisdiction": {},
        }
        self.cases: dict[int, dict[str, Any]] = {}
        self._next_id = {"court": 1, "jurisdiction": 1}
        self.create_calls: list[tuple[str, dict[str, Any]]] = []
        self.insert_calls: list[int] = []
        self.list_calls = 0
        self.transactions = 0
        self.fail_case_writes: dict[int, int] = {}
        self.fail_reference_creates = 0

    # -- seeding helpers ----------------------------------------------------

    def seed_reference(self, dimension: str, **fields: Any) -> int:
        ref_id = self._next_id[dimension]
        self._next_id[dimension] += 1
        self.references[dimension][ref_id] = dict(fields)
        return ref_id

    def seed_case(self, case_id: int, court_id: int, jurisdiction_id: int) -> None:
        self.cases[case_id] = {
            "id": case_id,
            "court_id": court_id,
            "jurisdiction_id": jurisdiction_id,
        }

    # -- CaseStore protocol -------------------------------------------------

    @contextmanager
    def transaction(self) -> Iterator[None]:
        self.transactions += 1
        yield

    def list_references(self, dimension: ReferenceDimension) -> list[dict[str, Any]]:
        self.list_calls += 1
        rows = self.references[dimension.name]
        return [{"id": ref_id, **copy.deepcopy(fields)} for ref_id, fields in sorted(rows.items())]

    def create_reference(
        self, dimension: ReferenceDimension, values: Mapping[str, Any]
    ) -> int:
        if self.fail_reference_creates:
            self.fail_reference_creates -= 1
            raise TransientWriteError("reference insert failed")
        fields = {f: values.get(f) for f in dimension.fields}
        self.create_calls.append((dimension.name, fields))
        return self.seed_reference(dimension.name, **fields)

    def insert_case(self, case) -> bool:
        self.insert_calls.append(case.id)
        remaining = self.fail_case_writes.get(case.id, 0)
        if remaining:
            self.fail_case_writes[case.id] = remaining - 1
            raise TransientWriteError(f"timeout writing case {case.id}")
        if case.id in self.cases:
            return False
        self.cases[case.id] = case.to_row()
        return True

    def repoint_cases(
        self, dimension: ReferenceDimension, old_id: int, new_id: int
    ) -> int:
        moved = 0
        for row in self.cases.values():
            if row[dimension.fk_column] == old_id:
                row[dimension.fk_column] = new_id
                moved += 1
        return moved

    def delete_reference(self, dimension: ReferenceDimension, ref_id: int) -> None:
        del self.references[dimension.name][ref_id]


@pytest.fixture
def store() -> InMemoryCaseStore:
    return InMemoryCaseStore()


@pytest.fixture
def sleeps() -> list[float]:
    """Collects delays passed to an injected sleep callable."""
    return []
