"""Integration test fixtures.

Applies the schema migrations against an ephemeral PostgreSQL database
provided by pytest-postgresql before each integration test runs.
"""

from __future__ import annotations

import gzip
import json
from pathlib import Path

import psycopg
import pytest
from pytest_postgresql import factories

# ---------------------------------------------------------------------------
# Paths
# ---------------------------------------------------------------------------

PROJECT_ROOT = Path(__file__).parent.parent.parent
MIGRATIONS = [
    PROJECT_ROOT / "migrations" / "0001_caselaw_core.sql",
]

# ---------------------------------------------------------------------------
# pytest-postgresql process fixture
# ---------------------------------------------------------------------------

postgresql_proc = factories.postgresql_proc()
postgresql = factories.postgresql("postgresql_proc")


# ---------------------------------------------------------------------------
# Schema fixture
# ---------------------------------------------------------------------------

@pytest.fixture(scope="function")
def db_conn(postgresql):
    """Return (autocommit connection, dsn) with the schema applied.

    The connection stays in autocommit mode, matching how the CLI connects,
    so rows written through a second connection are visible immediately.
    """
    dsn = (
        f"host={postgresql.info.host} "
        f"port={postgresql.info.port} "
        f"dbname={postgresql.info.dbname} "
        f"user={postgresql.info.user} "
        f"password={postgresql.info.password or ''}"
    )
    conn = psycopg.connect(dsn, autocommit=True)
    try:
        for migration in MIGRATIONS:
            conn.execute(migration.read_text(encoding="utf-8"))
        yield conn, dsn
    finally:
        conn.close()


# ---------------------------------------------------------------------------
# Source file helpers
# ---------------------------------------------------------------------------

CAL_APP = {"name_abbreviation": "Cal. Ct. App.", "name": "California Court of Appeal"}
CALIFORNIA = {"name_long": "California", "name": "Cal."}


def _case_record(case_id: int, court=CAL_APP, jurisdiction=CALIFORNIA, **extra) -> dict:
    rec = {
        "id": case_id,
        "name": f"The People v. Doe {case_id}",
        "name_abbreviation": f"People v. Doe {case_id}",
        "decision_date": "2011-03-04",
        "docket_number": f"B{220000 + case_id}",
        "first_page": "1",
        "last_page": "12",
        "citations": [{"type": "official", "cite": f"{case_id} Cal. App. 4th 1"}],
        "cites_to": [{"cite": "1 Cal. 2d 1", "case_ids": [99]}],
        "analysis": {"word_count": 1200, "char_count": 7100},
        "provenance": {"source": "Harvard", "batch": "2018"},
        "casebody": {"status": "ok", "data": {"opinions": [{"type": "majority"}]}},
        "last_updated": "2023-07-14T12:00:00Z",
        "file_name": f"{case_id:04d}-01",
        "first_page_order": 3,
        "last_page_order": 14,
        "court": court,
        "jurisdiction": jurisdiction,
    }
    rec.update(extra)
    return rec


def _write_source(path: Path, lines: list) -> Path:
    body = "\n".join(
        line if isinstance(line, str) else json.dumps(line) for line in lines
    )
    path.write_bytes(gzip.compress(body.encode("utf-8")))
    return path


@pytest.fixture
def source_file(tmp_path) -> Path:
    """Four good records (one court spelled two ways) and one malformed line."""
    variant = {"name_abbreviation": "cal ct app", "name": "CALIFORNIA COURT OF APPEAL."}
    return _write_source(tmp_path / "cases.jsonl.gz", [
        _case_record(1),
        _case_record(2, court=variant),
        '{"id": 3, "name": ',
        "",
        _case_record(4),
        _case_record(5, court={"name": "Supreme Court of California", "name_abbreviation": "Cal."}),
    ])


@pytest.fixture
def case_record():
    """Factory for full raw case records."""
    return _case_record


@pytest.fixture
def make_source(tmp_path):
    """Write a gzip JSONL source from records and raw strings."""
    def _make(lines: list, name: str = "extra.jsonl.gz") -> Path:
        return _write_source(tmp_path / name, lines)
    return _make
