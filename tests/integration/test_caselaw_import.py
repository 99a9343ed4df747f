"""Integration tests for the case import against a real PostgreSQL schema."""

from __future__ import annotations

import json
from datetime import date, datetime, timezone

import pytest
from click.testing import CliRunner

from caselaw_etl.config import ImportConfig
from caselaw_etl.import_caselaw import build_importer, main
from caselaw_etl.shared import RejectWriter, RunCounters
from caselaw_etl.store import PostgresCaseStore


def table_count(conn, table: str) -> int:
    return conn.execute(f"SELECT count(*) FROM {table}").fetchone()[0]


def run_import(conn, path, tmp_path, batch_size=2):
    counters = RunCounters()
    rejects = RejectWriter(tmp_path / "rejects.jsonl")
    config = ImportConfig().with_overrides(batch_size=batch_size, retry_delay_seconds=0.0)
    importer = build_importer(PostgresCaseStore(conn), config, counters, rejects)
    summary = importer.run(path)
    rejects.close()
    return summary, counters


# ---------------------------------------------------------------------------
# Store-level import
# ---------------------------------------------------------------------------

class TestImport:
    def test_cases_and_references_written(self, db_conn, source_file, tmp_path):
        conn, _ = db_conn
        summary, counters = run_import(conn, source_file, tmp_path)

        assert summary.processed == 4
        assert summary.errors == 1
        assert counters.parse_errors == 1
        assert table_count(conn, "legal_case") == 4
        assert table_count(conn, "court") == 2
        assert table_count(conn, "jurisdiction") == 1

    def test_spelling_variants_share_one_court(self, db_conn, source_file, tmp_path):
        conn, _ = db_conn
        run_import(conn, source_file, tmp_path)
        rows = conn.execute(
            "SELECT id, court_id FROM legal_case WHERE id IN (1, 2, 4) ORDER BY id"
        ).fetchall()
        assert len({court_id for _, court_id in rows}) == 1

    def test_field_values_round_trip(self, db_conn, source_file, tmp_path):
        conn, _ = db_conn
        run_import(conn, source_file, tmp_path)
        row = conn.execute(
            """
            SELECT decision_date, docket_number, casebody, citations,
                   last_updated, first_page_order
            FROM legal_case WHERE id = 1
            """
        ).fetchone()
        decision_date, docket, casebody, citations, last_updated, first_page_order = row
        assert decision_date == date(2011, 3, 4)
        assert docket == "B220001"
        assert casebody == {"status": "ok", "data": {"opinions": [{"type": "majority"}]}}
        assert citations == [{"type": "official", "cite": "1 Cal. App. 4th 1"}]
        assert last_updated == datetime(2023, 7, 14, 12, 0, tzinfo=timezone.utc)
        assert first_page_order == 3

    def test_every_case_has_both_references(self, db_conn, source_file, tmp_path):
        conn, _ = db_conn
        run_import(conn, source_file, tmp_path)
        row = conn.execute(
            """
            SELECT count(*) FROM legal_case lc
            JOIN court c ON c.id = lc.court_id
            JOIN jurisdiction j ON j.id = lc.jurisdiction_id
            """
        ).fetchone()
        assert row[0] == 4

    def test_rerun_is_idempotent(self, db_conn, source_file, tmp_path):
        conn, _ = db_conn
        run_import(conn, source_file, tmp_path)
        _, second = run_import(conn, source_file, tmp_path)

        assert table_count(conn, "legal_case") == 4
        assert table_count(conn, "court") == 2
        assert table_count(conn, "jurisdiction") == 1
        assert second.cases_inserted == 0
        assert second.cases_existing == 4
        assert second.courts_loaded == 2
        assert second.courts_created == 0

    def test_existing_case_not_overwritten(self, db_conn, make_source, case_record, tmp_path):
        conn, _ = db_conn
        court_id = conn.execute(
            "INSERT INTO court (name_abbreviation, name) VALUES ('X', 'Other Court') RETURNING id"
        ).fetchone()[0]
        jur_id = conn.execute(
            "INSERT INTO jurisdiction (name_long, name) VALUES ('Nevada', 'Nev.') RETURNING id"
        ).fetchone()[0]
        conn.execute(
            "INSERT INTO legal_case (id, name, court_id, jurisdiction_id) VALUES (1, 'original', %s, %s)",
            (court_id, jur_id),
        )
        path = make_source([case_record(1, name="replacement")])
        _, counters = run_import(conn, path, tmp_path)

        name, stored_court = conn.execute(
            "SELECT name, court_id FROM legal_case WHERE id = 1"
        ).fetchone()
        assert name == "original"
        assert stored_court == court_id
        assert counters.cases_existing == 1

    def test_preloaded_court_reused_across_runs(self, db_conn, make_source, case_record, tmp_path):
        conn, _ = db_conn
        existing = conn.execute(
            "INSERT INTO court (name_abbreviation, name) "
            "VALUES ('Cal. Ct. App.', 'California Court of Appeal') RETURNING id"
        ).fetchone()[0]
        path = make_source([case_record(10), case_record(11)])
        _, counters = run_import(conn, path, tmp_path)

        assert table_count(conn, "court") == 1
        assert counters.courts_created == 0
        court_ids = {r[0] for r in conn.execute("SELECT court_id FROM legal_case").fetchall()}
        assert court_ids == {existing}

    def test_short_abbreviation_stored_as_name(self, db_conn, make_source, case_record, tmp_path):
        conn, _ = db_conn
        path = make_source([case_record(20, court={"name_abbreviation": "C", "name": "Court of Claims"})])
        run_import(conn, path, tmp_path)
        row = conn.execute("SELECT name_abbreviation, name FROM court").fetchone()
        assert row == ("Court of Claims", "Court of Claims")


# ---------------------------------------------------------------------------
# CLI-level runs
# ---------------------------------------------------------------------------

class TestCli:
    @pytest.fixture(autouse=True)
    def _isolated_cwd(self, monkeypatch, tmp_path):
        # reports land in ./artifacts; the shipped config (with pacing) is not picked up
        monkeypatch.chdir(tmp_path)

    def invoke(self, dsn, source_file, tmp_path, *extra):
        runner = CliRunner()
        return runner.invoke(main, [
            "--mode", "import",
            "--db-dsn", dsn,
            "--source-path", str(source_file),
            "--rejects-path", str(tmp_path / "rejects.jsonl"),
            "--retry-delay-seconds", "0",
            "--run-id", "test-import",
            *extra,
        ])

    def test_dry_run_produces_no_db_rows(self, db_conn, source_file, tmp_path):
        conn, dsn = db_conn
        result = self.invoke(dsn, source_file, tmp_path, "--dry-run")

        assert result.exit_code == 0, result.output
        assert "rolled back" in result.output
        for table in ("legal_case", "court", "jurisdiction"):
            assert table_count(conn, table) == 0, f"Expected 0 rows in {table} after dry-run"

    def test_real_run_writes_rows_and_reports(self, db_conn, source_file, tmp_path):
        conn, dsn = db_conn
        result = self.invoke(dsn, source_file, tmp_path, "--batch-size", "3")

        assert result.exit_code == 0, result.output
        assert "Total processed  : 4" in result.output
        assert table_count(conn, "legal_case") == 4

        rejects = (tmp_path / "rejects.jsonl").read_text().splitlines()
        assert len(rejects) == 1
        assert json.loads(rejects[0])["reason"] == "invalid_json"

        report = json.loads((tmp_path / "artifacts" / "reports" / "test-import.json").read_text())
        assert report["mode"] == "import"
        assert report["counters"]["processed"] == 4
        assert report["counters"]["parse_errors"] == 1
        assert report["summary"]["errors"] == 1

    def test_corrupt_source_exits_1_without_writing_cases(self, db_conn, tmp_path):
        conn, dsn = db_conn
        bad = tmp_path / "bad.jsonl.gz"
        bad.write_bytes(b"this is not gzip data\n")
        result = self.invoke(dsn, bad, tmp_path)

        assert result.exit_code == 1
        assert "source stream error" in result.output
        assert table_count(conn, "legal_case") == 0

    def test_unreachable_database_exits_1(self, source_file, tmp_path):
        result = self.invoke(
            "host=127.0.0.1 port=1 dbname=nope connect_timeout=1", source_file, tmp_path,
        )
        assert result.exit_code == 1
        assert "cannot connect to database" in result.output
