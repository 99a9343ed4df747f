"""caselaw_etl.import_caselaw

Unified CLI entrypoint for case-law ingestion.

Modes (--mode):
  import             : stream a JSONL(.gz|.bz2|.xz) case dump into PostgreSQL (default)
  dedupe_references  : merge court / jurisdiction rows sharing a normalized key
  extract_sample     : copy the first N records of a dump into a plain JSONL file

Usage (import):
    python -m caselaw_etl.import_caselaw \\
        --mode import \\
        --db-dsn "$DB_DSN" \\
        --source-path "rawEvidence/cal-app-4th-5th-all.jsonl.gz" \\
        --batch-size 500

Usage (dedupe_references):
    python -m caselaw_etl.import_caselaw \\
        --mode dedupe_references \\
        --db-dsn "$DB_DSN" \\
        --dimension all --dry-run
"""

from __future__ import annotations

import json
import logging
import sys
import uuid
from contextlib import nullcontext
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any

import click
import psycopg

from caselaw_etl.batch import CaseBuffer, DanglingReferenceError
from caselaw_etl.config import ConfigValidationError, ImportConfig, load_import_config
from caselaw_etl.reporting import (
    ProgressReporter,
    RunSummary,
    build_dedupe_report,
    build_import_report,
)
from caselaw_etl.resolver import (
    DuplicateGroup,
    ReferenceResolver,
    UnresolvableReferenceError,
    dedupe_reference_rows,
)
from caselaw_etl.shared import RejectWriter, RunCounters, write_run_report
from caselaw_etl.source import (
    SourceStreamError,
    extract_sample,
    iter_source_lines,
    open_source,
)
from caselaw_etl.store import COURT, DIMENSIONS, JURISDICTION, CaseStore, PostgresCaseStore, connect
from caselaw_etl.transform import RecordRejectedError, transform_record

log = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path("config/caselaw_import.yml")
REJECT_RAW_MAX_CHARS = 2000


# ---------------------------------------------------------------------------
# Stream driver
# ---------------------------------------------------------------------------

class ImportPhase(str, Enum):
    IDLE = "idle"
    INITIALIZING = "initializing"
    STREAMING = "streaming"
    DRAINING = "draining"
    DONE = "done"
    FAILED = "failed"


class CaseImporter:
    """Drive one source file through transform → resolve → buffer.

    One instance per run; the resolver caches and counters it is given are
    owned by that run.
    """

    def __init__(
        self,
        resolver: ReferenceResolver,
        buffer: CaseBuffer,
        reporter: ProgressReporter,
        counters: RunCounters,
        rejects: RejectWriter | None = None,
    ) -> None:
        self.resolver = resolver
        self.buffer = buffer
        self.reporter = reporter
        self.counters = counters
        self.rejects = rejects
        self.phase = ImportPhase.IDLE

    def run(self, source_path: str | Path) -> RunSummary:
        """Import source_path and return the run summary.

        SourceStreamError (and any error while preloading) leaves the importer
        FAILED and propagates; buffered cases are not flushed in that case.
        """
        if self.phase is not ImportPhase.IDLE:
            raise RuntimeError(f"importer already used (phase={self.phase.value})")

        self.reporter.start()
        try:
            self.phase = ImportPhase.INITIALIZING
            self.resolver.preload()

            self.phase = ImportPhase.STREAMING
            log.info("Starting to process file: %s", source_path)
            with open_source(source_path) as stream:
                for line_no, text in iter_source_lines(stream):
                    self._process_line(line_no, text)

            self.phase = ImportPhase.DRAINING
            self.buffer.flush()
        except Exception:
            self.phase = ImportPhase.FAILED
            self.reporter.finish()
            log.error("Import aborted with %d cases unflushed", len(self.buffer))
            raise

        self.reporter.finish()
        self.phase = ImportPhase.DONE
        return self.reporter.summary()

    def _process_line(self, line_no: int, text: str | None) -> None:
        self.counters.lines_read += 1
        if text is None:
            self._reject("parse_errors", "invalid_utf8", line_no)
            return
        if not text.strip():
            self.counters.blank_lines += 1
            return

        # ValueError covers JSONDecodeError and over-long integer literals;
        # RecursionError comes from very deeply nested values
        try:
            raw = json.loads(text)
        except (ValueError, RecursionError) as exc:
            self._reject("parse_errors", "invalid_json", line_no, detail=str(exc), raw=text)
            return

        try:
            case = transform_record(raw)
        except RecordRejectedError as exc:
            self._reject(
                "validation_errors", exc.reason, line_no,
                case_id=raw.get("id") if isinstance(raw, dict) else None,
                detail=exc.detail, raw=text,
            )
            return

        try:
            # both payloads are checked before either row can be created
            self.resolver.check(COURT, raw.get("court"))
            self.resolver.check(JURISDICTION, raw.get("jurisdiction"))
            court_id = self.resolver.resolve(COURT, raw.get("court"))
            jurisdiction_id = self.resolver.resolve(JURISDICTION, raw.get("jurisdiction"))
        except UnresolvableReferenceError as exc:
            self._reject(
                "reference_errors", "unresolvable_reference", line_no,
                case_id=case.id, detail=str(exc), raw=text,
            )
            return
        except Exception as exc:  # noqa: BLE001
            self._reject(
                "reference_errors", "reference_write_failed", line_no,
                case_id=case.id, detail=str(exc), raw=text,
            )
            return

        try:
            self.buffer.add(case.with_references(court_id, jurisdiction_id))
        except DanglingReferenceError as exc:
            self._reject(
                "validation_errors", "dangling_reference", line_no,
                case_id=case.id, detail=str(exc),
            )
            return
        self.reporter.record_processed()

    def _reject(
        self,
        bucket: str,
        reason: str,
        line_no: int,
        *,
        case_id: Any = None,
        detail: str | None = None,
        raw: str | None = None,
    ) -> None:
        self.counters.errored += 1
        setattr(self.counters, bucket, getattr(self.counters, bucket) + 1)
        log.warning("Line %d rejected (%s): %s", line_no, reason, detail or "")
        if self.rejects is not None:
            self.rejects.write(
                reason,
                line_no=line_no,
                case_id=case_id,
                detail=detail,
                raw=raw[:REJECT_RAW_MAX_CHARS] if raw else None,
            )


def build_importer(
    store: CaseStore,
    config: ImportConfig,
    counters: RunCounters,
    rejects: RejectWriter | None = None,
) -> CaseImporter:
    resolver = ReferenceResolver(store, config.reference_keys, counters)
    buffer = CaseBuffer(store, config.batch, counters, rejects)
    reporter = ProgressReporter(
        counters,
        progress_every=config.progress_every,
        pacing_delay_seconds=config.pacing_delay_seconds,
    )
    return CaseImporter(resolver, buffer, reporter, counters, rejects)


# ---------------------------------------------------------------------------
# Mode runners
# ---------------------------------------------------------------------------

def _run_import(
    run_id: str,
    db_dsn: str,
    source_path: str,
    config: ImportConfig,
    counters: RunCounters,
    rejects: RejectWriter,
    dry_run: bool,
) -> RunSummary:
    try:
        conn = connect(db_dsn)
    except psycopg.Error as exc:
        click.echo(f"[{run_id}] FATAL: cannot connect to database: {exc}", err=True)
        sys.exit(1)

    try:
        importer = build_importer(PostgresCaseStore(conn), config, counters, rejects)
        # dry-run: one outer transaction, every store call becomes a savepoint
        scope = conn.transaction(force_rollback=True) if dry_run else nullcontext()
        with scope:
            summary = importer.run(source_path)
        if dry_run:
            click.echo(f"[{run_id}] [dry-run] All changes rolled back.")
        return summary
    except SourceStreamError as exc:
        click.echo(f"[{run_id}] FATAL: source stream error: {exc}", err=True)
        sys.exit(1)
    except psycopg.Error as exc:
        click.echo(f"[{run_id}] FATAL: run failed with DB error: {exc}", err=True)
        sys.exit(1)
    finally:
        conn.close()
        rejects.close()


def _run_dedupe(
    run_id: str,
    db_dsn: str,
    dimension_names: list[str],
    config: ImportConfig,
    counters: RunCounters,
    dry_run: bool,
) -> list[DuplicateGroup]:
    try:
        conn = connect(db_dsn)
    except psycopg.Error as exc:
        click.echo(f"[{run_id}] FATAL: cannot connect to database: {exc}", err=True)
        sys.exit(1)

    store = PostgresCaseStore(conn)
    groups: list[DuplicateGroup] = []
    try:
        scope = conn.transaction(force_rollback=True) if dry_run else nullcontext()
        with scope:
            for name in dimension_names:
                dimension = DIMENSIONS[name]
                groups.extend(
                    dedupe_reference_rows(
                        store, dimension, counters, config.reference_keys[name]
                    )
                )
        if dry_run:
            click.echo(f"[{run_id}] [dry-run] All changes rolled back.")
        return groups
    except psycopg.Error as exc:
        click.echo(f"[{run_id}] FATAL: dedupe failed with DB error: {exc}", err=True)
        sys.exit(1)
    finally:
        conn.close()


def _load_config(config_path: str | None, run_id: str, **overrides: Any) -> ImportConfig:
    try:
        if config_path:
            config = load_import_config(Path(config_path))
        elif DEFAULT_CONFIG_PATH.exists():
            config = load_import_config(DEFAULT_CONFIG_PATH)
        else:
            config = ImportConfig()
        return config.with_overrides(**overrides)
    except (ConfigValidationError, FileNotFoundError) as exc:
        click.echo(f"[{run_id}] FATAL: invalid configuration: {exc}", err=True)
        sys.exit(1)


def _validate_source_flags(source_path: str | None, mode: str, run_id: str) -> None:
    if not source_path:
        click.echo(f"[{run_id}] FATAL: {mode} mode requires: --source-path", err=True)
        sys.exit(1)
    if not Path(source_path).is_file():
        click.echo(f"[{run_id}] FATAL: source file not found: {source_path}", err=True)
        sys.exit(1)


def _validate_db_flags(db_dsn: str | None, mode: str, run_id: str) -> None:
    if not db_dsn:
        click.echo(f"[{run_id}] FATAL: {mode} mode requires: --db-dsn (or DB_DSN)", err=True)
        sys.exit(1)


# ---------------------------------------------------------------------------
# Unified CLI
# ---------------------------------------------------------------------------

@click.command()
@click.option(
    "--mode",
    default="import",
    type=click.Choice(["import", "dedupe_references", "extract_sample"]),
    show_default=True,
    help="Ingestion mode",
)
@click.option("--db-dsn", envvar="DB_DSN", default=None, help="PostgreSQL DSN [env: DB_DSN]")
@click.option("--source-path", default=None, type=click.Path(), help="[import|extract_sample] JSONL case dump (.gz/.bz2/.xz or plain)")
@click.option("--config", "config_path", default=None, type=click.Path(), help="YAML import config (default: config/caselaw_import.yml if present)")
# import overrides
@click.option("--batch-size", default=None, type=int, help="[import] Cases per flush")
@click.option("--max-retries", default=None, type=int, help="[import] Extra write attempts per case")
@click.option("--retry-delay-seconds", default=None, type=float, help="[import] Delay between write attempts")
@click.option("--progress-every", default=None, type=int, help="[import] Log throughput every N cases")
@click.option("--pacing-delay-seconds", default=None, type=float, help="[import] Pause after each progress line")
# dedupe_references flags
@click.option(
    "--dimension",
    default="all",
    type=click.Choice(["court", "jurisdiction", "all"]),
    show_default=True,
    help="[dedupe_references] Reference dimension to clean up",
)
# extract_sample flags
@click.option("--sample-output", default="./artifacts/samples/sample-cases.jsonl", show_default=True, type=click.Path(), help="[extract_sample] Output JSONL path")
@click.option("--sample-size", default=100, show_default=True, type=int, help="[extract_sample] Number of records to copy")
# shared flags
@click.option("--dry-run", is_flag=True, default=False)
@click.option(
    "--rejects-path",
    default="./artifacts/rejects/caselaw_rejects.jsonl",
    show_default=True,
)
@click.option("--run-id", default=None, help="Override UUID for log correlation")
@click.option(
    "--log-level",
    default="INFO",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    show_default=True,
)
def main(
    mode: str,
    db_dsn: str | None,
    source_path: str | None,
    config_path: str | None,
    batch_size: int | None,
    max_retries: int | None,
    retry_delay_seconds: float | None,
    progress_every: int | None,
    pacing_delay_seconds: float | None,
    dimension: str,
    sample_output: str,
    sample_size: int,
    dry_run: bool,
    rejects_path: str,
    run_id: str | None,
    log_level: str,
) -> None:
    """Unified case-law ingestion CLI."""
    logging.basicConfig(
        level=log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    run_id = run_id or str(uuid.uuid4())
    started_at = datetime.now(timezone.utc).isoformat()
    counters = RunCounters()

    click.echo(f"[{run_id}] Starting {mode} run (dry_run={dry_run})")

    if mode == "extract_sample":
        _validate_source_flags(source_path, mode, run_id)
        try:
            count = extract_sample(source_path, sample_output, sample_size)  # type: ignore[arg-type]
        except SourceStreamError as exc:
            click.echo(f"[{run_id}] FATAL: source stream error: {exc}", err=True)
            sys.exit(1)
        click.echo(f"[{run_id}] Extracted {count} cases to {sample_output}")
        return

    config = _load_config(
        config_path, run_id,
        batch_size=batch_size,
        max_retries=max_retries,
        retry_delay_seconds=retry_delay_seconds,
        progress_every=progress_every,
        pacing_delay_seconds=pacing_delay_seconds,
    )
    _validate_db_flags(db_dsn, mode, run_id)

    if mode == "dedupe_references":
        names = list(DIMENSIONS) if dimension == "all" else [dimension]
        groups = _run_dedupe(run_id, db_dsn, names, config, counters, dry_run)  # type: ignore[arg-type]
        click.echo(build_dedupe_report(groups, counters, dry_run))
        report_path = write_run_report(
            run_id, started_at, mode, dry_run,
            {"dimension": dimension},
            counters,
        )
        click.echo(f"[{run_id}] Run report: {report_path}")
        return

    _validate_source_flags(source_path, mode, run_id)
    rejects = RejectWriter(Path(rejects_path))
    summary = _run_import(
        run_id, db_dsn, source_path, config, counters, rejects, dry_run,  # type: ignore[arg-type]
    )
    click.echo(build_import_report(summary, counters, dry_run))
    if rejects.count:
        click.echo(f"[{run_id}] {rejects.count} rejected line(s) written to {rejects_path}")
    report_path = write_run_report(
        run_id, started_at, mode, dry_run,
        {"source_path": source_path, "rejects_path": rejects_path},
        counters,
        extra={"summary": summary.to_dict(), "config_hash": config.source_hash},
    )
    click.echo(f"[{run_id}] Run report: {report_path}")


if __name__ == "__main__":
    main()
