"""caselaw_etl.shared

Shared utilities used by the import and dedupe_references modes.
Includes RejectWriter, RunCounters, and report-writing support.
"""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any


# ---------------------------------------------------------------------------
# RejectWriter
# ---------------------------------------------------------------------------

class RejectWriter:
    """Lazy-open JSON-lines writer for rejected source lines."""

    def __init__(self, path: Path) -> None:
        self._path = path
        self._fh = None
        self.count = 0

    def write(
        self,
        reason: str,
        *,
        line_no: int | None = None,
        case_id: Any = None,
        detail: str | None = None,
        raw: str | None = None,
    ) -> None:
        if self._fh is None:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            self._fh = open(self._path, "w", encoding="utf-8")
        record = {
            "line_no": line_no,
            "case_id": case_id,
            "reason": reason,
            "detail": detail,
            "raw": raw,
        }
        self._fh.write(json.dumps(record, default=str) + "\n")
        self._fh.flush()
        self.count += 1

    def close(self) -> None:
        if self._fh:
            self._fh.close()
            self._fh = None


# ---------------------------------------------------------------------------
# RunCounters
# ---------------------------------------------------------------------------

@dataclass
class RunCounters:
    # Stream
    lines_read: int = 0
    blank_lines: int = 0
    processed: int = 0
    errored: int = 0
    # Error buckets (each also counted in errored)
    parse_errors: int = 0
    validation_errors: int = 0
    reference_errors: int = 0
    write_errors: int = 0
    # Case writes
    flushes: int = 0
    cases_inserted: int = 0
    cases_existing: int = 0
    write_retries: int = 0
    # Reference dimensions
    courts_loaded: int = 0
    jurisdictions_loaded: int = 0
    courts_created: int = 0
    jurisdictions_created: int = 0
    # Duplicate cleanup
    duplicate_groups: int = 0
    duplicates_deleted: int = 0
    cases_repointed: int = 0
    warnings: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


# ---------------------------------------------------------------------------
# Report writer
# ---------------------------------------------------------------------------

def write_run_report(
    run_id: str,
    started_at: str,
    mode: str,
    dry_run: bool,
    source_paths: dict[str, str | None],
    counters: RunCounters,
    extra: dict[str, Any] | None = None,
    report_dir: Path = Path("./artifacts/reports"),
) -> Path:
    report = {
        "run_id": run_id,
        "mode": mode,
        "started_at": started_at,
        "finished_at": datetime.now(timezone.utc).isoformat(),
        "dry_run": dry_run,
        **source_paths,
        **(extra or {}),
        "counters": counters.to_dict(),
    }
    report_path = report_dir / f"{run_id}.json"
    report_path.parent.mkdir(parents=True, exist_ok=True)
    report_path.write_text(json.dumps(report, indent=2, default=str))
    return report_path
