"""caselaw_etl.reporting

Progress logging, pacing, and end-of-run summaries.  Observational only:
nothing here changes what gets written.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable, Sequence

from caselaw_etl.resolver import DuplicateGroup
from caselaw_etl.shared import RunCounters

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class RunSummary:
    processed: int
    errors: int
    duration_seconds: float
    rate: float

    def to_dict(self) -> dict[str, float | int]:
        return {
            "processed": self.processed,
            "errors": self.errors,
            "duration_seconds": round(self.duration_seconds, 3),
            "rate_per_second": round(self.rate, 2),
        }


class ProgressReporter:
    """Emit a throughput line every ``progress_every`` buffered cases.

    ``pacing_delay_seconds`` adds a pause at the same cadence, for persistence
    targets that rate-limit writes.
    """

    def __init__(
        self,
        counters: RunCounters,
        progress_every: int = 1000,
        pacing_delay_seconds: float = 0.0,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if progress_every < 1:
            raise ValueError("progress_every must be >= 1")
        self._counters = counters
        self.progress_every = progress_every
        self.pacing_delay_seconds = pacing_delay_seconds
        self._clock = clock
        self._sleep = sleep
        self._started: float | None = None
        self._finished: float | None = None

    def start(self) -> None:
        self._started = self._clock()
        self._finished = None

    def finish(self) -> None:
        self._finished = self._clock()

    def elapsed(self) -> float:
        if self._started is None:
            return 0.0
        end = self._finished if self._finished is not None else self._clock()
        return max(0.0, end - self._started)

    def record_processed(self) -> None:
        processed = self._counters.processed
        if processed == 0 or processed % self.progress_every:
            return
        elapsed = self.elapsed()
        rate = processed / elapsed if elapsed > 0 else 0.0
        log.info(
            "Processed %d cases (%.2f cases/sec, %d errors)",
            processed, rate, self._counters.errored,
        )
        if self.pacing_delay_seconds > 0:
            self._sleep(self.pacing_delay_seconds)

    def summary(self) -> RunSummary:
        duration = self.elapsed()
        processed = self._counters.processed
        return RunSummary(
            processed=processed,
            errors=self._counters.errored,
            duration_seconds=duration,
            rate=processed / duration if duration > 0 else 0.0,
        )


def build_import_report(
    summary: RunSummary, counters: RunCounters, dry_run: bool
) -> str:
    lines = [
        "=== Case Import Summary ===",
        f"dry_run          : {dry_run}",
        f"Total processed  : {summary.processed}",
        f"Errors           : {summary.errors}",
        f"Duration         : {summary.duration_seconds:.2f} seconds",
        f"Rate             : {summary.rate:.2f} cases/second",
        "",
        "--- Stream ---",
        f"lines_read       : {counters.lines_read}",
        f"blank_lines      : {counters.blank_lines}",
        "",
        "--- Writes ---",
        f"cases_inserted   : {counters.cases_inserted}",
        f"cases_existing   : {counters.cases_existing}",
        f"write_retries    : {counters.write_retries}",
        f"flushes          : {counters.flushes}",
        "",
        "--- References ---",
        f"courts_loaded         : {counters.courts_loaded}",
        f"courts_created        : {counters.courts_created}",
        f"jurisdictions_loaded  : {counters.jurisdictions_loaded}",
        f"jurisdictions_created : {counters.jurisdictions_created}",
        "",
        "--- Errors ---",
        f"parse_errors      : {counters.parse_errors}",
        f"validation_errors : {counters.validation_errors}",
        f"reference_errors  : {counters.reference_errors}",
        f"write_errors      : {counters.write_errors}",
    ]
    if counters.warnings:
        lines.append("")
        lines.append(f"--- Warnings ({len(counters.warnings)}) ---")
        lines.extend(f"  {w}" for w in counters.warnings[:20])
    return "\n".join(lines)


def build_dedupe_report(
    groups: Sequence[DuplicateGroup], counters: RunCounters, dry_run: bool
) -> str:
    lines = [
        "=== Reference Dedupe Report ===",
        f"dry_run            : {dry_run}",
        f"duplicate_groups   : {counters.duplicate_groups}",
        f"duplicates_deleted : {counters.duplicates_deleted}",
        f"cases_repointed    : {counters.cases_repointed}",
    ]
    for g in groups:
        lines.append(
            f"  {g.dimension} {g.key!r}: kept {g.canonical_id}, "
            f"merged {g.duplicate_ids} ({g.cases_repointed} cases)"
        )
    return "\n".join(lines)
