"""caselaw_etl.batch

Buffered case persistence with bounded per-item retry.

CaseBuffer collects PersistableCase values and flushes synchronously once
``batch_size`` is reached, so the producer blocks until the batch is written.
Each buffered case is written with an insert-if-absent; a failing write is
retried up to ``max_retries`` more times and then dropped and counted.  The
buffer is always emptied after a flush; nothing is carried into the next one.
"""

from __future__ import annotations

import logging
import random
import time
from dataclasses import dataclass, field
from typing import Callable

from caselaw_etl.shared import RejectWriter, RunCounters
from caselaw_etl.store import CaseStore
from caselaw_etl.transform import PersistableCase

log = logging.getLogger(__name__)


class DanglingReferenceError(ValueError):
    """Raised when a case without both reference ids is offered to the buffer."""


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class BatchConfig:
    batch_size: int = 10
    max_retries: int = 2
    retry_delay_seconds: float = 1.0
    # 1.0 keeps the delay fixed; >1.0 gives exponential backoff
    backoff_multiplier: float = 1.0
    max_retry_delay_seconds: float = 30.0
    jitter_seconds: float = 0.0

    def __post_init__(self) -> None:
        if self.batch_size < 1:
            raise ValueError("batch_size must be >= 1")
        if self.max_retries < 0:
            raise ValueError("max_retries must be >= 0")
        if self.retry_delay_seconds < 0 or self.jitter_seconds < 0:
            raise ValueError("delays must be >= 0")
        if self.backoff_multiplier < 1.0:
            raise ValueError("backoff_multiplier must be >= 1.0")


@dataclass
class RetryPolicy:
    """Delay schedule between write attempts for a single case."""

    config: BatchConfig
    sleep: Callable[[float], None] = time.sleep

    def delay_for(self, retry_number: int) -> float:
        """Seconds to wait before retry N (1-based)."""
        delay = self.config.retry_delay_seconds * (
            self.config.backoff_multiplier ** (retry_number - 1)
        )
        delay = min(delay, self.config.max_retry_delay_seconds)
        if self.config.jitter_seconds:
            delay += random.uniform(0.0, self.config.jitter_seconds)
        return max(0.0, delay)

    def wait(self, retry_number: int) -> None:
        delay = self.delay_for(retry_number)
        if delay > 0:
            self.sleep(delay)


# ---------------------------------------------------------------------------
# Buffer
# ---------------------------------------------------------------------------

@dataclass
class FlushResult:
    attempted: int = 0
    inserted: int = 0
    existing: int = 0
    failed: int = 0
    retries: int = 0
    failed_ids: list[int] = field(default_factory=list)


class CaseBuffer:
    def __init__(
        self,
        store: CaseStore,
        config: BatchConfig,
        counters: RunCounters,
        rejects: RejectWriter | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._store = store
        self.config = config
        self._counters = counters
        self._rejects = rejects
        self._retry = RetryPolicy(config, sleep=sleep)
        self._pending: list[PersistableCase] = []

    def __len__(self) -> int:
        return len(self._pending)

    @property
    def pending(self) -> tuple[PersistableCase, ...]:
        return tuple(self._pending)

    def add(self, case: PersistableCase) -> FlushResult | None:
        """Buffer one case; returns the FlushResult if this call triggered a flush."""
        if not case.has_valid_references:
            raise DanglingReferenceError(
                f"case {case.id}: court_id={case.court_id!r} "
                f"jurisdiction_id={case.jurisdiction_id!r}"
            )
        self._pending.append(case)
        self._counters.processed += 1
        if len(self._pending) >= self.config.batch_size:
            return self.flush()
        return None

    def flush(self) -> FlushResult:
        result = FlushResult()
        if not self._pending:
            return result

        batch, self._pending = self._pending, []
        for case in batch:
            result.attempted += 1
            self._write_one(case, result)

        self._counters.flushes += 1
        log.info(
            "Flushed %d cases: %d inserted, %d already present, %d failed (%d retries)",
            result.attempted, result.inserted, result.existing,
            result.failed, result.retries,
        )
        return result

    def _write_one(self, case: PersistableCase, result: FlushResult) -> None:
        attempts = self.config.max_retries + 1
        for attempt in range(1, attempts + 1):
            try:
                inserted = self._store.insert_case(case)
            except Exception as exc:  # noqa: BLE001
                if attempt < attempts:
                    result.retries += 1
                    self._counters.write_retries += 1
                    log.warning(
                        "Write failed for case %d (%s); retry %d of %d",
                        case.id, exc, attempt, self.config.max_retries,
                    )
                    self._retry.wait(attempt)
                    continue
                result.failed += 1
                result.failed_ids.append(case.id)
                self._counters.errored += 1
                self._counters.write_errors += 1
                log.error(
                    "Dropping case %d after %d attempts: %s", case.id, attempts, exc
                )
                if self._rejects is not None:
                    self._rejects.write(
                        "write_failed", case_id=case.id, detail=str(exc)
                    )
                return
            if inserted:
                result.inserted += 1
                self._counters.cases_inserted += 1
            else:
                result.existing += 1
                self._counters.cases_existing += 1
            return
