"""caselaw_etl.resolver

Court / jurisdiction identity resolution.

ReferenceResolver keeps one identity map per dimension, keyed by the
normalized reference key.  Existing rows are preloaded once; after that a key
is either a cache hit (no write) or creates exactly one new row.

dedupe_reference_rows is the maintenance pass that converges rows created
before normalization was enforced (or under a different key priority): every
group of rows sharing a normalized key collapses onto its lowest id.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Mapping, Sequence

from caselaw_etl.normalize import reference_key, trim
from caselaw_etl.shared import RunCounters
from caselaw_etl.store import COURT, JURISDICTION, CaseStore, ReferenceDimension

log = logging.getLogger(__name__)

DEFAULT_KEY_PRIORITY: dict[str, tuple[str, ...]] = {
    COURT.name: ("name", "name_abbreviation"),
    JURISDICTION.name: ("name_long", "name"),
}


class UnresolvableReferenceError(ValueError):
    """Raised when a reference payload is absent or has no usable key field."""

    def __init__(self, dimension: ReferenceDimension, detail: str) -> None:
        super().__init__(f"{dimension.name}: {detail}")
        self.dimension = dimension


# ---------------------------------------------------------------------------
# Resolver
# ---------------------------------------------------------------------------

class ReferenceResolver:
    def __init__(
        self,
        store: CaseStore,
        key_priority: Mapping[str, Sequence[str]] | None = None,
        counters: RunCounters | None = None,
    ) -> None:
        self._store = store
        self._priority = {**DEFAULT_KEY_PRIORITY, **(key_priority or {})}
        self._counters = counters if counters is not None else RunCounters()
        self._caches: dict[str, dict[str, int]] = {}

    @property
    def loaded(self) -> bool:
        return bool(self._caches)

    def key_for(self, dimension: ReferenceDimension, fields: Mapping[str, Any]) -> str:
        return reference_key(fields, self._priority[dimension.name])

    def preload(self) -> None:
        """Index every persisted row of both dimensions by normalized key."""
        for dimension in (COURT, JURISDICTION):
            cache: dict[str, int] = {}
            rows = self._store.list_references(dimension)
            for row in rows:
                key = self.key_for(dimension, row)
                if not key:
                    continue
                if key in cache:
                    # rows come back ordered by id, so the first one stays
                    self._counters.warnings.append(
                        f"duplicate {dimension.name} rows for key {key!r}: "
                        f"{cache[key]} kept, {row['id']} ignored"
                    )
                    continue
                cache[key] = int(row["id"])
            self._caches[dimension.name] = cache
            if dimension is COURT:
                self._counters.courts_loaded = len(rows)
            else:
                self._counters.jurisdictions_loaded = len(rows)
            log.info("Loaded %d %s rows (%d distinct keys)", len(rows), dimension.name, len(cache))

    def cache_size(self, dimension: ReferenceDimension) -> int:
        return len(self._caches.get(dimension.name, {}))

    def check(self, dimension: ReferenceDimension, raw_entity: Any) -> str:
        """Return the key raw_entity would resolve under, without touching the store.

        Raises UnresolvableReferenceError exactly when resolve() would.
        """
        key, _ = self._keyed_values(dimension, raw_entity, warn=False)
        return key

    def _keyed_values(
        self, dimension: ReferenceDimension, raw_entity: Any, warn: bool = True
    ) -> tuple[str, dict[str, Any]]:
        if not isinstance(raw_entity, Mapping):
            raise UnresolvableReferenceError(dimension, "payload missing")
        # key off the values as they would be stored so later preloads agree
        values = _row_values(dimension, raw_entity, warn)
        key = self.key_for(dimension, values)
        if not key:
            raise UnresolvableReferenceError(dimension, "no non-empty key field")
        return key, values

    def resolve(self, dimension: ReferenceDimension, raw_entity: Any) -> int:
        """Return the identity for raw_entity, creating the row on first sight.

        Raises UnresolvableReferenceError for missing / keyless payloads.
        Store errors propagate unchanged and nothing is cached.
        """
        if not self.loaded:
            self.preload()
        key, values = self._keyed_values(dimension, raw_entity)

        cache = self._caches[dimension.name]
        cached = cache.get(key)
        if cached is not None:
            return cached

        new_id = self._store.create_reference(dimension, values)
        cache[key] = new_id
        if dimension is COURT:
            self._counters.courts_created += 1
        else:
            self._counters.jurisdictions_created += 1
        log.info("Created %s %r (key=%r, id=%d)", dimension.name, values, key, new_id)
        return new_id


def _row_values(
    dimension: ReferenceDimension, raw_entity: Mapping[str, Any], warn: bool = True
) -> dict[str, Any]:
    values = {f: trim(raw_entity.get(f)) for f in dimension.fields}
    if dimension is COURT and values["name"]:
        abbrev = values["name_abbreviation"]
        if abbrev is not None and len(abbrev) <= 1:
            if warn:
                log.warning(
                    "Short court abbreviation %r for court %r; using full name",
                    abbrev, values["name"],
                )
            values["name_abbreviation"] = values["name"]
        elif abbrev is None:
            values["name_abbreviation"] = values["name"]
    return values


# ---------------------------------------------------------------------------
# Duplicate cleanup
# ---------------------------------------------------------------------------

@dataclass
class DuplicateGroup:
    dimension: str
    key: str
    canonical_id: int
    duplicate_ids: list[int] = field(default_factory=list)
    cases_repointed: int = 0


def find_duplicate_groups(
    rows: Sequence[Mapping[str, Any]],
    dimension: ReferenceDimension,
    priority: Sequence[str],
) -> list[DuplicateGroup]:
    """Group rows by normalized key; only groups with >1 row are returned.

    The lowest id in each group is canonical.  Rows with an empty key are
    never merged.
    """
    by_key: dict[str, list[int]] = {}
    for row in sorted(rows, key=lambda r: int(r["id"])):
        key = reference_key(row, priority)
        if not key:
            continue
        by_key.setdefault(key, []).append(int(row["id"]))
    return [
        DuplicateGroup(
            dimension=dimension.name,
            key=key,
            canonical_id=ids[0],
            duplicate_ids=ids[1:],
        )
        for key, ids in by_key.items()
        if len(ids) > 1
    ]


def dedupe_reference_rows(
    store: CaseStore,
    dimension: ReferenceDimension,
    counters: RunCounters,
    key_priority: Sequence[str] | None = None,
) -> list[DuplicateGroup]:
    """Repoint cases from duplicate rows onto the canonical row, then delete them.

    Each group is applied in its own transaction.
    """
    priority = tuple(key_priority or DEFAULT_KEY_PRIORITY[dimension.name])
    rows = store.list_references(dimension)
    groups = find_duplicate_groups(rows, dimension, priority)

    for group in groups:
        with store.transaction():
            for dup_id in group.duplicate_ids:
                moved = store.repoint_cases(dimension, dup_id, group.canonical_id)
                store.delete_reference(dimension, dup_id)
                group.cases_repointed += moved
        counters.duplicate_groups += 1
        counters.duplicates_deleted += len(group.duplicate_ids)
        counters.cases_repointed += group.cases_repointed
        log.info(
            "Merged %s %r: kept %d, deleted %s, repointed %d cases",
            dimension.name, group.key, group.canonical_id,
            group.duplicate_ids, group.cases_repointed,
        )

    if not groups:
        log.info("No duplicate %s rows among %d", dimension.name, len(rows))
    return groups
