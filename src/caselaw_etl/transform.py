"""caselaw_etl.transform

Turn one parsed JSON line (a raw case record) into a PersistableCase.

Only the identifying key is validated.  Scalars are coerced, absent optional
fields become None, and the nested blobs (citations, cites_to, analysis,
provenance, casebody) pass through untouched.
"""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Mapping

from caselaw_etl.normalize import (
    parse_decision_date,
    parse_int,
    parse_timestamp,
    trim,
)


class RecordRejectedError(ValueError):
    """Raised when a raw record cannot become a PersistableCase."""

    def __init__(self, reason: str, detail: str | None = None) -> None:
        super().__init__(detail or reason)
        self.reason = reason
        self.detail = detail


@dataclass(frozen=True)
class PersistableCase:
    id: int
    name: str | None = None
    name_abbreviation: str | None = None
    decision_date: date | None = None
    docket_number: str | None = None
    first_page: str | None = None
    last_page: str | None = None
    citations: Any = None
    cites_to: Any = None
    analysis: Any = None
    provenance: Any = None
    casebody: Any = None
    last_updated: datetime | None = None
    file_name: str | None = None
    first_page_order: int | None = None
    last_page_order: int | None = None
    court_id: int | None = None
    jurisdiction_id: int | None = None

    @property
    def has_valid_references(self) -> bool:
        return _valid_id(self.court_id) and _valid_id(self.jurisdiction_id)

    def with_references(self, court_id: int, jurisdiction_id: int) -> PersistableCase:
        return dataclasses.replace(
            self, court_id=court_id, jurisdiction_id=jurisdiction_id
        )

    def to_row(self) -> dict[str, Any]:
        return dataclasses.asdict(self)


def _valid_id(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and value > 0


def extract_case_id(raw: Mapping[str, Any]) -> int:
    """Return the record's identifying key or raise RecordRejectedError."""
    value = raw.get("id")
    if value is None or trim(value) is None:
        raise RecordRejectedError("missing_case_id")
    # 0, "0", 0.0 and False all land here as invalid
    case_id = parse_int(value)
    if case_id is None or case_id <= 0:
        raise RecordRejectedError("invalid_case_id", f"id={value!r}")
    return case_id


def transform_record(raw: Any) -> PersistableCase:
    """Coerce a raw record.  Reference ids are attached later by the driver."""
    if not isinstance(raw, Mapping):
        raise RecordRejectedError("not_an_object", f"got {type(raw).__name__}")

    return PersistableCase(
        id=extract_case_id(raw),
        name=trim(raw.get("name")),
        name_abbreviation=trim(raw.get("name_abbreviation")),
        decision_date=parse_decision_date(raw.get("decision_date")),
        docket_number=trim(raw.get("docket_number")),
        first_page=trim(raw.get("first_page")),
        last_page=trim(raw.get("last_page")),
        citations=raw.get("citations"),
        cites_to=raw.get("cites_to"),
        analysis=raw.get("analysis"),
        provenance=raw.get("provenance"),
        casebody=raw.get("casebody"),
        last_updated=parse_timestamp(raw.get("last_updated")),
        file_name=trim(raw.get("file_name")),
        first_page_order=parse_int(raw.get("first_page_order")),
        last_page_order=parse_int(raw.get("last_page_order")),
    )
