"""Stable, total ordering of branch records.

Records lacking a value for the chosen field always come last, in their
input order, whatever the direction. Ties keep their input order because
Python's sort is stable (including with reverse=True).
"""

from __future__ import annotations

from typing import Any, Callable

from branchlens_core import status as st
from branchlens_core.divergence import divergence_score
from branchlens_core.models import BranchRecord

ASCENDING = "asc"
DESCENDING = "desc"

SORT_FIELD_DESCRIPTIONS = {
    "local-date": "Local commit date",
    "gerrit-date": "Gerrit update date",
    "status": "Gerrit status",
    "divergences": "Divergence state (both, one side, in sync)",
    "name": "Branch name",
}


def _local_date(record: BranchRecord):
    return record.local.timestamp


def _gerrit_date(record: BranchRecord):
    return record.remote.updated_at if record.remote is not None else None


def _status(record: BranchRecord):
    return st.SORT_PRIORITY.get(st.record_status(record))


def _name(record: BranchRecord):
    return record.name


_SORT_KEYS: dict[str, Callable[[BranchRecord], Any]] = {
    "local-date": _local_date,
    "gerrit-date": _gerrit_date,
    "status": _status,
    "divergences": divergence_score,
    "name": _name,
}


def validate_sort_field(field: str) -> str:
    normalised = field.strip().lower()
    if normalised not in _SORT_KEYS:
        allowed = "\n    ".join(f"{key} ({desc})" for key, desc in SORT_FIELD_DESCRIPTIONS.items())
        raise ValueError(f"Invalid sort field: {field!r}.\nAllowed values:\n    {allowed}")
    return normalised


def validate_sort_direction(direction: str) -> str:
    normalised = direction.strip().lower()
    if normalised not in (ASCENDING, DESCENDING):
        raise ValueError(f"Invalid sort direction: {direction!r}. Allowed values: asc, desc")
    return normalised


def sort_records(records: list[BranchRecord], field: str, direction: str = ASCENDING) -> list[BranchRecord]:
    """Return a new list of records ordered by `field`."""
    key = _SORT_KEYS[validate_sort_field(field)]
    descending = validate_sort_direction(direction) == DESCENDING

    keyed = [(key(record), record) for record in records]
    present = [(value, record) for value, record in keyed if value is not None]
    missing = [record for value, record in keyed if value is None]

    present.sort(key=lambda pair: pair[0], reverse=descending)
    return [record for _, record in present] + missing
