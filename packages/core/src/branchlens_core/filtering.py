"""Filtering of assembled branch records.

Categories (status, date range, divergence) are ANDed together; the values
inside the status category are ORed. Nothing here talks to git or Gerrit.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, time

from branchlens_core import status as st
from branchlens_core.divergence import is_diverged
from branchlens_core.models import BranchRecord

# Meta-values resolved from tracking state alone.
ANY_TRACKED = "gerrit"
UNTRACKED_ONLY = "local"

# CLI value → status category.
STATUS_VALUES = {
    "wip": st.WIP,
    "active": st.ACTIVE,
    "merged": st.MERGED,
    "abandoned": st.ABANDONED,
    "conflict": st.CONFLICT,
    ANY_TRACKED: None,
    UNTRACKED_ONLY: None,
}

STATUS_DESCRIPTIONS = {
    "wip": "Work in progress",
    "active": "Ready for review",
    "merged": "Successfully merged",
    "abandoned": "Abandoned changes",
    "conflict": "Has merge conflicts",
    ANY_TRACKED: "Any branch tracked in Gerrit",
    UNTRACKED_ONLY: "Branches without Gerrit tracking",
}


@dataclass
class FilterCriteria:
    statuses: list[str] = field(default_factory=list)
    since: datetime | None = None
    before: datetime | None = None
    diverged: bool = False

    def __post_init__(self):
        # Record timestamps are aware; naive bounds are taken as local time.
        self.since = parse_date(self.since)
        self.before = parse_date(self.before)

    @property
    def is_empty(self) -> bool:
        return not self.statuses and self.since is None and self.before is None and not self.diverged


def validate_status(value: str) -> str:
    """Return the normalised status value or raise ValueError."""
    normalised = value.strip().lower()
    if normalised not in STATUS_VALUES:
        allowed = ", ".join(STATUS_VALUES)
        raise ValueError(f"Invalid status {value!r}. Allowed: {allowed}")
    return normalised


def parse_date(value) -> datetime | None:
    """Parse an ISO 8601 date or date-time. Naive values are taken as local time.

    Also accepts date/datetime objects, which YAML produces for unquoted dates.
    Raises ValueError with a usage hint when the value cannot be parsed.
    """
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime.combine(value, time())
    elif value is None or not str(value).strip():
        return None
    else:
        try:
            parsed = datetime.fromisoformat(str(value).strip().replace("Z", "+00:00"))
        except ValueError:
            raise ValueError(
                f"Invalid date {value!r}. Expected ISO 8601, e.g. 2025-10-10 or 2025-10-10T14:30:00"
            ) from None
    if parsed.tzinfo is None:
        parsed = parsed.astimezone()
    return parsed


def _matches_status(record: BranchRecord, wanted: set[str]) -> bool:
    if UNTRACKED_ONLY in wanted and not record.is_tracked:
        return True
    if ANY_TRACKED in wanted and record.is_tracked:
        return True
    categories = {STATUS_VALUES[s] for s in wanted} - {None}
    return st.record_status(record) in categories


def _matches_dates(record: BranchRecord, since: datetime | None, before: datetime | None) -> bool:
    timestamp = record.local.timestamp
    if timestamp is None:
        # Unparseable dates are kept rather than silently hidden.
        return True
    if since is not None and timestamp < since:
        return False
    if before is not None and timestamp >= before:
        return False
    return True


def apply_filters(records: list[BranchRecord], criteria: FilterCriteria) -> list[BranchRecord]:
    """Return the records matching every active criterion, in input order."""
    if criteria.is_empty:
        return list(records)

    filtered = list(records)
    if criteria.statuses:
        wanted = {validate_status(s) for s in criteria.statuses}
        filtered = [r for r in filtered if _matches_status(r, wanted)]
    if criteria.since is not None or criteria.before is not None:
        filtered = [r for r in filtered if _matches_dates(r, criteria.since, criteria.before)]
    if criteria.diverged:
        filtered = [r for r in filtered if is_diverged(r)]
    return filtered
