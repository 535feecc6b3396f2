"""Classification of review items into user-facing status categories."""

from __future__ import annotations

from branchlens_core.models import (
    BranchRecord,
    RemoteChangeItem,
    TrackedFound,
    TrackedNotFound,
    TrackedPending,
    Untracked,
)

MERGED = "Merged"
ABANDONED = "Abandoned"
CONFLICT = "Merge conflict"
WIP = "WIP"
ACTIVE = "Active"

UNTRACKED = "untracked"
PENDING = "pending"
NOT_FOUND = "not found"

# Every category a found change can map to (excluding raw passthrough values).
REMOTE_STATUSES = (WIP, ACTIVE, MERGED, ABANDONED, CONFLICT)

# Sort order for `--sort status`. Deliberately a different scale from the
# classification priority in classify_status(); statuses absent here have no
# sort key and always sort last.
SORT_PRIORITY = {
    CONFLICT: 0,
    WIP: 1,
    ACTIVE: 2,
    MERGED: 3,
    UNTRACKED: 4,
}


def classify_status(change: RemoteChangeItem) -> str:
    """Map a change to its status category, first matching rule wins.

    Terminal states come first so that a stale conflict or WIP flag can
    never hide the fact that a change was merged or abandoned.
    """
    if change.status == "MERGED":
        return MERGED
    if change.status == "ABANDONED":
        return ABANDONED
    if not change.mergeable:
        return CONFLICT
    if change.work_in_progress:
        return WIP
    if change.status == "NEW":
        return ACTIVE
    return change.status


def display_status(change: RemoteChangeItem) -> str:
    """Category plus informational annotations, e.g. "Active (LGTM)".

    Annotations never change the category; filters and sorting ignore them.
    """
    category = classify_status(change)
    if category not in (CONFLICT, ACTIVE):
        return category

    notes = []
    if category == CONFLICT and change.work_in_progress:
        notes.append("WIP")
    if change.votes.approved:
        notes.append("LGTM")
    if change.has_pending_reviewers:
        notes.append("unsent")
    if not notes:
        return category
    return f"{category} ({', '.join(notes)})"


def record_status(record: BranchRecord) -> str:
    """Status category of a whole record, including the non-found states."""
    review = record.review
    if isinstance(review, TrackedFound):
        return classify_status(review.change)
    if isinstance(review, TrackedNotFound):
        return NOT_FOUND
    if isinstance(review, TrackedPending):
        return PENDING
    if isinstance(review, Untracked):
        return UNTRACKED
    raise TypeError(f"Unknown review state: {review!r}")


def record_display_status(record: BranchRecord) -> str:
    if record.remote is not None:
        return display_status(record.remote)
    return record_status(record)
