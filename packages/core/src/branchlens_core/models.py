"""Branch reconciliation data models.

Local facts come from git, remote facts from Gerrit. BranchRecord is the
join of the two and is what filtering, sorting and the CLI consume.

All models are frozen: a reconciliation run builds each record exactly once
and derived quantities (status, divergence) are computed on demand rather
than stored.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Union


@dataclass(frozen=True)
class LocalCommitFacts:
    """Tip commit of a local branch."""

    hash: str
    raw_date: str
    # None when git's date could not be parsed; filters keep such records.
    timestamp: datetime | None = None


@dataclass(frozen=True)
class ReviewTrackingConfig:
    """Review metadata recorded in git config when a branch was uploaded.

    Every field is optional. A missing value is None and stays None; it is
    never normalised to "" because "not recorded" and "recorded empty" mean
    different things to the divergence checks.
    """

    issue_id: str | None = None
    server_url: str | None = None
    patchset: str | None = None
    squash_hash: str | None = None
    last_upload_hash: str | None = None

    @property
    def is_tracked(self) -> bool:
        return self.issue_id is not None


@dataclass(frozen=True)
class VoteTally:
    """Summary of the Code-Review label on a change."""

    approved: bool = False
    positive_count: int = 0
    negative_count: int = 0


@dataclass(frozen=True)
class RemoteChangeItem:
    """A Gerrit change as returned by the batch query plus its mergeability."""

    number: str
    status: str
    change_id: str | None = None
    work_in_progress: bool = False
    # Gerrit only reports this via a dedicated sub-query; unknown means mergeable.
    mergeable: bool = True
    updated_at: datetime | None = None
    current_revision: str | None = None
    votes: VoteTally = field(default_factory=VoteTally)
    has_pending_reviewers: bool = False


# ---------------------------------------------------------------------------
# Review state
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Untracked:
    """The branch was never uploaded for review."""


@dataclass(frozen=True)
class TrackedPending:
    """The branch is tracked but the remote was not consulted this run."""


@dataclass(frozen=True)
class TrackedFound:
    change: RemoteChangeItem


@dataclass(frozen=True)
class TrackedNotFound:
    """The branch is tracked but Gerrit returned nothing (or the lookup failed)."""


ReviewState = Union[Untracked, TrackedPending, TrackedFound, TrackedNotFound]


@dataclass(frozen=True)
class BranchRecord:
    """One local branch joined with its review tracking and remote change."""

    name: str
    local: LocalCommitFacts
    tracking: ReviewTrackingConfig = field(default_factory=ReviewTrackingConfig)
    review: ReviewState = field(default_factory=Untracked)

    def __post_init__(self):
        if self.tracking.is_tracked == isinstance(self.review, Untracked):
            raise ValueError(
                f"Branch {self.name!r}: review state {type(self.review).__name__} "
                f"does not match tracking (issue_id={self.tracking.issue_id!r})."
            )

    @property
    def remote(self) -> RemoteChangeItem | None:
        if isinstance(self.review, TrackedFound):
            return self.review.change
        return None

    @property
    def is_tracked(self) -> bool:
        return self.tracking.is_tracked
