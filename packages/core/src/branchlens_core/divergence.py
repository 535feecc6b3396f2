"""Local/remote divergence derived from review tracking metadata.

Hashes are never compared across the local/remote boundary directly: Gerrit
stores a squashed commit, so the local tip and the remote revision differ by
construction. Instead each side is compared against the hash git recorded for
it at upload time.

Whenever a required field is missing the answer is False. An unflagged branch
is less confusing than a wrongly flagged one.
"""

from __future__ import annotations

from dataclasses import dataclass

from branchlens_core.models import BranchRecord


@dataclass(frozen=True)
class DivergenceState:
    has_unpushed_local_work: bool
    has_unpulled_remote_work: bool

    @property
    def diverged(self) -> bool:
        return self.has_unpushed_local_work or self.has_unpulled_remote_work

    @property
    def score(self) -> int:
        return int(self.has_unpushed_local_work) + int(self.has_unpulled_remote_work)


def has_unpushed_local_work(record: BranchRecord) -> bool:
    """Local commits exist that were not part of the last upload."""
    tracking = record.tracking
    if tracking.issue_id is None or tracking.last_upload_hash is None:
        return False
    return record.local.hash != tracking.last_upload_hash


def has_unpulled_remote_work(record: BranchRecord) -> bool:
    """The change on Gerrit moved past what this branch last squashed."""
    remote = record.remote
    squash_hash = record.tracking.squash_hash
    if remote is None or squash_hash is None or remote.current_revision is None:
        return False
    return squash_hash != remote.current_revision


def divergence_state(record: BranchRecord) -> DivergenceState:
    return DivergenceState(
        has_unpushed_local_work=has_unpushed_local_work(record),
        has_unpulled_remote_work=has_unpulled_remote_work(record),
    )


def is_diverged(record: BranchRecord) -> bool:
    return has_unpushed_local_work(record) or has_unpulled_remote_work(record)


def divergence_score(record: BranchRecord) -> int:
    """2 = both sides diverged, 1 = one side, 0 = in sync."""
    return divergence_state(record).score
