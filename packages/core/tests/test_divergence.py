"""Tests for local/remote divergence detection."""

from branchlens_core.divergence import (
    divergence_score,
    divergence_state,
    has_unpulled_remote_work,
    has_unpushed_local_work,
    is_diverged,
)
from branchlens_core.models import (
    BranchRecord,
    LocalCommitFacts,
    RemoteChangeItem,
    ReviewTrackingConfig,
    TrackedFound,
    TrackedNotFound,
)

LOCAL = "1" * 40
UPLOADED = "2" * 40
SQUASH = "3" * 40
REMOTE = "4" * 40


def _record(local_hash=LOCAL, last_upload=None, squash=None, revision=None, found=True, issue="100"):
    tracking = ReviewTrackingConfig(issue_id=issue, squash_hash=squash, last_upload_hash=last_upload)
    if issue is None:
        return BranchRecord(name="b", local=LocalCommitFacts(hash=local_hash, raw_date=""), tracking=tracking)
    review = TrackedFound(RemoteChangeItem(number=issue, status="NEW", current_revision=revision))
    return BranchRecord(
        name="b",
        local=LocalCommitFacts(hash=local_hash, raw_date=""),
        tracking=tracking,
        review=review if found else TrackedNotFound(),
    )


class TestUnpushedLocalWork:
    def test_local_moved_since_upload(self):
        assert has_unpushed_local_work(_record(last_upload=UPLOADED))

    def test_local_matches_upload(self):
        assert not has_unpushed_local_work(_record(last_upload=LOCAL))

    def test_no_upload_hash_is_not_diverged(self):
        assert not has_unpushed_local_work(_record(last_upload=None))

    def test_untracked_is_not_diverged(self):
        assert not has_unpushed_local_work(_record(issue=None, last_upload=UPLOADED))

    def test_does_not_need_remote(self):
        assert has_unpushed_local_work(_record(last_upload=UPLOADED, found=False))


class TestUnpulledRemoteWork:
    def test_remote_moved_past_squash(self):
        assert has_unpulled_remote_work(_record(squash=SQUASH, revision=REMOTE))

    def test_remote_matches_squash(self):
        assert not has_unpulled_remote_work(_record(squash=SQUASH, revision=SQUASH))

    def test_missing_remote(self):
        assert not has_unpulled_remote_work(_record(squash=SQUASH, revision=REMOTE, found=False))

    def test_missing_squash_hash(self):
        assert not has_unpulled_remote_work(_record(squash=None, revision=REMOTE))

    def test_missing_current_revision(self):
        assert not has_unpulled_remote_work(_record(squash=SQUASH, revision=None))


def test_local_tip_is_never_compared_with_remote_revision():
    # Local tip and remote revision differ, but each side matches its recorded hash.
    record = _record(local_hash=LOCAL, last_upload=LOCAL, squash=REMOTE, revision=REMOTE)
    assert not is_diverged(record)


class TestScore:
    def test_both(self):
        record = _record(last_upload=UPLOADED, squash=SQUASH, revision=REMOTE)
        state = divergence_state(record)
        assert state.has_unpushed_local_work and state.has_unpulled_remote_work
        assert divergence_score(record) == 2

    def test_one_side(self):
        assert divergence_score(_record(last_upload=UPLOADED)) == 1
        assert divergence_score(_record(squash=SQUASH, revision=REMOTE)) == 1

    def test_in_sync(self):
        record = _record(last_upload=LOCAL, squash=SQUASH, revision=SQUASH)
        assert divergence_score(record) == 0
        assert not divergence_state(record).diverged
