"""Tests for the reconciliation pipeline."""

import threading
from unittest.mock import MagicMock

import pytest

from branchlens_core.git.repository import GitRepository, RepositoryError
from branchlens_core.models import (
    LocalCommitFacts,
    RemoteChangeItem,
    ReviewTrackingConfig,
    TrackedFound,
    TrackedNotFound,
    TrackedPending,
    Untracked,
)
from branchlens_core.reconciler import (
    Reconciler,
    assemble_records,
    build_issue_index,
    resolve_review_state,
    server_for,
)
from branchlens_core.utils.timing import PerformanceTracker

DEFAULT = "https://review.example.org"
OTHER = "https://other-review.example.org"


def _facts(*names):
    return {n: LocalCommitFacts(hash="a" * 40, raw_date="2025-10-07T14:30:45+00:00") for n in names}


def _make_repository(branches, facts, tracking):
    repo = MagicMock(spec=GitRepository)
    repo.path = "/repo"
    repo.list_branches.return_value = branches
    repo.read_local_state.return_value = (branches, facts, tracking)
    return repo


def _make_client_factory(results_by_server):
    clients = {}

    def factory(server):
        client = MagicMock()
        client.get_changes.side_effect = lambda ids: {i: results_by_server.get(server, {}).get(i) for i in ids}
        clients[server] = client
        return client

    return factory, clients


# ---------------------------------------------------------------------------
# Pure helpers
# ---------------------------------------------------------------------------


def test_server_for_falls_back_to_default():
    assert server_for(ReviewTrackingConfig(issue_id="1"), DEFAULT + "/") == DEFAULT
    assert server_for(ReviewTrackingConfig(issue_id="1", server_url=OTHER + "/"), DEFAULT) == OTHER


class TestBuildIssueIndex:
    def test_groups_by_server_and_issue(self):
        tracking = {
            "main": ReviewTrackingConfig(),
            "a": ReviewTrackingConfig(issue_id="1"),
            "a-copy": ReviewTrackingConfig(issue_id="1", server_url=DEFAULT),
            "b": ReviewTrackingConfig(issue_id="2", server_url=OTHER),
        }
        index = build_issue_index(tracking, DEFAULT)
        assert index == {DEFAULT: {"1": ["a", "a-copy"]}, OTHER: {"2": ["b"]}}

    def test_untracked_only(self):
        assert build_issue_index({"main": ReviewTrackingConfig()}, DEFAULT) == {}


class TestResolveReviewState:
    def test_untracked(self):
        assert resolve_review_state(ReviewTrackingConfig(), DEFAULT, {}) == Untracked()

    def test_pending_when_remote_not_queried(self):
        assert resolve_review_state(ReviewTrackingConfig(issue_id="1"), DEFAULT, None) == TrackedPending()

    def test_found(self):
        change = RemoteChangeItem(number="1", status="NEW")
        state = resolve_review_state(ReviewTrackingConfig(issue_id="1"), DEFAULT, {DEFAULT: {"1": change}})
        assert state == TrackedFound(change)

    def test_not_found(self):
        state = resolve_review_state(ReviewTrackingConfig(issue_id="1"), DEFAULT, {DEFAULT: {"1": None}})
        assert state == TrackedNotFound()

    def test_lookup_is_per_server(self):
        change = RemoteChangeItem(number="1", status="NEW")
        config = ReviewTrackingConfig(issue_id="1", server_url=OTHER)
        assert resolve_review_state(config, DEFAULT, {DEFAULT: {"1": change}}) == TrackedNotFound()


def test_assemble_records_keeps_order_and_drops_branches_without_facts():
    logger = MagicMock()
    records = assemble_records(
        ["z", "ghost", "a"],
        _facts("z", "a"),
        {"z": ReviewTrackingConfig(), "a": ReviewTrackingConfig()},
        None,
        DEFAULT,
        logger=logger,
    )
    assert [r.name for r in records] == ["z", "a"]
    logger.warning.assert_called_once()


# ---------------------------------------------------------------------------
# Reconciler
# ---------------------------------------------------------------------------


class TestReconciler:
    def test_untracked_branch(self):
        repo = _make_repository(["main"], _facts("main"), {"main": ReviewTrackingConfig()})
        factory, clients = _make_client_factory({})
        records = Reconciler(repo, DEFAULT, client_factory=factory).run()
        assert len(records) == 1
        assert records[0].remote is None
        assert isinstance(records[0].review, Untracked)
        assert clients == {}

    def test_found_and_not_found(self):
        change = RemoteChangeItem(number="100", status="NEW")
        tracking = {
            "main": ReviewTrackingConfig(),
            "feature": ReviewTrackingConfig(issue_id="100"),
            "stale": ReviewTrackingConfig(issue_id="200"),
        }
        repo = _make_repository(["main", "feature", "stale"], _facts("main", "feature", "stale"), tracking)
        factory, clients = _make_client_factory({DEFAULT: {"100": change}})

        records = {r.name: r for r in Reconciler(repo, DEFAULT, client_factory=factory).run()}

        assert records["feature"].remote == change
        assert isinstance(records["stale"].review, TrackedNotFound)
        assert isinstance(records["main"].review, Untracked)
        clients[DEFAULT].get_changes.assert_called_once_with(["100", "200"])

    def test_shared_issue_queried_once(self):
        change = RemoteChangeItem(number="7", status="NEW")
        tracking = {"a": ReviewTrackingConfig(issue_id="7"), "b": ReviewTrackingConfig(issue_id="7")}
        repo = _make_repository(["a", "b"], _facts("a", "b"), tracking)
        factory, clients = _make_client_factory({DEFAULT: {"7": change}})

        records = Reconciler(repo, DEFAULT, client_factory=factory).run()

        assert [r.remote for r in records] == [change, change]
        clients[DEFAULT].get_changes.assert_called_once_with(["7"])

    def test_one_client_per_server(self):
        tracking = {
            "a": ReviewTrackingConfig(issue_id="1"),
            "b": ReviewTrackingConfig(issue_id="2", server_url=OTHER),
        }
        repo = _make_repository(["a", "b"], _facts("a", "b"), tracking)
        factory, clients = _make_client_factory({})
        Reconciler(repo, DEFAULT, client_factory=factory).run()
        assert set(clients) == {DEFAULT, OTHER}

    def test_servers_are_queried_concurrently(self):
        barrier = threading.Barrier(2, timeout=5)
        change = RemoteChangeItem(number="2", status="NEW")

        def factory(server):
            def get_changes(ids):
                # Only returns once the other server's lookup is in flight too.
                barrier.wait()
                return {i: change if server == OTHER else None for i in ids}

            client = MagicMock()
            client.get_changes.side_effect = get_changes
            return client

        tracking = {
            "a": ReviewTrackingConfig(issue_id="1"),
            "b": ReviewTrackingConfig(issue_id="2", server_url=OTHER),
        }
        repo = _make_repository(["a", "b"], _facts("a", "b"), tracking)
        records = {r.name: r for r in Reconciler(repo, DEFAULT, client_factory=factory).run()}
        assert isinstance(records["a"].review, TrackedNotFound)
        assert records["b"].remote == change

    def test_offline_marks_tracked_pending(self):
        tracking = {"a": ReviewTrackingConfig(issue_id="1"), "main": ReviewTrackingConfig()}
        repo = _make_repository(["a", "main"], _facts("a", "main"), tracking)
        factory, clients = _make_client_factory({})
        records = Reconciler(repo, DEFAULT, client_factory=factory).run(query_remote=False)
        assert isinstance(records[0].review, TrackedPending)
        assert isinstance(records[1].review, Untracked)
        assert clients == {}

    def test_empty_repository(self):
        repo = _make_repository([], {}, {})
        factory, clients = _make_client_factory({})
        assert Reconciler(repo, DEFAULT, client_factory=factory).run() == []
        repo.read_local_state.assert_not_called()

    def test_repository_error_raised_before_remote_queries(self):
        repo = _make_repository(["a"], _facts("a"), {"a": ReviewTrackingConfig(issue_id="1")})
        repo.read_local_state.side_effect = RepositoryError("boom")
        factory, clients = _make_client_factory({})
        with pytest.raises(RepositoryError):
            Reconciler(repo, DEFAULT, client_factory=factory).run()
        assert clients == {}

    def test_phases_are_timed(self):
        repo = _make_repository(["a"], _facts("a"), {"a": ReviewTrackingConfig(issue_id="1")})
        factory, _ = _make_client_factory({})
        tracker = PerformanceTracker()
        Reconciler(repo, DEFAULT, client_factory=factory, tracker=tracker).run()
        assert list(tracker.timings) == ["branch_discovery", "git_operations", "gerrit_queries", "result_processing"]
