"""Core reconciliation pipeline.

    GitRepository.read_local_state()   branches, commit facts, tracking config
        → build_issue_index()          {server: {issue: [branch, ...]}}
        → GerritClient.get_changes()   one batched lookup per server
        → assemble_records()           one BranchRecord per branch

Filtering and sorting happen afterwards, on the assembled records.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Callable

from branchlens_core.gerrit.client import DEFAULT_MAX_WORKERS, GerritClient
from branchlens_core.git.repository import GitRepository
from branchlens_core.models import (
    BranchRecord,
    LocalCommitFacts,
    RemoteChangeItem,
    ReviewState,
    ReviewTrackingConfig,
    TrackedFound,
    TrackedNotFound,
    TrackedPending,
    Untracked,
)
from branchlens_core.utils.timing import PerformanceTracker

logger = logging.getLogger(__name__)

ChangeMap = dict[str, dict[str, "RemoteChangeItem | None"]]


def server_for(tracking: ReviewTrackingConfig, default_server: str) -> str:
    return (tracking.server_url or default_server).rstrip("/")


def build_issue_index(
    tracking: dict[str, ReviewTrackingConfig],
    default_server: str,
) -> dict[str, dict[str, list[str]]]:
    """Group tracked branches by server, then by issue id.

    Several branches can point at the same issue; each issue is still queried
    once. Branches with no recorded server use `default_server`.
    """
    index: dict[str, dict[str, list[str]]] = {}
    for branch, config in tracking.items():
        if not config.is_tracked:
            continue
        server = server_for(config, default_server)
        index.setdefault(server, {}).setdefault(config.issue_id, []).append(branch)
    return index


def resolve_review_state(
    config: ReviewTrackingConfig,
    default_server: str,
    changes: ChangeMap | None,
) -> ReviewState:
    """Pick the review state for one branch. `changes` is None when the remote was not queried."""
    if not config.is_tracked:
        return Untracked()
    if changes is None:
        return TrackedPending()
    change = changes.get(server_for(config, default_server), {}).get(config.issue_id)
    if change is None:
        return TrackedNotFound()
    return TrackedFound(change)


def assemble_records(
    branches: list[str],
    facts: dict[str, LocalCommitFacts],
    tracking: dict[str, ReviewTrackingConfig],
    changes: ChangeMap | None,
    default_server: str,
    logger: logging.Logger | None = None,
) -> list[BranchRecord]:
    """Join local and remote data into records, preserving branch order.

    Branches that git listed but for which no commit facts were parsed are
    dropped: there is nothing meaningful to show for them.
    """
    log = logger or logging.getLogger(__name__)
    records = []
    for branch in branches:
        local = facts.get(branch)
        if local is None:
            log.warning("No commit information for branch %s; skipping it.", branch)
            continue
        config = tracking.get(branch) or ReviewTrackingConfig()
        records.append(
            BranchRecord(
                name=branch,
                local=local,
                tracking=config,
                review=resolve_review_state(config, default_server, changes),
            )
        )
    return records


class Reconciler:
    """Runs one point-in-time reconciliation of a repository against Gerrit.

    Collaborators are injected so tests can substitute the repository and the
    Gerrit client without touching subprocesses or the network.
    """

    def __init__(
        self,
        repository: GitRepository,
        default_server: str,
        client_factory: Callable[[str], GerritClient] | None = None,
        max_workers: int = DEFAULT_MAX_WORKERS,
        logger: logging.Logger | None = None,
        tracker: PerformanceTracker | None = None,
    ):
        self.repository = repository
        self.default_server = default_server.rstrip("/")
        self._log = logger or logging.getLogger(__name__)
        self._client_factory = client_factory or (
            lambda server: GerritClient(server, max_workers=max_workers, logger=self._log)
        )
        self._tracker = tracker or PerformanceTracker()

    def run(self, query_remote: bool = True) -> list[BranchRecord]:
        """Build one BranchRecord per local branch.

        Raises RepositoryError (before any remote request) when the local
        repository cannot be read. Remote failures never raise; the affected
        branches come back as TrackedNotFound.
        """
        with self._tracker.timed("branch_discovery"):
            branches = self.repository.list_branches()
        if not branches:
            self._log.info("No branches found in %s", self.repository.path)
            return []
        self._log.debug("Found %d branch(es)", len(branches))

        with self._tracker.timed("git_operations"):
            _, facts, tracking = self.repository.read_local_state()

        changes: ChangeMap | None = None
        if query_remote:
            index = build_issue_index(tracking, self.default_server)
            with self._tracker.timed("gerrit_queries"):
                changes = self._query_servers(index)

        with self._tracker.timed("result_processing"):
            return assemble_records(branches, facts, tracking, changes, self.default_server, logger=self._log)

    def _query_servers(self, index: dict[str, dict[str, list[str]]]) -> ChangeMap:
        """Query every server at once so no server's groups wait on another's."""
        if not index:
            return {}

        changes: ChangeMap = {}
        with ThreadPoolExecutor(max_workers=len(index)) as pool:
            futures = {}
            for server, issues in index.items():
                self._log.debug("Batch querying %s for %d issue(s)", server, len(issues))
                client = self._client_factory(server)
                futures[server] = pool.submit(client.get_changes, list(issues))
            for server, future in futures.items():
                changes[server] = future.result()
                found = sum(1 for change in changes[server].values() if change is not None)
                self._log.debug("%s: %d/%d changes found", server, found, len(index[server]))
        return changes
