"""Batched, best-effort lookups against the Gerrit REST API.

Gerrit accepts several `q=` terms in one `/changes/` request but caps a
request at MAX_ISSUES_PER_BATCH terms. Issue numbers are therefore split into
groups, every group is queried concurrently, and every match found in a group
gets its own mergeability sub-query (Gerrit does not include mergeability in
the batch response), again concurrently.

Failure is contained per unit of work:
  - a failed group request resolves that group's issues to None;
  - a failed mergeability sub-query leaves the change mergeable.
Nothing is retried and no failure crosses a group boundary.
"""

from __future__ import annotations

import json
import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone

import requests

from branchlens_core.models import RemoteChangeItem, VoteTally

logger = logging.getLogger(__name__)

# Hard limit of the Gerrit multi-query endpoint, not a tuning knob.
MAX_ISSUES_PER_BATCH = 10

# Cross-site script inclusion guard Gerrit prepends to every JSON body.
XSSI_PREFIX = ")]}'\n"

DEFAULT_MAX_WORKERS = 16

# Not user-configurable; a timed-out request is treated like any other failure.
_REQUEST_TIMEOUT = 30

_QUERY_OPTIONS = ("CURRENT_REVISION", "DETAILED_LABELS")
_REVIEW_LABEL = "Code-Review"


@dataclass(frozen=True)
class GroupResult:
    """Outcome of one batch group. Carries the failure instead of raising it."""

    issue_ids: tuple[str, ...]
    changes: dict[str, RemoteChangeItem | None] = field(default_factory=dict)
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def failed(cls, issue_ids, error: str) -> GroupResult:
        return cls(issue_ids=tuple(issue_ids), changes={i: None for i in issue_ids}, error=error)


def strip_xssi_prefix(body: str) -> str:
    """Remove Gerrit's XSSI prefix once, if present. Unprefixed bodies pass through."""
    if body.startswith(XSSI_PREFIX):
        return body[len(XSSI_PREFIX) :]
    return body


def parse_json_body(body: str):
    return json.loads(strip_xssi_prefix(body))


def chunk_issues(issue_ids: list[str], size: int = MAX_ISSUES_PER_BATCH) -> list[list[str]]:
    """Split issue ids into contiguous groups of at most `size`."""
    return [issue_ids[i : i + size] for i in range(0, len(issue_ids), size)]


def change_url(server_url: str, issue_id: str) -> str:
    return f"{server_url.rstrip('/')}/c/{issue_id}"


def parse_gerrit_timestamp(value: str | None) -> datetime | None:
    """Parse Gerrit's "2025-10-07 14:30:45.000000000" (always UTC)."""
    if not value:
        return None
    try:
        parsed = datetime.strptime(value.split(".")[0], "%Y-%m-%d %H:%M:%S")
    except ValueError:
        return None
    return parsed.replace(tzinfo=timezone.utc)


def parse_vote_tally(labels: dict | None) -> VoteTally:
    """Summarise the Code-Review label from a DETAILED_LABELS response."""
    label = (labels or {}).get(_REVIEW_LABEL) or {}
    votes = [v.get("value") or 0 for v in label.get("all") or [] if isinstance(v, dict)]
    return VoteTally(
        approved="approved" in label,
        positive_count=sum(1 for v in votes if v > 0),
        negative_count=sum(1 for v in votes if v < 0),
    )


def parse_change(data: dict) -> RemoteChangeItem:
    """Build a RemoteChangeItem from one change object of a `/changes/` response.

    `mergeable` is left at its default; it is filled in by a sub-query.
    Raises KeyError if the change has no number or status.
    """
    return RemoteChangeItem(
        number=str(data["_number"]),
        status=data["status"],
        change_id=data.get("change_id"),
        work_in_progress=bool(data.get("work_in_progress", False)),
        updated_at=parse_gerrit_timestamp(data.get("updated")),
        current_revision=data.get("current_revision"),
        votes=parse_vote_tally(data.get("labels")),
        has_pending_reviewers=bool(data.get("pending_reviewers")),
    )


def parse_batch_response(payload, issue_ids: list[str]) -> dict[str, RemoteChangeItem | None]:
    """Join matches back to the requested issue ids by `_number`.

    The outer array has one entry per `q=` term, each an array of zero or one
    matches. Position is never used for the join.
    """
    results: dict[str, RemoteChangeItem | None] = {issue: None for issue in issue_ids}
    if not isinstance(payload, list):
        return results

    for query_result in payload:
        if not isinstance(query_result, list):
            continue
        for data in query_result:
            if not isinstance(data, dict):
                continue
            number = data.get("_number")
            if number is None or str(number) not in results:
                continue
            try:
                results[str(number)] = parse_change(data)
            except KeyError as e:
                logger.debug("Ignoring malformed change %s (missing %s)", number, e)
    return results


class GerritClient:
    """Read-only client for one Gerrit server.

    Unauthenticated: only publicly visible changes are returned. A shared
    requests.Session is used across worker threads for connection reuse.
    """

    def __init__(
        self,
        server_url: str,
        session: requests.Session | None = None,
        max_workers: int = DEFAULT_MAX_WORKERS,
        logger: logging.Logger | None = None,
    ):
        self.server_url = server_url.rstrip("/")
        self._session = session or requests.Session()
        self._max_workers = max(1, max_workers)
        self._log = logger or logging.getLogger(__name__)

    def get_changes(self, issue_ids: list[str]) -> dict[str, RemoteChangeItem | None]:
        """Look up every issue id. The result has exactly the input ids as keys.

        None means not found or not resolvable this run.
        """
        unique_ids = list(dict.fromkeys(str(i) for i in issue_ids))
        if not unique_ids:
            return {}

        groups = chunk_issues(unique_ids)
        self._log.debug(
            "Querying %s for %d issue(s) in %d group(s)", self.server_url, len(unique_ids), len(groups)
        )

        results: dict[str, RemoteChangeItem | None] = {}
        with ThreadPoolExecutor(max_workers=min(len(groups), self._max_workers)) as pool:
            futures = [(group, pool.submit(self.query_group, group)) for group in groups]
            for group, future in futures:
                try:
                    outcome = future.result()
                except Exception as e:
                    # query_group contains its own failures; this guards the join
                    # against anything unexpected so siblings still resolve.
                    self._log.warning("Gerrit group %s failed unexpectedly: %s", group, e)
                    outcome = GroupResult.failed(group, str(e))
                if not outcome.ok:
                    self._log.warning(
                        "Gerrit query for %d issue(s) failed: %s", len(outcome.issue_ids), outcome.error
                    )
                # Groups are disjoint by construction, so update() never overwrites.
                results.update(outcome.changes)

        return results

    def query_group(self, issue_ids: list[str]) -> GroupResult:
        """Run one batch request plus its mergeability sub-queries."""
        params = [("q", issue) for issue in issue_ids] + [("o", option) for option in _QUERY_OPTIONS]
        try:
            response = self._session.get(f"{self.server_url}/changes/", params=params, timeout=_REQUEST_TIMEOUT)
            response.raise_for_status()
            payload = parse_json_body(response.text)
        except requests.RequestException as e:
            return GroupResult.failed(issue_ids, f"{type(e).__name__}: {e}")
        except ValueError as e:
            return GroupResult.failed(issue_ids, f"invalid JSON response: {e}")

        changes = parse_batch_response(payload, issue_ids)
        found = [issue for issue, change in changes.items() if change is not None]
        if found:
            with ThreadPoolExecutor(max_workers=len(found)) as pool:
                mergeable = dict(zip(found, pool.map(self.fetch_mergeable, found)))
            for issue in found:
                changes[issue] = replace(changes[issue], mergeable=mergeable[issue])

        return GroupResult(issue_ids=tuple(issue_ids), changes=changes)

    def fetch_mergeable(self, issue_id: str) -> bool:
        """Return whether the change merges cleanly; True whenever it cannot be determined."""
        url = f"{self.server_url}/changes/{issue_id}/revisions/current/mergeable"
        try:
            response = self._session.get(url, timeout=_REQUEST_TIMEOUT)
            response.raise_for_status()
            data = parse_json_body(response.text)
        except (requests.RequestException, ValueError) as e:
            self._log.debug("Mergeable lookup for %s failed, assuming mergeable: %s", issue_id, e)
            return True

        if isinstance(data, dict) and isinstance(data.get("mergeable"), bool):
            return data["mergeable"]
        return True
