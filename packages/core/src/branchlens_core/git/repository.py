"""Bulk local metadata reads from a git repository.

Spawning git is the dominant cost when a repository has many branches, so
every read here is a single bulk command regardless of branch count:

  1. `git branch --list`                 → branch names
  2. `git for-each-ref refs/heads/`      → tip hash + committer date per branch
  3. `git config --get-regexp branch.*`  → review tracking keys for all branches

(2) and (3) run concurrently once (1) has returned. Nothing here writes to the
repository.
"""

from __future__ import annotations

import logging
import re
import subprocess
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone

from branchlens_core.models import LocalCommitFacts, ReviewTrackingConfig

logger = logging.getLogger(__name__)

_FIELD_SEPARATOR = "|"
# Both listings must name branches identically. `refname:short` would yield
# "heads/<name>" for a branch that shares its name with a tag.
_BRANCH_NAME_FORMAT = "%(refname:lstrip=2)"
_COMMIT_FACTS_FORMAT = f"{_BRANCH_NAME_FORMAT}|%(objectname)|%(committerdate:iso-strict)"
_TRACKING_KEY_PATTERN = r"^branch\..*\.(gerrit|last-upload-hash)"

# git config key suffix → ReviewTrackingConfig attribute.
_TRACKING_FIELDS = {
    "gerritissue": "issue_id",
    "gerritserver": "server_url",
    "gerritpatchset": "patchset",
    "gerritsquashhash": "squash_hash",
    "last-upload-hash": "last_upload_hash",
}

# branch.<name>.<field>: the branch name may itself contain dots, so the
# field is matched from the end of the key.
_TRACKING_KEY_RE = re.compile(r"^branch\.(?P<branch>.+)\.(?P<field>[^.]+)$")


class RepositoryError(Exception):
    """The path is not a usable git repository; the run cannot continue."""


class GitCommandError(Exception):
    def __init__(self, args: list[str], returncode: int, stderr: str):
        self.git_args = list(args)
        self.returncode = returncode
        self.stderr = stderr
        super().__init__(f"git {' '.join(args)} exited with {returncode}: {stderr.strip()}")


class CommandCache:
    """Output of successful git invocations, keyed by their arguments.

    Repository state is assumed static for the lifetime of one reader, so
    entries are never invalidated. Concurrent writers for the same key store
    identical output, so no locking is needed beyond dict assignment.
    """

    def __init__(self):
        self._entries: dict[str, str] = {}

    @staticmethod
    def make_key(args: list[str]) -> str:
        # NUL cannot appear in a command-line argument, so keys never collide.
        return "\0".join(args)

    def get(self, args: list[str]) -> str | None:
        return self._entries.get(self.make_key(args))

    def put(self, args: list[str], output: str) -> None:
        self._entries.setdefault(self.make_key(args), output)

    def __len__(self) -> int:
        return len(self._entries)


def parse_git_timestamp(value: str) -> datetime | None:
    """Parse git's committer date (strict ISO 8601) into an aware datetime."""
    text = value.strip()
    if not text:
        return None
    try:
        parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        # `git log --format=%ci` style: "2025-10-07 14:30:45 -0400"
        try:
            parsed = datetime.strptime(text, "%Y-%m-%d %H:%M:%S %z")
        except ValueError:
            return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def parse_commit_facts(output: str) -> dict[str, LocalCommitFacts]:
    """Parse `name|hash|date` lines. Lines without three non-empty fields are skipped."""
    facts: dict[str, LocalCommitFacts] = {}
    for line in output.splitlines():
        parts = line.strip().split(_FIELD_SEPARATOR)
        if len(parts) != 3 or not all(parts):
            if line.strip():
                logger.debug("Skipping unparseable ref line: %r", line)
            continue
        name, commit_hash, raw_date = parts
        facts[name] = LocalCommitFacts(hash=commit_hash, raw_date=raw_date, timestamp=parse_git_timestamp(raw_date))
    return facts


def parse_tracking_config(output: str) -> dict[str, dict[str, str]]:
    """Parse `git config --get-regexp` output into {branch: {attribute: value}}.

    Each line is `<key> <value...>`; the value may contain spaces. Keys that
    are not `branch.<name>.<recognised field>` are skipped.
    """
    configs: dict[str, dict[str, str]] = {}
    for line in output.splitlines():
        key, sep, value = line.lstrip().partition(" ")
        if not key or not sep:
            continue
        match = _TRACKING_KEY_RE.match(key)
        if not match:
            continue
        attribute = _TRACKING_FIELDS.get(match.group("field"))
        if attribute is None:
            continue
        configs.setdefault(match.group("branch"), {})[attribute] = value
    return configs


def parse_branch_list(output: str) -> list[str]:
    branches = []
    for line in output.splitlines():
        name = line.strip()
        # Detached HEAD shows up as "(HEAD detached at abc123)".
        if not name or name.startswith("("):
            continue
        branches.append(name)
    return branches


class GitRepository:
    """Reads branch, commit and review-tracking metadata from one repository.

    Each instance owns its own CommandCache so independent runs (for example
    in tests) never see each other's results.
    """

    def __init__(self, path: str = ".", logger: logging.Logger | None = None):
        self.path = path
        self.cache = CommandCache()
        self._log = logger or logging.getLogger(__name__)

    def _run_git(self, args: list[str]) -> str:
        """Run git in the repository and return stripped stdout.

        Raises GitCommandError on a non-zero exit. Successful output is cached
        by argument list.
        """
        cached = self.cache.get(args)
        if cached is not None:
            return cached

        self._log.debug("Running: git %s", " ".join(args))
        result = subprocess.run(
            ["git", "-C", self.path, *args],
            capture_output=True,
            text=True,
        )
        if result.returncode != 0:
            raise GitCommandError(args, result.returncode, result.stderr or "")

        output = (result.stdout or "").strip()
        self.cache.put(args, output)
        return output

    def list_branches(self) -> list[str]:
        """Return every local branch name. Raises RepositoryError on failure."""
        try:
            output = self._run_git(["branch", "--list", f"--format={_BRANCH_NAME_FORMAT}"])
        except (GitCommandError, OSError) as e:
            raise RepositoryError(f"Could not list branches in {self.path}: {e}") from e
        return parse_branch_list(output)

    def get_commit_facts(self) -> dict[str, LocalCommitFacts]:
        """Return tip commit facts for all local branches in one git call."""
        try:
            output = self._run_git(["for-each-ref", f"--format={_COMMIT_FACTS_FORMAT}", "refs/heads/"])
        except (GitCommandError, OSError) as e:
            raise RepositoryError(f"Could not read commit information in {self.path}: {e}") from e
        return parse_commit_facts(output)

    def get_tracking_configs(self, branches: list[str]) -> dict[str, ReviewTrackingConfig]:
        """Return review tracking config for each branch in one git call.

        A failing query (git config exits 1 when nothing matches) or empty
        output means no branch is tracked, never an error.
        """
        try:
            output = self._run_git(["config", "--get-regexp", _TRACKING_KEY_PATTERN])
        except (GitCommandError, OSError) as e:
            self._log.debug("No review tracking config found: %s", e)
            output = ""

        raw = parse_tracking_config(output)
        return {branch: ReviewTrackingConfig(**raw.get(branch, {})) for branch in branches}

    def read_local_state(
        self,
    ) -> tuple[list[str], dict[str, LocalCommitFacts], dict[str, ReviewTrackingConfig]]:
        """Discover branches, then fetch commit facts and tracking config concurrently."""
        branches = self.list_branches()
        if not branches:
            return [], {}, {}

        with ThreadPoolExecutor(max_workers=2) as pool:
            facts_future = pool.submit(self.get_commit_facts)
            tracking_future = pool.submit(self.get_tracking_configs, branches)
            facts = facts_future.result()
            tracking = tracking_future.result()

        return branches, facts, tracking
