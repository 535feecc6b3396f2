"""list command: show local branches reconciled with Gerrit."""

from __future__ import annotations

import logging
from datetime import datetime

import click
import yaml
from rich.console import Console
from rich.table import Table

from branchlens_core import status as st
from branchlens_core.divergence import divergence_state
from branchlens_core.filtering import STATUS_VALUES, FilterCriteria, apply_filters, parse_date, validate_status
from branchlens_core.gerrit.client import change_url
from branchlens_core.git.repository import GitRepository, RepositoryError
from branchlens_core.models import BranchRecord
from branchlens_core.reconciler import Reconciler, server_for
from branchlens_core.sorting import SORT_FIELD_DESCRIPTIONS, sort_records, validate_sort_direction
from branchlens_core.utils.timing import PerformanceTracker

console = Console()
logger = logging.getLogger(__name__)

_STATUS_STYLE = {
    st.ACTIVE: "green",
    st.WIP: "yellow",
    st.CONFLICT: "red",
    st.MERGED: "cyan",
    st.ABANDONED: "dim",
}

# Highlight for a hash/date column whose side has diverged.
_DIVERGED_STYLE = "bold yellow"


def _short_hash(value: str | None) -> str:
    if not value:
        return "-"
    return value[:8]


def _format_date(value: datetime | None, raw: str | None = None) -> str:
    if value is None:
        return (raw or "-")[:16]
    return value.astimezone().strftime("%Y-%m-%d %H:%M")


def _styled(text: str, style: str | None) -> str:
    return f"[{style}]{text}[/{style}]" if style else text


def build_table(
    records: list[BranchRecord],
    default_server: str,
    show_local: bool = True,
    show_gerrit: bool = True,
    show_url: bool = False,
) -> Table:
    """Render reconciled records as a rich Table."""
    table = Table(show_header=True, header_style="bold cyan")
    table.add_column("Branch", style="bold")
    table.add_column("Status")
    if show_local:
        table.add_column("Local Hash", width=8)
        table.add_column("Local Date", width=16)
    if show_gerrit:
        table.add_column("Gerrit Hash", width=11)
        table.add_column("Gerrit Date", width=16)
    if show_url:
        table.add_column("URL")

    for record in records:
        divergence = divergence_state(record)
        local_style = _DIVERGED_STYLE if divergence.has_unpushed_local_work else None
        remote_style = _DIVERGED_STYLE if divergence.has_unpulled_remote_work else None

        row = [record.name, _styled(st.record_display_status(record), _STATUS_STYLE.get(st.record_status(record)))]
        if show_local:
            row.append(_styled(_short_hash(record.local.hash), local_style))
            row.append(_styled(_format_date(record.local.timestamp, record.local.raw_date), local_style))
        if show_gerrit:
            remote = record.remote
            row.append(_styled(_short_hash(remote.current_revision if remote else None), remote_style))
            row.append(_styled(_format_date(remote.updated_at if remote else None), remote_style))
        if show_url:
            if record.is_tracked:
                row.append(change_url(server_for(record.tracking, default_server), record.tracking.issue_id))
            else:
                row.append("-")
        table.add_row(*row)

    return table


def build_timing_table(tracker: PerformanceTracker) -> Table:
    table = Table(title="Performance", show_header=True, header_style="bold")
    table.add_column("Operation")
    table.add_column("Time", justify="right")
    for name, seconds in tracker.timings.items():
        table.add_row(name.replace("_", " "), f"{seconds * 1000:.0f} ms")
    table.add_row("[bold]total[/bold]", f"[bold]{tracker.total_seconds * 1000:.0f} ms[/bold]")
    return table


@click.command("list")
@click.option("--path", "-p", "repo_path", default=".", show_default=True, help="Path to the git repository.")
@click.option(
    "--status",
    "statuses",
    multiple=True,
    type=click.Choice(list(STATUS_VALUES), case_sensitive=False),
    help="Only show branches with this status. Repeatable; values are ORed.",
)
@click.option("--no-status", is_flag=True, help="Ignore status filters from the config file.")
@click.option("--since", default=None, help="Only branches with commits at or after this date (ISO 8601).")
@click.option("--before", default=None, help="Only branches with commits before this date (ISO 8601).")
@click.option(
    "--diverged/--no-diverged",
    default=None,
    help="Only show branches with local or remote changes (--no-diverged ignores the config file).",
)
@click.option(
    "--sort",
    "sort_field",
    type=click.Choice(list(SORT_FIELD_DESCRIPTIONS), case_sensitive=False),
    default=None,
    help="Sort branches by field.",
)
@click.option("--no-sort", is_flag=True, help="Disable sorting from the config file.")
@click.option("--asc", is_flag=True, help="Sort ascending (default).")
@click.option("--desc", is_flag=True, help="Sort descending.")
@click.option("--gerrit/--no-gerrit", "show_gerrit", default=None, help="Show Gerrit hash and date columns.")
@click.option("--local/--no-local", "show_local", default=None, help="Show local hash and date columns.")
@click.option("--url/--no-url", "show_url", default=None, help="Show the Gerrit change URL column.")
@click.option("--offline", is_flag=True, help="Do not query Gerrit; show local and tracking data only.")
@click.option("--timing", "-t", is_flag=True, help="Print a timing summary.")
@click.pass_context
def list_cmd(
    ctx,
    repo_path: str,
    statuses: tuple[str, ...],
    no_status: bool,
    since: str | None,
    before: str | None,
    diverged: bool | None,
    sort_field: str | None,
    no_sort: bool,
    asc: bool,
    desc: bool,
    show_gerrit: bool | None,
    show_local: bool | None,
    show_url: bool | None,
    offline: bool,
    timing: bool,
):
    """List local branches with their Gerrit review status.

    Reads branch and review-tracking metadata from git in a few bulk calls,
    then looks up every tracked change on Gerrit in concurrent batches.
    Flags override values from the config file.
    """
    from branchlens_core.config import DEFAULT_CONFIG_PATH, load_config

    if statuses and no_status:
        raise click.UsageError("Cannot use --status together with --no-status.")
    if sort_field and no_sort:
        raise click.UsageError("Cannot use --sort together with --no-sort.")
    if asc and desc:
        raise click.UsageError("Cannot use --asc together with --desc.")
    direction = "desc" if desc else ("asc" if asc else None)

    config_path = (ctx.obj or {}).get("config_path", DEFAULT_CONFIG_PATH)
    try:
        config = load_config(
            config_path,
            cli_overrides={
                "status": list(statuses) or None,
                "since": since,
                "before": before,
                "diverged": diverged,
                "sort": sort_field,
                "sort_direction": direction,
                "show_gerrit": show_gerrit,
                "show_local": show_local,
                "show_url": show_url,
            },
        )
    except (OSError, ValueError, yaml.YAMLError) as e:
        raise click.ClickException(f"Could not load configuration: {e}")

    if no_status:
        config["status"] = []
    if no_sort:
        config["sort"] = None

    try:
        criteria = FilterCriteria(
            statuses=[validate_status(s) for s in config["status"]],
            since=parse_date(config["since"]),
            before=parse_date(config["before"]),
            diverged=bool(config["diverged"]),
        )
        sort_direction = validate_sort_direction(config["sort_direction"] or "asc")
    except ValueError as e:
        raise click.BadParameter(str(e))

    tracker = PerformanceTracker()
    reconciler = Reconciler(
        GitRepository(repo_path),
        default_server=config["gerrit_server"],
        max_workers=int(config["max_workers"]),
        tracker=tracker,
    )

    try:
        records = reconciler.run(query_remote=not offline)
    except RepositoryError as e:
        raise click.ClickException(str(e))

    if not records:
        console.print("[yellow]No branches found in this repository.[/yellow]")
        return

    if not criteria.is_empty:
        logger.debug("Branches before filtering: %d", len(records))
        with tracker.timed("filtering"):
            records = apply_filters(records, criteria)
        logger.debug("Branches after filtering: %d", len(records))

    if config["sort"]:
        with tracker.timed("sorting"):
            try:
                records = sort_records(records, config["sort"], sort_direction)
            except ValueError as e:
                raise click.BadParameter(str(e))

    if records:
        console.print(
            build_table(
                records,
                default_server=config["gerrit_server"],
                show_local=bool(config["show_local"]),
                show_gerrit=bool(config["show_gerrit"]),
                show_url=bool(config["show_url"]),
            )
        )
    else:
        console.print("[yellow]No branches match the given filters.[/yellow]")
    console.print(f"\nTotal: {len(records)} branch(es)")

    if timing:
        console.print(build_timing_table(tracker))
