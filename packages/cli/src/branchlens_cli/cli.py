"""CLI entry point for branchlens.

Commands:
  list   Show local branches reconciled with their Gerrit changes (default)
"""

from __future__ import annotations

import importlib.metadata
import logging

import click

from branchlens_cli.commands.branches import list_cmd


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="[%(levelname)s] %(name)s: %(message)s",
    )
    # urllib3 logs every connection at DEBUG.
    logging.getLogger("urllib3").setLevel(logging.WARNING)


@click.group(invoke_without_command=True)
@click.version_option(
    version=importlib.metadata.version("branchlens"),
    prog_name="branchlens",
)
@click.option(
    "--config",
    "config_path",
    default="~/.branchlens.yml",
    show_default=True,
    help="Path to the configuration file.",
    envvar="BRANCHLENS_CONFIG",
)
@click.option("--verbose", "-v", is_flag=True, help="Show additional diagnostic output.")
@click.pass_context
def main(ctx: click.Context, config_path: str, verbose: bool):
    """Reconcile local git branches with their Gerrit code reviews."""
    _configure_logging(verbose)

    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config_path
    ctx.obj["verbose"] = verbose

    if ctx.invoked_subcommand is None:
        ctx.invoke(list_cmd)


main.add_command(list_cmd)
