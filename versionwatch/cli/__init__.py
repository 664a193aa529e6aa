"""CLI entry point for versionwatch."""

from __future__ import annotations

import click

from versionwatch.cli.commands import (
    compare,
    create_job,
    expire_runs,
    init_db,
    job_stats,
    list_jobs,
    run_workers,
    show_changes,
    show_history,
    show_runs,
    trigger_run,
)


@click.group()
def cli() -> None:
    """Versioned page snapshots and change scoring."""


cli.add_command(init_db)
cli.add_command(create_job)
cli.add_command(list_jobs)
cli.add_command(trigger_run)
cli.add_command(run_workers)
cli.add_command(expire_runs)
cli.add_command(show_runs)
cli.add_command(show_history)
cli.add_command(show_changes)
cli.add_command(compare)
cli.add_command(job_stats)
