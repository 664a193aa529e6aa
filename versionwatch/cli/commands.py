"""CLI command implementations for versionwatch."""

from __future__ import annotations

import json
import threading
from typing import Any

import click

from versionwatch.domains.monitoring.core.errors import PipelineError
from versionwatch.models.config import Config
from versionwatch.services.database import Database
from versionwatch.services.message_broker import SqliteMessageBroker
from versionwatch.utils.logger import configure_logging

_OUTPUT_FORMAT = click.option(
    "--output-format",
    default="summary",
    type=click.Choice(["summary", "json"]),
    help="Output format",
)


def _get_config() -> Config:
    """Load configuration from environment and .env file."""
    config = Config()
    configure_logging(config.log_level, config.log_format)
    return config


def _get_db(config: Config) -> Database:
    """Initialize database with schema."""
    db = Database(db_path=config.database_path)
    db.init_db()
    return db


def _get_broker(config: Config) -> SqliteMessageBroker:
    return SqliteMessageBroker(
        config.resolved_broker_path,
        visibility_timeout=config.visibility_timeout_seconds,
    )


def _print_summary(title: str, stats: dict[str, Any]) -> None:
    """Print a formatted summary of batch operation results."""
    click.echo(f"\n[SUCCESS] {title}")
    for key, value in stats.items():
        if key == "errors" and isinstance(value, list):
            if value:
                click.echo(f"  Errors ({len(value)}):")
                for error in value[:10]:
                    click.echo(f"    - {error}")
                if len(value) > 10:
                    click.echo(f"    ... and {len(value) - 10} more")
        else:
            click.echo(f"  {key}: {value}")


def _print_json(data: Any) -> None:
    click.echo(json.dumps(data, indent=2, default=str))


# --- Setup ---


@click.command()
def init_db() -> None:
    """Create database and broker tables."""
    config = _get_config()
    db = _get_db(config)
    with _get_broker(config) as broker:
        from versionwatch.domains.monitoring.services.pipeline_stage import declare_topology

        declare_topology(broker)
    db.close()
    click.echo(f"[SUCCESS] Database initialized at {config.database_path}")


# --- Jobs and runs ---


@click.command()
@click.option("--name", required=True, type=str, help="Job name")
@click.option("--url", required=True, type=str, help="URL to track")
@click.option("--schedule", default="manual", type=str, help="Schedule descriptor")
def create_job(name: str, url: str, schedule: str) -> None:
    """Register a URL to track."""
    from pydantic import ValidationError

    from versionwatch.domains.monitoring.services.orchestrator import Orchestrator

    config = _get_config()
    db = _get_db(config)
    with _get_broker(config) as broker:
        orchestrator = Orchestrator(db, broker, run_timeout=config.run_timeout)
        try:
            job = orchestrator.create_job(name=name, url=url, schedule=schedule)
        except (ValidationError, PipelineError) as exc:
            db.close()
            click.echo(f"[ERROR] {exc}")
            return
    click.echo(f"[SUCCESS] Created job {job.id}: {job.name} ({job.url})")
    db.close()


@click.command()
@_OUTPUT_FORMAT
def list_jobs(output_format: str) -> None:
    """List tracked jobs, newest first."""
    from versionwatch.domains.monitoring.repositories.job_repository import JobRepository

    config = _get_config()
    db = _get_db(config)
    jobs = JobRepository(db).list_jobs()

    if output_format == "json":
        _print_json([job.model_dump(mode="json") for job in jobs])
    elif not jobs:
        click.echo("[INFO] No jobs yet")
    else:
        click.echo(f"\n{'ID':<6}{'Status':<10}{'Name':<30}URL")
        for job in jobs:
            click.echo(f"{job.id:<6}{job.status.value:<10}{job.name[:28]:<30}{job.url}")
    db.close()


@click.command()
@click.argument("job_id", type=int)
@click.option("--allow-concurrent", is_flag=True, help="Start even if a run is pending")
def trigger_run(job_id: int, allow_concurrent: bool) -> None:
    """Start a run for a job."""
    from versionwatch.domains.monitoring.services.orchestrator import Orchestrator

    config = _get_config()
    db = _get_db(config)
    with _get_broker(config) as broker:
        orchestrator = Orchestrator(db, broker, run_timeout=config.run_timeout)
        try:
            run = orchestrator.trigger_run(job_id, allow_concurrent=allow_concurrent)
        except PipelineError as exc:
            db.close()
            click.echo(f"[ERROR] {exc}")
            return
    click.echo(f"[SUCCESS] Started run {run.id} for job {job_id}")
    click.echo(f"  deadline: {run.timeout_at.isoformat()}")
    db.close()


@click.command()
@click.option(
    "--stage",
    "stages",
    multiple=True,
    type=click.Choice(["fetch", "parse", "detect"]),
    help="Stage to run (repeatable, default: all)",
)
@click.option("--workers", default=None, type=int, help="Worker threads per stage")
@click.option("--drain", is_flag=True, help="Stop once the queues are empty")
def run_workers(stages: tuple[str, ...], workers: int | None, drain: bool) -> None:
    """Consume pipeline queues."""
    from versionwatch.domains.monitoring.services.pipeline_runner import run_workers as _run

    config = _get_config()
    _get_db(config).close()

    stop_event = threading.Event()
    click.echo("[INFO] Starting stage workers" + (" (drain)" if drain else ", Ctrl+C to stop"))
    try:
        result = _run(
            config,
            stages=list(stages) or None,
            workers=workers,
            drain=drain,
            stop_event=stop_event,
        )
    except KeyboardInterrupt:
        stop_event.set()
        click.echo("\n[INFO] Stopping workers")
        return
    _print_summary("Workers finished", result)


@click.command()
def expire_runs() -> None:
    """Fail pending runs whose deadline has passed."""
    from versionwatch.domains.monitoring.services.orchestrator import Orchestrator

    config = _get_config()
    db = _get_db(config)
    with _get_broker(config) as broker:
        result = Orchestrator(db, broker, run_timeout=config.run_timeout).expire_overdue_runs()
    _print_summary("Overdue runs expired", result)
    db.close()


# --- History ---


@click.command()
@click.argument("job_id", type=int)
@_OUTPUT_FORMAT
def show_runs(job_id: int, output_format: str) -> None:
    """Show the runs of a job."""
    from versionwatch.domains.monitoring.services.history_service import HistoryService

    config = _get_config()
    db = _get_db(config)
    try:
        runs = HistoryService(db, config.scoring_policy()).list_runs(job_id)
    except PipelineError as exc:
        db.close()
        click.echo(f"[ERROR] {exc}")
        return

    if output_format == "json":
        _print_json([run.model_dump(mode="json") for run in runs])
    else:
        click.echo(f"\nRuns for job {job_id}: {len(runs)}")
        for run in runs:
            line = f"  [{run.id}] {run.started_at:%Y-%m-%d %H:%M:%S} {run.status.value}"
            if run.failure_reason:
                line += f" ({run.failure_reason.value}: {run.failure_detail})"
            elif run.analysis_label:
                line += f" v{run.snapshot_version} {run.analysis_label} {run.analysis_score}"
            elif run.snapshot_version:
                line += f" v{run.snapshot_version} {run.analysis_status.value}"
            click.echo(line)
    db.close()


@click.command()
@click.argument("job_id", type=int)
@_OUTPUT_FORMAT
def show_history(job_id: int, output_format: str) -> None:
    """Show the run/version/change timeline of a job."""
    from versionwatch.domains.monitoring.services.history_service import HistoryService

    config = _get_config()
    db = _get_db(config)
    try:
        timeline = HistoryService(db, config.scoring_policy()).history_timeline(job_id)
    except PipelineError as exc:
        db.close()
        click.echo(f"[ERROR] {exc}")
        return

    if output_format == "json":
        _print_json(timeline)
    else:
        click.echo(f"\nHistory for job {job_id}")
        for entry in timeline:
            version = f"v{entry['version']}" if entry["version"] else "-"
            label = entry["change_label"] or entry["failure_reason"] or entry["analysis_status"]
            click.echo(
                f"  run {entry['run_id']:<5} {entry['status']:<10} {version:<6} {label}"
                + (f"  {entry['title']}" if entry["title"] else "")
            )
    db.close()


@click.command()
@click.argument("job_id", type=int)
@_OUTPUT_FORMAT
def show_changes(job_id: int, output_format: str) -> None:
    """Show scored changes for a job."""
    from versionwatch.domains.monitoring.services.history_service import HistoryService

    config = _get_config()
    db = _get_db(config)
    try:
        changes = HistoryService(db, config.scoring_policy()).change_history(job_id)
    except PipelineError as exc:
        db.close()
        click.echo(f"[ERROR] {exc}")
        return

    if output_format == "json":
        _print_json([change.model_dump(mode="json") for change in changes])
    elif not changes:
        click.echo(f"[INFO] No changes recorded for job {job_id}")
    else:
        click.echo(f"\nChanges for job {job_id}: {len(changes)}")
        for change in changes:
            click.echo(
                f"  v{change.previous_version} -> v{change.current_version}: "
                f"{change.change_label} ({change.change_score:.4f}) [{change.scoring_policy}]"
            )
    db.close()


@click.command()
@click.argument("job_id", type=int)
@click.argument("version_a", type=int)
@click.argument("version_b", type=int)
@_OUTPUT_FORMAT
def compare(job_id: int, version_a: int, version_b: int, output_format: str) -> None:
    """Diff two stored versions of a job."""
    from versionwatch.domains.monitoring.services.history_service import HistoryService

    config = _get_config()
    db = _get_db(config)
    try:
        comparison = HistoryService(db, config.scoring_policy()).compare(
            job_id, version_a, version_b
        )
    except PipelineError as exc:
        db.close()
        click.echo(f"[ERROR] {exc}")
        return

    if output_format == "json":
        _print_json(comparison.to_dict())
    else:
        click.echo(f"\nv{version_a} -> v{version_b}: {comparison.label} ({comparison.score:.4f})")
        click.echo(f"  title changed: {comparison.title_changed}")
        click.echo(f"  description changed: {comparison.description_changed}")
        added = ", ".join(comparison.added_words[:20])
        removed = ", ".join(comparison.removed_words[:20])
        click.echo(f"  added words ({len(comparison.added_words)}): {added}")
        click.echo(f"  removed words ({len(comparison.removed_words)}): {removed}")
        for href in comparison.added_links:
            click.echo(f"  + {href}")
        for href in comparison.removed_links:
            click.echo(f"  - {href}")
    db.close()


@click.command()
@click.argument("job_id", type=int)
@_OUTPUT_FORMAT
def job_stats(job_id: int, output_format: str) -> None:
    """Summarize versions, runs and change labels for a job."""
    from versionwatch.domains.monitoring.services.history_service import HistoryService

    config = _get_config()
    db = _get_db(config)
    try:
        stats = HistoryService(db, config.scoring_policy()).job_stats(job_id)
    except PipelineError as exc:
        db.close()
        click.echo(f"[ERROR] {exc}")
        return

    if output_format == "json":
        _print_json(stats)
    else:
        _print_summary(f"Stats for job {job_id}", stats)
    db.close()
