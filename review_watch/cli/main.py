"""Command line entry point for manual sync runs."""
import asyncio
import json
from typing import Any

import click

from review_watch.exceptions import ReviewWatchError
from review_watch.sync.jobs import enqueue_sync_job
from review_watch.sync.pipeline import build_store, process_queue_once, run_once
from review_watch.utils.config import build_sync_config


def _emit(payload: dict[str, Any]) -> None:
    click.echo(json.dumps(payload, indent=2, sort_keys=True, default=str))


@click.group()
def cli() -> None:
    """Review sync and alerting operations."""


@cli.command()
@click.option("--account", "account_id", default=None, help="Only sync this account")
@click.option("--location", "location_id", type=int, default=None, help="Only sync this location id")
@click.option("--dry-run", is_flag=True, help="Fetch and classify without writing anything")
@click.option("--force", is_flag=True, help="Ignore the minimum re-sync interval")
@click.option("--process-jobs/--no-process-jobs", default=False, help="Drain the job queue first")
@click.option("--budget", type=float, default=None, help="Wall-clock budget in seconds")
def sync(
    account_id: str | None,
    location_id: int | None,
    dry_run: bool,
    force: bool,
    process_jobs: bool,
    budget: float | None,
) -> None:
    """
    Sync reviews for one account or every connected account.

    Examples:

        # Everything, within the default budget
        review-watch sync

        # One location, preview only
        review-watch sync --account acct-1 --location 3 --dry-run
    """
    if location_id is not None and account_id is None:
        raise click.UsageError("--location requires --account")

    try:
        report = asyncio.run(
            run_once(
                build_sync_config(),
                account_id=account_id,
                location_id=location_id,
                dry_run=dry_run,
                force=force,
                process_jobs=process_jobs,
                time_budget_seconds=budget,
            )
        )
    except ReviewWatchError as exc:
        click.echo(f"Error: {exc}", err=True)
        raise SystemExit(1)

    body = report.to_dict()
    if report.account_errors:
        body["accountErrors"] = report.account_errors
    _emit(body)


@cli.command("process-jobs")
@click.option("--max-jobs", type=int, default=None, help="Upper bound on jobs claimed")
def process_jobs_command(max_jobs: int | None) -> None:
    """Claim and run queued sync jobs once."""
    result = asyncio.run(process_queue_once(build_sync_config(), max_jobs=max_jobs))
    _emit({"ok": True, "aborted": result.aborted, "jobs": result.as_dict()})


@cli.command()
@click.argument("account_id")
@click.option("--location", "location_id", type=int, default=None, help="Restrict the job to one location")
def enqueue(account_id: str, location_id: int | None) -> None:
    """Queue a sync job for ACCOUNT_ID unless one is already active."""
    config = build_sync_config()
    try:
        job, created = enqueue_sync_job(build_store(config), account_id, location_id=location_id)
    except ReviewWatchError as exc:
        click.echo(f"Error: {exc}", err=True)
        raise SystemExit(1)
    _emit({"ok": True, "created": created, "job": {"id": job.id, "status": job.status}})


if __name__ == "__main__":
    cli()
