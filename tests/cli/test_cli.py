"""Tests for the review-watch command line."""

from __future__ import annotations

import json
from typing import Any

import pytest
from click.testing import CliRunner

from review_watch.cli.main import cli
from review_watch.exceptions import NotConnectedError
from review_watch.models.records import Job
from review_watch.models.store import ReviewStore
from review_watch.sync.jobs import JobBatchResult
from review_watch.sync.pipeline import SyncReport


def test_enqueue_creates_then_reuses_job():
    runner = CliRunner()

    first = runner.invoke(cli, ["enqueue", "acct-1", "--location", "4"])
    second = runner.invoke(cli, ["enqueue", "acct-1"])

    assert first.exit_code == 0, first.output
    assert json.loads(first.output)["created"] is True
    assert json.loads(second.output)["created"] is False
    jobs = ReviewStore().select(Job)
    assert len(jobs) == 1
    assert jobs[0].payload == {"location_id": 4}


def test_sync_passes_options(monkeypatch: pytest.MonkeyPatch):
    captured: dict[str, Any] = {}

    async def _fake(config, **options):
        captured.update(options)
        report = SyncReport(request_id="cli-1", dry_run=options["dry_run"])
        report.account_errors["acct-2"] = "reauth_required: token_revoked"
        return report

    monkeypatch.setattr("review_watch.cli.main.run_once", _fake)

    result = CliRunner().invoke(cli, ["sync", "--account", "acct-1", "--dry-run", "--budget", "10"])

    assert result.exit_code == 0, result.output
    assert captured == {
        "account_id": "acct-1",
        "location_id": None,
        "dry_run": True,
        "force": False,
        "process_jobs": False,
        "time_budget_seconds": 10.0,
    }
    body = json.loads(result.output)
    assert body["dryRun"] is True
    assert body["accountErrors"] == {"acct-2": "reauth_required: token_revoked"}


def test_sync_location_requires_account():
    result = CliRunner().invoke(cli, ["sync", "--location", "3"])

    assert result.exit_code == 2
    assert "--location requires --account" in result.output


def test_sync_reports_errors(monkeypatch: pytest.MonkeyPatch):
    async def _fake(config, **options):
        raise NotConnectedError("ghost")

    monkeypatch.setattr("review_watch.cli.main.run_once", _fake)

    result = CliRunner().invoke(cli, ["sync", "--account", "ghost"])

    assert result.exit_code == 1
    assert "ghost" in result.output


def test_process_jobs_prints_batch(monkeypatch: pytest.MonkeyPatch):
    async def _fake(config, *, max_jobs=None):
        assert max_jobs == 3
        return JobBatchResult(processed=1)

    monkeypatch.setattr("review_watch.cli.main.process_queue_once", _fake)

    result = CliRunner().invoke(cli, ["process-jobs", "--max-jobs", "3"])

    assert result.exit_code == 0, result.output
    assert json.loads(result.output) == {
        "ok": True,
        "aborted": False,
        "jobs": {"processed": 1, "failed": 0, "skipped": 0},
    }
