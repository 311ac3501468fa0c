"""
CLI smoke tests for scrapectl
-----------------------------
Validates:
1. Target registry commands
2. Job listing / inspection / deletion
3. Configuration get and set
4. Orchestrator errors surface as exit code 1
"""

import json

import pytest
from click.testing import CliRunner

from scrapectl.cli import cli
from scrapectl.db import connect_db, init_db
from scrapectl.models import COMPLETED, RUNNING
from scrapectl.repository import create_job, list_targets, update_job


@pytest.fixture
def db_path(tmp_path):
    return str(tmp_path / "scrape.db")


def run(db_path, *args):
    result = CliRunner().invoke(cli, ["--db", db_path, *args])
    return result


def test_targets_flow(db_path):
    assert run(db_path, "targets", "list").output.strip() == "No targets."

    res = run(db_path, "targets", "add", "--id", "g1", "--url", "https://example.com/groups/g1", "--name", "Group 1")
    assert res.exit_code == 0, res.output
    assert "Added target g1" in res.output

    dup = run(db_path, "targets", "add", "--id", "g1", "--url", "https://example.com/groups/g1")
    assert dup.exit_code == 1
    assert "already exists" in dup.output

    assert run(db_path, "targets", "disable", "g1").exit_code == 0
    listing = run(db_path, "targets", "list").output
    assert "g1" in listing and "disabled" in listing

    assert run(db_path, "targets", "enable", "nope").exit_code == 1
    assert run(db_path, "targets", "remove", "g1").exit_code == 0

    conn = connect_db(db_path)
    try:
        assert list_targets(conn) == []
    finally:
        conn.close()


def test_jobs_listing_and_status(db_path):
    assert run(db_path, "list").output.strip() == "No jobs."

    run(db_path, "targets", "add", "--id", "g1", "--url", "https://example.com/groups/g1")
    conn = init_db(connect_db(db_path))
    try:
        job = create_job(conn, list_targets(conn))
        update_job(conn, job.id, status=COMPLETED, completed_at="2025-01-01T00:00:00Z")
    finally:
        conn.close()

    listing = run(db_path, "list", "--status", "completed").output
    assert job.id in listing

    shown = json.loads(run(db_path, "show", job.id).output)
    assert shown["status"] == COMPLETED
    assert shown["target_results"][0]["target_id"] == "g1"

    stats = json.loads(run(db_path, "status").output)
    assert stats[COMPLETED] == 1

    assert run(db_path, "show", "missing").exit_code == 1
    assert "Removed 0 old job(s)." in run(db_path, "cleanup").output
    assert run(db_path, "delete", job.id).exit_code == 0
    assert run(db_path, "delete", job.id).exit_code == 1


def test_config_get_and_set(db_path):
    cfg = json.loads(run(db_path, "config", "get").output)
    assert cfg["timeout_seconds"] == "30"

    assert run(db_path, "config", "set", "inter_target_delay", "5s").exit_code == 0
    assert json.loads(run(db_path, "config", "get").output)["inter_target_delay"] == "5s"

    bad = run(db_path, "config", "set", "backoff_base", "3")
    assert bad.exit_code == 1
    assert "Allowed keys" in bad.output


def test_run_without_targets_fails(db_path):
    res = run(db_path, "run")
    assert res.exit_code == 1
    assert "No enabled targets" in res.output


def test_cancel_from_cli(db_path):
    run(db_path, "targets", "add", "--id", "g1", "--url", "https://example.com/groups/g1")
    conn = init_db(connect_db(db_path))
    try:
        job = create_job(conn, list_targets(conn))
        update_job(conn, job.id, status=RUNNING)
    finally:
        conn.close()

    res = run(db_path, "cancel", job.id)
    assert res.exit_code == 0, res.output
    assert json.loads(run(db_path, "show", job.id).output)["status"] == "cancelled"

    again = run(db_path, "cancel", job.id)
    assert again.exit_code == 1
    assert "Cannot cancel job with status: cancelled" in again.output
