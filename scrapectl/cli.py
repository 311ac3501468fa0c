import asyncio
import json
import logging
import click

from .automation import TargetAutomationController
from .browser import PlaywrightDriver
from .config import Settings
from .db import DB_FILE, connect_db, init_db
from .errors import ScrapeCtlError
from .orchestrator import Orchestrator
from .repository import (
    add_target, cleanup_old_jobs, count_jobs, delete_job, get_config, get_job,
    list_jobs, list_targets, remove_target, set_config, set_target_enabled,
)
from .models import JOB_STATUSES


def open_db(ctx):
    return init_db(connect_db(ctx.obj["db"]))


def fail(e):
    click.secho(f"Error: {e}", fg="red")
    raise SystemExit(1)


def build_orchestrator(conn):
    settings = Settings.from_config(get_config(conn))
    driver = PlaywrightDriver(headless=settings.headless, extractor_script=settings.extractor_script)
    automation = TargetAutomationController(driver, settings)
    return Orchestrator(conn, automation, settings=settings)


def orchestrate(ctx, action, wait=True):
    """Run ``action(orchestrator)`` inside an event loop, then wait for any job it launched."""
    conn = open_db(ctx)

    async def main():
        orch = build_orchestrator(conn)
        try:
            result = action(orch)
            if wait and isinstance(result, str) and orch.is_executing(result):
                click.secho(f"Job {result} running. Press Ctrl+C to stop…", fg="cyan")
                await orch.wait(result)
            return result
        finally:
            await orch.close()

    try:
        return asyncio.run(main())
    except (ScrapeCtlError, ValueError) as e:
        fail(e)
    except KeyboardInterrupt:
        click.secho("Interrupted. The job stays running; `scrapectl serve` picks it up again.", fg="yellow")
        raise SystemExit(130)
    finally:
        conn.close()


def echo_job_summary(job):
    click.echo(
        f"{job.id} | {job.status:<9} | {job.current_index + 1 if job.total_targets else 0}/{job.total_targets} "
        f"| ok={job.success_count} failed={job.failed_count} | created={job.created_at}"
        + (f" | error={job.error}" if job.error else "")
    )


@click.group(help="scrapectl — unattended group page scraping jobs")
@click.option("--db", default=DB_FILE, show_default=True, envvar="SCRAPECTL_DB", help="SQLite database path")
@click.option("-v", "--verbose", is_flag=True, help="Debug logging")
@click.pass_context
def cli(ctx, db, verbose):
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        force=True,
    )
    ctx.obj = {"db": db}
    # Ensure DB/schema exist before any command runs
    conn = open_db(ctx)
    conn.close()


# ---------- Targets ----------
@cli.group("targets", help="Manage scrape targets")
def targets_group():
    pass


@targets_group.command("add")
@click.option("--id", "target_id", required=True, help="Target ID")
@click.option("--url", required=True, help="Page URL")
@click.option("--name", default="", help="Display name (defaults to the id)")
@click.option("--disabled", is_flag=True, help="Add without enabling")
@click.pass_context
def targets_add(ctx, target_id, url, name, disabled):
    conn = open_db(ctx)
    try:
        t = add_target(conn, target_id=target_id, url=url, name=name, enabled=not disabled)
        click.secho(f"Added target {t.id} -> {t.url}", fg="green")
    except ValueError as e:
        fail(e)
    finally:
        conn.close()


@targets_group.command("list")
@click.pass_context
def targets_list(ctx):
    conn = open_db(ctx)
    try:
        rows = list_targets(conn)
    finally:
        conn.close()

    if not rows:
        click.echo("No targets.")
        return

    for t in rows:
        state = "enabled" if t.enabled else "disabled"
        click.echo(f"{t.id:>20} | {state:<8} | {t.name} | {t.url} | last_scraped={t.last_scraped_at}")


def _toggle(ctx, target_id, enabled):
    conn = open_db(ctx)
    try:
        if not set_target_enabled(conn, target_id, enabled):
            fail(f"Target {target_id} not found.")
        click.secho(f"Target {target_id} {'enabled' if enabled else 'disabled'}.", fg="green")
    finally:
        conn.close()


@targets_group.command("enable")
@click.argument("target_id")
@click.pass_context
def targets_enable(ctx, target_id):
    _toggle(ctx, target_id, True)


@targets_group.command("disable")
@click.argument("target_id")
@click.pass_context
def targets_disable(ctx, target_id):
    _toggle(ctx, target_id, False)


@targets_group.command("remove")
@click.argument("target_id")
@click.pass_context
def targets_remove(ctx, target_id):
    conn = open_db(ctx)
    try:
        if not remove_target(conn, target_id):
            fail(f"Target {target_id} not found.")
        click.secho(f"Removed target {target_id}.", fg="green")
    finally:
        conn.close()


# ---------- Running jobs ----------
@cli.command("run", help="Resume an interrupted job, or start a new one, and wait for it")
@click.pass_context
def run_cmd(ctx):
    job_id = orchestrate(ctx, lambda o: o.resume_interrupted_jobs() or o.start())
    click.secho(f"Job {job_id} finished.", fg="green")


@cli.command("resume", help="Resume a paused or failed job and wait for it")
@click.argument("job_id")
@click.pass_context
def resume_cmd(ctx, job_id):
    orchestrate(ctx, lambda o: o.resume(job_id))
    click.secho(f"Job {job_id} finished.", fg="green")


@cli.command("serve", help="Startup hook: continue a job interrupted by a crash")
@click.pass_context
def serve_cmd(ctx):
    job_id = orchestrate(ctx, lambda o: o.resume_interrupted_jobs())
    if job_id:
        click.secho(f"Job {job_id} finished.", fg="green")
    else:
        click.echo("No interrupted job.")


@cli.command("cancel", help="Cancel a running job")
@click.argument("job_id")
@click.pass_context
def cancel_cmd(ctx, job_id):
    orchestrate(ctx, lambda o: o.cancel(job_id), wait=False)
    click.secho(f"Job {job_id} cancelled.", fg="yellow")


@cli.command("pause", help="Pause a running job after its current target")
@click.argument("job_id")
@click.pass_context
def pause_cmd(ctx, job_id):
    orchestrate(ctx, lambda o: o.pause(job_id), wait=False)
    click.secho(f"Job {job_id} paused.", fg="yellow")


# ---------- Jobs ----------
@cli.command("list")
@click.option("--status", type=click.Choice(JOB_STATUSES), default=None)
@click.pass_context
def list_cmd(ctx, status):
    conn = open_db(ctx)
    try:
        jobs = list_jobs(conn, status=status)
    finally:
        conn.close()

    if not jobs:
        click.echo("No jobs.")
        return

    for job in jobs:
        echo_job_summary(job)


@cli.command("show")
@click.argument("job_id")
@click.pass_context
def show_cmd(ctx, job_id):
    conn = open_db(ctx)
    try:
        job = get_job(conn, job_id)
    finally:
        conn.close()
    if job is None:
        fail(f"Job {job_id} not found.")
    click.echo(json.dumps(job.to_dict(), indent=2))


@cli.command("status")
@click.pass_context
def status_cmd(ctx):
    conn = open_db(ctx)
    try:
        click.echo(json.dumps(count_jobs(conn), indent=2))
    finally:
        conn.close()


@cli.command("delete")
@click.argument("job_id")
@click.pass_context
def delete_cmd(ctx, job_id):
    conn = open_db(ctx)
    try:
        if not delete_job(conn, job_id):
            fail(f"Job {job_id} not found.")
        click.secho(f"Deleted job {job_id}.", fg="green")
    finally:
        conn.close()


@cli.command("cleanup", help="Keep only the most recent completed jobs")
@click.pass_context
def cleanup_cmd(ctx):
    conn = open_db(ctx)
    try:
        keep = Settings.from_config(get_config(conn)).max_completed_jobs
        removed = cleanup_old_jobs(conn, keep=keep)
        click.secho(f"Removed {removed} old job(s).", fg="green")
    finally:
        conn.close()


# ---------- Config ----------
@cli.group("config", help="Configuration")
def config_group():
    pass


@config_group.command("get")
@click.pass_context
def config_get(ctx):
    conn = open_db(ctx)
    try:
        click.echo(json.dumps(get_config(conn), indent=2))
    finally:
        conn.close()


@config_group.command("set")
@click.argument("key")
@click.argument("value")
@click.pass_context
def config_set_cmd(ctx, key, value):
    conn = open_db(ctx)
    try:
        set_config(conn, key, value)
        click.secho(f"Config updated: {key}={value}", fg="green")
    except ValueError as e:
        fail(e)
    finally:
        conn.close()


def main():
    cli()
