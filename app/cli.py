"""Define the CLI commands for the app."""

import json
import os
import re

import click
import redis
from flask import current_app
from flask.cli import with_appcontext
from rq import Queue
from sqlalchemy import inspect, text
from sqlalchemy.exc import SQLAlchemyError

from app.database import db
from consentbit.queue.processor import run_processing_cycle
from consentbit.queue.refunds import run_refund_sweep
from consentbit.queue.store import reclaim_stuck_jobs
from consentbit.workers import run_worker


def _latest_migration_version() -> str:
    """Find the latest migration version in the migrations directory."""
    versions_dir = os.path.join("migrations", "versions")
    latest_version = "00000"
    if os.path.exists(versions_dir):
        for filename in os.listdir(versions_dir):
            match = re.match(r"^(\d+).*\.py$", filename)
            if match and match.group(1) > latest_version:
                latest_version = match.group(1)
    return latest_version


@click.command("init-db")
@with_appcontext
def init_db_command():
    """Create the tables and stamp the latest migration version."""
    inspector = inspect(db.engine)
    if inspector.has_table("alembic_version"):
        version = db.session.execute(text("SELECT version_num FROM alembic_version")).fetchone()
        if version:
            click.echo(f"Database already initialized at version {version[0]}. Skipping.")
            return

    try:
        db.create_all()
        click.echo("Created database tables.")

        if not inspector.has_table("alembic_version"):
            db.session.execute(
                text("CREATE TABLE alembic_version (version_num VARCHAR(32) NOT NULL)")
            )
        latest_version = _latest_migration_version()
        db.session.execute(
            text("INSERT INTO alembic_version (version_num) VALUES (:version)"),
            {"version": latest_version},
        )
        db.session.commit()
        click.echo(f"Set alembic_version to '{latest_version}'")
    except SQLAlchemyError as e:
        db.session.rollback()
        raise click.ClickException(f"Error initializing the database: {e}") from e

    click.echo("Initialized the database.")


@click.command("process-queue")
@click.option("--limit", type=int, default=None, help="Maximum number of jobs to process.")
@with_appcontext
def process_queue_command(limit):
    """Run one processing cycle of the license provisioning queue."""
    summary = run_processing_cycle(limit=limit)
    click.echo(json.dumps(summary.model_dump()))


@click.command("refund-sweep")
@click.option("--limit", type=int, default=None, help="Maximum number of jobs to refund.")
@with_appcontext
def refund_sweep_command(limit):
    """Refund the payments of permanently failed provisioning jobs."""
    summary = run_refund_sweep(limit=limit)
    click.echo(json.dumps(summary.model_dump()))


@click.command("reclaim-stuck")
@click.option(
    "--stale-after",
    type=int,
    default=None,
    help="Seconds a job may stay in processing, defaults to QUEUE_STALE_SECONDS.",
)
@with_appcontext
def reclaim_stuck_command(stale_after):
    """Return jobs stuck in processing to pending."""
    reclaimed = reclaim_stuck_jobs(stale_after=stale_after)
    click.echo(f"Reclaimed {reclaimed} job(s).")


def _enqueue_task(task: str, **kwargs) -> str:
    """Enqueue a task on the provisioning queue and return the RQ job id."""
    redis_url = current_app.config.get("REDIS_URL")
    if not redis_url:
        raise click.ClickException("REDIS_URL is not configured")
    queue = Queue(
        current_app.config.get("REDIS_QUEUE_PROVISIONING", "provisioning_queue"),
        connection=redis.from_url(redis_url),
    )
    return queue.enqueue(task, **kwargs).id


@click.command("enqueue-cycle")
@click.option("--limit", type=int, default=None, help="Maximum number of jobs to process.")
@click.option("--refunds", is_flag=True, help="Also enqueue a refund sweep.")
@with_appcontext
def enqueue_cycle_command(limit, refunds):
    """Hand a processing cycle (and optionally a refund sweep) to the RQ workers."""
    job_id = _enqueue_task("app.tasks.process_queue_task", limit=limit)
    click.echo(f"Enqueued processing cycle {job_id}")
    if refunds:
        job_id = _enqueue_task("app.tasks.refund_sweep_task", limit=limit)
        click.echo(f"Enqueued refund sweep {job_id}")


@click.command("run-worker")
@click.option("--no-scheduler", is_flag=True, help="Do not run the RQ scheduler.")
@with_appcontext
def run_worker_command(no_scheduler):
    """Run an RQ worker for the provisioning and default queues."""
    redis_url = current_app.config.get("REDIS_URL")
    if not redis_url:
        raise click.ClickException("REDIS_URL is not configured")
    queues = [
        current_app.config.get("REDIS_QUEUE_PROVISIONING", "provisioning_queue"),
        current_app.config.get("REDIS_QUEUE_DEFAULT", "default"),
    ]
    run_worker(redis_url, queues, with_scheduler=not no_scheduler)
