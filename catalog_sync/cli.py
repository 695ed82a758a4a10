"""CLI entrypoint for catalog-sync."""
from __future__ import annotations

import json
import os

import click

from catalog_sync.jobs.scheduler import EnqueueLoop
from catalog_sync.jobs.task import TaskType
from catalog_sync.jobs.worker import RunResult
from catalog_sync.runtime import Runtime, build_runtime
from catalog_sync.utils import get_logger, setup_logging

logger = get_logger(__name__)


def _runtime(ctx: click.Context) -> Runtime:
    obj = ctx.ensure_object(dict)
    if "runtime" not in obj:
        queue_settings = {"driver": obj["queue_driver"]} if obj.get("queue_driver") else None
        obj["runtime"] = build_runtime(obj.get("database_url"), queue_settings=queue_settings)
    return obj["runtime"]


@click.group()
@click.option("--database-url", envvar="DATABASE_URL", default=None, help="SQLAlchemy database URL.")
@click.option(
    "--queue-driver",
    type=click.Choice(["db", "file"]),
    default=None,
    help="Queue backend; defaults to QUEUE_DRIVER.",
)
@click.option("--log-level", default=lambda: os.getenv("LOG_LEVEL", "INFO"), show_default="INFO")
@click.pass_context
def cli(ctx: click.Context, database_url: str | None, queue_driver: str | None, log_level: str) -> None:
    """Catalog sync: durable task queue and marketplace offer reconciliation."""
    setup_logging(log_level=log_level, log_file=os.getenv("LOG_FILE"), enable_console=True)
    ctx.ensure_object(dict)
    ctx.obj["database_url"] = database_url
    ctx.obj["queue_driver"] = queue_driver


@cli.command("init-db")
@click.pass_context
def init_db_command(ctx: click.Context) -> None:
    """Create all tables."""
    _runtime(ctx)
    click.echo("database initialised")


@cli.command("worker")
@click.pass_context
def worker_once(ctx: click.Context) -> None:
    """Process at most one task and exit (status 1 when the task failed)."""
    outcome = _runtime(ctx).worker().run_once()
    click.echo(outcome.value)
    if outcome == RunResult.FAILED:
        ctx.exit(1)


@cli.command("worker-loop")
@click.option("--max-tasks", type=click.IntRange(min=1), default=None, help="Exit after this many tasks (or an empty queue).")
@click.pass_context
def worker_loop(ctx: click.Context, max_tasks: int | None) -> None:
    """Process tasks until interrupted."""
    worker = _runtime(ctx).worker()
    try:
        handled = worker.run_forever(max_tasks=max_tasks)
    except KeyboardInterrupt:
        logger.info("Worker loop interrupted")
        worker.stop()
        handled = worker.processed + worker.failed
    click.echo(f"handled={handled} processed={worker.processed} failed={worker.failed}")


@cli.command("enqueue-loop")
@click.option("--iterations", type=click.IntRange(min=1), default=None, help="Stop after this many iterations.")
@click.pass_context
def enqueue_loop(ctx: click.Context, iterations: int | None) -> None:
    """Keep a sync batch flowing while the queue is nearly drained."""
    loop = EnqueueLoop(_runtime(ctx).queue)
    try:
        enqueued = loop.run(iterations=iterations)
    except KeyboardInterrupt:
        logger.info("Enqueue loop interrupted")
        loop.stop()
        return
    click.echo(f"enqueued={enqueued}")


@cli.command("enqueue")
@click.argument("task_type")
@click.option("--action", default=None, help="Business action for marketplace.request tasks.")
@click.option("--payload", default="{}", show_default=True, help="JSON object payload.")
@click.option("--delay", type=click.FloatRange(min=0), default=0.0, show_default=True, help="Delay in seconds.")
@click.pass_context
def enqueue(ctx: click.Context, task_type: str, action: str | None, payload: str, delay: float) -> None:
    """Enqueue a single task."""
    try:
        data = json.loads(payload)
    except ValueError as e:
        raise click.BadParameter(f"invalid JSON: {e}", param_hint="--payload")
    if not isinstance(data, dict):
        raise click.BadParameter("payload must be a JSON object", param_hint="--payload")
    if action:
        data["action"] = action

    runtime = _runtime(ctx)
    if not runtime.router.knows(task_type, data.get("action")):
        if task_type == TaskType.MARKETPLACE_REQUEST.value:
            raise click.UsageError(f"Unknown action: {data.get('action')}")
        raise click.UsageError(f"Unknown task type: {task_type}")
    task_id = runtime.queue.enqueue(task_type, data, delay_seconds=delay)
    click.echo(task_id)


@cli.command("queue-status")
@click.option("--limit", type=click.IntRange(min=1, max=200), default=10, show_default=True)
@click.pass_context
def queue_status(ctx: click.Context, limit: int) -> None:
    """Show queue counts and the most recent tasks."""
    queue = _runtime(ctx).queue
    snapshot = queue.snapshot()
    click.echo(f"backend={snapshot['backend']} depth={snapshot['depth']}")
    for status, count in snapshot["counts"].items():
        click.echo(f"{status}: {count}")
    for task in queue.recent(limit):
        click.echo(f"{task.id} {task.status.value} {task.type} {task.action or '-'} attempts={task.attempts}")


@cli.command("release-stale")
@click.option("--lease-seconds", type=click.IntRange(min=0), default=None)
@click.pass_context
def release_stale(ctx: click.Context, lease_seconds: int | None) -> None:
    """Return expired processing reservations to pending."""
    click.echo(f"released={_runtime(ctx).queue.release_stale(lease_seconds)}")


@cli.command("serve")
@click.option("--host", default="0.0.0.0", show_default=True)
@click.option("--port", type=int, default=8000, show_default=True)
def serve(host: str, port: int) -> None:
    """Run the HTTP API."""
    import uvicorn

    uvicorn.run("catalog_sync.main:app", host=host, port=port, log_level="info", access_log=True)


if __name__ == "__main__":
    cli()
