"""Liveness task: proves the enqueue -> reserve -> ack path end to end."""
from __future__ import annotations

from typing import Optional

from catalog_sync.jobs.task import Task
from catalog_sync.tasks.context import TaskContext
from catalog_sync.utils import get_logger

logger = get_logger(__name__)


def handle_ping(ctx: TaskContext, task: Task) -> Optional[str]:
    message = str(task.payload.get("message") or "pong")
    logger.info("Ping task handled", task_id=task.id, message=message)
    return message
