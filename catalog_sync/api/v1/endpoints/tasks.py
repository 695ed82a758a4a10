"""
Queue inspection and manual task enqueueing endpoints.
"""
from typing import Optional
from fastapi import APIRouter, Depends, HTTPException, Query, Request
import time
from catalog_sync.api.deps import get_queue, get_router
from catalog_sync.jobs.queue import QueueBackend
from catalog_sync.jobs.router import TaskRouter
from catalog_sync.jobs.task import TaskType
from catalog_sync.models.schemas.base import ResponseBase
from catalog_sync.models.schemas.tasks import TaskEnqueue, TaskRead
from catalog_sync.utils import get_logger, log_business_event, log_performance

router = APIRouter()
logger = get_logger(__name__)


@router.get(
    "/status",
    response_model=ResponseBase,
    summary="Queue depth, per-status counts and most recent tasks"
)
async def queue_status(
    request: Request,
    limit: int = Query(10, ge=1, le=200),
    queue: QueueBackend = Depends(get_queue)
) -> ResponseBase:
    start_time = time.time()
    snapshot = queue.snapshot()
    recent = [TaskRead.from_task(t).model_dump(mode="json") for t in queue.recent(limit)]
    log_performance("queue_status", (time.time() - start_time) * 1000, {"limit": limit})
    return ResponseBase(message="Queue status", data={**snapshot, "recent": recent})


@router.post(
    "/release-stale",
    response_model=ResponseBase,
    summary="Return expired processing reservations to pending"
)
async def release_stale(
    request: Request,
    lease_seconds: Optional[int] = Query(None, ge=0),
    queue: QueueBackend = Depends(get_queue)
) -> ResponseBase:
    released = queue.release_stale(lease_seconds)
    logger.info("Stale reservations released via API", count=released, lease_seconds=lease_seconds)
    return ResponseBase(message=f"Released {released} stale task(s)", data={"released": released})


@router.post(
    "",
    response_model=ResponseBase,
    status_code=201,
    summary="Enqueue a task"
)
async def enqueue_task(
    body: TaskEnqueue,
    request: Request,
    queue: QueueBackend = Depends(get_queue),
    task_router: TaskRouter = Depends(get_router)
) -> ResponseBase:
    """Enqueue a task after checking that a handler exists for its type (and action)."""
    request_id = getattr(request.state, "request_id", None)
    payload = dict(body.payload)
    if body.action:
        payload["action"] = body.action
    action = payload.get("action")

    if not task_router.knows(body.type, action):
        detail = f"Unknown task type: {body.type}"
        if body.type == TaskType.MARKETPLACE_REQUEST.value:
            detail = f"Unknown action: {action}"
        raise HTTPException(status_code=400, detail=detail)

    task_id = queue.enqueue(body.type, payload, delay_seconds=body.delay_seconds)
    log_business_event(
        "task_enqueued_manually",
        {"type": body.type, "action": action, "delay_seconds": body.delay_seconds},
        task_id=task_id,
        request_id=request_id,
    )
    return ResponseBase(message="Task enqueued", data={"id": task_id, "type": body.type, "action": action})


@router.get(
    "/{task_id}",
    response_model=ResponseBase,
    summary="Get a single task"
)
async def get_task(
    task_id: str,
    queue: QueueBackend = Depends(get_queue)
) -> ResponseBase:
    task = queue.get(task_id)
    if task is None:
        raise HTTPException(status_code=404, detail=f"Task {task_id} not found")
    return ResponseBase(data=TaskRead.from_task(task).model_dump(mode="json"))
