"""Offer export: request a CSV report, poll until ready, then download it."""
from __future__ import annotations

from pathlib import Path
from typing import Optional

from catalog_sync.jobs.task import Action, NextStep, Task
from catalog_sync.tasks.context import TaskContext
from catalog_sync.utils import get_logger, log_business_event

logger = get_logger(__name__)


def handle_export_request(ctx: TaskContext, task: Task) -> Optional[str]:
    process_id = ctx.api.request_export()
    ctx.request(
        Action.PROCESS_POLL,
        process_id=process_id,
        on_success=NextStep.request(Action.OFFERS_EXPORT_FETCH).to_dict(),
    )
    logger.info("Offer export requested", process_id=process_id)
    return f"process_id={process_id}"


def handle_export_fetch(ctx: TaskContext, task: Task) -> Optional[str]:
    report_id = task.payload.get("entity_id") or task.payload.get("report_id")
    if not report_id:
        raise ValueError("Export report id is required")
    content = ctx.api.fetch_export(str(report_id))

    export_dir = Path(str(ctx.sync_settings.get("export_dir", "./var/export/offers")))
    export_dir.mkdir(parents=True, exist_ok=True)
    path = export_dir / f"offers_{report_id}.csv"
    path.write_text(content, encoding="utf-8")

    size = path.stat().st_size
    lines = len(content.splitlines())
    log_business_event("offer_export_saved", {"report_id": report_id, "path": str(path), "bytes": size, "lines": lines},
                       task_id=task.id)
    return f"path={path} bytes={size} lines={lines}"
