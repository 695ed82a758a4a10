"""Task handler registry."""
from __future__ import annotations

from functools import partial

from catalog_sync.jobs.router import ActionRouter, TaskRouter
from catalog_sync.jobs.task import Action, TaskType
from catalog_sync.tasks import exports, offers, processes
from catalog_sync.tasks.context import TaskContext
from catalog_sync.tasks.ping import handle_ping

ACTION_HANDLERS = {
    Action.OFFER_SYNC_BATCH: offers.handle_sync_batch,
    Action.OFFER_UPSERT_BATCH: offers.handle_upsert_batch,
    Action.OFFER_UPSERT: offers.handle_upsert,
    Action.OFFER_CREATE: offers.handle_create,
    Action.OFFER_CREATE_STORE: offers.handle_create_store,
    Action.OFFER_UPDATE_CORE: offers.handle_update_core,
    Action.OFFER_UPDATE_PRICE: offers.handle_update_price,
    Action.OFFER_UPDATE_STOCK: offers.handle_update_stock,
    Action.OFFER_MAP_TOUCH: offers.handle_map_touch,
    Action.OFFER_SYNC_SUCCESS: offers.handle_sync_success,
    Action.OFFER_SYNC_ERROR: offers.handle_sync_error,
    Action.PROCESS_STATUS_CHECK: processes.handle_status_check,
    Action.PROCESS_POLL: processes.handle_poll,
    Action.OFFERS_EXPORT_REQUEST: exports.handle_export_request,
    Action.OFFERS_EXPORT_FETCH: exports.handle_export_fetch,
}


def build_router(ctx: TaskContext) -> TaskRouter:
    """Wire every handler to ``ctx`` and validate that all task types and actions are covered."""
    actions = ActionRouter()
    for action, handler in ACTION_HANDLERS.items():
        actions.register(action, partial(handler, ctx))

    router = TaskRouter()
    router.register(TaskType.PING, partial(handle_ping, ctx))
    router.register(TaskType.MARKETPLACE_REQUEST, actions)
    router.validate(list(TaskType), {TaskType.MARKETPLACE_REQUEST.value: list(Action)})
    return router


__all__ = ["build_router", "TaskContext", "ACTION_HANDLERS"]
