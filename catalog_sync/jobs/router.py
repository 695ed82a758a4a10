"""Two-level task dispatch.

``TaskRouter`` maps a task ``type`` to a handler. The generic
``marketplace.request`` type is served by an ``ActionRouter`` that dispatches a
second time on ``payload["action"]``. Registries are validated at startup so a
deployment missing a handler fails before it claims its first task.
"""
from __future__ import annotations

from typing import Callable, Iterable, Optional

from catalog_sync.jobs.task import Task
from catalog_sync.utils import get_logger

logger = get_logger(__name__)

Handler = Callable[[Task], Optional[str]]


class UnregisteredType(LookupError):
    pass


class UnregisteredAction(LookupError):
    pass


class RouterConfigurationError(RuntimeError):
    pass


class RetryableTaskError(RuntimeError):
    """Raised by a handler when the failure is transient and the task should be retried with backoff."""


class ActionRouter:
    def __init__(self) -> None:
        self._handlers: dict[str, Handler] = {}

    def register(self, action: str, handler: Handler) -> None:
        key = getattr(action, "value", action)
        if key in self._handlers:
            raise RouterConfigurationError(f"Action already registered: {key}")
        self._handlers[key] = handler

    def actions(self) -> list[str]:
        return sorted(self._handlers)

    def __call__(self, task: Task) -> Optional[str]:
        action = task.action
        if not action:
            raise UnregisteredAction(f"Task {task.id} carries no action")
        handler = self._handlers.get(action)
        if handler is None:
            raise UnregisteredAction(f"Unknown action: {action}")
        return handler(task)


class TaskRouter:
    def __init__(self) -> None:
        self._handlers: dict[str, Handler] = {}

    def register(self, type: str, handler: Handler) -> None:
        key = getattr(type, "value", type)
        if key in self._handlers:
            raise RouterConfigurationError(f"Task type already registered: {key}")
        self._handlers[key] = handler

    def types(self) -> list[str]:
        return sorted(self._handlers)

    def actions(self, type: str) -> list[str]:
        handler = self._handlers.get(getattr(type, "value", type))
        return handler.actions() if isinstance(handler, ActionRouter) else []

    def knows(self, type: str, action: Optional[str] = None) -> bool:
        handler = self._handlers.get(type)
        if handler is None:
            return False
        if isinstance(handler, ActionRouter):
            return action in handler.actions()
        return True

    def dispatch(self, task: Task) -> Optional[str]:
        handler = self._handlers.get(task.type)
        if handler is None:
            raise UnregisteredType(f"Unknown task type: {task.type}")
        return handler(task)

    def validate(self, types: Iterable[str] = (), actions: dict[str, Iterable[str]] | None = None) -> None:
        """Raise ``RouterConfigurationError`` unless every listed type (and action) has a handler."""
        missing = [getattr(t, "value", t) for t in types if getattr(t, "value", t) not in self._handlers]
        for type, wanted in (actions or {}).items():
            known = set(self.actions(type))
            missing.extend(
                f"{getattr(type, 'value', type)}:{getattr(a, 'value', a)}"
                for a in wanted
                if getattr(a, "value", a) not in known
            )
        if missing:
            raise RouterConfigurationError(f"Missing task handlers: {', '.join(missing)}")
        logger.info("Task router validated", types=self.types())


def is_retryable(exc: BaseException) -> bool:
    if isinstance(exc, RetryableTaskError):
        return True
    return getattr(exc, "retryable", False) is True


__all__ = [
    "TaskRouter",
    "ActionRouter",
    "Handler",
    "UnregisteredType",
    "UnregisteredAction",
    "RouterConfigurationError",
    "RetryableTaskError",
    "is_retryable",
]
