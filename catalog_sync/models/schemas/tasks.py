"""
Pydantic schemas for queue task inspection and manual enqueueing.
"""
from datetime import datetime
from typing import Optional, Dict, Any
from pydantic import BaseModel, Field


class TaskEnqueue(BaseModel):
    """Manual enqueue request. ``action`` is required for ``marketplace.request`` tasks."""
    type: str = Field(description="Task type, e.g. 'ping' or 'marketplace.request'")
    action: Optional[str] = Field(None, description="Business step for marketplace.request tasks")
    payload: Dict[str, Any] = Field(default_factory=dict)
    delay_seconds: float = Field(0, ge=0, description="Seconds before the task becomes available")


class TaskRead(BaseModel):
    id: str
    type: str
    action: Optional[str] = None
    status: str
    attempts: int
    payload: Dict[str, Any]
    created_at: Optional[datetime] = None
    available_at: Optional[datetime] = None
    reserved_at: Optional[datetime] = None
    error: Optional[str] = None
    info: Optional[str] = None

    @classmethod
    def from_task(cls, task) -> "TaskRead":
        return cls(
            id=task.id,
            type=task.type,
            action=task.action,
            status=task.status.value,
            attempts=task.attempts,
            payload=task.payload,
            created_at=task.created_at,
            available_at=task.available_at,
            reserved_at=task.reserved_at,
            error=task.error,
            info=task.info,
        )
