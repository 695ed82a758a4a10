"""
API v1 router initialization and setup.
"""
from fastapi import APIRouter
from .endpoints import tasks, sync

api_router = APIRouter()

api_router.include_router(
    tasks.router,
    prefix="/tasks",
    tags=["tasks"]
)

api_router.include_router(
    sync.router,
    prefix="/sync",
    tags=["sync"]
)
