"""Per-identity task index endpoint."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter
from starlette.concurrency import run_in_threadpool

from escrow_board_service.routers.helpers import require_registry
from escrow_board_service.schemas import UserTasksResponse

router = APIRouter()


@router.get("/users/{agent_id}/tasks", response_model=UserTasksResponse)
async def get_user_tasks(agent_id: str) -> dict[str, Any]:
    """Task ids the identity took part in, and how many it completed."""
    registry = require_registry()
    task_ids = await run_in_threadpool(registry.get_user_tasks, agent_id)
    completed = await run_in_threadpool(registry.get_completed_count, agent_id)
    return {"agent_id": agent_id, "task_ids": task_ids, "completed_tasks": completed}
