"""Task lifecycle endpoints."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool

from escrow_board_service.core.exceptions import ServiceError
from escrow_board_service.routers.helpers import (
    extract_token,
    parse_int_query,
    parse_json_body,
    parse_task_id,
    require_fields,
    require_registry,
    verify_action,
)
from escrow_board_service.schemas import TaskListResponse, TaskResponse, TotalTasksResponse

if TYPE_CHECKING:
    from collections.abc import Callable

router = APIRouter()


async def _task_action(
    request: Request,
    raw_task_id: str,
    action: str,
    operation: Callable[[int, str], dict[str, Any]],
) -> JSONResponse:
    task_id = parse_task_id(raw_task_id)
    body = await request.body()
    data = parse_json_body(body)
    token = extract_token(data, "token")

    caller, payload = await verify_action(token, action)

    payload_task_id = payload.get("task_id")
    if payload_task_id is not None and payload_task_id != task_id:
        raise ServiceError(
            "PAYLOAD_MISMATCH",
            "JWS payload task_id does not match URL",
            400,
            {"task_id": task_id},
        )

    result = await run_in_threadpool(operation, task_id, caller)
    return JSONResponse(status_code=200, content=result)


# ---------------------------------------------------------------------------
# POST /tasks: create task
# ---------------------------------------------------------------------------


@router.post("/tasks", status_code=201)
async def create_task(request: Request) -> JSONResponse:
    """Create a new task and escrow its reward from the signer."""
    body = await request.body()
    data = parse_json_body(body)
    token = extract_token(data, "token")

    caller, payload = await verify_action(token, "create_task")
    require_fields(payload, "title", "description", "deadline", "reward")

    registry = require_registry()
    result = await run_in_threadpool(
        registry.create_task,
        payload["title"],
        payload["description"],
        payload["deadline"],
        payload["reward"],
        caller,
    )
    return JSONResponse(status_code=201, content=result)


# ---------------------------------------------------------------------------
# GET /tasks, GET /tasks/total (MUST be before GET /tasks/{task_id})
# ---------------------------------------------------------------------------


@router.get("/tasks", response_model=TaskListResponse)
async def list_tasks(request: Request) -> dict[str, Any]:
    """List tasks with optional filters."""
    status = request.query_params.get("status")
    client_id = request.query_params.get("client_id")
    freelancer_id = request.query_params.get("freelancer_id")
    offset = parse_int_query(request.query_params.get("offset"), "offset", minimum=0)
    limit = parse_int_query(request.query_params.get("limit"), "limit", minimum=1)

    registry = require_registry()
    tasks = await run_in_threadpool(
        registry.list_tasks,
        status,
        client_id,
        freelancer_id,
        offset,
        limit,
    )
    return {"tasks": tasks}


@router.get("/tasks/total", response_model=TotalTasksResponse)
async def get_total_tasks() -> dict[str, Any]:
    """Number of task ids issued so far."""
    registry = require_registry()
    total = await run_in_threadpool(registry.get_total_tasks)
    return {"total_tasks": total}


@router.get("/tasks/{task_id}", response_model=TaskResponse)
async def get_task(task_id: str) -> dict[str, Any]:
    """Get a single task record."""
    parsed_id = parse_task_id(task_id)
    registry = require_registry()
    return await run_in_threadpool(registry.get_task, parsed_id)


# ---------------------------------------------------------------------------
# State transitions
# ---------------------------------------------------------------------------


@router.post("/tasks/{task_id}/accept")
async def accept_task(task_id: str, request: Request) -> JSONResponse:
    """Claim an open task as its freelancer."""
    return await _task_action(request, task_id, "accept_task", require_registry().accept_task)


@router.post("/tasks/{task_id}/complete")
async def complete_task(task_id: str, request: Request) -> JSONResponse:
    """Record the signer's half of the dual confirmation."""
    return await _task_action(
        request, task_id, "complete_task", require_registry().complete_task
    )


@router.post("/tasks/{task_id}/cancel")
async def cancel_task(task_id: str, request: Request) -> JSONResponse:
    """Cancel an open task and refund its client."""
    return await _task_action(request, task_id, "cancel_task", require_registry().cancel_task)
