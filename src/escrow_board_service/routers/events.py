"""Lifecycle notification feed."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Request
from starlette.concurrency import run_in_threadpool

from escrow_board_service.core.exceptions import ServiceError
from escrow_board_service.routers.helpers import parse_int_query, require_registry
from escrow_board_service.schemas import EventListResponse

router = APIRouter()

DEFAULT_EVENT_LIMIT = 100
MAX_EVENT_LIMIT = 500


@router.get("/events", response_model=EventListResponse)
async def list_events(request: Request) -> dict[str, Any]:
    """Events in commit order, optionally after a cursor."""
    after = parse_int_query(request.query_params.get("after"), "after", minimum=0)
    task_id = parse_int_query(request.query_params.get("task_id"), "task_id", minimum=1)
    limit = parse_int_query(request.query_params.get("limit"), "limit", minimum=1)
    if limit is None:
        limit = DEFAULT_EVENT_LIMIT
    if limit > MAX_EVENT_LIMIT:
        raise ServiceError("INVALID_PAYLOAD", f"limit must be <= {MAX_EVENT_LIMIT}", 400, {})
    event_type = request.query_params.get("event_type")

    registry = require_registry()
    events = await run_in_threadpool(registry.list_events, after, limit, task_id, event_type)
    return {"events": events}
