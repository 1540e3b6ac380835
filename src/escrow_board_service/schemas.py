"""Pydantic request/response models for the API."""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict


class HealthResponse(BaseModel):
    """Response model for GET /health."""

    model_config = ConfigDict(extra="forbid")
    status: Literal["ok"]
    uptime_seconds: float
    started_at: str
    total_tasks: int
    tasks_by_status: dict[str, int]


class TaskResponse(BaseModel):
    """Full task record."""

    model_config = ConfigDict(extra="forbid")
    task_id: int
    title: str
    description: str
    reward: int
    client_id: str
    freelancer_id: str | None
    status: str
    deadline: int
    freelancer_submitted: bool
    client_approved: bool
    escrow_balance: int


class TaskListResponse(BaseModel):
    """Response model for GET /tasks."""

    model_config = ConfigDict(extra="forbid")
    tasks: list[TaskResponse]


class TotalTasksResponse(BaseModel):
    """Response model for GET /tasks/total."""

    model_config = ConfigDict(extra="forbid")
    total_tasks: int


class UserTasksResponse(BaseModel):
    """Response model for GET /users/{agent_id}/tasks."""

    model_config = ConfigDict(extra="forbid")
    agent_id: str
    task_ids: list[int]
    completed_tasks: int


class PlatformResponse(BaseModel):
    """Response model for GET /platform."""

    model_config = ConfigDict(extra="forbid")
    owner_id: str
    platform_fee_percentage: int
    held_balance: int


class PlatformFeeResponse(BaseModel):
    """Response model for POST /platform/fee."""

    model_config = ConfigDict(extra="forbid")
    platform_fee_percentage: int


class WithdrawResponse(BaseModel):
    """Response model for POST /platform/emergency-withdraw."""

    model_config = ConfigDict(extra="forbid")
    owner_id: str
    amount: int


class EventResponse(BaseModel):
    """A single lifecycle notification."""

    model_config = ConfigDict(extra="forbid")
    event_id: int
    event_type: str
    task_id: int
    agent_id: str
    timestamp: int
    payload: dict[str, Any]


class EventListResponse(BaseModel):
    """Response model for GET /events."""

    model_config = ConfigDict(extra="forbid")
    events: list[EventResponse]


class AccountResponse(BaseModel):
    """Response model for account balance lookups and credits."""

    model_config = ConfigDict(extra="forbid")
    account_id: str
    balance: int
