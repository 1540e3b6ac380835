"""Task lifecycle notifications."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any


class EventType(StrEnum):
    """Notification names consumed by indexers and UIs."""

    TASK_CREATED = "TaskCreated"
    TASK_ASSIGNED = "TaskAssigned"
    TASK_COMPLETED = "TaskCompleted"
    TASK_CANCELLED = "TaskCancelled"
    PAYMENT_RELEASED = "PaymentReleased"


@dataclass(frozen=True)
class TaskEvent:
    """
    One notification.

    agent_id is the identity the event is primarily about (the client for
    TaskCreated/TaskCancelled, the freelancer otherwise). event_id and
    timestamp are assigned when the event is recorded.
    """

    event_type: EventType
    task_id: int
    agent_id: str
    payload: dict[str, Any] = field(default_factory=dict)
    event_id: int | None = None
    timestamp: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "event_id": self.event_id,
            "event_type": str(self.event_type),
            "task_id": self.task_id,
            "agent_id": self.agent_id,
            "timestamp": self.timestamp,
            "payload": dict(self.payload),
        }


EventListener = Callable[[TaskEvent], None]


def task_created(task_id: int, client_id: str, title: str, reward: int) -> TaskEvent:
    return TaskEvent(
        EventType.TASK_CREATED,
        task_id,
        client_id,
        {"task_id": task_id, "client": client_id, "title": title, "reward": reward},
    )


def task_assigned(task_id: int, freelancer_id: str) -> TaskEvent:
    return TaskEvent(
        EventType.TASK_ASSIGNED,
        task_id,
        freelancer_id,
        {"task_id": task_id, "freelancer": freelancer_id},
    )


def task_completed(task_id: int, freelancer_id: str, client_id: str) -> TaskEvent:
    return TaskEvent(
        EventType.TASK_COMPLETED,
        task_id,
        freelancer_id,
        {"task_id": task_id, "freelancer": freelancer_id, "client": client_id},
    )


def task_cancelled(task_id: int, client_id: str) -> TaskEvent:
    return TaskEvent(
        EventType.TASK_CANCELLED,
        task_id,
        client_id,
        {"task_id": task_id, "client": client_id},
    )


def payment_released(task_id: int, freelancer_id: str, amount: int) -> TaskEvent:
    return TaskEvent(
        EventType.PAYMENT_RELEASED,
        task_id,
        freelancer_id,
        {"task_id": task_id, "freelancer": freelancer_id, "amount": amount},
    )
