"""Task registry: the escrowed task lifecycle and all its business rules."""

from __future__ import annotations

from dataclasses import replace
from enum import StrEnum
from typing import TYPE_CHECKING, Any, cast

from escrow_board_service.config import MAX_PLATFORM_FEE_PERCENTAGE, MAX_STORED_INTEGER
from escrow_board_service.core.exceptions import ServiceError
from escrow_board_service.logging import get_logger
from escrow_board_service.services import events
from escrow_board_service.services.clock import SystemClock
from escrow_board_service.services.funds import Transfer, TransferError

if TYPE_CHECKING:
    from collections.abc import Sequence

    from escrow_board_service.services.clock import Clock
    from escrow_board_service.services.events import EventListener, TaskEvent
    from escrow_board_service.services.funds import FundsGateway
    from escrow_board_service.services.registry_store import RegistryStore


class TaskStatus(StrEnum):
    """Task lifecycle states."""

    OPEN = "open"
    ASSIGNED = "assigned"
    COMPLETED = "completed"
    # Reserved: no operation moves a task into or out of this state.
    DISPUTED = "disputed"
    CANCELLED = "cancelled"


def _is_int(value: object) -> bool:
    """Check if value is a storable integer (not float, not bool)."""
    return (
        isinstance(value, int)
        and not isinstance(value, bool)
        and -MAX_STORED_INTEGER <= value <= MAX_STORED_INTEGER
    )


def _is_positive_int(value: object) -> bool:
    return _is_int(value) and cast("int", value) > 0


def compute_platform_fee(reward: int, platform_fee_percentage: int) -> int:
    """Fee owed to the owner on payout, rounded down."""
    return reward * platform_fee_percentage // 100


class TaskRegistry:
    """
    Owns the set of tasks and enforces the lifecycle:

        open --accept--> assigned --dual confirmation--> completed
        open --cancel--> cancelled

    Every operation takes the caller's authenticated identity. Each call
    runs in one store transaction together with the funds movement it
    triggers: it either fully applies or is rejected with a ServiceError
    and leaves no trace. Notifications are recorded in the same
    transaction and delivered to listeners after commit.
    """

    def __init__(
        self,
        store: RegistryStore,
        funds: FundsGateway,
        owner_id: str,
        platform_fee_percentage: int,
        clock: Clock | None = None,
    ) -> None:
        self._store = store
        self._funds = funds
        self._clock: Clock = clock if clock is not None else SystemClock()
        self._listeners: list[EventListener] = []
        self._logger = get_logger(__name__)
        meta = store.init_meta(owner_id, platform_fee_percentage)
        self._owner_id: str = meta["owner_id"]

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _require_task(self, task_id: int) -> dict[str, Any]:
        task = self._store.get_task(task_id) if 1 <= task_id <= MAX_STORED_INTEGER else None
        if task is None:
            raise ServiceError("TASK_NOT_FOUND", "Task not found", 404, {"task_id": task_id})
        return task

    def _load_task(self, task_id: int) -> dict[str, Any]:
        task = self._store.get_task(task_id)
        if task is None:
            msg = f"Task {task_id} not found after update"
            raise RuntimeError(msg)
        return task

    def _apply(
        self,
        task_id: int,
        updates: dict[str, Any],
        expected_status: TaskStatus,
    ) -> None:
        changed = self._store.update_task(task_id, updates, expected_status=expected_status)
        if changed != 1:
            raise ServiceError(
                "INVALID_STATUS",
                f"Task is no longer '{expected_status}'",
                409,
                {"task_id": task_id},
            )

    def _record(self, event: TaskEvent, pending: list[TaskEvent]) -> None:
        timestamp = self._clock.now()
        event_id = self._store.insert_event(
            str(event.event_type),
            event.task_id,
            event.agent_id,
            event.payload,
            timestamp,
        )
        pending.append(replace(event, event_id=event_id, timestamp=timestamp))

    def _dispatch(self, pending: list[TaskEvent]) -> None:
        for event in pending:
            for listener in list(self._listeners):
                try:
                    listener(event)
                except Exception:
                    self._logger.exception(
                        "Event listener failed",
                        extra={"event_type": str(event.event_type), "task_id": event.task_id},
                    )

    def _transfer_error(self, exc: TransferError, task_id: int | None) -> ServiceError:
        self._logger.warning(
            "Funds transfer failed",
            extra={"reason": exc.reason, "account_id": exc.account_id, "task_id": task_id},
        )
        details: dict[str, Any] = {"reason": exc.reason}
        if exc.account_id is not None:
            details["account_id"] = exc.account_id
        if task_id is not None:
            details["task_id"] = task_id
        if exc.reason == "INSUFFICIENT_FUNDS":
            return ServiceError("INSUFFICIENT_FUNDS", exc.message, 402, details)
        return ServiceError("TRANSFER_FAILED", exc.message, 502, details)

    def _deposit(self, payer_id: str, amount: int, task_id: int) -> None:
        try:
            self._funds.deposit(payer_id, amount, f"task-{task_id}")
        except TransferError as exc:
            raise self._transfer_error(exc, task_id) from exc

    def _release(self, transfers: Sequence[Transfer], reference: str, task_id: int | None) -> None:
        try:
            self._funds.release(transfers, reference)
        except TransferError as exc:
            raise self._transfer_error(exc, task_id) from exc

    # ------------------------------------------------------------------
    # Listeners
    # ------------------------------------------------------------------

    def subscribe(self, listener: EventListener) -> None:
        """Register a callback invoked synchronously for every committed event."""
        self._listeners.append(listener)

    def unsubscribe(self, listener: EventListener) -> None:
        self._listeners.remove(listener)

    # ------------------------------------------------------------------
    # Lifecycle operations
    # ------------------------------------------------------------------

    def create_task(
        self,
        title: object,
        description: object,
        deadline: object,
        reward: object,
        caller: str,
    ) -> dict[str, Any]:
        """
        Create a task and escrow its reward from the caller.

        Raises:
            ServiceError: INVALID_REWARD, INVALID_DEADLINE, INVALID_TITLE,
                INVALID_PAYLOAD, INSUFFICIENT_FUNDS, TRANSFER_FAILED.
        """
        if not _is_positive_int(reward):
            raise ServiceError("INVALID_REWARD", "Reward must be a positive integer", 400, {})
        if not _is_int(deadline):
            raise ServiceError("INVALID_DEADLINE", "Deadline must be an integer timestamp", 400, {})
        if not isinstance(title, str) or len(title) < 1:
            raise ServiceError("INVALID_TITLE", "Title must be a non-empty string", 400, {})
        if not isinstance(description, str):
            raise ServiceError("INVALID_PAYLOAD", "Description must be a string", 400, {})
        reward_int = cast("int", reward)
        deadline_int = cast("int", deadline)

        pending: list[TaskEvent] = []
        with self._store.transaction():
            if deadline_int <= self._clock.now():
                raise ServiceError("INVALID_DEADLINE", "Deadline must be in the future", 400, {})

            task_id = self._store.next_task_id()
            self._store.insert_task(
                {
                    "task_id": task_id,
                    "title": title,
                    "description": description,
                    "reward": reward_int,
                    "client_id": caller,
                    "freelancer_id": None,
                    "status": TaskStatus.OPEN.value,
                    "deadline": deadline_int,
                    "freelancer_submitted": 0,
                    "client_approved": 0,
                    "escrow_balance": reward_int,
                }
            )
            self._store.append_user_task(caller, task_id)
            self._record(events.task_created(task_id, caller, title, reward_int), pending)
            self._deposit(caller, reward_int, task_id)
            task = self._load_task(task_id)

        self._logger.info(
            "Task created",
            extra={"task_id": task_id, "client_id": caller, "reward": reward_int},
        )
        self._dispatch(pending)
        return task

    def accept_task(self, task_id: int, caller: str) -> dict[str, Any]:
        """
        Claim an open task as its freelancer.

        Raises:
            ServiceError: TASK_NOT_FOUND, INVALID_STATUS, FORBIDDEN, DEADLINE_PASSED.
        """
        pending: list[TaskEvent] = []
        with self._store.transaction():
            task = self._require_task(task_id)
            if task["status"] != TaskStatus.OPEN:
                raise ServiceError(
                    "INVALID_STATUS",
                    f"Cannot accept task in '{task['status']}' status, must be 'open'",
                    409,
                    {"task_id": task_id},
                )
            if caller == task["client_id"]:
                raise ServiceError(
                    "FORBIDDEN",
                    "The client cannot accept their own task",
                    403,
                    {"task_id": task_id},
                )
            if self._clock.now() >= task["deadline"]:
                raise ServiceError(
                    "DEADLINE_PASSED",
                    "Task deadline has passed",
                    409,
                    {"task_id": task_id, "deadline": task["deadline"]},
                )

            self._apply(
                task_id,
                {"freelancer_id": caller, "status": TaskStatus.ASSIGNED.value},
                expected_status=TaskStatus.OPEN,
            )
            self._store.append_user_task(caller, task_id)
            self._record(events.task_assigned(task_id, caller), pending)
            task = self._load_task(task_id)

        self._logger.info("Task assigned", extra={"task_id": task_id, "freelancer_id": caller})
        self._dispatch(pending)
        return task

    def complete_task(self, task_id: int, caller: str) -> dict[str, Any]:
        """
        Record the caller's half of the dual confirmation.

        The freelancer submits (repeatable while assigned); the client
        approves once the freelancer has submitted. The call that makes
        both flags true completes the task and pays out, minus the fee
        in effect at that moment.

        Raises:
            ServiceError: TASK_NOT_FOUND, FORBIDDEN, INVALID_STATUS,
                TRANSFER_FAILED.
        """
        pending: list[TaskEvent] = []
        payout: dict[str, int] | None = None
        with self._store.transaction():
            task = self._require_task(task_id)
            freelancer_id = task["freelancer_id"]
            client_id = task["client_id"]

            if freelancer_id is not None and caller == freelancer_id:
                if task["status"] != TaskStatus.ASSIGNED:
                    raise ServiceError(
                        "INVALID_STATUS",
                        f"Cannot submit task in '{task['status']}' status, must be 'assigned'",
                        409,
                        {"task_id": task_id},
                    )
                updates: dict[str, Any] = {"freelancer_submitted": True}
            elif caller == client_id:
                if task["status"] != TaskStatus.ASSIGNED:
                    raise ServiceError(
                        "INVALID_STATUS",
                        f"Cannot approve task in '{task['status']}' status, must be 'assigned'",
                        409,
                        {"task_id": task_id},
                    )
                if not task["freelancer_submitted"]:
                    raise ServiceError(
                        "INVALID_STATUS",
                        "Freelancer has not submitted the work yet",
                        409,
                        {"task_id": task_id},
                    )
                updates = {"client_approved": True}
            else:
                raise ServiceError(
                    "FORBIDDEN",
                    "Only the task's client or freelancer can complete it",
                    403,
                    {"task_id": task_id},
                )

            submitted = bool(task["freelancer_submitted"] or updates.get("freelancer_submitted"))
            approved = bool(task["client_approved"] or updates.get("client_approved"))

            if submitted and approved:
                reward = int(task["reward"])
                fee_percentage = int(self._store.get_meta()["platform_fee_percentage"])
                platform_fee = compute_platform_fee(reward, fee_percentage)
                freelancer_amount = reward - platform_fee

                updates["status"] = TaskStatus.COMPLETED.value
                updates["escrow_balance"] = 0
                self._apply(task_id, updates, expected_status=TaskStatus.ASSIGNED)
                self._store.increment_completed(freelancer_id)
                self._store.increment_completed(client_id)
                self._record(events.task_completed(task_id, freelancer_id, client_id), pending)
                self._record(
                    events.payment_released(task_id, freelancer_id, freelancer_amount), pending
                )
                self._release(
                    [
                        Transfer(freelancer_id, freelancer_amount),
                        Transfer(self._owner_id, platform_fee),
                    ],
                    f"task-{task_id}",
                    task_id,
                )
                payout = {
                    "freelancer_amount": freelancer_amount,
                    "platform_fee": platform_fee,
                    "platform_fee_percentage": fee_percentage,
                }
            else:
                self._apply(task_id, updates, expected_status=TaskStatus.ASSIGNED)
            task = self._load_task(task_id)

        if payout is not None:
            self._logger.info(
                "Task completed and paid",
                extra={"task_id": task_id, "freelancer_id": freelancer_id, **payout},
            )
        else:
            self._logger.info(
                "Task confirmation recorded",
                extra={"task_id": task_id, "caller": caller, "fields": sorted(updates)},
            )
        self._dispatch(pending)
        return task

    def cancel_task(self, task_id: int, caller: str) -> dict[str, Any]:
        """
        Cancel an open task and refund the full reward to its client.

        Raises:
            ServiceError: TASK_NOT_FOUND, FORBIDDEN, INVALID_STATUS, TRANSFER_FAILED.
        """
        pending: list[TaskEvent] = []
        with self._store.transaction():
            task = self._require_task(task_id)
            if caller != task["client_id"]:
                raise ServiceError(
                    "FORBIDDEN",
                    "Only the client can cancel this task",
                    403,
                    {"task_id": task_id},
                )
            if task["status"] != TaskStatus.OPEN:
                raise ServiceError(
                    "INVALID_STATUS",
                    f"Cannot cancel task in '{task['status']}' status, must be 'open'",
                    409,
                    {"task_id": task_id},
                )

            reward = int(task["reward"])
            self._apply(
                task_id,
                {"status": TaskStatus.CANCELLED.value, "escrow_balance": 0},
                expected_status=TaskStatus.OPEN,
            )
            self._record(events.task_cancelled(task_id, caller), pending)
            self._release([Transfer(caller, reward)], f"task-{task_id}", task_id)
            task = self._load_task(task_id)

        self._logger.info(
            "Task cancelled and refunded",
            extra={"task_id": task_id, "client_id": caller, "refund": reward},
        )
        self._dispatch(pending)
        return task

    # ------------------------------------------------------------------
    # Owner operations
    # ------------------------------------------------------------------

    def update_platform_fee(self, new_fee: object, caller: str) -> int:
        """
        Change the fee percentage applied to future payouts.

        Raises:
            ServiceError: FORBIDDEN, INVALID_FEE.
        """
        if caller != self._owner_id:
            raise ServiceError("FORBIDDEN", "Only the owner can update the platform fee", 403, {})
        if not _is_int(new_fee) or not 0 <= cast("int", new_fee) <= MAX_PLATFORM_FEE_PERCENTAGE:
            raise ServiceError(
                "INVALID_FEE",
                f"Platform fee must be an integer between 0 and {MAX_PLATFORM_FEE_PERCENTAGE}",
                400,
                {},
            )
        fee = cast("int", new_fee)

        with self._store.transaction():
            previous = int(self._store.get_meta()["platform_fee_percentage"])
            self._store.set_platform_fee(fee)

        self._logger.info(
            "Platform fee updated",
            extra={"previous_fee_percentage": previous, "fee_percentage": fee},
        )
        return fee

    def emergency_withdraw(self, caller: str) -> int:
        """
        Sweep everything held in custody to the owner.

        Task records are left untouched. Custody is pooled, so a payout or
        refund for a swept task fails with TRANSFER_FAILED only while the
        held balance cannot cover it. Once newer tasks are funded it draws
        on their deposits.

        Raises:
            ServiceError: FORBIDDEN, TRANSFER_FAILED.
        """
        if caller != self._owner_id:
            raise ServiceError("FORBIDDEN", "Only the owner can withdraw funds", 403, {})

        with self._store.transaction():
            amount = self._funds.held_balance()
            self._release([Transfer(self._owner_id, amount)], "emergency_withdraw", None)

        self._logger.warning(
            "Emergency withdrawal executed",
            extra={"owner_id": self._owner_id, "amount": amount},
        )
        return amount

    # ------------------------------------------------------------------
    # Read accessors
    # ------------------------------------------------------------------

    def get_task(self, task_id: int) -> dict[str, Any]:
        """Raises ServiceError TASK_NOT_FOUND if the id was never assigned."""
        return self._require_task(task_id)

    def get_user_tasks(self, agent_id: str) -> list[int]:
        """Ids of every task the identity was client or freelancer for, in order."""
        return self._store.get_user_tasks(agent_id)

    def get_total_tasks(self) -> int:
        return int(self._store.get_meta()["task_counter"])

    def get_completed_count(self, agent_id: str) -> int:
        return self._store.get_completed_count(agent_id)

    def get_owner(self) -> str:
        return self._owner_id

    def get_platform_fee(self) -> int:
        return int(self._store.get_meta()["platform_fee_percentage"])

    def get_held_balance(self) -> int:
        return self._funds.held_balance()

    def list_tasks(
        self,
        status: str | None = None,
        client_id: str | None = None,
        freelancer_id: str | None = None,
        offset: int | None = None,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        if status is not None and status not in {member.value for member in TaskStatus}:
            raise ServiceError("INVALID_PAYLOAD", f"Unknown task status: {status}", 400, {})
        return self._store.list_tasks(status, client_id, freelancer_id, offset, limit)

    def list_events(
        self,
        after: int | None = None,
        limit: int = 100,
        task_id: int | None = None,
        event_type: str | None = None,
    ) -> list[dict[str, Any]]:
        known_types = {member.value for member in events.EventType}
        if event_type is not None and event_type not in known_types:
            raise ServiceError("INVALID_PAYLOAD", f"Unknown event type: {event_type}", 400, {})
        return self._store.list_events(after, limit, task_id, event_type)

    def get_stats(self) -> dict[str, Any]:
        return {
            "total_tasks": self.get_total_tasks(),
            "tasks_by_status": self._store.count_tasks_by_status(),
        }

    def close(self) -> None:
        self._store.close()
