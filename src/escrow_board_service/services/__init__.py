"""Service layer components."""

from escrow_board_service.services.account_book import AccountBook
from escrow_board_service.services.clock import Clock, SystemClock
from escrow_board_service.services.events import EventType, TaskEvent
from escrow_board_service.services.funds import FundsGateway, Transfer, TransferError
from escrow_board_service.services.registry_store import OwnerMismatchError, RegistryStore
from escrow_board_service.services.task_registry import TaskRegistry, TaskStatus

__all__ = [
    "AccountBook",
    "Clock",
    "EventType",
    "FundsGateway",
    "OwnerMismatchError",
    "RegistryStore",
    "SystemClock",
    "TaskEvent",
    "TaskRegistry",
    "TaskStatus",
    "Transfer",
    "TransferError",
]
