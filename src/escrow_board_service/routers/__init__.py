"""API routers."""

from escrow_board_service.routers import accounts, events, health, platform, tasks, users

__all__ = ["accounts", "events", "health", "platform", "tasks", "users"]
