"""Application lifecycle management."""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from escrow_board_service.clients.identity_client import IdentityClient
from escrow_board_service.config import get_safe_config, get_settings
from escrow_board_service.core.state import init_app_state
from escrow_board_service.logging import get_logger, setup_logging
from escrow_board_service.services.account_book import AccountBook
from escrow_board_service.services.registry_store import RegistryStore
from escrow_board_service.services.task_registry import TaskRegistry

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from fastapi import FastAPI


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
    """Manage application lifecycle."""
    # === STARTUP ===
    settings = get_settings()

    setup_logging(settings.logging.level, settings.service.name, settings.logging.directory)
    logger = get_logger(__name__)

    logger.debug("Effective configuration", extra={"config": get_safe_config()})

    state = init_app_state()

    account_book = AccountBook(
        db_path=settings.funds.path,
        custody_account_id=settings.funds.custody_account_id,
    )
    state.account_book = account_book

    store = RegistryStore(db_path=settings.database.path)
    try:
        task_registry = TaskRegistry(
            store=store,
            funds=account_book,
            owner_id=settings.platform.owner_id,
            platform_fee_percentage=settings.platform.platform_fee_percentage,
        )
    except Exception:
        store.close()
        account_book.close()
        raise
    state.task_registry = task_registry

    identity_client = IdentityClient(
        base_url=settings.identity.base_url,
        verify_jws_path=settings.identity.verify_jws_path,
        timeout_seconds=settings.identity.timeout_seconds,
    )
    state.identity_client = identity_client

    logger.info(
        "Service starting",
        extra={
            "service": settings.service.name,
            "version": settings.service.version,
            "port": settings.server.port,
            "db_path": settings.database.path,
            "funds_path": settings.funds.path,
            "identity_base_url": settings.identity.base_url,
            "owner_id": task_registry.get_owner(),
            "platform_fee_percentage": task_registry.get_platform_fee(),
        },
    )

    yield  # Application runs here

    # === SHUTDOWN ===
    logger.info("Service shutting down", extra={"uptime_seconds": state.uptime_seconds})

    task_registry.close()
    account_book.close()
    await identity_client.close()
