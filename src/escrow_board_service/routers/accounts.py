"""Account balance endpoints."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Request
from starlette.concurrency import run_in_threadpool

from escrow_board_service.config import MAX_STORED_INTEGER
from escrow_board_service.core.exceptions import ServiceError
from escrow_board_service.logging import get_logger
from escrow_board_service.routers.helpers import (
    extract_token,
    parse_json_body,
    require_account_book,
    require_fields,
    require_registry,
    verify_action,
)
from escrow_board_service.schemas import AccountResponse
from escrow_board_service.services.funds import TransferError

router = APIRouter()


@router.get("/accounts/{agent_id}", response_model=AccountResponse)
async def get_account(agent_id: str) -> dict[str, Any]:
    """Balance of an account; unknown accounts report zero."""
    account_book = require_account_book()
    balance = await run_in_threadpool(account_book.get_balance, agent_id)
    return {"account_id": agent_id, "balance": balance}


@router.post("/accounts/credit", response_model=AccountResponse)
async def credit_account(request: Request) -> dict[str, Any]:
    """Mint funds into an account. Owner-only."""
    body = await request.body()
    data = parse_json_body(body)
    token = extract_token(data, "token")

    caller, payload = await verify_action(token, "credit_account")
    if caller != require_registry().get_owner():
        raise ServiceError("FORBIDDEN", "Only the owner can credit accounts", 403, {})

    require_fields(payload, "account_id", "amount")
    account_id = payload["account_id"]
    amount = payload["amount"]
    if not isinstance(account_id, str) or not account_id:
        raise ServiceError("INVALID_PAYLOAD", "account_id must be a non-empty string", 400, {})
    if (
        not isinstance(amount, int)
        or isinstance(amount, bool)
        or not 0 < amount <= MAX_STORED_INTEGER
    ):
        raise ServiceError("INVALID_AMOUNT", "Amount must be a positive integer", 400, {})

    account_book = require_account_book()
    try:
        result = await run_in_threadpool(account_book.credit, account_id, amount, "credit")
    except TransferError as exc:
        raise ServiceError(
            "TRANSFER_FAILED",
            exc.message,
            502,
            {"reason": exc.reason, "account_id": account_id},
        ) from exc

    get_logger(__name__).info(
        "Account credited",
        extra={"account_id": account_id, "amount": amount},
    )
    return result
