"""Owner-only platform endpoints."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Request
from starlette.concurrency import run_in_threadpool

from escrow_board_service.routers.helpers import (
    extract_token,
    parse_json_body,
    require_fields,
    require_registry,
    verify_action,
)
from escrow_board_service.schemas import PlatformFeeResponse, PlatformResponse, WithdrawResponse

router = APIRouter()


@router.get("/platform", response_model=PlatformResponse)
async def get_platform() -> dict[str, Any]:
    """Owner identity, current fee and the balance held in custody."""
    registry = require_registry()
    fee = await run_in_threadpool(registry.get_platform_fee)
    held = await run_in_threadpool(registry.get_held_balance)
    return {
        "owner_id": registry.get_owner(),
        "platform_fee_percentage": fee,
        "held_balance": held,
    }


@router.post("/platform/fee", response_model=PlatformFeeResponse)
async def update_platform_fee(request: Request) -> dict[str, Any]:
    """Change the fee applied to future payouts. Owner-only."""
    body = await request.body()
    data = parse_json_body(body)
    token = extract_token(data, "token")

    caller, payload = await verify_action(token, "update_platform_fee")
    require_fields(payload, "platform_fee_percentage")

    registry = require_registry()
    fee = await run_in_threadpool(
        registry.update_platform_fee,
        payload["platform_fee_percentage"],
        caller,
    )
    return {"platform_fee_percentage": fee}


@router.post("/platform/emergency-withdraw", response_model=WithdrawResponse)
async def emergency_withdraw(request: Request) -> dict[str, Any]:
    """Sweep the custody balance to the owner. Owner-only."""
    body = await request.body()
    data = parse_json_body(body)
    token = extract_token(data, "token")

    caller, _payload = await verify_action(token, "emergency_withdraw")

    registry = require_registry()
    amount = await run_in_threadpool(registry.emergency_withdraw, caller)
    return {"owner_id": registry.get_owner(), "amount": amount}
