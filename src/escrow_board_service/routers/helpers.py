"""Shared request parsing and authentication helpers for routers."""

from __future__ import annotations

import json
from typing import TYPE_CHECKING, Any

from escrow_board_service.config import MAX_STORED_INTEGER
from escrow_board_service.core.exceptions import ServiceError
from escrow_board_service.core.state import get_app_state

if TYPE_CHECKING:
    from escrow_board_service.services.account_book import AccountBook
    from escrow_board_service.services.task_registry import TaskRegistry


def parse_json_body(raw_body: bytes) -> dict[str, Any]:
    """Parse JSON body, raising ServiceError on failure."""
    try:
        data = json.loads(raw_body)
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise ServiceError(
            "INVALID_JSON",
            "Request body is not valid JSON",
            400,
            {},
        ) from exc

    if not isinstance(data, dict):
        raise ServiceError(
            "INVALID_JSON",
            "Request body must be a JSON object",
            400,
            {},
        )

    return data


def extract_token(data: dict[str, Any], field_name: str = "token") -> str:
    """Extract and validate a token field from parsed JSON body."""
    if field_name not in data:
        raise ServiceError("INVALID_JWS", f"Missing required field: {field_name}", 400, {})

    value = data[field_name]
    if value is None:
        raise ServiceError("INVALID_JWS", f"Field '{field_name}' must not be null", 400, {})
    if not isinstance(value, str):
        raise ServiceError("INVALID_JWS", f"Field '{field_name}' must be a string", 400, {})
    if not value:
        raise ServiceError("INVALID_JWS", f"Field '{field_name}' must not be empty", 400, {})
    if len(value.split(".")) != 3:
        raise ServiceError(
            "INVALID_JWS",
            "Token must be in JWS compact serialization format (header.payload.signature)",
            400,
            {},
        )

    return value


async def verify_action(token: str, expected_action: str) -> tuple[str, dict[str, Any]]:
    """
    Verify a JWS token via the Identity service and check its action.

    Returns (caller_id, payload) where caller_id is the verified signer.

    Raises:
        ServiceError: IDENTITY_SERVICE_UNAVAILABLE, FORBIDDEN, INVALID_JWS,
            INVALID_PAYLOAD
    """
    state = get_app_state()
    if state.identity_client is None:
        msg = "Identity client not initialized"
        raise RuntimeError(msg)

    try:
        result = await state.identity_client.verify_jws(token)
    except ServiceError:
        raise
    except Exception as exc:
        raise ServiceError(
            "IDENTITY_SERVICE_UNAVAILABLE",
            "Cannot connect to Identity service",
            502,
            {},
        ) from exc

    if not isinstance(result, dict) or not result.get("valid"):
        raise ServiceError("FORBIDDEN", "JWS signature verification failed", 403, {})

    agent_id = result.get("agent_id")
    if not isinstance(agent_id, str) or not agent_id:
        raise ServiceError("INVALID_JWS", "Token signer is missing", 400, {})

    payload = result.get("payload")
    if not isinstance(payload, dict):
        raise ServiceError("INVALID_JWS", "Token payload must be a JSON object", 400, {})

    action = payload.get("action")
    if action is None:
        raise ServiceError(
            "INVALID_PAYLOAD",
            "JWS payload must include an 'action' field",
            400,
            {},
        )
    if action != expected_action:
        raise ServiceError(
            "INVALID_PAYLOAD",
            f"Expected action '{expected_action}', got '{action}'",
            400,
            {},
        )

    return agent_id, payload


def require_fields(payload: dict[str, Any], *field_names: str) -> None:
    """Raise INVALID_PAYLOAD for the first missing field."""
    for field_name in field_names:
        if field_name not in payload:
            raise ServiceError(
                "INVALID_PAYLOAD",
                f"Missing required field: {field_name}",
                400,
                {},
            )


def parse_task_id(raw: str) -> int:
    """Parse a task id path segment."""
    if not (raw.isascii() and raw.isdigit()) or not 1 <= int(raw) <= MAX_STORED_INTEGER:
        raise ServiceError(
            "INVALID_TASK_ID",
            "task_id must be a positive integer",
            400,
            {},
        )
    return int(raw)


def parse_int_query(raw: str | None, name: str, *, minimum: int) -> int | None:
    """Parse an optional integer query parameter with a lower bound."""
    if raw is None:
        return None
    try:
        value = int(raw)
    except ValueError as exc:
        raise ServiceError("INVALID_PAYLOAD", f"{name} must be an integer", 400, {}) from exc
    if value < minimum:
        raise ServiceError("INVALID_PAYLOAD", f"{name} must be >= {minimum}", 400, {})
    if value > MAX_STORED_INTEGER:
        raise ServiceError("INVALID_PAYLOAD", f"{name} is too large", 400, {})
    return value


def require_registry() -> TaskRegistry:
    state = get_app_state()
    if state.task_registry is None:
        msg = "TaskRegistry not initialized"
        raise RuntimeError(msg)
    return state.task_registry


def require_account_book() -> AccountBook:
    state = get_app_state()
    if state.account_book is None:
        msg = "AccountBook not initialized"
        raise RuntimeError(msg)
    return state.account_book
