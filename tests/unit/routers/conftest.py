"""Router test fixtures with a mocked Identity service."""

from __future__ import annotations

import time
from typing import TYPE_CHECKING, Any
from unittest.mock import AsyncMock

import pytest
from httpx import ASGITransport, AsyncClient

from escrow_board_service.app import create_app
from escrow_board_service.config import clear_settings_cache
from escrow_board_service.core.lifespan import lifespan
from escrow_board_service.core.state import get_app_state, reset_app_state
from tests.helpers import decode_jws_kid, decode_jws_payload, generate_keypair, make_jws_token

if TYPE_CHECKING:
    from collections.abc import AsyncIterator
    from pathlib import Path

    from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey

# ---------------------------------------------------------------------------
# Fixed agent IDs
# ---------------------------------------------------------------------------
OWNER_AGENT_ID = "a-platform-test-id"
ALICE_AGENT_ID = "a-alice-uuid"
BOB_AGENT_ID = "a-bob-uuid"
CAROL_AGENT_ID = "a-carol-uuid"

CUSTODY_ACCOUNT_ID = "escrow-board-custody"
STARTING_BALANCE = 1000


# ---------------------------------------------------------------------------
# Keypair fixtures
# ---------------------------------------------------------------------------
@pytest.fixture
def owner_keypair() -> tuple[Ed25519PrivateKey, str]:
    """Generate the registry owner's keypair."""
    return generate_keypair()


@pytest.fixture
def alice_keypair() -> tuple[Ed25519PrivateKey, str]:
    """Generate Alice's keypair."""
    return generate_keypair()


@pytest.fixture
def bob_keypair() -> tuple[Ed25519PrivateKey, str]:
    """Generate Bob's keypair."""
    return generate_keypair()


@pytest.fixture
def carol_keypair() -> tuple[Ed25519PrivateKey, str]:
    """Generate Carol's keypair."""
    return generate_keypair()


# ---------------------------------------------------------------------------
# App + client fixtures
# ---------------------------------------------------------------------------
@pytest.fixture
async def app(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> AsyncIterator[Any]:
    """Create a test app with temp databases and a mocked Identity service."""
    config_content = f"""\
service:
  name: "escrow-board"
  version: "0.1.0"
server:
  host: "0.0.0.0"
  port: 8010
  log_level: "info"
logging:
  level: "WARNING"
  directory: "{tmp_path / "logs"}"
database:
  path: "{tmp_path / "registry.db"}"
funds:
  path: "{tmp_path / "book.db"}"
  custody_account_id: "{CUSTODY_ACCOUNT_ID}"
identity:
  base_url: "http://localhost:8001"
  verify_jws_path: "/agents/verify-jws"
  timeout_seconds: 10
platform:
  owner_id: "{OWNER_AGENT_ID}"
  platform_fee_percentage: 5
request:
  max_body_size: 1048576
"""
    config_path = tmp_path / "config.yaml"
    config_path.write_text(config_content)
    monkeypatch.setenv("CONFIG_PATH", str(config_path))

    clear_settings_cache()
    reset_app_state()

    test_app = create_app()
    async with lifespan(test_app):
        state = get_app_state()

        # Identity mock: the signer is the token's kid, the payload is decoded as-is
        mock_identity = AsyncMock()
        mock_identity.close = AsyncMock()
        mock_identity.verify_jws = AsyncMock(
            side_effect=lambda token: {
                "valid": True,
                "agent_id": decode_jws_kid(token),
                "payload": decode_jws_payload(token),
            }
        )
        state.identity_client = mock_identity

        for agent_id in (ALICE_AGENT_ID, BOB_AGENT_ID, CAROL_AGENT_ID):
            state.account_book.credit(agent_id, STARTING_BALANCE, "seed")

        yield test_app

    reset_app_state()
    clear_settings_cache()


@pytest.fixture
async def client(app: Any) -> AsyncIterator[AsyncClient]:
    """Create an async HTTP client for the test app."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as c:
        yield c


# ---------------------------------------------------------------------------
# Mock override fixtures
# ---------------------------------------------------------------------------
@pytest.fixture
def mock_identity_unavailable(_app: Any) -> None:
    """Configure the Identity mock to simulate service unavailability."""
    state = get_app_state()
    state.identity_client.verify_jws = AsyncMock(
        side_effect=ConnectionError("Identity service unreachable")
    )


@pytest.fixture
def mock_identity_rejects(_app: Any) -> None:
    """Configure the Identity mock to reject every signature."""
    state = get_app_state()
    state.identity_client.verify_jws = AsyncMock(return_value={"valid": False})


# ---------------------------------------------------------------------------
# Request helpers
# ---------------------------------------------------------------------------
def future_deadline(seconds: int = 3600) -> int:
    return int(time.time()) + seconds


async def signed_post(
    client: AsyncClient,
    path: str,
    keypair: tuple[Ed25519PrivateKey, str],
    agent_id: str,
    payload: dict[str, Any],
) -> Any:
    """POST a body of the form {"token": <JWS over payload>}."""
    token = make_jws_token(keypair[0], agent_id, payload)
    return await client.post(path, json={"token": token})


async def create_task(
    client: AsyncClient,
    keypair: tuple[Ed25519PrivateKey, str],
    agent_id: str,
    *,
    title: str = "Test task",
    description: str = "Test description",
    reward: int = 100,
    deadline: int | None = None,
) -> Any:
    """Create a task via POST /tasks and return the response."""
    payload = {
        "action": "create_task",
        "title": title,
        "description": description,
        "reward": reward,
        "deadline": future_deadline() if deadline is None else deadline,
    }
    return await signed_post(client, "/tasks", keypair, agent_id, payload)


async def task_action(
    client: AsyncClient,
    keypair: tuple[Ed25519PrivateKey, str],
    agent_id: str,
    task_id: int,
    action: str,
) -> Any:
    """POST /tasks/{task_id}/<action> signed by agent_id."""
    payload = {"action": f"{action}_task", "task_id": task_id}
    return await signed_post(client, f"/tasks/{task_id}/{action}", keypair, agent_id, payload)


async def create_assigned_task(
    client: AsyncClient,
    client_keypair: tuple[Ed25519PrivateKey, str],
    client_id: str,
    freelancer_keypair: tuple[Ed25519PrivateKey, str],
    freelancer_id: str,
    *,
    reward: int = 100,
) -> int:
    """Create a task and have the freelancer accept it. Returns the task id."""
    created = await create_task(client, client_keypair, client_id, reward=reward)
    assert created.status_code == 201, created.json()
    task_id = created.json()["task_id"]
    accepted = await task_action(client, freelancer_keypair, freelancer_id, task_id, "accept")
    assert accepted.status_code == 200, accepted.json()
    return task_id
