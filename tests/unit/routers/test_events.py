"""Lifecycle notification feed tests."""

from __future__ import annotations

import pytest

from tests.unit.routers.conftest import (
    ALICE_AGENT_ID,
    BOB_AGENT_ID,
    create_assigned_task,
    create_task,
    task_action,
)


@pytest.mark.unit
async def test_events_follow_the_lifecycle(client, alice_keypair, bob_keypair):
    task_id = await create_assigned_task(
        client, alice_keypair, ALICE_AGENT_ID, bob_keypair, BOB_AGENT_ID
    )
    await task_action(client, bob_keypair, BOB_AGENT_ID, task_id, "complete")
    await task_action(client, alice_keypair, ALICE_AGENT_ID, task_id, "complete")

    response = await client.get("/events")

    assert response.status_code == 200
    events = response.json()["events"]
    assert [event["event_type"] for event in events] == [
        "TaskCreated",
        "TaskAssigned",
        "TaskCompleted",
        "PaymentReleased",
    ]
    assert [event["event_id"] for event in events] == [1, 2, 3, 4]
    assert events[0]["agent_id"] == ALICE_AGENT_ID
    assert events[3]["payload"] == {"task_id": task_id, "freelancer": BOB_AGENT_ID, "amount": 95}


@pytest.mark.unit
async def test_events_cursor_and_filters(client, alice_keypair):
    await create_task(client, alice_keypair, ALICE_AGENT_ID)
    await create_task(client, alice_keypair, ALICE_AGENT_ID)
    await task_action(client, alice_keypair, ALICE_AGENT_ID, 2, "cancel")

    after = await client.get("/events", params={"after": 1})
    assert [event["event_id"] for event in after.json()["events"]] == [2, 3]

    task_two = await client.get("/events", params={"task_id": 2})
    assert [event["event_type"] for event in task_two.json()["events"]] == [
        "TaskCreated",
        "TaskCancelled",
    ]

    cancelled = await client.get("/events", params={"event_type": "TaskCancelled"})
    assert len(cancelled.json()["events"]) == 1

    limited = await client.get("/events", params={"limit": 1})
    assert len(limited.json()["events"]) == 1


@pytest.mark.unit
async def test_failed_operation_emits_nothing(client, alice_keypair):
    response = await create_task(client, alice_keypair, ALICE_AGENT_ID, reward=10_000)
    assert response.status_code == 402

    events = await client.get("/events")
    assert events.json() == {"events": []}


@pytest.mark.unit
@pytest.mark.parametrize(
    "params",
    [
        {"limit": "0"},
        {"limit": "501"},
        {"after": "-1"},
        {"after": str(2**63)},
        {"event_type": "TaskExploded"},
    ],
)
async def test_events_rejects_bad_query(client, params):
    response = await client.get("/events", params=params)
    assert response.status_code == 400
    assert response.json()["error"] == "INVALID_PAYLOAD"
