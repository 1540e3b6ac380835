"""Unit tests for RegistryStore."""

from __future__ import annotations

import pytest

from escrow_board_service.services.registry_store import OwnerMismatchError, RegistryStore


def _task_data(
    task_id: int,
    status: str = "open",
    client_id: str = "a-client",
) -> dict[str, object]:
    return {
        "task_id": task_id,
        "title": f"Task {task_id}",
        "description": "Description",
        "reward": 100,
        "client_id": client_id,
        "freelancer_id": None,
        "status": status,
        "deadline": 2_000_000_000,
        "freelancer_submitted": 0,
        "client_approved": 0,
        "escrow_balance": 100,
    }


@pytest.fixture
def store(tmp_path):
    registry_store = RegistryStore(db_path=str(tmp_path / "registry.db"))
    registry_store.init_meta("a-owner", 5)
    yield registry_store
    registry_store.close()


@pytest.mark.unit
def test_meta_initialized_once(tmp_path) -> None:
    """Re-opening keeps the stored fee; the owner cannot change."""
    path = str(tmp_path / "registry.db")
    first = RegistryStore(db_path=path)
    first.init_meta("a-owner", 5)
    with first.transaction():
        first.set_platform_fee(8)
    first.close()

    second = RegistryStore(db_path=path)
    meta = second.init_meta("a-owner", 5)
    assert meta == {"owner_id": "a-owner", "task_counter": 0, "platform_fee_percentage": 8}

    with pytest.raises(OwnerMismatchError):
        second.init_meta("a-someone-else", 5)
    second.close()


@pytest.mark.unit
def test_task_ids_are_sequential_and_roll_back(store) -> None:
    with store.transaction():
        assert store.next_task_id() == 1

    with pytest.raises(RuntimeError), store.transaction():
        assert store.next_task_id() == 2
        raise RuntimeError("abort")

    with store.transaction():
        assert store.next_task_id() == 2


@pytest.mark.unit
def test_task_crud_and_counts(store) -> None:
    with store.transaction():
        store.insert_task(_task_data(1))
        store.insert_task(_task_data(2, status="assigned"))

    task = store.get_task(1)
    assert task is not None
    assert task["status"] == "open"
    assert task["freelancer_submitted"] is False
    assert store.get_task(99) is None

    with store.transaction():
        changed = store.update_task(
            1, {"freelancer_id": "a-free", "status": "assigned"}, expected_status="open"
        )
        mismatch = store.update_task(2, {"status": "cancelled"}, expected_status="open")
    assert changed == 1
    assert mismatch == 0

    with store.transaction():
        store.update_task(1, {"freelancer_submitted": True}, expected_status=None)
    assert store.get_task(1)["freelancer_submitted"] is True

    assert store.count_tasks_by_status() == {"assigned": 2}


@pytest.mark.unit
def test_update_task_rejects_unknown_columns(store) -> None:
    with pytest.raises(ValueError, match="reward"):
        store.update_task(1, {"reward": 1}, expected_status=None)


@pytest.mark.unit
def test_list_tasks_filters_and_paginates(store) -> None:
    with store.transaction():
        for task_id in range(1, 6):
            client = "a-alice" if task_id % 2 else "a-bob"
            store.insert_task(_task_data(task_id, client_id=client))

    alice = store.list_tasks(None, "a-alice", None, None, None)
    assert [task["task_id"] for task in alice] == [1, 3, 5]

    page = store.list_tasks(None, None, None, 1, 2)
    assert [task["task_id"] for task in page] == [2, 3]

    tail = store.list_tasks(None, None, None, 3, None)
    assert [task["task_id"] for task in tail] == [4, 5]

    assert store.list_tasks("completed", None, None, None, None) == []


@pytest.mark.unit
def test_user_tasks_and_completed_counts(store) -> None:
    with store.transaction():
        store.insert_task(_task_data(1))
        store.insert_task(_task_data(2))
        store.append_user_task("a-free", 2)
        store.append_user_task("a-free", 1)
        store.increment_completed("a-free")
        store.increment_completed("a-free")

    assert store.get_user_tasks("a-free") == [2, 1]
    assert store.get_user_tasks("a-nobody") == []
    assert store.get_completed_count("a-free") == 2
    assert store.get_completed_count("a-nobody") == 0


@pytest.mark.unit
def test_events_are_ordered_and_filterable(store) -> None:
    with store.transaction():
        first = store.insert_event("TaskCreated", 1, "a-client", {"task_id": 1}, 100)
        second = store.insert_event("TaskCreated", 2, "a-client", {"task_id": 2}, 101)
        third = store.insert_event("TaskAssigned", 1, "a-free", {"task_id": 1}, 102)
    assert first < second < third

    every = store.list_events(None, 100, None, None)
    assert [event["event_id"] for event in every] == [first, second, third]
    assert every[0]["payload"] == {"task_id": 1}

    after_first = store.list_events(first, 100, None, None)
    assert [event["event_id"] for event in after_first] == [second, third]

    task_one = store.list_events(None, 100, 1, None)
    assert [event["event_type"] for event in task_one] == ["TaskCreated", "TaskAssigned"]

    assigned = store.list_events(None, 100, None, "TaskAssigned")
    assert [event["agent_id"] for event in assigned] == ["a-free"]

    assert len(store.list_events(None, 1, None, None)) == 1


@pytest.mark.unit
def test_transaction_rolls_back_every_write(store) -> None:
    with pytest.raises(RuntimeError), store.transaction():
        store.insert_task(_task_data(1))
        store.append_user_task("a-client", 1)
        store.insert_event("TaskCreated", 1, "a-client", {}, 100)
        raise RuntimeError("abort")

    assert store.get_task(1) is None
    assert store.get_user_tasks("a-client") == []
    assert store.list_events(None, 100, None, None) == []
