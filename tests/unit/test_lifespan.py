"""Lifespan startup tests for the escrow board service."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from escrow_board_service.app import create_app
from escrow_board_service.core.lifespan import lifespan
from escrow_board_service.services.account_book import AccountBook
from escrow_board_service.services.registry_store import OwnerMismatchError, RegistryStore

if TYPE_CHECKING:
    from pathlib import Path


def _write_config(tmp_path: Path, owner_id: str) -> Path:
    config_path = tmp_path / "config.yaml"
    config_path.write_text(f"""\
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
  custody_account_id: "escrow-board-custody"
identity:
  base_url: "http://localhost:8001"
  verify_jws_path: "/agents/verify-jws"
  timeout_seconds: 10
platform:
  owner_id: "{owner_id}"
  platform_fee_percentage: 5
request:
  max_body_size: 1048576
""")
    return config_path


@pytest.mark.unit
async def test_owner_mismatch_closes_stores(tmp_path, monkeypatch) -> None:
    existing = RegistryStore(db_path=str(tmp_path / "registry.db"))
    existing.init_meta("a-original-owner", 5)
    existing.close()

    monkeypatch.setenv("CONFIG_PATH", str(_write_config(tmp_path, "a-other-owner")))

    closed: list[str] = []
    book_close = AccountBook.close
    store_close = RegistryStore.close

    def _record_book_close(self: AccountBook) -> None:
        closed.append("account_book")
        book_close(self)

    def _record_store_close(self: RegistryStore) -> None:
        closed.append("registry_store")
        store_close(self)

    monkeypatch.setattr(AccountBook, "close", _record_book_close)
    monkeypatch.setattr(RegistryStore, "close", _record_store_close)

    with pytest.raises(OwnerMismatchError):
        async with lifespan(create_app()):
            pass

    assert sorted(closed) == ["account_book", "registry_store"]


@pytest.mark.unit
async def test_lifespan_closes_account_book_on_shutdown(tmp_path, monkeypatch) -> None:
    monkeypatch.setenv("CONFIG_PATH", str(_write_config(tmp_path, "a-platform-id")))

    closed: list[str] = []
    book_close = AccountBook.close

    def _record_book_close(self: AccountBook) -> None:
        closed.append("account_book")
        book_close(self)

    monkeypatch.setattr(AccountBook, "close", _record_book_close)

    async with lifespan(create_app()):
        assert closed == []

    assert closed == ["account_book"]
