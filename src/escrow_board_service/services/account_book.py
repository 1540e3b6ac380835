"""Account book: balances, transaction log, and registry custody."""

from __future__ import annotations

import sqlite3
import uuid
from datetime import UTC, datetime
from pathlib import Path
from threading import RLock
from typing import TYPE_CHECKING, cast

from escrow_board_service.core.exceptions import ServiceError
from escrow_board_service.services.funds import TransferError

if TYPE_CHECKING:
    from collections.abc import Sequence

    from escrow_board_service.services.funds import Transfer


class AccountBook:
    """
    SQLite ledger implementing the FundsGateway capability.

    Holds one balance per identity plus the registry's custody account.
    Every balance mutation and its transaction log entry are written in a
    single database transaction, so a failed deposit or release leaves
    no trace. Accounts spring into existence on first credit; an account
    with accepts_funds = 0 rejects every incoming transfer.
    """

    def __init__(self, db_path: str, custody_account_id: str) -> None:
        self._lock = RLock()
        self._custody_account_id = custody_account_id
        if db_path != ":memory:":
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._db = sqlite3.connect(db_path, check_same_thread=False)
        self._db.execute("PRAGMA journal_mode=WAL")
        self._db.execute("PRAGMA busy_timeout=5000")
        self._init_schema()

    def _init_schema(self) -> None:
        """Create tables and the custody account if they don't exist."""
        with self._lock:
            self._db.executescript(
                """
                CREATE TABLE IF NOT EXISTS accounts (
                    account_id TEXT PRIMARY KEY,
                    balance INTEGER NOT NULL DEFAULT 0 CHECK (balance >= 0),
                    accepts_funds INTEGER NOT NULL DEFAULT 1,
                    created_at TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS transactions (
                    tx_id TEXT PRIMARY KEY,
                    account_id TEXT NOT NULL REFERENCES accounts(account_id),
                    type TEXT NOT NULL,
                    amount INTEGER NOT NULL CHECK (amount > 0),
                    balance_after INTEGER NOT NULL,
                    reference TEXT NOT NULL,
                    timestamp TEXT NOT NULL
                );

                CREATE INDEX IF NOT EXISTS ix_transactions_account_timestamp_tx_id
                    ON transactions(account_id, timestamp, tx_id);
                """
            )
            self._db.execute(
                "INSERT OR IGNORE INTO accounts (account_id, balance, accepts_funds, created_at) "
                "VALUES (?, 0, 1, ?)",
                (self._custody_account_id, self._now()),
            )
            self._db.commit()

    @property
    def custody_account_id(self) -> str:
        return self._custody_account_id

    def _now(self) -> str:
        """Current UTC timestamp in ISO 8601 format."""
        return datetime.now(UTC).isoformat(timespec="microseconds").replace("+00:00", "Z")

    def _new_tx_id(self) -> str:
        return f"tx-{uuid.uuid4()}"

    # ------------------------------------------------------------------
    # Helpers: expect to be called inside an open DB transaction
    # ------------------------------------------------------------------

    def _ensure_account(self, account_id: str, now: str) -> None:
        self._db.execute(
            "INSERT OR IGNORE INTO accounts (account_id, balance, accepts_funds, created_at) "
            "VALUES (?, 0, 1, ?)",
            (account_id, now),
        )

    def _log(
        self,
        account_id: str,
        tx_type: str,
        amount: int,
        reference: str,
        now: str,
    ) -> int:
        row = self._db.execute(
            "SELECT balance FROM accounts WHERE account_id = ?",
            (account_id,),
        ).fetchone()
        if row is None:
            msg = f"Account {account_id} not found after update"
            raise RuntimeError(msg)
        new_balance = cast("int", row[0])
        self._db.execute(
            "INSERT INTO transactions "
            "(tx_id, account_id, type, amount, balance_after, reference, timestamp) "
            "VALUES (?, ?, ?, ?, ?, ?, ?)",
            (self._new_tx_id(), account_id, tx_type, amount, new_balance, reference, now),
        )
        return new_balance

    def _debit(self, account_id: str, amount: int, reason: str, reference: str, now: str) -> None:
        cursor = self._db.execute(
            "UPDATE accounts SET balance = balance - ? WHERE account_id = ? AND balance >= ?",
            (amount, account_id, amount),
        )
        if cursor.rowcount == 0:
            raise TransferError(
                reason,
                f"Account '{account_id}' cannot cover {amount}",
                account_id,
            )
        self._log(account_id, "debit", amount, reference, now)

    def _credit(self, account_id: str, amount: int, reference: str, now: str) -> None:
        self._ensure_account(account_id, now)
        cursor = self._db.execute(
            "UPDATE accounts SET balance = balance + ? WHERE account_id = ? AND accepts_funds = 1",
            (amount, account_id),
        )
        if cursor.rowcount == 0:
            raise TransferError(
                "RECIPIENT_REJECTED",
                f"Account '{account_id}' does not accept funds",
                account_id,
            )
        self._log(account_id, "credit", amount, reference, now)

    # ------------------------------------------------------------------
    # Account management
    # ------------------------------------------------------------------

    def get_account(self, account_id: str) -> dict[str, object] | None:
        """Look up an account by ID. Returns None if not found."""
        with self._lock:
            row = self._db.execute(
                "SELECT account_id, balance, accepts_funds, created_at "
                "FROM accounts WHERE account_id = ?",
                (account_id,),
            ).fetchone()
            if row is None:
                return None
            return {
                "account_id": row[0],
                "balance": row[1],
                "accepts_funds": bool(row[2]),
                "created_at": row[3],
            }

    def get_balance(self, account_id: str) -> int:
        """Balance of an account; unknown accounts hold nothing."""
        account = self.get_account(account_id)
        if account is None:
            return 0
        return cast("int", account["balance"])

    def credit(self, account_id: str, amount: int, reference: str) -> dict[str, object]:
        """
        Add new funds to an account, creating it if needed.

        Raises:
            ServiceError: INVALID_AMOUNT if amount is not positive.
            ServiceError: FORBIDDEN if account_id is the custody account.
            TransferError: RECIPIENT_REJECTED if the account refuses funds.
        """
        if amount <= 0:
            raise ServiceError("INVALID_AMOUNT", "Amount must be a positive integer", 400, {})
        if account_id == self._custody_account_id:
            raise ServiceError("FORBIDDEN", "Custody can only be funded by deposits", 403, {})

        with self._lock:
            now = self._now()
            try:
                self._db.execute("BEGIN IMMEDIATE")
                self._credit(account_id, amount, reference, now)
                self._db.commit()
            except Exception:
                self._db.rollback()
                raise
            return {"account_id": account_id, "balance": self.get_balance(account_id)}

    def set_accepts_funds(self, account_id: str, accepts_funds: bool) -> None:
        """Mark whether an account can receive transfers."""
        with self._lock:
            now = self._now()
            try:
                self._db.execute("BEGIN IMMEDIATE")
                self._ensure_account(account_id, now)
                self._db.execute(
                    "UPDATE accounts SET accepts_funds = ? WHERE account_id = ?",
                    (1 if accepts_funds else 0, account_id),
                )
                self._db.commit()
            except Exception:
                self._db.rollback()
                raise

    def get_transactions(self, account_id: str) -> list[dict[str, object]]:
        """Transaction history for an account, oldest first."""
        with self._lock:
            cursor = self._db.execute(
                "SELECT tx_id, type, amount, balance_after, reference, timestamp "
                "FROM transactions WHERE account_id = ? ORDER BY timestamp, tx_id",
                (account_id,),
            )
            return [
                {
                    "tx_id": row[0],
                    "type": row[1],
                    "amount": row[2],
                    "balance_after": row[3],
                    "reference": row[4],
                    "timestamp": row[5],
                }
                for row in cursor.fetchall()
            ]

    # ------------------------------------------------------------------
    # FundsGateway
    # ------------------------------------------------------------------

    def deposit(self, payer_id: str, amount: int, reference: str) -> None:
        """
        Move funds from a payer into custody.

        Raises:
            TransferError: INSUFFICIENT_FUNDS if the payer cannot cover amount.
        """
        if amount <= 0:
            raise ServiceError("INVALID_AMOUNT", "Amount must be a positive integer", 400, {})

        with self._lock:
            now = self._now()
            try:
                self._db.execute("BEGIN IMMEDIATE")
                self._debit(payer_id, amount, "INSUFFICIENT_FUNDS", reference, now)
                self._credit(self._custody_account_id, amount, reference, now)
                self._db.commit()
            except Exception:
                self._db.rollback()
                raise

    def release(self, transfers: Sequence[Transfer], reference: str) -> None:
        """
        Pay a batch of transfers out of custody in one transaction.

        Zero-amount shares are skipped.

        Raises:
            TransferError: INSUFFICIENT_CUSTODY, RECIPIENT_REJECTED.
        """
        shares = [transfer for transfer in transfers if transfer.amount > 0]
        if any(transfer.amount < 0 for transfer in transfers):
            raise ServiceError("INVALID_AMOUNT", "Transfer amounts must not be negative", 400, {})
        if not shares:
            return
        total = sum(transfer.amount for transfer in shares)

        with self._lock:
            now = self._now()
            try:
                self._db.execute("BEGIN IMMEDIATE")
                self._debit(self._custody_account_id, total, "INSUFFICIENT_CUSTODY", reference, now)
                for transfer in shares:
                    self._credit(transfer.recipient_id, transfer.amount, reference, now)
                self._db.commit()
            except Exception:
                self._db.rollback()
                raise

    def held_balance(self) -> int:
        """Balance currently held in custody."""
        return self.get_balance(self._custody_account_id)

    def close(self) -> None:
        """Close the database connection."""
        with self._lock:
            self._db.close()
