"""Value-transfer capability consumed by the task registry."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from collections.abc import Sequence


@dataclass(frozen=True)
class Transfer:
    """One share of a release from registry custody."""

    recipient_id: str
    amount: int


class TransferError(Exception):
    """
    Raised when funds cannot be moved.

    reason is one of INSUFFICIENT_FUNDS, RECIPIENT_REJECTED or
    INSUFFICIENT_CUSTODY.
    """

    def __init__(self, reason: str, message: str, account_id: str | None = None) -> None:
        super().__init__(message)
        self.reason = reason
        self.message = message
        self.account_id = account_id


class FundsGateway(Protocol):
    """
    Moves value between identities and the registry's custody.

    Every call is all-or-nothing: on TransferError no balance has changed.
    """

    def deposit(self, payer_id: str, amount: int, reference: str) -> None:
        """Move amount from payer_id into custody."""
        ...

    def release(self, transfers: Sequence[Transfer], reference: str) -> None:
        """Pay every transfer out of custody, or none of them."""
        ...

    def held_balance(self) -> int:
        """Total value currently in custody."""
        ...
