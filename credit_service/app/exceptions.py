from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .models.credit import CreditTransaction


class CreditServiceError(Exception):
    """Base exception for all credit-service errors."""


class InvalidAmountError(CreditServiceError):
    """Negative amount."""


class InsufficientCreditsError(CreditServiceError):
    """Debit refused because the balance cannot cover it. Nothing was written."""

    def __init__(self, user_id: str, required: int, available: int) -> None:
        super().__init__(
            f"Insufficient credits. Need {required}, have {available}"
        )
        self.user_id = user_id
        self.required = required
        self.available = available


class StoreUnavailableError(CreditServiceError):
    """The store rejected a read or the balance write. Nothing was committed."""


class LedgerReconciliationError(CreditServiceError):
    """The balance changed but no transaction record explains it."""

    def __init__(self, user_id: str, amount: int, balance_after: int) -> None:
        super().__init__(
            "ledger requires reconciliation: "
            f"user_id={user_id} amount={amount} balance_after={balance_after}"
        )
        self.user_id = user_id
        self.amount = amount
        self.balance_after = balance_after


class DuplicateTransactionError(CreditServiceError):
    """A transaction with the same idempotency key was already recorded."""

    def __init__(
        self,
        user_id: str,
        idempotency_key: str,
        original: CreditTransaction | None = None,
    ) -> None:
        super().__init__(
            f"duplicate transaction: user_id={user_id} idempotency_key={idempotency_key}"
        )
        self.user_id = user_id
        self.idempotency_key = idempotency_key
        self.original = original
