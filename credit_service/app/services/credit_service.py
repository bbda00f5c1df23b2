"""크레딧 서비스.

잔액 조회, 차감 가능 여부 사전 확인(권고용), 원자적 차감/적립과 거래 기록, 이력 조회를 처리한다.

차감/적립은 두 번의 쓰기로 이루어진다.
1. 잔액 문서의 원자적 갱신 (저장소가 바닥 검사까지 수행)
2. 거래 기록 append
1 이 실패하면 아무것도 남지 않는다. 1 이 성공하고 2 가 실패하면 잔액만 바뀐 상태이므로
LedgerReconciliationError 로 크게 알린다.

잔액을 바꾼 원자적 갱신은 되돌리는 갱신까지 포함해 모두 거래 기록을 남긴다.
그래야 동시 요청이 끼어들어도 기록을 sequence 순으로 재생한 값이 잔액과 일치한다.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

from fastapi import Depends
from pymongo.database import Database

from common.mongo.client import get_database

from ..constants import (
    DEFAULT_HISTORY_LIMIT,
    MAX_HISTORY_LIMIT,
    TRANSACTION_TYPE_ADJUSTMENT,
)
from ..exceptions import (
    DuplicateTransactionError,
    InsufficientCreditsError,
    InvalidAmountError,
    LedgerReconciliationError,
    StoreUnavailableError,
)
from ..models.credit import Affordability, CreditAccount, CreditTransaction
from ..repositories.credit_repository import (
    CreditAccountRepository,
    CreditTransactionRepository,
)
from ..repositories.interfaces import (
    CreditAccountRepositoryInterface,
    CreditTransactionRepositoryInterface,
)
from .ledger_events import (
    LedgerEventPublisherInterface,
    NullLedgerEventPublisher,
    get_ledger_event_publisher,
)


logger = logging.getLogger(__name__)

# 조건부 차감이 실패했는데 다시 읽은 잔액은 충분한 경우(동시 적립) 재시도 횟수
DEBIT_ATTEMPTS = 3


class CreditService:
    """크레딧 원장 비즈니스 로직."""

    def __init__(
        self,
        account_repo: CreditAccountRepositoryInterface,
        transaction_repo: CreditTransactionRepositoryInterface,
        publisher: LedgerEventPublisherInterface | None = None,
    ) -> None:
        self._account_repo = account_repo
        self._transaction_repo = transaction_repo
        self._publisher = publisher or NullLedgerEventPublisher()

    # -------- 조회 --------

    def get_balance(self, user_id: str) -> int:
        """현재 잔액. 계정이 없으면 0 (에러 아님)."""
        account = self._account_repo.get(user_id)
        if account is None:
            return 0
        return account.credits

    def can_afford(self, user_id: str, cost: int) -> Affordability:
        """잔액이 cost 이상인지 확인한다.

        권고용 사전 확인일 뿐이며, 실제 판정은 debit 내부의 원자적 갱신이 다시 한다.
        """
        _validate_amount(cost)
        balance = self.get_balance(user_id)
        if balance >= cost:
            return Affordability(allowed=True, required=cost, available=balance)
        return Affordability(
            allowed=False,
            required=cost,
            available=balance,
            reason=f"Insufficient credits. Need {cost}, have {balance}",
        )

    def get_transactions(
        self, user_id: str, limit: int = DEFAULT_HISTORY_LIMIT
    ) -> list[CreditTransaction]:
        """최신순 거래 이력. limit 은 MAX_HISTORY_LIMIT 로 제한된다."""
        if limit <= 0:
            limit = DEFAULT_HISTORY_LIMIT
        return self._transaction_repo.list_by_user(user_id, min(limit, MAX_HISTORY_LIMIT))

    def find_transaction(
        self, user_id: str, idempotency_key: str
    ) -> CreditTransaction | None:
        """멱등성 키로 이미 기록된 거래를 찾는다."""
        return self._transaction_repo.find_by_idempotency_key(user_id, idempotency_key)

    # -------- 변경 --------

    def debit(
        self,
        user_id: str,
        amount: int,
        transaction_type: str,
        description: str,
        metadata: dict[str, Any] | None = None,
        idempotency_key: str | None = None,
    ) -> int:
        """크레딧 차감. 성공 시 차감 후 잔액을 반환한다.

        잔액이 부족하면 InsufficientCreditsError 를 올리며, 잔액과 거래 기록 모두 바뀌지 않는다.
        """
        _validate_amount(amount)
        self._reject_duplicate(user_id, idempotency_key)

        account = self._apply_debit(user_id, amount, transaction_type)
        tx = self._record(
            account,
            signed_amount=-amount,
            transaction_type=transaction_type,
            description=description,
            metadata=metadata,
            idempotency_key=idempotency_key,
        )
        return tx.balance_after

    def credit(
        self,
        user_id: str,
        amount: int,
        transaction_type: str,
        description: str,
        metadata: dict[str, Any] | None = None,
        idempotency_key: str | None = None,
    ) -> int:
        """크레딧 적립. 하한 검사 없음. 성공 시 적립 후 잔액을 반환한다."""
        _validate_amount(amount)
        self._reject_duplicate(user_id, idempotency_key)

        account = self._account_repo.apply_credit(user_id, amount)
        tx = self._record(
            account,
            signed_amount=amount,
            transaction_type=transaction_type,
            description=description,
            metadata=metadata,
            idempotency_key=idempotency_key,
        )
        return tx.balance_after

    # -------- 내부 --------

    def _apply_debit(
        self, user_id: str, amount: int, transaction_type: str
    ) -> CreditAccount:
        """조건부 원자 차감. 거절 시 그때 읽은 잔액으로 InsufficientCreditsError 를 올린다."""
        for _ in range(DEBIT_ATTEMPTS):
            account = self._account_repo.try_debit(user_id, amount)
            if account is not None:
                return account

            current = self._account_repo.get(user_id)
            if current is None and amount == 0:
                # 0 차감은 항상 성립한다. 계정이 없으면 만들고 다시 시도한다.
                self._account_repo.ensure(user_id)
                continue

            available = current.credits if current is not None else 0
            if available < amount:
                logger.info(
                    "debit refused: insufficient credits",
                    extra={
                        "user_id": user_id,
                        "transaction_type": transaction_type,
                        "amount": -amount,
                    },
                )
                raise InsufficientCreditsError(user_id, amount, available)
            # 갱신과 재조회 사이에 적립이 들어왔다.

        logger.warning(
            "debit gave up after %d contended attempts",
            DEBIT_ATTEMPTS,
            extra={"user_id": user_id, "transaction_type": transaction_type, "amount": -amount},
        )
        raise StoreUnavailableError(f"balance update contended (user_id={user_id})")

    def _reject_duplicate(self, user_id: str, idempotency_key: str | None) -> None:
        if not idempotency_key:
            return
        original = self.find_transaction(user_id, idempotency_key)
        if original is not None:
            raise DuplicateTransactionError(user_id, idempotency_key, original)

    def _record(
        self,
        account: CreditAccount,
        *,
        signed_amount: int,
        transaction_type: str,
        description: str,
        metadata: dict[str, Any] | None,
        idempotency_key: str | None,
    ) -> CreditTransaction:
        """잔액 갱신이 끝난 뒤 거래 기록을 남긴다."""
        tx = _build_transaction(
            account,
            signed_amount=signed_amount,
            transaction_type=transaction_type,
            description=description,
            metadata=dict(metadata or {}),
            idempotency_key=idempotency_key,
        )

        try:
            return self._commit(tx)
        except DuplicateTransactionError:
            # 사전 확인 이후 같은 키의 동시 요청이 먼저 기록됐다.
            self._revert_duplicate(tx)
            raise

    def _commit(self, tx: CreditTransaction) -> CreditTransaction:
        try:
            saved = self._transaction_repo.create(tx)
        except StoreUnavailableError as exc:
            logger.error(
                "balance updated but transaction record failed; reconciliation required",
                exc_info=True,
                extra={
                    "user_id": tx.user_id,
                    "transaction_type": tx.transaction_type,
                    "amount": tx.amount,
                    "balance_after": tx.balance_after,
                },
            )
            raise LedgerReconciliationError(tx.user_id, tx.amount, tx.balance_after) from exc

        logger.info(
            "ledger transaction committed",
            extra={
                "user_id": saved.user_id,
                "transaction_type": saved.transaction_type,
                "amount": saved.amount,
                "balance_after": saved.balance_after,
            },
        )
        self._publisher.publish_transaction(saved)
        return saved

    def _revert_duplicate(self, tx: CreditTransaction) -> None:
        """중복 키로 기록에 실패한 잔액 변경을 키 없이 기록하고, 되돌리는 조정 거래를 남긴다."""
        key = tx.idempotency_key or ""
        self._commit(
            tx.model_copy(
                update={
                    "idempotency_key": None,
                    "metadata": {**tx.metadata, "duplicate_idempotency_key": key},
                }
            )
        )

        try:
            if tx.amount < 0:
                reverted = self._account_repo.apply_credit(tx.user_id, -tx.amount)
            else:
                reverted = self._account_repo.try_debit(tx.user_id, tx.amount)
        except StoreUnavailableError as exc:
            logger.error(
                "failed to revert duplicate mutation",
                exc_info=True,
                extra={"user_id": tx.user_id, "amount": tx.amount},
            )
            raise LedgerReconciliationError(tx.user_id, tx.amount, tx.balance_after) from exc

        if reverted is None:
            # 되돌릴 적립분이 이미 소비됨. 기록은 일치하지만 이중 적립이 남는다.
            logger.error(
                "failed to revert duplicate credit: balance already spent",
                extra={"user_id": tx.user_id, "amount": tx.amount},
            )
            raise LedgerReconciliationError(tx.user_id, tx.amount, tx.balance_after)

        self._commit(
            _build_transaction(
                reverted,
                signed_amount=-tx.amount,
                transaction_type=TRANSACTION_TYPE_ADJUSTMENT,
                description=f"Reversal of duplicate request {key}",
                metadata={"reverts_sequence": tx.sequence, "duplicate_idempotency_key": key},
                idempotency_key=None,
            )
        )


def _build_transaction(
    account: CreditAccount,
    *,
    signed_amount: int,
    transaction_type: str,
    description: str,
    metadata: dict[str, Any],
    idempotency_key: str | None,
) -> CreditTransaction:
    now = datetime.now(timezone.utc)
    return CreditTransaction(
        user_id=account.user_id,
        amount=signed_amount,
        balance_after=account.credits,
        transaction_type=transaction_type,
        description=description,
        metadata=metadata,
        idempotency_key=idempotency_key,
        sequence=account.sequence,
        created_at=now,
        updated_at=now,
    )


def _validate_amount(amount: int) -> None:
    if amount < 0:
        raise InvalidAmountError(f"amount must be a non-negative integer, got {amount}")


def build_credit_service(database: Database) -> CreditService:
    return CreditService(
        account_repo=CreditAccountRepository(database),
        transaction_repo=CreditTransactionRepository(database),
        publisher=get_ledger_event_publisher(),
    )


def get_credit_service(db: Database = Depends(get_database)) -> CreditService:
    """FastAPI DI용 CreditService 팩토리."""
    return build_credit_service(db)
