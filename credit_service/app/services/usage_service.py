"""크레딧 사용 통계 / 원장 감사."""

from __future__ import annotations

from collections import defaultdict

from fastapi import Depends
from pydantic import BaseModel
from pymongo.database import Database

from common.mongo.client import get_database

from ..models.credit import UsageStats
from ..repositories.credit_repository import CreditTransactionRepository
from ..repositories.interfaces import CreditTransactionRepositoryInterface
from .credit_service import CreditService, build_credit_service


class LedgerAudit(BaseModel):
    """거래 기록 재생 결과."""

    user_id: str
    consistent: bool
    transaction_count: int
    replayed_balance: int
    current_balance: int
    # 처음으로 balance_after 가 재생 값과 어긋난 거래의 sequence
    first_mismatch_sequence: int | None = None


class UsageService:
    def __init__(
        self,
        credit_service: CreditService,
        transaction_repo: CreditTransactionRepositoryInterface,
    ) -> None:
        self._credit_service = credit_service
        self._transaction_repo = transaction_repo

    def get_usage_stats(self, user_id: str) -> UsageStats:
        """전체 거래 기록 기반 통계.

        current_balance 는 합계에서 유도하지 않고 잔액 문서에서 따로 읽는다.
        정상 상태라면 total_earned - total_spent 와 같다.
        """
        transactions = self._transaction_repo.list_all_by_user(user_id)

        total_earned = sum(tx.amount for tx in transactions if tx.amount > 0)
        total_spent = abs(sum(tx.amount for tx in transactions if tx.amount < 0))

        by_category: dict[str, int] = defaultdict(int)
        for tx in transactions:
            if tx.amount < 0:
                by_category[tx.transaction_type] += abs(tx.amount)

        return UsageStats(
            user_id=user_id,
            total_earned=total_earned,
            total_spent=total_spent,
            current_balance=self._credit_service.get_balance(user_id),
            by_category=dict(by_category),
        )

    def audit_ledger(self, user_id: str) -> LedgerAudit:
        """0 에서 시작해 amount 를 순서대로 더하며 각 balance_after 와 현재 잔액을 대조한다."""
        transactions = self._transaction_repo.list_all_by_user(user_id)

        running = 0
        first_mismatch: int | None = None
        for tx in transactions:
            running += tx.amount
            if first_mismatch is None and running != tx.balance_after:
                first_mismatch = tx.sequence

        current_balance = self._credit_service.get_balance(user_id)
        return LedgerAudit(
            user_id=user_id,
            consistent=first_mismatch is None and running == current_balance,
            transaction_count=len(transactions),
            replayed_balance=running,
            current_balance=current_balance,
            first_mismatch_sequence=first_mismatch,
        )


def get_usage_service(db: Database = Depends(get_database)) -> UsageService:
    """FastAPI DI용 UsageService 팩토리."""
    return UsageService(
        credit_service=build_credit_service(db),
        transaction_repo=CreditTransactionRepository(db),
    )
