"""크레딧 원장 MongoDB 도큐먼트.

credit_accounts: 유저당 1개의 잔액 문서. credits/sequence 는 원자적 $inc 로만 바뀐다.
credit_transactions: append-only 거래 기록.
"""

from __future__ import annotations

from typing import Any

from pydantic import Field

from common.mongo.types import (
    BaseDocument,
    build_document_data_from_domain,
    from_object_id,
)

from ...models.credit import CreditAccount, CreditTransaction


class CreditAccountDocument(BaseDocument):
    """MongoDB credit_accounts 컬렉션 도큐먼트 모델."""

    user_id: str
    credits: int = 0
    sequence: int = 0

    def to_domain(self) -> CreditAccount:
        return CreditAccount(
            user_id=self.user_id,
            credits=self.credits,
            sequence=self.sequence,
            created_at=self.created_at,
            updated_at=self.updated_at,
        )


class CreditTransactionDocument(BaseDocument):
    """MongoDB credit_transactions 컬렉션 도큐먼트 모델."""

    user_id: str
    amount: int
    balance_after: int
    transaction_type: str
    description: str
    metadata: dict[str, Any] = Field(default_factory=dict)
    idempotency_key: str | None = None
    sequence: int

    @classmethod
    def from_domain(cls, tx: CreditTransaction) -> "CreditTransactionDocument":
        data = build_document_data_from_domain(tx)
        return cls.model_validate(data)

    def to_domain(self) -> CreditTransaction:
        return CreditTransaction(
            id=from_object_id(self.id),
            user_id=self.user_id,
            amount=self.amount,
            balance_after=self.balance_after,
            transaction_type=self.transaction_type,
            description=self.description,
            metadata=self.metadata or {},
            idempotency_key=self.idempotency_key,
            sequence=self.sequence,
            created_at=self.created_at,
            updated_at=self.updated_at,
        )
