from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field

from common.types.datetime import UtcDateTime

from ...constants import TRANSACTION_TYPE_PURCHASE


class CreditMutationRequest(BaseModel):
    """차감/적립 요청. amount 는 항상 0 이상이며 부호는 엔드포인트가 정한다."""

    amount: int = Field(ge=0)
    transaction_type: str = Field(min_length=1)
    description: str = ""
    metadata: dict[str, Any] = Field(default_factory=dict)
    idempotency_key: str | None = None


class CreditTopUpRequest(CreditMutationRequest):
    """적립 요청. transaction_type 을 생략하면 구매로 기록한다."""

    transaction_type: str = Field(default=TRANSACTION_TYPE_PURCHASE, min_length=1)


class CreditMutationResponse(BaseModel):
    user_id: str
    balance: int


class BalanceResponse(BaseModel):
    user_id: str
    balance: int


class CreditTransactionResponse(BaseModel):
    id: str | None
    amount: int
    balance_after: int
    transaction_type: str
    description: str
    metadata: dict[str, Any]
    sequence: int
    created_at: UtcDateTime


class TransactionListResponse(BaseModel):
    items: list[CreditTransactionResponse]
    limit: int


class CreditOverviewResponse(BaseModel):
    """잔액 + 최근 거래."""

    balance: int
    recent_transactions: list[CreditTransactionResponse]


class AffordabilityResponse(BaseModel):
    allowed: bool
    required: int
    available: int
    reason: str | None = None


class UsageStatsResponse(BaseModel):
    total_earned: int
    total_spent: int
    current_balance: int
    by_category: dict[str, int]


class LedgerAuditResponse(BaseModel):
    consistent: bool
    transaction_count: int
    replayed_balance: int
    current_balance: int
    first_mismatch_sequence: int | None = None


class GrantMonthlyResponse(BaseModel):
    granted: int
    balance: int


class PlanResponse(BaseModel):
    tier: str
    name: str
    monthly_credits: int
    price: int
    features: list[str]


class CreditCatalogResponse(BaseModel):
    """가격/업셀 화면용 비용표와 플랜표."""

    costs: dict[str, int]
    plans: list[PlanResponse]
