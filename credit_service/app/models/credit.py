"""크레딧 원장 도메인 모델.

유저당 잔액 문서(CreditAccount) 하나와 append-only 거래 기록(CreditTransaction) 목록으로 구성된다.
거래 기록을 sequence 순으로 재생하면 매 기록의 balance_after 가 재현되어야 한다.
"""

from __future__ import annotations

from datetime import datetime
from enum import StrEnum
from typing import Any, Generic, TypeVar

from pydantic import BaseModel, Field


T = TypeVar("T")


class CreditAccount(BaseModel):
    """유저 잔액 도메인 모델."""

    user_id: str
    credits: int  # 항상 0 이상
    sequence: int  # 잔액을 바꾼 원자적 갱신 횟수
    created_at: datetime
    updated_at: datetime


class CreditTransaction(BaseModel):
    """불변 거래 기록 도메인 모델."""

    id: str | None = None
    user_id: str
    amount: int  # 음수 = 차감, 양수 = 적립
    balance_after: int
    transaction_type: str  # "document_upload" | "quiz_generation" | "subscription" ...
    description: str
    metadata: dict[str, Any] = Field(default_factory=dict)
    idempotency_key: str | None = None
    sequence: int  # 이 거래를 만든 잔액 갱신의 sequence
    created_at: datetime
    updated_at: datetime


class Affordability(BaseModel):
    """차감 가능 여부 사전 확인 결과 (권고용)."""

    allowed: bool
    required: int
    available: int
    reason: str | None = None


class UsageStats(BaseModel):
    """유저 크레딧 사용 통계."""

    user_id: str
    total_earned: int
    total_spent: int
    current_balance: int
    by_category: dict[str, int]


class CreditErrorCode(StrEnum):
    INSUFFICIENT_CREDITS = "insufficient_credits"
    UNKNOWN_ACTION = "unknown_action"
    ACTION_FAILED = "action_failed"
    POST_PAYMENT_DEBIT_FAILED = "post_payment_debit_failed"
    STORE_UNAVAILABLE = "store_unavailable"
    DUPLICATE_REQUEST = "duplicate_request"


class CreditActionResult(BaseModel, Generic[T]):
    """유료 액션 실행 결과.

    - success=True 이면 data 에 액션 결과가 담기고 charged 만큼 차감된 상태다.
    - ACTION_FAILED 는 액션 자체의 실패이며 크레딧은 건드리지 않는다.
    - POST_PAYMENT_DEBIT_FAILED 는 액션은 이미 수행됐지만 과금되지 않은 상태로,
      data 에 액션 결과가 그대로 담긴다.
    - DUPLICATE_REQUEST 는 같은 멱등성 키가 이미 과금된 경우로, 액션을 다시 실행하지 않는다.
    """

    success: bool
    data: T | None = None
    error: str | None = None
    error_code: CreditErrorCode | None = None
    charged: int = 0
    balance_after: int | None = None
    required: int | None = None
    available: int | None = None
