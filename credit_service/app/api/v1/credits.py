"""크레딧 원장 내부 API 라우터.

인증은 Gateway 에서 끝난 상태로 user_id 가 경로로 전달된다.
유료 액션 래퍼(with_credits)는 임의의 호출 가능 객체를 받으므로 HTTP 로 노출하지 않는다.
"""

from __future__ import annotations

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Query, status

from ...config import CreditsConfig, get_app_config
from ...constants import DEFAULT_HISTORY_LIMIT, MAX_HISTORY_LIMIT, RECENT_HISTORY_LIMIT
from ...exceptions import (
    CreditServiceError,
    DuplicateTransactionError,
    InsufficientCreditsError,
    InvalidAmountError,
    LedgerReconciliationError,
    StoreUnavailableError,
)
from ...models.credit import CreditTransaction
from ...services.credit_service import CreditService, get_credit_service
from ...services.grant_service import PlanGrantService, get_plan_grant_service
from ...services.usage_service import UsageService, get_usage_service
from ..schemas.credits import (
    AffordabilityResponse,
    BalanceResponse,
    CreditCatalogResponse,
    CreditMutationRequest,
    CreditMutationResponse,
    CreditOverviewResponse,
    CreditTopUpRequest,
    CreditTransactionResponse,
    GrantMonthlyResponse,
    LedgerAuditResponse,
    PlanResponse,
    TransactionListResponse,
    UsageStatsResponse,
)


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/credits", tags=["credits"])


# -------- Dependencies --------


def get_credits_config() -> CreditsConfig:
    return get_app_config().credits


CreditServiceDep = Annotated[CreditService, Depends(get_credit_service)]


# -------- Error mapping --------


def _to_http_exception(exc: CreditServiceError) -> HTTPException:
    if isinstance(exc, InsufficientCreditsError):
        return HTTPException(
            status_code=status.HTTP_402_PAYMENT_REQUIRED,
            detail={
                "code": "insufficient_credits",
                "message": str(exc),
                "required": exc.required,
                "available": exc.available,
            },
        )
    if isinstance(exc, DuplicateTransactionError):
        return HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={
                "code": "duplicate_transaction",
                "message": "A transaction with this idempotency key already exists.",
                "transaction_id": exc.original.id if exc.original else None,
            },
        )
    if isinstance(exc, InvalidAmountError):
        return HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail={"code": "invalid_amount", "message": str(exc)},
        )
    if isinstance(exc, LedgerReconciliationError):
        return HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={
                "code": "reconciliation_required",
                "message": "Your request was applied but could not be fully recorded. Support has been notified.",
            },
        )
    if not isinstance(exc, StoreUnavailableError):
        logger.error("unmapped credit service error: %r", exc)
    return HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail={"code": "store_unavailable", "message": "Please try again."},
    )


def _to_transaction_response(tx: CreditTransaction) -> CreditTransactionResponse:
    return CreditTransactionResponse(
        id=tx.id,
        amount=tx.amount,
        balance_after=tx.balance_after,
        transaction_type=tx.transaction_type,
        description=tx.description,
        metadata=tx.metadata,
        sequence=tx.sequence,
        created_at=tx.created_at,
    )


# -------- Endpoints --------


@router.get("/catalog")
def get_catalog(
    credits_config: Annotated[CreditsConfig, Depends(get_credits_config)],
) -> CreditCatalogResponse:
    """액션별 비용과 플랜별 월간 크레딧/가격."""
    return CreditCatalogResponse(
        costs=dict(credits_config.costs),
        plans=[
            PlanResponse(
                tier=plan.tier,
                name=plan.name,
                monthly_credits=plan.monthly_credits,
                price=plan.price,
                features=plan.features,
            )
            for plan in credits_config.plans.values()
        ],
    )


@router.get("/{user_id}")
def get_overview(user_id: str, credit_service: CreditServiceDep) -> CreditOverviewResponse:
    """잔액과 최근 거래 10건."""
    try:
        balance = credit_service.get_balance(user_id)
        recent = credit_service.get_transactions(user_id, RECENT_HISTORY_LIMIT)
    except CreditServiceError as exc:
        raise _to_http_exception(exc) from exc
    return CreditOverviewResponse(
        balance=balance,
        recent_transactions=[_to_transaction_response(tx) for tx in recent],
    )


@router.get("/{user_id}/balance")
def get_balance(user_id: str, credit_service: CreditServiceDep) -> BalanceResponse:
    try:
        balance = credit_service.get_balance(user_id)
    except CreditServiceError as exc:
        raise _to_http_exception(exc) from exc
    return BalanceResponse(user_id=user_id, balance=balance)


@router.get("/{user_id}/transactions")
def get_transactions(
    user_id: str,
    credit_service: CreditServiceDep,
    limit: Annotated[int, Query(ge=1, le=MAX_HISTORY_LIMIT)] = DEFAULT_HISTORY_LIMIT,
) -> TransactionListResponse:
    """최신순 거래 이력."""
    try:
        items = credit_service.get_transactions(user_id, limit)
    except CreditServiceError as exc:
        raise _to_http_exception(exc) from exc
    return TransactionListResponse(
        items=[_to_transaction_response(tx) for tx in items],
        limit=limit,
    )


@router.get("/{user_id}/stats")
def get_usage_stats(
    user_id: str,
    usage_service: Annotated[UsageService, Depends(get_usage_service)],
) -> UsageStatsResponse:
    try:
        stats = usage_service.get_usage_stats(user_id)
    except CreditServiceError as exc:
        raise _to_http_exception(exc) from exc
    return UsageStatsResponse(
        total_earned=stats.total_earned,
        total_spent=stats.total_spent,
        current_balance=stats.current_balance,
        by_category=stats.by_category,
    )


@router.get("/{user_id}/audit")
def audit_ledger(
    user_id: str,
    usage_service: Annotated[UsageService, Depends(get_usage_service)],
) -> LedgerAuditResponse:
    """거래 기록 재생 결과와 현재 잔액 대조 (운영/정산용)."""
    try:
        audit = usage_service.audit_ledger(user_id)
    except CreditServiceError as exc:
        raise _to_http_exception(exc) from exc
    if not audit.consistent:
        logger.error(
            "ledger audit mismatch: replayed=%d current=%d first_mismatch_sequence=%s",
            audit.replayed_balance,
            audit.current_balance,
            audit.first_mismatch_sequence,
            extra={"user_id": user_id},
        )
    return LedgerAuditResponse(
        consistent=audit.consistent,
        transaction_count=audit.transaction_count,
        replayed_balance=audit.replayed_balance,
        current_balance=audit.current_balance,
        first_mismatch_sequence=audit.first_mismatch_sequence,
    )


@router.get("/{user_id}/can-afford")
def can_afford(
    user_id: str,
    credit_service: CreditServiceDep,
    credits_config: Annotated[CreditsConfig, Depends(get_credits_config)],
    action: str | None = None,
    cost: Annotated[int | None, Query(ge=0)] = None,
) -> AffordabilityResponse:
    """액션 이름(action) 또는 비용(cost) 으로 사전 확인. 권고용."""
    if action is not None:
        cost = credits_config.cost_of(action.upper())
        if cost is None:
            raise HTTPException(
                status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
                detail={"code": "unknown_action", "message": f"Unknown action: {action}"},
            )
    if cost is None:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail={"code": "missing_cost", "message": "Either action or cost is required."},
        )

    try:
        result = credit_service.can_afford(user_id, cost)
    except CreditServiceError as exc:
        raise _to_http_exception(exc) from exc
    return AffordabilityResponse(
        allowed=result.allowed,
        required=result.required,
        available=result.available,
        reason=result.reason,
    )


@router.post("/{user_id}/debit")
def debit_credits(
    user_id: str,
    req: CreditMutationRequest,
    credit_service: CreditServiceDep,
) -> CreditMutationResponse:
    """크레딧 차감. 잔액 부족 시 402."""
    try:
        balance = credit_service.debit(
            user_id,
            req.amount,
            req.transaction_type,
            req.description,
            metadata=req.metadata,
            idempotency_key=req.idempotency_key,
        )
    except CreditServiceError as exc:
        raise _to_http_exception(exc) from exc
    return CreditMutationResponse(user_id=user_id, balance=balance)


@router.post("/{user_id}/credit")
def credit_credits(
    user_id: str,
    req: CreditTopUpRequest,
    credit_service: CreditServiceDep,
) -> CreditMutationResponse:
    """크레딧 적립 (구매, 관리자 조정 등)."""
    try:
        balance = credit_service.credit(
            user_id,
            req.amount,
            req.transaction_type,
            req.description,
            metadata=req.metadata,
            idempotency_key=req.idempotency_key,
        )
    except CreditServiceError as exc:
        raise _to_http_exception(exc) from exc
    return CreditMutationResponse(user_id=user_id, balance=balance)


@router.post("/{user_id}/grant-monthly")
def grant_monthly_credits(
    user_id: str,
    grant_service: Annotated[PlanGrantService, Depends(get_plan_grant_service)],
    credit_service: CreditServiceDep,
) -> GrantMonthlyResponse:
    """플랜 월간 크레딧 지급 트리거. 이미 지급된 달이면 granted=0."""
    try:
        granted = grant_service.grant_monthly_credits(user_id)
        balance = credit_service.get_balance(user_id)
    except CreditServiceError as exc:
        raise _to_http_exception(exc) from exc
    return GrantMonthlyResponse(granted=granted, balance=balance)
