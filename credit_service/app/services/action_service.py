"""유료 액션 실행 + 과금.

정책: 먼저 수행하고 나중에 과금한다 (perform-then-charge).
1. 비용표에서 액션 비용 조회. 멱등성 키가 이미 기록돼 있으면 액션을 실행하지 않고 종료
2. 사전 확인(can_afford) 실패 시 액션을 실행하지 않고 종료
3. 액션 실행. 실패하면 크레딧은 건드리지 않는다.
4. 액션 성공 후 차감. 그 사이 잔액이 줄어 차감이 실패하면 액션 결과는 되돌리지 않고
   POST_PAYMENT_DEBIT_FAILED 로 보고한다 (미과금 사용).
"""

from __future__ import annotations

import logging
from typing import Any, Callable, TypeVar

from pymongo.database import Database

from ..config import CreditsConfig, get_app_config
from ..exceptions import (
    DuplicateTransactionError,
    InsufficientCreditsError,
    StoreUnavailableError,
)
from ..models.credit import CreditActionResult, CreditErrorCode
from .credit_service import CreditService, build_credit_service


logger = logging.getLogger(__name__)

T = TypeVar("T")

STORE_UNAVAILABLE_MESSAGE = "Credit service is temporarily unavailable. Please try again."


class CreditActionService:
    def __init__(self, credit_service: CreditService, credits_config: CreditsConfig) -> None:
        self._credit_service = credit_service
        self._credits_config = credits_config

    def with_credits(
        self,
        user_id: str,
        action_name: str,
        action: Callable[[], T],
        metadata: dict[str, Any] | None = None,
        idempotency_key: str | None = None,
    ) -> CreditActionResult[T]:
        """action 을 실행하고 성공하면 action_name 의 비용만큼 차감한다.

        LedgerReconciliationError (잔액은 차감됐으나 기록 실패) 는 결과 값으로 숨기지 않고 그대로 올린다.
        """
        action_name = str(action_name)
        cost = self._credits_config.cost_of(action_name)
        if cost is None:
            return CreditActionResult(
                success=False,
                error=f"Unknown action: {action_name}",
                error_code=CreditErrorCode.UNKNOWN_ACTION,
            )

        try:
            if idempotency_key:
                original = self._credit_service.find_transaction(user_id, idempotency_key)
                if original is not None:
                    return CreditActionResult(
                        success=False,
                        error=f"Request already processed: {idempotency_key}",
                        error_code=CreditErrorCode.DUPLICATE_REQUEST,
                        balance_after=self._credit_service.get_balance(user_id),
                    )
            affordability = self._credit_service.can_afford(user_id, cost)
        except StoreUnavailableError:
            logger.warning("affordability check failed", exc_info=True, extra={"user_id": user_id})
            return CreditActionResult(
                success=False,
                error=STORE_UNAVAILABLE_MESSAGE,
                error_code=CreditErrorCode.STORE_UNAVAILABLE,
            )

        if not affordability.allowed:
            return CreditActionResult(
                success=False,
                error=affordability.reason,
                error_code=CreditErrorCode.INSUFFICIENT_CREDITS,
                required=affordability.required,
                available=affordability.available,
            )

        try:
            data = action()
        except Exception as exc:  # noqa: BLE001
            logger.warning(
                "paid action %s failed; nothing charged",
                action_name,
                exc_info=True,
                extra={"user_id": user_id},
            )
            return CreditActionResult(
                success=False,
                error=str(exc) or type(exc).__name__,
                error_code=CreditErrorCode.ACTION_FAILED,
            )

        transaction_type = action_name.lower()
        try:
            balance_after = self._credit_service.debit(
                user_id,
                cost,
                transaction_type,
                f"Performed action: {action_name}",
                metadata=metadata,
                idempotency_key=idempotency_key,
            )
        except DuplicateTransactionError as exc:
            # 같은 키의 동시 요청이 먼저 과금됐다. 이 실행분은 미과금 사용이다.
            logger.error(
                "paid action %s completed but duplicate key was charged concurrently: unbilled usage",
                action_name,
                extra={"user_id": user_id, "transaction_type": transaction_type, "amount": -cost},
            )
            return CreditActionResult(
                success=False,
                data=data,
                error=str(exc),
                error_code=CreditErrorCode.POST_PAYMENT_DEBIT_FAILED,
            )
        except InsufficientCreditsError as exc:
            logger.error(
                "paid action %s completed but debit failed: unbilled usage",
                action_name,
                extra={"user_id": user_id, "transaction_type": transaction_type, "amount": -cost},
            )
            return CreditActionResult(
                success=False,
                data=data,
                error=str(exc),
                error_code=CreditErrorCode.POST_PAYMENT_DEBIT_FAILED,
                required=exc.required,
                available=exc.available,
            )
        except StoreUnavailableError:
            logger.error(
                "paid action %s completed but debit failed: unbilled usage",
                action_name,
                exc_info=True,
                extra={"user_id": user_id, "transaction_type": transaction_type, "amount": -cost},
            )
            return CreditActionResult(
                success=False,
                data=data,
                error=STORE_UNAVAILABLE_MESSAGE,
                error_code=CreditErrorCode.POST_PAYMENT_DEBIT_FAILED,
            )

        return CreditActionResult(
            success=True,
            data=data,
            charged=cost,
            balance_after=balance_after,
        )


def build_credit_action_service(database: Database) -> CreditActionService:
    """문서 업로드/퀴즈 생성 핸들러 등 같은 프로세스의 호출자가 사용하는 팩토리."""
    return CreditActionService(
        credit_service=build_credit_service(database),
        credits_config=get_app_config().credits,
    )
