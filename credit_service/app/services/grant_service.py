"""구독 플랜 기반 월간 크레딧 지급.

지급 주기(매월)는 외부 스케줄러/구독 이벤트가 결정하며, 여기서는 한 번의 지급 이벤트만 처리한다.
같은 달에 같은 플랜으로 여러 번 호출돼도 멱등성 키로 한 번만 지급된다.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from fastapi import Depends
from pymongo.database import Database

from common.mongo.client import get_database

from ..config import CreditsConfig, get_app_config
from ..constants import TRANSACTION_TYPE_SUBSCRIPTION
from ..exceptions import DuplicateTransactionError
from ..repositories.interfaces import UserProfileRepositoryInterface
from ..repositories.profile_repository import UserProfileRepository
from .credit_service import CreditService, build_credit_service


logger = logging.getLogger(__name__)


def current_period_key(now: datetime | None = None) -> str:
    current = now or datetime.now(timezone.utc)
    return current.strftime("%Y-%m")


class PlanGrantService:
    def __init__(
        self,
        credit_service: CreditService,
        profile_repo: UserProfileRepositoryInterface,
        credits_config: CreditsConfig,
    ) -> None:
        self._credit_service = credit_service
        self._profile_repo = profile_repo
        self._credits_config = credits_config

    def grant_monthly_credits(self, user_id: str, now: datetime | None = None) -> int:
        """유저 플랜의 월간 크레딧을 지급하고 지급량을 반환한다.

        프로필이 없거나, 알 수 없는 플랜이거나, 월간 크레딧이 0 이거나,
        이번 달에 이미 지급된 경우 0 을 반환한다.
        """
        profile = self._profile_repo.find_by_user_id(user_id)
        if profile is None:
            logger.info("monthly grant skipped: profile not found", extra={"user_id": user_id})
            return 0

        plan = self._credits_config.plan_of(profile.plan_type)
        if plan is None or plan.monthly_credits <= 0:
            return 0

        period = current_period_key(now)
        try:
            self._credit_service.credit(
                user_id,
                plan.monthly_credits,
                TRANSACTION_TYPE_SUBSCRIPTION,
                f"Monthly credits for {plan.tier} plan",
                metadata={"plan": plan.tier, "period": period},
                idempotency_key=f"{TRANSACTION_TYPE_SUBSCRIPTION}:{plan.tier}:{period}",
            )
        except DuplicateTransactionError:
            logger.info(
                "monthly grant already applied for period=%s plan=%s",
                period,
                plan.tier,
                extra={"user_id": user_id},
            )
            return 0

        return plan.monthly_credits


def build_plan_grant_service(database: Database) -> PlanGrantService:
    return PlanGrantService(
        credit_service=build_credit_service(database),
        profile_repo=UserProfileRepository(database),
        credits_config=get_app_config().credits,
    )


def get_plan_grant_service(db: Database = Depends(get_database)) -> PlanGrantService:
    """FastAPI DI용 PlanGrantService 팩토리."""
    return build_plan_grant_service(db)
