from __future__ import annotations

from pydantic import BaseModel, Field


class PlanConfig(BaseModel):
    """구독 플랜 설정. 런타임에 변경되지 않는다."""

    tier: str
    name: str
    monthly_credits: int
    price: int  # USD / month
    features: list[str] = Field(default_factory=list)


class UserProfile(BaseModel):
    """크레딧 서비스가 참조하는 유저 프로필의 일부.

    user_profiles 컬렉션은 온보딩/결제 쪽이 소유하며, 여기서는 읽기만 한다.
    """

    user_id: str
    plan_type: str | None = None
