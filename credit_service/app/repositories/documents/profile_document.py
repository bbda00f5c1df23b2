from __future__ import annotations

from pydantic import BaseModel, ConfigDict

from ...models.plan import UserProfile


class UserProfileDocument(BaseModel):
    """MongoDB user_profiles 컬렉션 도큐먼트 (필요한 필드만).

    온보딩 쪽이 저장하는 나머지 필드(이름, 학교 등)는 무시한다.
    """

    model_config = ConfigDict(extra="ignore")

    user_id: str
    plan_type: str | None = None

    def to_domain(self) -> UserProfile:
        return UserProfile(user_id=self.user_id, plan_type=self.plan_type)
