"""구독(플랜) 관련 이벤트 정의."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping, Self


class SubscriptionEventType:
    SUBSCRIPTION_RENEWED = "subscription.renewed"


@dataclass(slots=True)
class SubscriptionRenewedEvent:
    """구독 갱신 이벤트.

    결제/스케줄러 쪽에서 월 단위 갱신 시점에 발행하며, 크레딧 서비스는 이를 받아
    월간 크레딧을 지급한다. 플랜 정보는 이벤트가 아니라 유저 프로필에서 다시 읽는다.
    """

    id: str
    type: str
    timestamp: str
    source: str
    version: str
    user_id: str

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Self:
        return cls(
            id=str(data["id"]),
            type=str(data["type"]),
            timestamp=str(data["timestamp"]),
            source=str(data["source"]),
            version=str(data.get("version", "1.0")),
            user_id=str(data["user_id"]),
        )
