from __future__ import annotations

from .core import Topic


# 원장 변경 알림 (credit.debited / credit.credited)
TOPIC_CREDIT = Topic("rewise.credit")
# 구독 갱신 트리거 (subscription.renewed) -> 월간 크레딧 지급
TOPIC_SUBSCRIPTION = Topic("rewise.subscription")
