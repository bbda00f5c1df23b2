"""credit_service 전역에서 사용하는 기본 비용표/플랜표.

config.yaml 의 credits 섹션이 없을 때 사용되는 값이다.
"""

from __future__ import annotations

from enum import StrEnum


class CreditAction(StrEnum):
    """크레딧을 소모하는 유료 액션 이름."""

    DOCUMENT_UPLOAD = "DOCUMENT_UPLOAD"
    QUIZ_GENERATION = "QUIZ_GENERATION"
    FLASHCARD_GENERATION = "FLASHCARD_GENERATION"
    AI_EXPLANATION = "AI_EXPLANATION"
    DOCUMENT_REPROCESS = "DOCUMENT_REPROCESS"


class PlanTier(StrEnum):
    FREE = "free"
    STARTER = "starter"
    PRO = "pro"
    TEAM = "team"
    ENTERPRISE = "enterprise"


# 원장 transaction_type 값 (액션 차감은 액션 이름의 소문자를 그대로 쓴다)
TRANSACTION_TYPE_SUBSCRIPTION = "subscription"
TRANSACTION_TYPE_PURCHASE = "purchase"
TRANSACTION_TYPE_ADJUSTMENT = "adjustment"


DEFAULT_CREDIT_COSTS: dict[str, int] = {
    CreditAction.DOCUMENT_UPLOAD: 30,
    CreditAction.QUIZ_GENERATION: 3,
    CreditAction.FLASHCARD_GENERATION: 2,
    CreditAction.AI_EXPLANATION: 1,
    CreditAction.DOCUMENT_REPROCESS: 15,
}


# tier -> (표시 이름, 월간 크레딧, 월 가격(USD), 기능 목록)
DEFAULT_PLANS: dict[str, tuple[str, int, int, list[str]]] = {
    PlanTier.FREE: ("Free", 0, 0, ["0 uploads", "Community support"]),
    PlanTier.STARTER: ("Starter", 108, 9, ["3 uploads", "6 quizzes", "Email support"]),
    PlanTier.PRO: (
        "Pro",
        348,
        29,
        ["10 uploads", "16 quizzes", "Priority support", "Export"],
    ),
    PlanTier.TEAM: (
        "Team",
        1200,
        99,
        ["Unlimited uploads", "400 quizzes", "Team analytics", "Dedicated support"],
    ),
    PlanTier.ENTERPRISE: ("Enterprise", 0, 0, ["Custom"]),
}


# 거래 이력 조회 기본/최대 건수
DEFAULT_HISTORY_LIMIT = 50
MAX_HISTORY_LIMIT = 100
RECENT_HISTORY_LIMIT = 10
