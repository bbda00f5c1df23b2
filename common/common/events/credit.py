"""크레딧 원장 변경 이벤트 정의."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping, Self


class CreditEventType:
    """크레딧 이벤트 타입 상수."""

    CREDIT_DEBITED = "credit.debited"
    CREDIT_CREDITED = "credit.credited"


@dataclass(slots=True)
class CreditChangedEvent:
    """원장 변경 이벤트.

    차감/적립이 커밋된 뒤에만 발행된다. amount 는 원장 기록과 같이 부호가 있는 값이다
    (차감은 음수).
    """

    id: str
    type: str
    timestamp: str
    source: str
    version: str
    user_id: str
    transaction_id: str | None
    transaction_type: str
    amount: int
    balance_after: int
    sequence: int

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Self:
        return cls(
            id=str(data["id"]),
            type=str(data["type"]),
            timestamp=str(data["timestamp"]),
            source=str(data["source"]),
            version=str(data.get("version", "1.0")),
            user_id=str(data["user_id"]),
            transaction_id=data.get("transaction_id"),
            transaction_type=str(data["transaction_type"]),
            amount=int(data["amount"]),
            balance_after=int(data["balance_after"]),
            sequence=int(data["sequence"]),
        )
