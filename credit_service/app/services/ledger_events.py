"""원장 변경 이벤트 발행.

이벤트는 커밋이 끝난 뒤의 알림일 뿐이므로, 발행 실패가 원장 변경을 되돌리지 않는다.
"""

from __future__ import annotations

import logging
from dataclasses import asdict
from datetime import datetime, timezone
from typing import Protocol

from common.eventbus.config import is_kafka_enabled
from common.eventbus.helpers import new_json_event
from common.eventbus.kafka import KafkaEventBus, get_kafka_event_bus
from common.eventbus.topics import TOPIC_CREDIT
from common.events.credit import CreditChangedEvent, CreditEventType

from ..models.credit import CreditTransaction


logger = logging.getLogger(__name__)

EVENT_SOURCE = "credit-service"


class LedgerEventPublisherInterface(Protocol):
    def publish_transaction(
        self, tx: CreditTransaction
    ) -> None:  # pragma: no cover - Protocol
        ...


class NullLedgerEventPublisher(LedgerEventPublisherInterface):
    """Kafka 가 설정되지 않은 환경용."""

    def publish_transaction(self, tx: CreditTransaction) -> None:
        return None


class KafkaLedgerEventPublisher(LedgerEventPublisherInterface):
    def __init__(self, bus: KafkaEventBus) -> None:
        self._bus = bus

    def publish_transaction(self, tx: CreditTransaction) -> None:
        event = build_credit_changed_event(tx)
        wrapped = new_json_event(payload=asdict(event), event_id=event.id)
        try:
            self._bus.publish(TOPIC_CREDIT.base, wrapped)
        except Exception:  # noqa: BLE001
            logger.exception(
                "failed to publish %s event for user_id=%s sequence=%d",
                event.type,
                tx.user_id,
                tx.sequence,
            )


def build_credit_changed_event(tx: CreditTransaction) -> CreditChangedEvent:
    event_type = (
        CreditEventType.CREDIT_DEBITED
        if tx.amount < 0
        else CreditEventType.CREDIT_CREDITED
    )
    return CreditChangedEvent(
        # 같은 원장 갱신에 대해 재발행되더라도 소비자가 중복을 걸러낼 수 있게 결정적인 ID 를 쓴다.
        id=f"{tx.user_id}:{tx.sequence}",
        type=event_type,
        timestamp=datetime.now(timezone.utc).isoformat(),
        source=EVENT_SOURCE,
        version="1.0",
        user_id=tx.user_id,
        transaction_id=tx.id,
        transaction_type=tx.transaction_type,
        amount=tx.amount,
        balance_after=tx.balance_after,
        sequence=tx.sequence,
    )


def get_ledger_event_publisher() -> LedgerEventPublisherInterface:
    if is_kafka_enabled():
        return KafkaLedgerEventPublisher(get_kafka_event_bus())
    return NullLedgerEventPublisher()
