"""구독 이벤트 핸들러.

subscription.renewed 이벤트를 소비하여 월간 크레딧을 지급한다.
지급 실패(저장소 오류 등)는 예외로 올려 이벤트 버스의 retry/DLQ 경로를 타게 한다.
"""

from __future__ import annotations

import logging

from pymongo.database import Database

from common.eventbus.config import get_brokers, get_group_id
from common.eventbus.core import Event
from common.eventbus.kafka import KafkaEventBus
from common.eventbus.topics import TOPIC_SUBSCRIPTION
from common.events.subscription import SubscriptionEventType, SubscriptionRenewedEvent

from ..services.grant_service import PlanGrantService, build_plan_grant_service


logger = logging.getLogger(__name__)


def handle_subscription_event(evt: Event, *, grant_service: PlanGrantService) -> None:
    payload = evt.payload
    if not isinstance(payload, dict):
        logger.error("unexpected payload type for event %s: %r", evt.id, type(payload))
        return

    event_type = str(payload.get("type", ""))
    if event_type != SubscriptionEventType.SUBSCRIPTION_RENEWED:
        logger.debug("ignoring subscription event type=%s id=%s", event_type, evt.id)
        return

    try:
        event = SubscriptionRenewedEvent.from_dict(payload)
    except (KeyError, TypeError, ValueError):
        logger.exception("failed to decode SubscriptionRenewedEvent payload=%r", payload)
        raise

    logger.info(
        "handling subscription.renewed event id=%s", event.id, extra={"user_id": event.user_id}
    )
    granted = grant_service.grant_monthly_credits(event.user_id)
    logger.info(
        "monthly grant handled for event id=%s granted=%d",
        event.id,
        granted,
        extra={"user_id": event.user_id},
    )


def run_subscription_consumer(stop_flag: list[bool], database: Database) -> None:
    """구독 이벤트를 소비하는 구독 루프를 실행한다 (블로킹)."""
    logger.info("subscription-consumer starting up")

    group_id = get_group_id() + "-subscription"
    bus = KafkaEventBus(get_brokers())
    grant_service = build_plan_grant_service(database)

    try:
        logger.info(
            "subscribing to topic=%s group_id=%s", TOPIC_SUBSCRIPTION.base, group_id
        )
        bus.subscribe(
            group_id=group_id,
            topic=TOPIC_SUBSCRIPTION,
            handler=lambda evt: handle_subscription_event(evt, grant_service=grant_service),
            stop_flag=stop_flag,
        )
    finally:
        bus.close()
        logger.info("subscription-consumer stopped")
