from __future__ import annotations

import json
import logging
import threading
import time
from dataclasses import asdict
from typing import Callable

from confluent_kafka import Consumer, KafkaError, Producer, TopicPartition

from .config import get_brokers
from .core import Event, MaxRetryExceededError, RetryDelays, Topic

logger = logging.getLogger(__name__)


class KafkaEventBus:
    """confluent-kafka 기반 EventBus.

    - publish: Event 를 JSON 으로 인코딩해 비동기로 발행한다 (전달 실패는 콜백에서 로깅).
    - subscribe: 원래 토픽과 retry.N 토픽을 함께 읽는 수동 커밋 컨슈머 루프.
      핸들러가 실패하면 다음 retry 토픽, 재시도를 모두 소진하면 DLQ 로 재발행한 뒤 커밋한다.
      재발행마저 실패하면 커밋하지 않는다. retry 메시지는 RetryDelays 만큼 지난 뒤에 처리한다.
    """

    def __init__(self, brokers: str) -> None:
        self._producer = Producer({"bootstrap.servers": brokers})
        self._brokers = brokers

    def close(self) -> None:
        self._producer.flush()

    # 발행 -----------------------------------------------------------------
    def publish(self, topic: str, event: Event) -> None:
        payload = json.dumps(asdict(event), ensure_ascii=False).encode("utf-8")

        def _delivery_callback(err, msg) -> None:  # type: ignore[no-untyped-def]
            if err is not None:
                logger.error("failed to deliver message to %s: %s", msg.topic(), err)

        self._producer.produce(
            topic=topic,
            value=payload,
            key=event.id.encode("utf-8"),
            callback=_delivery_callback,
        )
        self._producer.poll(0)

    # 구독 -----------------------------------------------------------------
    def subscribe(
        self,
        group_id: str,
        topic: Topic,
        handler: Callable[[Event], None],
        *,
        poll_timeout: float = 0.5,
        stop_flag: list[bool] | None = None,
    ) -> None:
        consumer = Consumer(
            {
                "bootstrap.servers": self._brokers,
                "group.id": group_id,
                "auto.offset.reset": "earliest",
                "enable.auto.commit": False,
            }
        )
        consumer.subscribe([topic.base, *topic.get_retry_topics()])
        # 아직 재시도 시각이 되지 않은 retry 파티션 -> 재개 시각(epoch 초)
        paused: dict[tuple[str, int], float] = {}

        try:
            logger.info(
                "Kafka consumer started. group_id=%s topic=%s", group_id, topic.base
            )
            while not (stop_flag and stop_flag[0]):
                self._resume_due_partitions(consumer, paused)

                msg = consumer.poll(poll_timeout)
                if msg is None:
                    continue
                if msg.error():
                    if msg.error().code() != KafkaError._PARTITION_EOF:
                        logger.error("consumer error: %s", msg.error())
                    continue

                try:
                    raw = json.loads(msg.value())
                except ValueError as exc:
                    # 해석 불가능한 메시지는 재시도해도 소용없으므로 건너뛴다.
                    logger.error(
                        "invalid event payload on topic %s: %s", msg.topic(), exc
                    )
                    consumer.commit(message=msg, asynchronous=False)
                    continue

                evt = self._decode_event(raw)

                due_at = self._retry_due_at(msg, evt)
                if due_at > time.time():
                    # 같은 오프셋부터 다시 읽도록 되감고, 재시도 시각까지 파티션을 멈춘다.
                    tp = TopicPartition(msg.topic(), msg.partition(), msg.offset())
                    consumer.seek(tp)
                    consumer.pause([tp])
                    paused[(msg.topic(), msg.partition())] = due_at
                    continue

                try:
                    handler(evt)
                except Exception as exc:  # noqa: BLE001
                    if not self._reroute_failed_event(topic, evt, exc):
                        continue

                try:
                    consumer.commit(message=msg, asynchronous=False)
                except Exception as exc:  # noqa: BLE001
                    logger.error("offset commit error: %s", exc)
        finally:
            consumer.close()

    def _reroute_failed_event(self, topic: Topic, evt: Event, exc: Exception) -> bool:
        """실패한 이벤트를 다음 retry 토픽 또는 DLQ 로 보낸다. 성공하면 True."""
        evt.last_error = str(exc)
        next_retry = evt.retry + 1
        try:
            destination = topic.get_retry_topic(next_retry)
        except MaxRetryExceededError:
            destination = topic.dlq()
            logger.error(
                "event %s exceeded max retry, sending to DLQ %s: %s",
                evt.id,
                destination,
                exc,
            )
        else:
            evt.retry = next_retry
            logger.warning(
                "event %s failed, scheduling retry %d/%d to %s: %s",
                evt.id,
                evt.retry,
                evt.max_retry,
                destination,
                exc,
            )

        try:
            self.publish(destination, evt)
        except Exception as pub_exc:  # noqa: BLE001
            logger.error(
                "failed to publish event %s to %s: %s", evt.id, destination, pub_exc
            )
            return False
        return True

    @staticmethod
    def _resume_due_partitions(
        consumer: Consumer, paused: dict[tuple[str, int], float]
    ) -> None:
        now = time.time()
        due = [key for key, resume_at in paused.items() if resume_at <= now]
        if not due:
            return
        consumer.resume([TopicPartition(name, partition) for name, partition in due])
        for key in due:
            del paused[key]

    @staticmethod
    def _retry_due_at(msg, evt: Event) -> float:  # type: ignore[no-untyped-def]
        """retry.N 토픽 메시지가 처리 가능해지는 시각. 원래 토픽 메시지는 0."""
        if evt.retry <= 0 or evt.retry > len(RetryDelays):
            return 0.0
        _, timestamp_ms = msg.timestamp()
        if timestamp_ms <= 0:
            return 0.0
        return timestamp_ms / 1000.0 + RetryDelays[evt.retry - 1]

    @staticmethod
    def _decode_event(raw: dict) -> Event:
        return Event(
            id=str(raw.get("id", "")),
            payload=raw.get("payload"),
            retry=int(raw.get("retry", 0)),
            max_retry=int(raw.get("max_retry", 0)),
            last_error=raw.get("last_error"),
        )


_bus: KafkaEventBus | None = None
_bus_lock = threading.Lock()


def get_kafka_event_bus() -> KafkaEventBus:
    """프로세스 전역 KafkaEventBus (발행용) 싱글톤."""
    global _bus

    if _bus is not None:
        return _bus

    with _bus_lock:
        if _bus is None:
            _bus = KafkaEventBus(get_brokers())
    return _bus
