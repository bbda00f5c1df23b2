from __future__ import annotations

from dataclasses import dataclass
from typing import Any


# 핸들러 실패 시 재시도 토픽(retry.1 ~ retry.N)으로 넘기며 기다릴 간격(초).
# 길이가 곧 최대 재시도 횟수이며, 모두 소진하면 DLQ 로 보낸다.
RetryDelays: list[float] = [
    60.0,
    300.0,
    900.0,
    3600.0,
]


class MaxRetryExceededError(Exception):
    """최대 재시도 횟수를 초과한 경우 사용되는 예외."""


@dataclass(slots=True)
class Event:
    """이벤트 버스로 오가는 메시지 봉투(envelope).

    payload 는 JSON 직렬화 가능한 dict 이며, 인코딩/디코딩은 KafkaEventBus 가 담당한다.
    """

    id: str
    payload: Any
    retry: int = 0
    max_retry: int = 0
    last_error: str | None = None

    def __post_init__(self) -> None:
        if self.max_retry <= 0 or self.max_retry > len(RetryDelays):
            self.max_retry = len(RetryDelays)


@dataclass(frozen=True, slots=True)
class Topic:
    base: str

    def dlq(self) -> str:
        return f"{self.base}.dlq"

    def get_retry_topics(self) -> list[str]:
        return [
            f"{self.base}.retry.{index}" for index in range(1, len(RetryDelays) + 1)
        ]

    def get_retry_topic(self, retry_count: int) -> str:
        if retry_count <= 0 or retry_count > len(RetryDelays):
            raise MaxRetryExceededError()
        return f"{self.base}.retry.{retry_count}"
