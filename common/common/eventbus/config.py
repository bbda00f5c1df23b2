from __future__ import annotations

import os


KAFKA_BOOTSTRAP_SERVERS_ENV = "KAFKA_BOOTSTRAP_SERVERS"
KAFKA_GROUP_ID_ENV = "KAFKA_GROUP_ID"


def is_kafka_enabled() -> bool:
    """KAFKA_BOOTSTRAP_SERVERS 가 설정된 경우에만 이벤트 발행/구독을 켠다."""
    return bool(os.getenv(KAFKA_BOOTSTRAP_SERVERS_ENV, "").strip())


def get_brokers() -> str:
    value = os.getenv(KAFKA_BOOTSTRAP_SERVERS_ENV)
    if not value:
        raise RuntimeError(
            f"{KAFKA_BOOTSTRAP_SERVERS_ENV} environment variable is required"
        )
    return value


DEFAULT_GROUP_ID = "credit-service"


def get_group_id() -> str:
    return os.getenv(KAFKA_GROUP_ID_ENV, "").strip() or DEFAULT_GROUP_ID
