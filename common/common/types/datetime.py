from __future__ import annotations

from datetime import datetime, timezone
from typing import Annotated

from pydantic.functional_serializers import PlainSerializer


def as_utc(value: datetime) -> datetime:
    """naive datetime 은 UTC 로 간주하고, aware datetime 은 UTC 로 변환한다."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _to_iso8601(value: datetime) -> str:
    return as_utc(value).isoformat()


# API 응답의 시각 필드. JSON 으로 내보낼 때만 "+00:00" 이 붙은 문자열이 된다.
UtcDateTime = Annotated[
    datetime,
    PlainSerializer(_to_iso8601, return_type=str, when_used="json"),
]
