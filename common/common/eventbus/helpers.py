from __future__ import annotations

import uuid
from typing import Any, Mapping

from .core import Event, RetryDelays


def new_json_event(
    payload: Mapping[str, Any],
    *,
    max_retry: int | None = None,
    event_id: str | None = None,
) -> Event:
    """JSON payload 를 Event 봉투로 감싼다.

    - event_id 가 없으면 uuid4 를 사용한다.
    - max_retry 가 범위를 벗어나면 len(RetryDelays) 로 보정된다.
    """
    if max_retry is None or max_retry <= 0 or max_retry > len(RetryDelays):
        max_retry = len(RetryDelays)

    return Event(
        id=event_id or str(uuid.uuid4()),
        payload=dict(payload),
        retry=0,
        max_retry=max_retry,
    )
