from __future__ import annotations

from fastapi import APIRouter

router = APIRouter()


@router.get("/health")
def health() -> dict[str, str]:
    """프로세스 생존 확인용. 저장소 연결은 확인하지 않는다."""
    return {"status": "ok"}
