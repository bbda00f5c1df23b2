from fastapi import APIRouter

from .credits import router as credits_router

api_router = APIRouter()
api_router.include_router(
    credits_router
)  # prefix는 router 파일 내부에서 정의되어 있음 (/credits)
