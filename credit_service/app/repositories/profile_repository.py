from __future__ import annotations

from pymongo.database import Database
from pymongo.errors import PyMongoError

from common.mongo.client import USER_PROFILES_COLLECTION

from ..exceptions import StoreUnavailableError
from ..models.plan import UserProfile
from .documents.profile_document import UserProfileDocument
from .interfaces import UserProfileRepositoryInterface


class UserProfileRepository(UserProfileRepositoryInterface):
    """user_profiles 컬렉션 읽기 전용 접근 레이어."""

    def __init__(self, database: Database) -> None:
        self._db = database
        self._col = database[USER_PROFILES_COLLECTION]

    def find_by_user_id(self, user_id: str) -> UserProfile | None:
        try:
            doc = self._col.find_one(
                {"user_id": user_id},
                projection={"_id": 0, "user_id": 1, "plan_type": 1},
            )
        except PyMongoError as exc:
            raise StoreUnavailableError(f"failed to read profile: {exc}") from exc
        if not doc:
            return None
        return UserProfileDocument.model_validate(doc).to_domain()
