"""크레딧 원장 레포지토리 구현체 (MongoDB).

잔액 변경은 모두 find_one_and_update 한 번으로 끝나는 원자적 갱신이다.
차감은 필터에 credits >= amount 조건을 걸어 저장소 측에서 바닥(0) 검사를 수행한다.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from pymongo import ReturnDocument
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError, PyMongoError

from common.mongo.client import (
    CREDIT_ACCOUNTS_COLLECTION,
    CREDIT_TRANSACTIONS_COLLECTION,
)

from ..exceptions import DuplicateTransactionError, StoreUnavailableError
from ..models.credit import CreditAccount, CreditTransaction
from .documents.credit_document import CreditAccountDocument, CreditTransactionDocument
from .interfaces import (
    CreditAccountRepositoryInterface,
    CreditTransactionRepositoryInterface,
)


logger = logging.getLogger(__name__)


class CreditAccountRepository(CreditAccountRepositoryInterface):
    """credit_accounts 컬렉션에 대한 MongoDB 접근 레이어."""

    def __init__(self, database: Database) -> None:
        self._db = database
        self._col = database[CREDIT_ACCOUNTS_COLLECTION]

    @staticmethod
    def _from_document(doc: dict) -> CreditAccount:
        return CreditAccountDocument.model_validate(doc).to_domain()

    def get(self, user_id: str) -> CreditAccount | None:
        try:
            doc = self._col.find_one({"user_id": user_id})
        except PyMongoError as exc:
            raise StoreUnavailableError(f"failed to read balance: {exc}") from exc
        if not doc:
            return None
        return self._from_document(doc)

    def ensure(self, user_id: str) -> CreditAccount:
        now = datetime.now(timezone.utc)
        try:
            doc = self._col.find_one_and_update(
                {"user_id": user_id},
                {
                    "$setOnInsert": {
                        "credits": 0,
                        "sequence": 0,
                        "created_at": now,
                        "updated_at": now,
                    }
                },
                upsert=True,
                return_document=ReturnDocument.AFTER,
            )
        except DuplicateKeyError:
            # 동시 요청이 먼저 생성했다 -> 이미 존재하는 문서를 그대로 사용
            account = self.get(user_id)
            if account is None:
                raise StoreUnavailableError(
                    f"account vanished after concurrent create (user_id={user_id})"
                )
            return account
        except PyMongoError as exc:
            raise StoreUnavailableError(f"failed to create account: {exc}") from exc
        return self._from_document(doc)

    def try_debit(self, user_id: str, amount: int) -> CreditAccount | None:
        now = datetime.now(timezone.utc)
        try:
            doc = self._col.find_one_and_update(
                {"user_id": user_id, "credits": {"$gte": amount}},
                {
                    "$inc": {"credits": -amount, "sequence": 1},
                    "$set": {"updated_at": now},
                },
                return_document=ReturnDocument.AFTER,
            )
        except PyMongoError as exc:
            raise StoreUnavailableError(f"failed to debit balance: {exc}") from exc
        if not doc:
            return None
        return self._from_document(doc)

    def apply_credit(self, user_id: str, amount: int) -> CreditAccount:
        update = {
            "$inc": {"credits": amount, "sequence": 1},
            "$set": {"updated_at": datetime.now(timezone.utc)},
            "$setOnInsert": {"created_at": datetime.now(timezone.utc)},
        }
        try:
            try:
                doc = self._col.find_one_and_update(
                    {"user_id": user_id},
                    update,
                    upsert=True,
                    return_document=ReturnDocument.AFTER,
                )
            except DuplicateKeyError:
                # 동시 upsert 경합에서 진 쪽: 이제 문서가 있으므로 upsert 없이 다시 적용
                doc = self._col.find_one_and_update(
                    {"user_id": user_id},
                    update,
                    return_document=ReturnDocument.AFTER,
                )
        except PyMongoError as exc:
            raise StoreUnavailableError(f"failed to credit balance: {exc}") from exc
        if not doc:
            raise StoreUnavailableError(f"credit did not match any account (user_id={user_id})")
        return self._from_document(doc)


class CreditTransactionRepository(CreditTransactionRepositoryInterface):
    """credit_transactions 컬렉션에 대한 MongoDB 접근 레이어."""

    def __init__(self, database: Database) -> None:
        self._db = database
        self._col = database[CREDIT_TRANSACTIONS_COLLECTION]

    @staticmethod
    def _from_document(doc: dict) -> CreditTransaction:
        return CreditTransactionDocument.model_validate(doc).to_domain()

    def create(self, tx: CreditTransaction) -> CreditTransaction:
        """거래 기록 생성."""
        payload = CreditTransactionDocument.from_domain(tx).to_mongo_record()
        try:
            result = self._col.insert_one(payload)
        except DuplicateKeyError as exc:
            key = tx.idempotency_key or ""
            original = self.find_by_idempotency_key(tx.user_id, key) if key else None
            raise DuplicateTransactionError(tx.user_id, key, original) from exc
        except PyMongoError as exc:
            raise StoreUnavailableError(f"failed to insert transaction: {exc}") from exc
        return tx.model_copy(update={"id": str(result.inserted_id)})

    def find_by_idempotency_key(
        self, user_id: str, idempotency_key: str
    ) -> CreditTransaction | None:
        try:
            doc = self._col.find_one(
                {"user_id": user_id, "idempotency_key": idempotency_key}
            )
        except PyMongoError as exc:
            raise StoreUnavailableError(f"failed to read transaction: {exc}") from exc
        if not doc:
            return None
        return self._from_document(doc)

    def list_by_user(self, user_id: str, limit: int) -> list[CreditTransaction]:
        try:
            cursor = self._col.find(
                {"user_id": user_id},
                sort=[("sequence", -1), ("_id", -1)],
                limit=limit,
            )
            return [self._from_document(raw) for raw in cursor]
        except PyMongoError as exc:
            raise StoreUnavailableError(f"failed to list transactions: {exc}") from exc

    def list_all_by_user(self, user_id: str) -> list[CreditTransaction]:
        try:
            cursor = self._col.find(
                {"user_id": user_id},
                sort=[("sequence", 1), ("_id", 1)],
            )
            return [self._from_document(raw) for raw in cursor]
        except PyMongoError as exc:
            raise StoreUnavailableError(f"failed to list transactions: {exc}") from exc
