from __future__ import annotations

import logging
import threading
from typing import Optional, cast

from pymongo import ASCENDING, DESCENDING, MongoClient
from pymongo.database import Database

from .config import get_mongo_db_name, get_mongo_uri


logger = logging.getLogger(__name__)


CREDIT_ACCOUNTS_COLLECTION = "credit_accounts"
CREDIT_TRANSACTIONS_COLLECTION = "credit_transactions"
USER_PROFILES_COLLECTION = "user_profiles"


_client: Optional[MongoClient] = None
_db: Optional[Database] = None
_lock = threading.Lock()


def get_client() -> MongoClient:
    """전역 MongoClient 싱글톤을 반환한다.

    - MONGO_URI 에서 URI 를 읽어온다.
    - ping 으로 연결을 검증한다.
    - MONGO_DB_NAME 또는 URI 에 기본 데이터베이스가 없으면 에러를 발생시킨다.
    - 원장 컬렉션의 인덱스를 한 번만 생성한다.
    """

    global _client, _db

    if _client is not None:
        return _client

    with _lock:
        if _client is not None:
            return _client

        uri = get_mongo_uri()
        client = MongoClient(uri)

        try:
            client.admin.command("ping")
        except Exception as exc:  # noqa: BLE001
            client.close()
            raise RuntimeError(f"failed to connect to MongoDB: {exc}") from exc

        db_name = get_mongo_db_name()
        try:
            if db_name:
                db = client[db_name]
            else:
                db = client.get_default_database()
        except Exception as exc:  # noqa: BLE001
            client.close()
            raise RuntimeError(
                "MongoDB database name must be specified via MONGO_DB_NAME or in MONGO_URI (mongodb://.../db_name)",
            ) from exc

        try:
            ensure_indexes(db)
        except Exception as exc:  # noqa: BLE001
            logger.error("failed to ensure MongoDB indexes: %s", exc)
            client.close()
            raise

        _client = client
        _db = db

        safe_db = cast(Database, _db)
        logger.info("MongoDB connected and indexes ensured (db=%s)", safe_db.name)
        return _client


def get_database() -> Database:
    """전역 기본 Database 객체를 반환한다."""

    global _db

    if _db is None:
        get_client()
    assert _db is not None
    return _db


def ensure_indexes(db: Database) -> None:
    """원장 관련 필수 인덱스를 생성한다.

    중복 생성해도 MongoDB 가 처리하므로 idempotent 하다.
    """

    accounts = db[CREDIT_ACCOUNTS_COLLECTION]

    # 유저당 잔액 문서는 정확히 하나
    accounts.create_index(
        [("user_id", ASCENDING)],
        name="uniq_user_id",
        unique=True,
    )

    transactions = db[CREDIT_TRANSACTIONS_COLLECTION]

    # 이력 조회 / 재생(replay) 순서
    transactions.create_index(
        [("user_id", ASCENDING), ("sequence", DESCENDING)],
        name="idx_user_sequence_desc",
    )

    transactions.create_index(
        [("user_id", ASCENDING), ("transaction_type", ASCENDING)],
        name="idx_user_transaction_type",
    )

    # 멱등성 키는 키가 있는 문서에 대해서만 유니크
    transactions.create_index(
        [("user_id", ASCENDING), ("idempotency_key", ASCENDING)],
        name="uniq_user_idempotency_key",
        unique=True,
        partialFilterExpression={"idempotency_key": {"$type": "string"}},
    )
