from __future__ import annotations

import threading
from datetime import datetime, timezone
from typing import Callable

import pytest

from credit_service.app.config import CreditsConfig, default_credits_config
from credit_service.app.exceptions import DuplicateTransactionError, StoreUnavailableError
from credit_service.app.models.credit import CreditAccount, CreditTransaction
from credit_service.app.models.plan import UserProfile
from credit_service.app.repositories.interfaces import (
    CreditAccountRepositoryInterface,
    CreditTransactionRepositoryInterface,
    UserProfileRepositoryInterface,
)
from credit_service.app.services.action_service import CreditActionService
from credit_service.app.services.credit_service import CreditService
from credit_service.app.services.grant_service import PlanGrantService
from credit_service.app.services.ledger_events import LedgerEventPublisherInterface
from credit_service.app.services.usage_service import UsageService


class FakeCreditAccountRepository(CreditAccountRepositoryInterface):
    """메모리 기반 잔액 저장소.

    Mongo 의 단일 문서 원자 갱신을 흉내 내기 위해 모든 변경을 하나의 락 안에서 처리한다.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._accounts: dict[str, CreditAccount] = {}
        self.fail_reads = False
        self.fail_writes = False
        # 조건부 차감이 거절된 직후 한 번 호출된다 (거절과 재조회 사이에 끼어드는 동시 요청).
        self.on_refused_debit: Callable[[], None] | None = None

    def seed(self, user_id: str, credits: int, sequence: int = 0) -> None:
        now = datetime.now(timezone.utc)
        self._accounts[user_id] = CreditAccount(
            user_id=user_id,
            credits=credits,
            sequence=sequence,
            created_at=now,
            updated_at=now,
        )

    def has_account(self, user_id: str) -> bool:
        return user_id in self._accounts

    def get(self, user_id: str) -> CreditAccount | None:
        if self.fail_reads:
            raise StoreUnavailableError("balance store is down")
        with self._lock:
            account = self._accounts.get(user_id)
            return account.model_copy() if account else None

    def ensure(self, user_id: str) -> CreditAccount:
        if self.fail_writes:
            raise StoreUnavailableError("balance store is down")
        with self._lock:
            if user_id not in self._accounts:
                now = datetime.now(timezone.utc)
                self._accounts[user_id] = CreditAccount(
                    user_id=user_id, credits=0, sequence=0, created_at=now, updated_at=now
                )
            return self._accounts[user_id].model_copy()

    def try_debit(self, user_id: str, amount: int) -> CreditAccount | None:
        if self.fail_writes:
            raise StoreUnavailableError("balance store is down")
        with self._lock:
            account = self._accounts.get(user_id)
            refused = account is None or account.credits < amount
            if not refused:
                updated = account.model_copy(
                    update={
                        "credits": account.credits - amount,
                        "sequence": account.sequence + 1,
                        "updated_at": datetime.now(timezone.utc),
                    }
                )
                self._accounts[user_id] = updated
                return updated.model_copy()

        hook, self.on_refused_debit = self.on_refused_debit, None
        if hook is not None:
            hook()
        return None

    def apply_credit(self, user_id: str, amount: int) -> CreditAccount:
        if self.fail_writes:
            raise StoreUnavailableError("balance store is down")
        with self._lock:
            now = datetime.now(timezone.utc)
            account = self._accounts.get(user_id) or CreditAccount(
                user_id=user_id, credits=0, sequence=0, created_at=now, updated_at=now
            )
            updated = account.model_copy(
                update={
                    "credits": account.credits + amount,
                    "sequence": account.sequence + 1,
                    "updated_at": now,
                }
            )
            self._accounts[user_id] = updated
            return updated.model_copy()


class FakeCreditTransactionRepository(CreditTransactionRepositoryInterface):
    """메모리 기반 거래 기록 저장소. (user_id, idempotency_key) 유니크 제약을 지킨다."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.items: list[CreditTransaction] = []
        self.fail_create = False
        # find_by_idempotency_key 가 None 을 돌려주게 해서 사전 확인과 insert 사이의 경합을 재현한다.
        self.hide_idempotency_lookup = False
        # 다음 create 직전에 한 번 호출된다 (잔액 갱신과 기록 사이에 끼어드는 동시 요청).
        self.before_create: Callable[[], None] | None = None

    def create(self, tx: CreditTransaction) -> CreditTransaction:
        if self.fail_create:
            raise StoreUnavailableError("transaction store is down")
        hook, self.before_create = self.before_create, None
        if hook is not None:
            hook()
        with self._lock:
            if tx.idempotency_key:
                for existing in self.items:
                    if (
                        existing.user_id == tx.user_id
                        and existing.idempotency_key == tx.idempotency_key
                    ):
                        raise DuplicateTransactionError(
                            tx.user_id, tx.idempotency_key, existing
                        )
            saved = tx.model_copy(update={"id": f"tx-{len(self.items) + 1}"})
            self.items.append(saved)
            return saved

    def find_by_idempotency_key(
        self, user_id: str, idempotency_key: str
    ) -> CreditTransaction | None:
        if self.hide_idempotency_lookup:
            return None
        with self._lock:
            for tx in self.items:
                if tx.user_id == user_id and tx.idempotency_key == idempotency_key:
                    return tx
        return None

    def list_by_user(self, user_id: str, limit: int) -> list[CreditTransaction]:
        with self._lock:
            mine = [tx for tx in self.items if tx.user_id == user_id]
        return sorted(mine, key=lambda tx: tx.sequence, reverse=True)[:limit]

    def list_all_by_user(self, user_id: str) -> list[CreditTransaction]:
        with self._lock:
            mine = [tx for tx in self.items if tx.user_id == user_id]
        return sorted(mine, key=lambda tx: tx.sequence)

    def for_user(self, user_id: str) -> list[CreditTransaction]:
        return [tx for tx in self.items if tx.user_id == user_id]


class FakeUserProfileRepository(UserProfileRepositoryInterface):
    def __init__(self) -> None:
        self.profiles: dict[str, UserProfile] = {}

    def add(self, user_id: str, plan_type: str | None) -> None:
        self.profiles[user_id] = UserProfile(user_id=user_id, plan_type=plan_type)

    def find_by_user_id(self, user_id: str) -> UserProfile | None:
        return self.profiles.get(user_id)


class RecordingPublisher(LedgerEventPublisherInterface):
    def __init__(self) -> None:
        self.published: list[CreditTransaction] = []

    def publish_transaction(self, tx: CreditTransaction) -> None:
        self.published.append(tx)


@pytest.fixture
def account_repo() -> FakeCreditAccountRepository:
    return FakeCreditAccountRepository()


@pytest.fixture
def transaction_repo() -> FakeCreditTransactionRepository:
    return FakeCreditTransactionRepository()


@pytest.fixture
def profile_repo() -> FakeUserProfileRepository:
    return FakeUserProfileRepository()


@pytest.fixture
def publisher() -> RecordingPublisher:
    return RecordingPublisher()


@pytest.fixture
def credits_config() -> CreditsConfig:
    return default_credits_config()


@pytest.fixture
def credit_service(
    account_repo: FakeCreditAccountRepository,
    transaction_repo: FakeCreditTransactionRepository,
    publisher: RecordingPublisher,
) -> CreditService:
    return CreditService(account_repo, transaction_repo, publisher)


@pytest.fixture
def usage_service(
    credit_service: CreditService,
    transaction_repo: FakeCreditTransactionRepository,
) -> UsageService:
    return UsageService(credit_service, transaction_repo)


@pytest.fixture
def grant_service(
    credit_service: CreditService,
    profile_repo: FakeUserProfileRepository,
    credits_config: CreditsConfig,
) -> PlanGrantService:
    return PlanGrantService(credit_service, profile_repo, credits_config)


@pytest.fixture
def action_service(
    credit_service: CreditService, credits_config: CreditsConfig
) -> CreditActionService:
    return CreditActionService(credit_service, credits_config)
