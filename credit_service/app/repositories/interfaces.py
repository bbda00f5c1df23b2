from __future__ import annotations

from typing import Protocol

from ..models.credit import CreditAccount, CreditTransaction
from ..models.plan import UserProfile


class CreditAccountRepositoryInterface(Protocol):
    """잔액 문서 저장소가 따라야 할 계약.

    - 잔액 변경은 반드시 저장소 측 단일 원자 연산(read-modify-write)이어야 한다.
      호출자가 읽고 계산해서 쓰는 방식은 허용하지 않는다 (lost update 방지).
    - 저장소 오류는 StoreUnavailableError 로 변환해서 올린다.
    """

    def get(self, user_id: str) -> CreditAccount | None:  # pragma: no cover - Protocol
        ...

    def ensure(self, user_id: str) -> CreditAccount:  # pragma: no cover - Protocol
        """잔액 0 인 계정을 (없을 때만) 생성하고 현재 상태를 반환한다."""
        ...

    def try_debit(
        self, user_id: str, amount: int
    ) -> CreditAccount | None:  # pragma: no cover - Protocol
        """credits >= amount 일 때만 원자적으로 차감하고 갱신 후 상태를 반환한다.

        조건을 만족하지 않거나 계정이 없으면 아무것도 바꾸지 않고 None 을 반환한다.
        """
        ...

    def apply_credit(
        self, user_id: str, amount: int
    ) -> CreditAccount:  # pragma: no cover - Protocol
        """원자적으로 적립하고 갱신 후 상태를 반환한다. 계정이 없으면 생성한다."""
        ...


class CreditTransactionRepositoryInterface(Protocol):
    """append-only 거래 기록 저장소 계약.

    - create 는 (user_id, idempotency_key) 중복 시 DuplicateTransactionError,
      그 외 저장소 오류 시 StoreUnavailableError 를 올린다.
    """

    def create(
        self, tx: CreditTransaction
    ) -> CreditTransaction:  # pragma: no cover - Protocol
        ...

    def find_by_idempotency_key(
        self, user_id: str, idempotency_key: str
    ) -> CreditTransaction | None:  # pragma: no cover - Protocol
        ...

    def list_by_user(
        self, user_id: str, limit: int
    ) -> list[CreditTransaction]:  # pragma: no cover - Protocol
        """최신순(sequence 내림차순) 최대 limit 건."""
        ...

    def list_all_by_user(
        self, user_id: str
    ) -> list[CreditTransaction]:  # pragma: no cover - Protocol
        """전체 기록을 생성순(sequence 오름차순)으로 반환한다."""
        ...


class UserProfileRepositoryInterface(Protocol):
    def find_by_user_id(
        self, user_id: str
    ) -> UserProfile | None:  # pragma: no cover - Protocol
        ...
