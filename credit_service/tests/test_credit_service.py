from __future__ import annotations

import threading

import pytest

from credit_service.app.constants import (
    TRANSACTION_TYPE_ADJUSTMENT,
    TRANSACTION_TYPE_PURCHASE,
)
from credit_service.app.exceptions import (
    DuplicateTransactionError,
    InsufficientCreditsError,
    InvalidAmountError,
    LedgerReconciliationError,
    StoreUnavailableError,
)
from credit_service.app.models.credit import CreditAccount
from credit_service.app.services.credit_service import DEBIT_ATTEMPTS, CreditService
from credit_service.app.services.usage_service import UsageService

from conftest import (
    FakeCreditAccountRepository,
    FakeCreditTransactionRepository,
    RecordingPublisher,
)


USER_ID = "user-1"


def test_get_balance_returns_zero_for_unknown_user(credit_service: CreditService) -> None:
    assert credit_service.get_balance("nobody") == 0


def test_credit_from_zero_creates_account_and_one_record(
    credit_service: CreditService,
    transaction_repo: FakeCreditTransactionRepository,
    publisher: RecordingPublisher,
) -> None:
    # when
    balance = credit_service.credit(USER_ID, 100, TRANSACTION_TYPE_PURCHASE, "Bought 100 credits")

    # then
    assert balance == 100
    assert credit_service.get_balance(USER_ID) == 100
    records = transaction_repo.for_user(USER_ID)
    assert len(records) == 1
    assert records[0].amount == 100
    assert records[0].balance_after == 100
    assert records[0].transaction_type == TRANSACTION_TYPE_PURCHASE
    assert records[0].sequence == 1
    assert [tx.id for tx in publisher.published] == [records[0].id]


def test_can_afford_compares_cost_with_balance(
    credit_service: CreditService, account_repo: FakeCreditAccountRepository
) -> None:
    account_repo.seed(USER_ID, 50)

    allowed = credit_service.can_afford(USER_ID, 30)
    refused = credit_service.can_afford(USER_ID, 60)

    assert allowed.allowed is True
    assert allowed.reason is None
    assert refused.allowed is False
    assert refused.required == 60
    assert refused.available == 50
    assert "60" in (refused.reason or "")
    assert "50" in (refused.reason or "")


def test_can_afford_zero_cost_is_always_allowed(credit_service: CreditService) -> None:
    result = credit_service.can_afford("nobody", 0)

    assert result.allowed is True
    assert result.available == 0


def test_debit_refused_when_balance_too_low_leaves_no_trace(
    credit_service: CreditService,
    account_repo: FakeCreditAccountRepository,
    transaction_repo: FakeCreditTransactionRepository,
    publisher: RecordingPublisher,
) -> None:
    account_repo.seed(USER_ID, 10)

    with pytest.raises(InsufficientCreditsError) as exc_info:
        credit_service.debit(USER_ID, 30, "quiz_generation", "Quiz")

    assert exc_info.value.required == 30
    assert exc_info.value.available == 10
    assert credit_service.get_balance(USER_ID) == 10
    assert transaction_repo.for_user(USER_ID) == []
    assert publisher.published == []


def test_debit_on_missing_account_is_insufficient_and_creates_nothing(
    credit_service: CreditService,
    account_repo: FakeCreditAccountRepository,
    transaction_repo: FakeCreditTransactionRepository,
) -> None:
    with pytest.raises(InsufficientCreditsError) as exc_info:
        credit_service.debit("ghost", 5, "quiz_generation", "Quiz")

    assert exc_info.value.available == 0
    assert account_repo.has_account("ghost") is False
    assert transaction_repo.for_user("ghost") == []


def test_zero_debit_on_missing_account_succeeds_and_is_recorded(
    credit_service: CreditService,
    account_repo: FakeCreditAccountRepository,
    transaction_repo: FakeCreditTransactionRepository,
) -> None:
    balance = credit_service.debit("fresh", 0, "ai_explanation", "Free explanation")

    assert balance == 0
    assert account_repo.has_account("fresh") is True
    records = transaction_repo.for_user("fresh")
    assert len(records) == 1
    assert records[0].amount == 0
    assert records[0].balance_after == 0


def test_debit_reduces_balance_and_records_negative_amount(
    credit_service: CreditService,
    transaction_repo: FakeCreditTransactionRepository,
) -> None:
    credit_service.credit(USER_ID, 40, TRANSACTION_TYPE_PURCHASE, "Bought")

    balance = credit_service.debit(
        USER_ID, 30, "document_upload", "Upload", metadata={"document_id": "d1"}
    )

    assert balance == 10
    last = transaction_repo.list_by_user(USER_ID, 1)[0]
    assert last.amount == -30
    assert last.balance_after == 10
    assert last.metadata == {"document_id": "d1"}
    assert last.sequence == 2


def test_debit_then_credit_restores_balance(credit_service: CreditService) -> None:
    credit_service.credit(USER_ID, 20, TRANSACTION_TYPE_PURCHASE, "Bought")

    credit_service.debit(USER_ID, 15, "document_reprocess", "Reprocess")
    credit_service.credit(USER_ID, 15, TRANSACTION_TYPE_ADJUSTMENT, "Refund")

    assert credit_service.get_balance(USER_ID) == 20


@pytest.mark.parametrize("amount", [-1, -100])
def test_negative_amounts_are_rejected(credit_service: CreditService, amount: int) -> None:
    with pytest.raises(InvalidAmountError):
        credit_service.debit(USER_ID, amount, "quiz_generation", "Quiz")
    with pytest.raises(InvalidAmountError):
        credit_service.credit(USER_ID, amount, TRANSACTION_TYPE_PURCHASE, "Bought")
    with pytest.raises(InvalidAmountError):
        credit_service.can_afford(USER_ID, amount)


def test_get_transactions_newest_first_and_limit(credit_service: CreditService) -> None:
    for i in range(5):
        credit_service.credit(USER_ID, i + 1, TRANSACTION_TYPE_PURCHASE, f"Bought {i + 1}")

    items = credit_service.get_transactions(USER_ID, 3)

    assert [tx.amount for tx in items] == [5, 4, 3]


def test_get_transactions_non_positive_limit_uses_default(
    credit_service: CreditService,
) -> None:
    for _ in range(60):
        credit_service.credit(USER_ID, 1, TRANSACTION_TYPE_PURCHASE, "Bought")

    assert len(credit_service.get_transactions(USER_ID, 0)) == 50
    assert len(credit_service.get_transactions(USER_ID, -5)) == 50


def test_get_transactions_limit_above_max_is_capped(
    credit_service: CreditService,
) -> None:
    for _ in range(120):
        credit_service.credit(USER_ID, 1, TRANSACTION_TYPE_PURCHASE, "Bought")

    assert len(credit_service.get_transactions(USER_ID, 101)) == 100
    assert len(credit_service.get_transactions(USER_ID, 1000)) == 100


def test_record_failure_after_balance_update_raises_reconciliation_error(
    credit_service: CreditService,
    transaction_repo: FakeCreditTransactionRepository,
    publisher: RecordingPublisher,
) -> None:
    credit_service.credit(USER_ID, 50, TRANSACTION_TYPE_PURCHASE, "Bought")
    transaction_repo.fail_create = True

    with pytest.raises(LedgerReconciliationError) as exc_info:
        credit_service.debit(USER_ID, 20, "quiz_generation", "Quiz")

    assert exc_info.value.amount == -20
    assert exc_info.value.balance_after == 30
    assert credit_service.get_balance(USER_ID) == 30
    assert len(transaction_repo.for_user(USER_ID)) == 1
    assert len(publisher.published) == 1


def test_balance_store_failure_writes_nothing(
    credit_service: CreditService,
    account_repo: FakeCreditAccountRepository,
    transaction_repo: FakeCreditTransactionRepository,
) -> None:
    account_repo.seed(USER_ID, 50)
    account_repo.fail_writes = True

    with pytest.raises(StoreUnavailableError):
        credit_service.debit(USER_ID, 10, "quiz_generation", "Quiz")

    account_repo.fail_writes = False
    assert credit_service.get_balance(USER_ID) == 50
    assert transaction_repo.for_user(USER_ID) == []


def test_duplicate_idempotency_key_is_rejected_without_mutation(
    credit_service: CreditService,
    transaction_repo: FakeCreditTransactionRepository,
) -> None:
    credit_service.credit(USER_ID, 100, TRANSACTION_TYPE_PURCHASE, "Bought", idempotency_key="order-1")

    with pytest.raises(DuplicateTransactionError) as exc_info:
        credit_service.credit(USER_ID, 100, TRANSACTION_TYPE_PURCHASE, "Bought", idempotency_key="order-1")

    assert exc_info.value.original is not None
    assert exc_info.value.original.amount == 100
    assert credit_service.get_balance(USER_ID) == 100
    assert len(transaction_repo.for_user(USER_ID)) == 1


def test_same_idempotency_key_for_different_users_is_independent(
    credit_service: CreditService,
) -> None:
    credit_service.credit("a", 10, TRANSACTION_TYPE_PURCHASE, "Bought", idempotency_key="order-1")
    credit_service.credit("b", 10, TRANSACTION_TYPE_PURCHASE, "Bought", idempotency_key="order-1")

    assert credit_service.get_balance("a") == 10
    assert credit_service.get_balance("b") == 10


def test_duplicate_detected_at_insert_reverts_debit(
    credit_service: CreditService,
    usage_service: UsageService,
    transaction_repo: FakeCreditTransactionRepository,
) -> None:
    credit_service.credit(USER_ID, 50, TRANSACTION_TYPE_PURCHASE, "Bought")
    credit_service.debit(USER_ID, 10, "quiz_generation", "Quiz", idempotency_key="req-1")
    transaction_repo.hide_idempotency_lookup = True

    with pytest.raises(DuplicateTransactionError):
        credit_service.debit(USER_ID, 10, "quiz_generation", "Quiz", idempotency_key="req-1")

    assert credit_service.get_balance(USER_ID) == 40
    records = transaction_repo.list_all_by_user(USER_ID)
    assert [tx.amount for tx in records] == [50, -10, -10, 10]
    assert [tx.idempotency_key for tx in records] == [None, "req-1", None, None]
    assert records[2].metadata["duplicate_idempotency_key"] == "req-1"
    assert records[3].transaction_type == TRANSACTION_TYPE_ADJUSTMENT
    assert records[3].metadata["reverts_sequence"] == records[2].sequence
    assert usage_service.audit_ledger(USER_ID).consistent is True


def test_duplicate_detected_at_insert_reverts_credit(
    credit_service: CreditService,
    usage_service: UsageService,
    transaction_repo: FakeCreditTransactionRepository,
) -> None:
    credit_service.credit(
        USER_ID, 30, TRANSACTION_TYPE_PURCHASE, "Bought", idempotency_key="order-9"
    )
    transaction_repo.hide_idempotency_lookup = True

    with pytest.raises(DuplicateTransactionError):
        credit_service.credit(
            USER_ID, 30, TRANSACTION_TYPE_PURCHASE, "Bought", idempotency_key="order-9"
        )

    assert credit_service.get_balance(USER_ID) == 30
    records = transaction_repo.list_all_by_user(USER_ID)
    assert [tx.amount for tx in records] == [30, 30, -30]
    assert records[2].transaction_type == TRANSACTION_TYPE_ADJUSTMENT
    assert usage_service.audit_ledger(USER_ID).consistent is True


def test_writer_inside_duplicate_window_keeps_ledger_replayable(
    credit_service: CreditService,
    usage_service: UsageService,
    transaction_repo: FakeCreditTransactionRepository,
) -> None:
    credit_service.credit(USER_ID, 100, TRANSACTION_TYPE_PURCHASE, "Bought")
    credit_service.debit(USER_ID, 30, "quiz_generation", "Quiz", idempotency_key="k")
    transaction_repo.hide_idempotency_lookup = True
    # 재시도 요청의 잔액 갱신과 기록 사이에 다른 차감이 들어온다.
    transaction_repo.before_create = lambda: credit_service.debit(
        USER_ID, 30, "document_upload", "Upload"
    )

    with pytest.raises(DuplicateTransactionError):
        credit_service.debit(USER_ID, 30, "quiz_generation", "Quiz", idempotency_key="k")

    assert credit_service.get_balance(USER_ID) == 40
    audit = usage_service.audit_ledger(USER_ID)
    assert audit.consistent is True
    assert audit.replayed_balance == 40
    assert audit.first_mismatch_sequence is None
    sequences = [tx.sequence for tx in transaction_repo.list_all_by_user(USER_ID)]
    assert sequences == list(range(1, 6))


def test_duplicate_credit_already_spent_raises_reconciliation_error(
    credit_service: CreditService,
    usage_service: UsageService,
    transaction_repo: FakeCreditTransactionRepository,
) -> None:
    credit_service.credit(
        USER_ID, 30, TRANSACTION_TYPE_PURCHASE, "Bought", idempotency_key="order-9"
    )
    transaction_repo.hide_idempotency_lookup = True
    transaction_repo.before_create = lambda: credit_service.debit(
        USER_ID, 60, "quiz_generation", "Quiz"
    )

    with pytest.raises(LedgerReconciliationError):
        credit_service.credit(
            USER_ID, 30, TRANSACTION_TYPE_PURCHASE, "Bought", idempotency_key="order-9"
        )

    assert credit_service.get_balance(USER_ID) == 0
    assert usage_service.audit_ledger(USER_ID).consistent is True


def test_debit_retries_when_credit_lands_after_refusal(
    credit_service: CreditService,
    usage_service: UsageService,
    account_repo: FakeCreditAccountRepository,
) -> None:
    credit_service.credit(USER_ID, 10, TRANSACTION_TYPE_PURCHASE, "Bought")
    account_repo.on_refused_debit = lambda: credit_service.credit(
        USER_ID, 40, TRANSACTION_TYPE_PURCHASE, "Top-up"
    )

    balance = credit_service.debit(USER_ID, 30, "quiz_generation", "Quiz")

    assert balance == 20
    assert credit_service.get_balance(USER_ID) == 20
    assert usage_service.audit_ledger(USER_ID).consistent is True


def test_refusal_reports_balance_that_was_actually_short(
    credit_service: CreditService,
    account_repo: FakeCreditAccountRepository,
) -> None:
    credit_service.credit(USER_ID, 10, TRANSACTION_TYPE_PURCHASE, "Bought")
    account_repo.on_refused_debit = lambda: credit_service.credit(
        USER_ID, 5, TRANSACTION_TYPE_PURCHASE, "Top-up"
    )

    with pytest.raises(InsufficientCreditsError) as exc_info:
        credit_service.debit(USER_ID, 30, "quiz_generation", "Quiz")

    assert exc_info.value.required == 30
    assert exc_info.value.available == 15
    assert exc_info.value.available < exc_info.value.required


class _ContendedAccountRepository(FakeCreditAccountRepository):
    """잔액은 충분해 보이지만 조건부 차감이 매번 경쟁에서 지는 저장소."""

    def __init__(self) -> None:
        super().__init__()
        self.debit_attempts = 0

    def try_debit(self, user_id: str, amount: int) -> CreditAccount | None:
        self.debit_attempts += 1
        return None


def test_debit_gives_up_after_repeated_contention(
    transaction_repo: FakeCreditTransactionRepository,
) -> None:
    account_repo = _ContendedAccountRepository()
    account_repo.seed(USER_ID, 50)
    service = CreditService(account_repo, transaction_repo)

    with pytest.raises(StoreUnavailableError):
        service.debit(USER_ID, 30, "quiz_generation", "Quiz")

    assert account_repo.debit_attempts == DEBIT_ATTEMPTS
    assert transaction_repo.for_user(USER_ID) == []


def test_concurrent_debits_never_overdraw(
    credit_service: CreditService,
    usage_service: UsageService,
    transaction_repo: FakeCreditTransactionRepository,
) -> None:
    credit_service.credit(USER_ID, 100, TRANSACTION_TYPE_PURCHASE, "Bought")
    successes: list[int] = []
    refusals: list[InsufficientCreditsError] = []
    results_lock = threading.Lock()
    start = threading.Barrier(20)

    def worker() -> None:
        start.wait()
        try:
            balance = credit_service.debit(USER_ID, 10, "quiz_generation", "Quiz")
        except InsufficientCreditsError as exc:
            with results_lock:
                refusals.append(exc)
            return
        with results_lock:
            successes.append(balance)

    threads = [threading.Thread(target=worker) for _ in range(20)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert len(successes) == 10
    assert len(refusals) == 10
    assert credit_service.get_balance(USER_ID) == 0
    assert sorted(successes) == list(range(0, 100, 10))
    assert len(transaction_repo.for_user(USER_ID)) == 11
    audit = usage_service.audit_ledger(USER_ID)
    assert audit.consistent is True
    assert audit.replayed_balance == 0
