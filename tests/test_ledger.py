from __future__ import annotations

import threading

import pytest

from kincare.db.ledger import CreditLedger
from kincare.errors import ValidationError
from kincare.models.schemas import DebitResult, InsufficientCredit


def _run_concurrently(count: int, target):
    barrier = threading.Barrier(count)
    results = []
    errors = []
    lock = threading.Lock()

    def worker():
        barrier.wait()
        try:
            outcome = target()
        except Exception as e:  # surfaced through the assertion below
            with lock:
                errors.append(e)
            return
        with lock:
            results.append(outcome)

    threads = [threading.Thread(target=worker) for _ in range(count)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    assert errors == []
    return results


def test_new_wallet_gets_signup_bonus(ledger):
    wallet = ledger.get_or_create_wallet("u1")
    assert wallet.balance == 10

    history = ledger.history("u1")
    assert len(history) == 1
    assert history[0].type == "signup"
    assert history[0].amount == 10
    assert ledger.reconcile("u1")


def test_get_or_create_is_idempotent(ledger):
    first = ledger.get_or_create_wallet("u1")
    second = ledger.get_or_create_wallet("u1")
    assert first.id == second.id
    assert len(ledger.history("u1")) == 1


def test_debit_deducts_cost_and_logs_usage(ledger):
    result = ledger.debit("u1", "doctor_brief")

    assert isinstance(result, DebitResult)
    assert result.cost == 3
    assert result.new_balance == 7

    usage = ledger.history("u1")[0]
    assert usage.type == "usage"
    assert usage.amount == -3
    assert usage.reference_id is None
    assert ledger.reconcile("u1")


def test_insufficient_debit_changes_nothing(container):
    ledger = CreditLedger(container.db, signup_bonus=2)

    result = ledger.debit("u1", "doctor_brief")

    assert isinstance(result, InsufficientCredit)
    assert (result.required, result.balance) == (3, 2)
    assert ledger.get_wallet("u1").balance == 2
    assert [t.type for t in ledger.history("u1")] == ["signup"]


def test_unknown_feature_is_rejected(ledger):
    with pytest.raises(ValidationError):
        ledger.debit("u1", "video_consult")
    with pytest.raises(ValidationError):
        ledger.check_balance("u1", "video_consult")


def test_check_balance_does_not_create_wallet(ledger):
    check = ledger.check_balance("ghost", "health_insight")
    assert (check.has_enough, check.required, check.balance) == (False, 1, 0)
    assert ledger.get_wallet("ghost") is None


def test_check_balance_reports_existing_wallet(ledger):
    ledger.get_or_create_wallet("u1")
    check = ledger.check_balance("u1", "lab_translation")
    assert (check.has_enough, check.required, check.balance) == (True, 2, 10)


def test_concurrent_debits_cannot_overdraw(container):
    ledger = CreditLedger(container.db, signup_bonus=4)
    ledger.get_or_create_wallet("u1")

    results = _run_concurrently(2, lambda: ledger.debit("u1", "doctor_brief"))

    assert sorted(r.success for r in results) == [False, True]
    assert ledger.get_wallet("u1").balance == 1
    assert ledger.reconcile("u1")


def test_many_concurrent_debits_stop_at_zero(ledger):
    ledger.get_or_create_wallet("u1")

    results = _run_concurrently(20, lambda: ledger.debit("u1", "health_insight"))

    assert sum(1 for r in results if r.success) == 10
    assert ledger.get_wallet("u1").balance == 0
    assert ledger.reconcile("u1")


def test_concurrent_first_touch_creates_one_wallet(ledger):
    wallets = _run_concurrently(8, lambda: ledger.get_or_create_wallet("u1"))

    assert len({w.id for w in wallets}) == 1
    assert ledger.get_wallet("u1").balance == 10
    assert [t.type for t in ledger.history("u1")] == ["signup"]


def test_credit_with_reference_is_applied_once(ledger):
    first = ledger.credit("u1", 50, reference_id="pay_1", description="Purchased Try It Out")
    second = ledger.credit("u1", 50, reference_id="pay_1", description="Purchased Try It Out")

    assert first.applied and not first.duplicate
    assert first.new_balance == 60
    assert not second.applied and second.duplicate
    assert second.new_balance == 60
    assert [t.reference_id for t in ledger.history("u1")] == ["pay_1", None]
    assert ledger.reconcile("u1")


def test_concurrent_duplicate_credits_apply_once(ledger):
    ledger.get_or_create_wallet("u1")

    results = _run_concurrently(5, lambda: ledger.credit("u1", 150, reference_id="pay_dup"))

    assert sum(1 for r in results if r.applied) == 1
    assert ledger.get_wallet("u1").balance == 160
    assert ledger.reconcile("u1")


def test_same_reference_on_different_wallets_is_independent(ledger):
    assert ledger.credit("u1", 5, reference_id="ref").applied
    assert ledger.credit("u2", 5, reference_id="ref").applied


def test_credit_without_reference_always_applies(ledger):
    ledger.credit("u1", 5, type="adjustment")
    result = ledger.credit("u1", 5, type="adjustment")
    assert result.new_balance == 20


@pytest.mark.parametrize("amount", [0, -5, 2.5, "10", True])
def test_invalid_credit_amount_is_rejected(ledger, amount):
    with pytest.raises(ValidationError):
        ledger.credit("u1", amount)
    assert ledger.get_wallet("u1") is None


def test_oversized_credit_is_rejected(ledger):
    with pytest.raises(ValidationError):
        ledger.credit("u1", 10**20, reference_id="pay_huge")
    assert ledger.get_wallet("u1") is None


def test_invalid_credit_type_is_rejected(ledger):
    with pytest.raises(ValidationError):
        ledger.credit("u1", 5, type="usage")


def test_blank_user_is_rejected(ledger):
    with pytest.raises(ValidationError):
        ledger.get_or_create_wallet("  ")


def test_history_is_newest_first_and_limited(ledger):
    for _ in range(3):
        ledger.debit("u1", "health_insight")
    ledger.credit("u1", 50, reference_id="pay_1")

    history = ledger.history("u1", limit=2)
    assert [t.type for t in history] == ["purchase", "usage"]

    full = ledger.history("u1")
    assert [t.type for t in full] == ["purchase", "usage", "usage", "usage", "signup"]
    assert len(ledger.history("u1", limit=0)) == 1


def test_history_of_unknown_user_is_empty(ledger):
    assert ledger.history("nobody") == []


def test_balance_always_equals_transaction_sum(ledger):
    ledger.debit("u1", "lab_translation")
    ledger.credit("u1", 150, reference_id="pay_a")
    ledger.debit("u1", "doctor_brief")
    ledger.credit("u1", 150, reference_id="pay_a")
    ledger.credit("u1", 3, type="refund")

    assert ledger.get_wallet("u1").balance == 10 - 2 + 150 - 3 + 3
    assert ledger.reconcile("u1")
    assert ledger.reconcile("nobody")
