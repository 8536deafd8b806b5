from __future__ import annotations

from datetime import datetime, timezone

import pytest
from sqlalchemy import select

from kincare.billing.events import parse_credits, parse_event
from kincare.db.database import PaymentEventRecord
from kincare.errors import PersistenceFailure, ValidationError


def _payment(payment_id="pay_1", user_id="u1", credits="50", package_id="try_it_out"):
    metadata = {"userId": user_id, "credits": credits, "packageId": package_id}
    return {"type": "payment.succeeded", "data": {"payment_id": payment_id, "metadata": metadata}}


def _subscription(event_type, sub_id="sub_1", user_id="u1", start="2026-10-01T00:00:00Z", end="2026-10-31T00:00:00Z"):
    return {
        "type": event_type,
        "data": {
            "subscription_id": sub_id,
            "current_period_start": start,
            "current_period_end": end,
            "metadata": {"userId": user_id, "planId": "care_plus", "type": "subscription"},
        },
    }


def _events(container):
    with container.db.session() as session:
        return [
            (r.event_type, r.reference_id, r.outcome)
            for r in session.scalars(select(PaymentEventRecord).order_by(PaymentEventRecord.id))
        ]


def test_payment_success_credits_wallet_once(container, reconciler, ledger):
    first = reconciler.handle_event("payment.succeeded", _payment())
    second = reconciler.handle_event("payment.succeeded", _payment())

    assert first.outcome == "applied"
    assert second.outcome == "duplicate"
    assert ledger.get_wallet("u1").balance == 60
    assert ledger.reconcile("u1")

    purchase = ledger.history("u1")[0]
    assert purchase.reference_id == "pay_1"
    assert purchase.amount == 50
    assert "try_it_out" in purchase.description

    assert _events(container) == [
        ("payment.succeeded", "pay_1", "applied"),
        ("payment.succeeded", "pay_1", "duplicate"),
    ]


@pytest.mark.parametrize(
    "envelope",
    [
        {"payload": {"data": {"payment_id": "pay_n", "metadata": {"userId": "u1", "credits": "150"}}}},
        {"payload": {"payment_id": "pay_n", "metadata": {"userId": "u1", "credits": "150"}}},
        {"payment_id": "pay_n", "metadata": {"userId": "u1", "credits": 150}},
    ],
)
def test_payment_data_found_in_any_envelope_shape(reconciler, ledger, envelope):
    outcome = reconciler.handle_event("payment.succeeded", envelope)
    assert outcome.outcome == "applied"
    assert ledger.get_wallet("u1").balance == 160


@pytest.mark.parametrize(
    "payload",
    [
        {"data": {"payment_id": "pay_x", "metadata": {"credits": "50"}}},
        {"data": {"payment_id": "pay_x", "metadata": {"userId": "u1"}}},
        {"data": {"payment_id": "pay_x", "metadata": {"userId": "u1", "credits": "lots"}}},
        {"data": {"payment_id": "pay_x", "metadata": {"userId": "u1", "credits": "0"}}},
        {"data": {"payment_id": "pay_x", "metadata": {"userId": "u1", "credits": "²"}}},
        {"data": {"payment_id": "pay_x", "metadata": {"userId": "u1", "credits": "99999999999999999999"}}},
        {"data": {"metadata": {"userId": "u1", "credits": "50"}}},
    ],
)
def test_payment_with_bad_metadata_is_dropped(container, reconciler, ledger, payload):
    outcome = reconciler.handle_event("payment.succeeded", payload)
    assert outcome.outcome == "dropped"
    assert ledger.get_wallet("u1") is None
    assert _events(container)[-1][2] == "dropped"


def test_non_mapping_payload_is_dropped(reconciler):
    assert reconciler.handle_event("payment.succeeded", ["not", "an", "object"]).outcome == "dropped"
    assert reconciler.handle_event("", {}).outcome == "dropped"


def test_payment_failed_is_recorded_without_ledger_change(container, reconciler, ledger):
    outcome = reconciler.handle_event(
        "payment.failed", {"data": {"payment_id": "pay_f", "metadata": {"userId": "u1"}}}
    )
    assert outcome.outcome == "recorded"
    assert ledger.get_wallet("u1") is None
    assert _events(container) == [("payment.failed", "pay_f", "recorded")]


def test_unknown_event_is_ignored(container, reconciler):
    outcome = reconciler.handle_event("refund.succeeded", {"data": {}})
    assert outcome.outcome == "ignored"
    assert _events(container) == []


def test_subscription_activation_and_renewal(reconciler):
    reconciler.handle_event("subscription.active", _subscription("subscription.active"))
    sub = reconciler.get_subscription("u1")
    assert sub.status == "active"
    assert sub.plan_id == "care_plus"
    assert sub.current_period_end == datetime(2026, 10, 31, tzinfo=timezone.utc)

    reconciler.handle_event(
        "subscription.renewed",
        _subscription("subscription.renewed", start="2026-10-31T00:00:00Z", end="2026-11-30T00:00:00Z"),
    )
    sub = reconciler.get_subscription("u1")
    assert sub.status == "active"
    assert sub.current_period_end == datetime(2026, 11, 30, tzinfo=timezone.utc)


def test_subscription_without_period_end_defaults_to_thirty_days():
    event = parse_event(
        "subscription.active",
        {"data": {"subscription_id": "sub_1", "metadata": {"userId": "u1"}}},
        now=datetime(2026, 10, 1, tzinfo=timezone.utc),
    )
    assert event.period_start == datetime(2026, 10, 1, tzinfo=timezone.utc)
    assert event.period_end == datetime(2026, 10, 31, tzinfo=timezone.utc)
    assert event.plan_id == "care_plus"


def test_dodo_billing_date_fields_are_understood():
    event = parse_event(
        "subscription.renewed",
        {
            "data": {
                "subscription_id": "sub_1",
                "previous_billing_date": "2026-10-01T00:00:00Z",
                "next_billing_date": "2026-11-01T00:00:00Z",
                "metadata": {"userId": "u1"},
            }
        },
    )
    assert event.period_end == datetime(2026, 11, 1, tzinfo=timezone.utc)


def test_out_of_order_delivery_is_last_write_wins(reconciler):
    reconciler.handle_event(
        "subscription.active",
        _subscription("subscription.active", start="2026-11-01T00:00:00Z", end="2026-12-01T00:00:00Z"),
    )
    reconciler.handle_event(
        "subscription.renewed",
        _subscription("subscription.renewed", start="2026-10-01T00:00:00Z", end="2026-11-01T00:00:00Z"),
    )

    sub = reconciler.get_subscription("u1")
    assert sub.status == "active"
    assert sub.current_period_end == datetime(2026, 11, 1, tzinfo=timezone.utc)


def test_cancellation_marks_subscription_and_blocks_free_use(reconciler):
    reconciler.handle_event("subscription.active", _subscription("subscription.active", end="2099-01-01T00:00:00Z"))
    assert reconciler.active_subscription("u1") is not None

    outcome = reconciler.handle_event(
        "subscription.cancelled",
        {"data": {"subscription_id": "sub_1", "cancelled_at": "2026-10-15T10:00:00Z"}},
    )

    assert outcome.outcome == "applied"
    sub = reconciler.get_subscription("u1")
    assert sub.status == "cancelled"
    assert sub.cancelled_at == datetime(2026, 10, 15, 10, tzinfo=timezone.utc)
    assert reconciler.active_subscription("u1") is None


def test_renewal_keeps_cancellation_time_but_activation_clears_it(reconciler):
    reconciler.handle_event("subscription.active", _subscription("subscription.active"))
    reconciler.handle_event("subscription.cancelled", {"data": {"subscription_id": "sub_1"}})

    reconciler.handle_event("subscription.renewed", _subscription("subscription.renewed"))
    sub = reconciler.get_subscription("u1")
    assert sub.status == "active"
    assert sub.cancelled_at is not None

    reconciler.handle_event("subscription.active", _subscription("subscription.active"))
    assert reconciler.get_subscription("u1").cancelled_at is None


def test_expired_subscription_is_not_active(reconciler):
    reconciler.handle_event(
        "subscription.active",
        _subscription("subscription.active", start="2020-01-01T00:00:00Z", end="2020-02-01T00:00:00Z"),
    )
    assert reconciler.get_subscription("u1").status == "active"
    assert reconciler.active_subscription("u1") is None


def test_cancelling_unknown_subscription_is_dropped(container, reconciler):
    outcome = reconciler.handle_event("subscription.cancelled", {"data": {"subscription_id": "sub_missing"}})
    assert outcome.outcome == "dropped"
    assert _events(container) == [("subscription.cancelled", "sub_missing", "dropped")]


def test_subscription_event_without_user_is_dropped(reconciler):
    outcome = reconciler.handle_event("subscription.active", {"data": {"subscription_id": "sub_1"}})
    assert outcome.outcome == "dropped"
    assert reconciler.get_subscription("u1") is None


def test_invalid_timestamp_is_dropped(reconciler):
    payload = _subscription("subscription.active", end="next tuesday")
    assert reconciler.handle_event("subscription.active", payload).outcome == "dropped"


def test_storage_failure_propagates(reconciler, monkeypatch):
    def broken_credit(*args, **kwargs):
        raise PersistenceFailure("disk full")

    monkeypatch.setattr(reconciler.ledger, "credit", broken_credit)
    with pytest.raises(PersistenceFailure):
        reconciler.handle_event("payment.succeeded", _payment())


@pytest.mark.parametrize("value, expected", [("50", 50), (" 150 ", 150), (500, 500)])
def test_parse_credits_accepts_positive_integers(value, expected):
    assert parse_credits(value) == expected


@pytest.mark.parametrize(
    "value", ["", "abc", "-5", "1.5", "²", "99999999999999999999", 2**31, 0, -1, True, None, 2.0]
)
def test_parse_credits_rejects_everything_else(value):
    with pytest.raises(ValidationError):
        parse_credits(value)
