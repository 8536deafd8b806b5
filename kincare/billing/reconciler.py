from datetime import datetime, timezone
from typing import Any, Literal

from loguru import logger
from pydantic import BaseModel
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from kincare.billing.events import (
    SUBSCRIPTION_ACTIVE,
    PaymentFailed,
    PaymentSucceeded,
    SubscriptionCancelled,
    SubscriptionChanged,
    UnknownEvent,
    parse_event,
)
from kincare.db.database import Database, PaymentEventRecord, SubscriptionRecord, utc_now
from kincare.db.ledger import CreditLedger
from kincare.errors import PersistenceFailure, ValidationError
from kincare.models.schemas import Subscription

Outcome = Literal["applied", "duplicate", "dropped", "ignored", "recorded"]


class ReconcileOutcome(BaseModel):
    event_type: str
    outcome: Outcome
    reference_id: str | None = None
    detail: str | None = None


def _subscription(record: SubscriptionRecord) -> Subscription:
    return Subscription(
        user_id=record.user_id,
        subscription_id=record.subscription_id,
        status=record.status,
        plan_id=record.plan_id,
        current_period_start=record.current_period_start,
        current_period_end=record.current_period_end,
        cancelled_at=record.cancelled_at,
    )


class PaymentReconciler:
    """Applies payment-provider lifecycle events to the ledger and subscriptions.

    Malformed events are logged and dropped. Storage faults propagate so the
    provider can redeliver; every handler is safe to run twice.
    """

    def __init__(self, db: Database, ledger: CreditLedger):
        self.db = db
        self.ledger = ledger

    def handle_event(self, event_type: Any, payload: Any) -> ReconcileOutcome:
        logger.info("Processing webhook event {}", event_type)
        try:
            event = parse_event(event_type, payload)
        except ValidationError as e:
            logger.warning("Dropping {} event: {}", event_type, e)
            self._record(str(event_type), None, None, "dropped")
            return ReconcileOutcome(event_type=str(event_type), outcome="dropped", detail=str(e))

        if isinstance(event, PaymentSucceeded):
            return self._payment_succeeded(event)
        if isinstance(event, PaymentFailed):
            return self._payment_failed(event)
        if isinstance(event, SubscriptionChanged):
            return self._subscription_changed(event)
        if isinstance(event, SubscriptionCancelled):
            return self._subscription_cancelled(event)
        if isinstance(event, UnknownEvent):
            logger.info("Unhandled webhook event type {}", event.event_type)
        return ReconcileOutcome(event_type=str(event_type), outcome="ignored")

    # ── Payments ────────────────────────────────────────────────────

    def _payment_succeeded(self, event: PaymentSucceeded) -> ReconcileOutcome:
        package = event.package_id or "credits"
        try:
            result = self.ledger.credit(
                event.user_id,
                event.credits,
                type="purchase",
                reference_id=event.payment_id,
                description=f"Purchased {package} - {event.credits} credits",
            )
        except ValidationError as e:
            logger.warning("Dropping payment {}: {}", event.payment_id, e)
            self._record(event.kind, event.payment_id, event.user_id, "dropped")
            return ReconcileOutcome(event_type=event.kind, outcome="dropped", reference_id=event.payment_id, detail=str(e))

        outcome: Outcome = "duplicate" if result.duplicate else "applied"
        self._record(event.kind, event.payment_id, event.user_id, outcome)
        if result.duplicate:
            logger.info("Payment {} already credited, ignoring redelivery", event.payment_id)
        else:
            logger.info(
                "Credits added from payment {}: {} +{} -> {}",
                event.payment_id, event.user_id, event.credits, result.new_balance,
            )
        return ReconcileOutcome(event_type=event.kind, outcome=outcome, reference_id=event.payment_id)

    def _payment_failed(self, event: PaymentFailed) -> ReconcileOutcome:
        logger.warning("Payment {} failed for user {}, no credits added", event.payment_id, event.user_id)
        self._record(event.kind, event.payment_id, event.user_id, "recorded")
        return ReconcileOutcome(event_type=event.kind, outcome="recorded", reference_id=event.payment_id)

    # ── Subscriptions ───────────────────────────────────────────────

    def _subscription_changed(self, event: SubscriptionChanged) -> ReconcileOutcome:
        # Last write wins: period bounds are not compared against stored ones.
        try:
            with self.db.session() as session:
                now = utc_now()
                record = session.scalars(
                    select(SubscriptionRecord).where(SubscriptionRecord.user_id == event.user_id)
                ).first()
                if record is None:
                    record = SubscriptionRecord(user_id=event.user_id, created_at=now)
                    session.add(record)

                record.subscription_id = event.subscription_id
                record.status = "active"
                record.plan_id = event.plan_id
                record.current_period_start = event.period_start
                record.current_period_end = event.period_end
                if event.kind == SUBSCRIPTION_ACTIVE:
                    record.cancelled_at = None
                record.updated_at = now

                session.add(
                    PaymentEventRecord(
                        event_type=event.kind,
                        reference_id=event.subscription_id,
                        user_id=event.user_id,
                        outcome="applied",
                    )
                )
        except SQLAlchemyError as e:
            logger.error("Failed to apply {} for {}: {}", event.kind, event.subscription_id, e)
            raise PersistenceFailure(str(e)) from e

        logger.info(
            "Subscription {} for {} active until {}",
            event.subscription_id, event.user_id, event.period_end.isoformat(),
        )
        return ReconcileOutcome(event_type=event.kind, outcome="applied", reference_id=event.subscription_id)

    def _subscription_cancelled(self, event: SubscriptionCancelled) -> ReconcileOutcome:
        try:
            with self.db.session() as session:
                record = session.scalars(
                    select(SubscriptionRecord).where(SubscriptionRecord.subscription_id == event.subscription_id)
                ).first()
                if record is None:
                    outcome: Outcome = "dropped"
                    user_id = None
                else:
                    outcome = "applied"
                    user_id = record.user_id
                    record.status = "cancelled"
                    record.cancelled_at = event.cancelled_at
                    record.updated_at = utc_now()
                session.add(
                    PaymentEventRecord(
                        event_type=event.kind,
                        reference_id=event.subscription_id,
                        user_id=user_id,
                        outcome=outcome,
                    )
                )
        except SQLAlchemyError as e:
            logger.error("Failed to cancel subscription {}: {}", event.subscription_id, e)
            raise PersistenceFailure(str(e)) from e

        if outcome == "dropped":
            logger.warning("Cancellation for unknown subscription {}, dropping", event.subscription_id)
        else:
            logger.info("Subscription {} for {} cancelled", event.subscription_id, user_id)
        return ReconcileOutcome(event_type=event.kind, outcome=outcome, reference_id=event.subscription_id)

    # ── Reads ───────────────────────────────────────────────────────

    def get_subscription(self, user_id: str) -> Subscription | None:
        try:
            with self.db.session() as session:
                record = session.scalars(
                    select(SubscriptionRecord).where(SubscriptionRecord.user_id == user_id)
                ).first()
                return _subscription(record) if record else None
        except SQLAlchemyError as e:
            raise PersistenceFailure(str(e)) from e

    def active_subscription(self, user_id: str, now: datetime | None = None) -> Subscription | None:
        """The user's subscription if it is active and its period has not ended."""
        subscription = self.get_subscription(user_id)
        now = now or datetime.now(timezone.utc)
        if subscription and subscription.status == "active" and subscription.current_period_end > now:
            return subscription
        return None

    def _record(self, event_type: str, reference_id: str | None, user_id: str | None, outcome: str) -> None:
        try:
            with self.db.session() as session:
                session.add(
                    PaymentEventRecord(
                        event_type=event_type[:64],
                        reference_id=reference_id,
                        user_id=user_id,
                        outcome=outcome,
                    )
                )
        except SQLAlchemyError as e:
            raise PersistenceFailure(str(e)) from e
