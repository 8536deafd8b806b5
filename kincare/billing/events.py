"""
Webhook envelope parsing.

The payment provider's payload is loosely specified: the event data may sit
under ``data``, under ``payload.data``, directly under ``payload`` or at the
top level. Parsing turns it into a closed set of typed events before
anything is dispatched; anything that does not fit raises ValidationError.
"""

from datetime import datetime, timedelta, timezone
from typing import Any, Literal, Mapping, Union

from pydantic import BaseModel, TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from kincare.billing.catalog import MAX_CREDIT_AMOUNT
from kincare.errors import ValidationError

PAYMENT_SUCCEEDED = "payment.succeeded"
PAYMENT_FAILED = "payment.failed"
SUBSCRIPTION_ACTIVE = "subscription.active"
SUBSCRIPTION_RENEWED = "subscription.renewed"
SUBSCRIPTION_CANCELLED = "subscription.cancelled"

KNOWN_EVENTS = (
    PAYMENT_SUCCEEDED,
    PAYMENT_FAILED,
    SUBSCRIPTION_ACTIVE,
    SUBSCRIPTION_RENEWED,
    SUBSCRIPTION_CANCELLED,
)

DEFAULT_PERIOD = timedelta(days=30)
DEFAULT_PLAN = "care_plus"

_datetime = TypeAdapter(datetime)


class PaymentSucceeded(BaseModel):
    kind: Literal["payment.succeeded"] = PAYMENT_SUCCEEDED
    payment_id: str
    user_id: str
    credits: int
    package_id: str | None = None


class PaymentFailed(BaseModel):
    kind: Literal["payment.failed"] = PAYMENT_FAILED
    payment_id: str | None = None
    user_id: str | None = None


class SubscriptionChanged(BaseModel):
    kind: Literal["subscription.active", "subscription.renewed"]
    subscription_id: str
    user_id: str
    plan_id: str
    period_start: datetime
    period_end: datetime


class SubscriptionCancelled(BaseModel):
    kind: Literal["subscription.cancelled"] = SUBSCRIPTION_CANCELLED
    subscription_id: str
    cancelled_at: datetime


class UnknownEvent(BaseModel):
    kind: Literal["unknown"] = "unknown"
    event_type: str


PaymentEvent = Union[PaymentSucceeded, PaymentFailed, SubscriptionChanged, SubscriptionCancelled, UnknownEvent]


def extract_data(body: Mapping[str, Any]) -> Mapping[str, Any]:
    """Locate the event data inside an envelope, checking the usual spots in order."""
    data = body.get("data")
    if isinstance(data, Mapping):
        return data

    nested = body.get("payload")
    if isinstance(nested, Mapping):
        inner = nested.get("data")
        if isinstance(inner, Mapping):
            return inner
        return nested

    return body


def _text(data: Mapping[str, Any], *keys: str) -> str | None:
    for key in keys:
        value = data.get(key)
        if isinstance(value, (str, int)) and not isinstance(value, bool) and str(value).strip():
            return str(value).strip()
    return None


def _metadata(data: Mapping[str, Any]) -> Mapping[str, Any]:
    metadata = data.get("metadata")
    return metadata if isinstance(metadata, Mapping) else {}


def parse_credits(value: Any) -> int:
    """Credits arrive as a string in checkout metadata; accept positive integers only."""
    if isinstance(value, bool):
        raise ValidationError(f"Invalid credits value: {value!r}")
    if isinstance(value, int):
        credits = value
    elif isinstance(value, str) and value.strip().isdecimal():
        credits = int(value.strip())
    else:
        raise ValidationError(f"Invalid credits value: {value!r}")
    if credits <= 0:
        raise ValidationError(f"Credits must be positive, got {credits}")
    if credits > MAX_CREDIT_AMOUNT:
        raise ValidationError(f"Credits value too large: {credits}")
    return credits


def _when(value: Any, field: str) -> datetime | None:
    if value is None:
        return None
    try:
        parsed = _datetime.validate_python(value)
    except PydanticValidationError:
        raise ValidationError(f"Invalid timestamp in {field}: {value!r}") from None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def parse_event(event_type: Any, payload: Any, now: datetime | None = None) -> PaymentEvent:
    if not isinstance(event_type, str) or not event_type.strip():
        raise ValidationError("Webhook event has no type")
    if not isinstance(payload, Mapping):
        raise ValidationError("Webhook payload must be an object")

    now = now or datetime.now(timezone.utc)
    data = extract_data(payload)
    metadata = _metadata(data)

    if event_type == PAYMENT_SUCCEEDED:
        payment_id = _text(data, "payment_id", "id")
        user_id = _text(metadata, "userId", "user_id")
        if not payment_id:
            raise ValidationError("payment.succeeded without payment_id")
        if not user_id or metadata.get("credits") is None:
            raise ValidationError(f"Payment {payment_id} succeeded but is missing metadata")
        return PaymentSucceeded(
            payment_id=payment_id,
            user_id=user_id,
            credits=parse_credits(metadata.get("credits")),
            package_id=_text(metadata, "packageId", "package_id"),
        )

    if event_type == PAYMENT_FAILED:
        return PaymentFailed(
            payment_id=_text(data, "payment_id", "id"),
            user_id=_text(metadata, "userId", "user_id"),
        )

    if event_type in (SUBSCRIPTION_ACTIVE, SUBSCRIPTION_RENEWED):
        subscription_id = _text(data, "subscription_id", "id")
        user_id = _text(metadata, "userId", "user_id")
        if not subscription_id or not user_id:
            raise ValidationError(f"{event_type} missing subscription_id or userId")
        start = _when(data.get("current_period_start") or data.get("previous_billing_date"), "period start") or now
        end = _when(data.get("current_period_end") or data.get("next_billing_date"), "period end")
        return SubscriptionChanged(
            kind=event_type,
            subscription_id=subscription_id,
            user_id=user_id,
            plan_id=_text(metadata, "planId", "plan_id") or DEFAULT_PLAN,
            period_start=start,
            period_end=end or start + DEFAULT_PERIOD,
        )

    if event_type == SUBSCRIPTION_CANCELLED:
        subscription_id = _text(data, "subscription_id", "id")
        if not subscription_id:
            raise ValidationError("subscription.cancelled without subscription_id")
        return SubscriptionCancelled(
            subscription_id=subscription_id,
            cancelled_at=_when(data.get("cancelled_at"), "cancelled_at") or now,
        )

    return UnknownEvent(event_type=event_type)
