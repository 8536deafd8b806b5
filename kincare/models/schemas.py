from datetime import datetime
from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator

Interpreter = Literal["pattern", "generative"]
MealContext = Literal["fasting", "before_meal", "after_meal", "random"]
Severity = Literal["mild", "moderate", "severe"]
TransactionType = Literal["signup", "usage", "purchase", "refund", "adjustment"]
SubscriptionStatus = Literal["active", "cancelled"]


# ── Readings ────────────────────────────────────────────────────────


class _Reading(BaseModel):
    model_config = ConfigDict(frozen=True)

    confidence: float = Field(ge=0.0, le=1.0)
    source_text: str
    interpretation_note: str | None = None
    interpreter: Interpreter = "pattern"


class BloodPressure(_Reading):
    kind: Literal["blood_pressure"] = "blood_pressure"
    systolic: int
    diastolic: int
    pulse: int | None = None


class Glucose(_Reading):
    kind: Literal["glucose"] = "glucose"
    value: int
    meal_context: MealContext = "fasting"


class Symptom(_Reading):
    kind: Literal["symptom"] = "symptom"
    symptom: str
    severity: Severity = "moderate"


class StatusQuery(_Reading):
    kind: Literal["status_query"] = "status_query"


class HelpRequest(_Reading):
    kind: Literal["help_request"] = "help_request"


class Unrecognized(_Reading):
    kind: Literal["unrecognized"] = "unrecognized"
    confidence: float = 0.0

    @model_validator(mode="after")
    def _zero_confidence(self):
        if self.confidence != 0.0:
            raise ValueError("unrecognized readings always carry confidence 0")
        return self


StructuredReading = Annotated[
    Union[BloodPressure, Glucose, Symptom, StatusQuery, HelpRequest, Unrecognized],
    Field(discriminator="kind"),
]


class Assessment(BaseModel):
    status: str
    alert: bool


class InterpretRequest(BaseModel):
    message: str
    user_id: str | None = None


class InterpretResponse(BaseModel):
    reading: StructuredReading
    assessment: Assessment | None = None


# ── Ledger ──────────────────────────────────────────────────────────


class Wallet(BaseModel):
    id: int
    user_id: str
    balance: int
    updated_at: datetime


class CreditTransaction(BaseModel):
    id: int
    wallet_id: int
    amount: int
    type: TransactionType
    description: str
    reference_id: str | None = None
    created_at: datetime


class Subscription(BaseModel):
    user_id: str
    subscription_id: str
    status: SubscriptionStatus
    plan_id: str
    current_period_start: datetime
    current_period_end: datetime
    cancelled_at: datetime | None = None


class BalanceCheck(BaseModel):
    has_enough: bool
    required: int
    balance: int


class DebitResult(BaseModel):
    success: Literal[True] = True
    cost: int
    new_balance: int


class InsufficientCredit(BaseModel):
    """Expected business outcome of a debit, surfaced to callers as a purchase prompt."""

    success: Literal[False] = False
    required: int
    balance: int


class CreditResult(BaseModel):
    applied: bool
    duplicate: bool = False
    new_balance: int


class BalanceResponse(BaseModel):
    balance: int
    updated_at: datetime
    subscription_active: bool = False
    plan_id: str | None = None
    current_period_end: datetime | None = None


class HistoryResponse(BaseModel):
    balance: int
    transactions: list[CreditTransaction]


class AuditResponse(BaseModel):
    user_id: str
    consistent: bool


# ── Requests ────────────────────────────────────────────────────────


class FeatureRequest(BaseModel):
    feature: str


class PurchaseRequest(BaseModel):
    package_id: str


class SubscribeRequest(BaseModel):
    plan_id: str


class AddCreditsRequest(BaseModel):
    user_id: str
    credits: int
    reference_id: str
    description: str | None = None


class CheckoutSession(BaseModel):
    checkout_url: str
    session_id: str


class PackageListing(BaseModel):
    id: str
    name: str
    description: str
    credits: int
    price: int
    price_display: str
    popular: bool = False


class PlanListing(BaseModel):
    id: str
    name: str
    description: str
    price: int
    price_display: str
    features: list[str]
