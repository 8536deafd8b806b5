from dataclasses import dataclass

from kincare.errors import ValidationError

# Largest single credit the ledger accepts (signed 32-bit column range).
MAX_CREDIT_AMOUNT = 2**31 - 1

# Credits charged per use of an AI feature.
FEATURE_COSTS: dict[str, int] = {
    "lab_translation": 2,
    "health_insight": 1,
    "doctor_brief": 3,
}


@dataclass(frozen=True)
class CreditPackage:
    id: str
    name: str
    description: str
    credits: int
    price: int  # cents
    popular: bool = False


@dataclass(frozen=True)
class SubscriptionPlan:
    id: str
    name: str
    description: str
    price: int  # cents per month
    features: tuple[str, ...]


CREDIT_PACKAGES: dict[str, CreditPackage] = {
    "try_it_out": CreditPackage(
        id="try_it_out",
        name="Try It Out",
        description="Perfect for getting started",
        credits=50,
        price=299,
    ),
    "monthly_care": CreditPackage(
        id="monthly_care",
        name="Monthly Care",
        description="Best for regular health tracking",
        credits=150,
        price=799,
        popular=True,
    ),
    "yearly_care": CreditPackage(
        id="yearly_care",
        name="Yearly Care",
        description="Maximum value for families",
        credits=500,
        price=1999,
    ),
}

SUBSCRIPTION_PLANS: dict[str, SubscriptionPlan] = {
    "care_plus": SubscriptionPlan(
        id="care_plus",
        name="Care+",
        description="Unlimited AI-powered health insights",
        price=999,
        features=(
            "Unlimited health insights",
            "Unlimited lab translations",
            "Unlimited doctor briefs",
            "Priority support",
            "Family sharing (up to 5 profiles)",
        ),
    ),
}


def feature_cost(feature: str) -> int:
    try:
        return FEATURE_COSTS[feature]
    except KeyError:
        raise ValidationError(f"Invalid feature type: {feature!r}") from None


def get_package(package_id: str) -> CreditPackage:
    try:
        return CREDIT_PACKAGES[package_id]
    except KeyError:
        raise ValidationError(f"Invalid package: {package_id!r}") from None


def get_plan(plan_id: str) -> SubscriptionPlan:
    try:
        return SUBSCRIPTION_PLANS[plan_id]
    except KeyError:
        raise ValidationError(f"Invalid subscription plan: {plan_id!r}") from None


def price_display(cents: int, suffix: str = "") -> str:
    return f"${cents / 100:.2f}{suffix}"
