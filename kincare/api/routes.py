import hmac
import json

from fastapi import APIRouter, BackgroundTasks, Depends, Header, HTTPException, Request
from fastapi.responses import JSONResponse
from loguru import logger

from kincare.billing.catalog import CREDIT_PACKAGES, FEATURE_COSTS, SUBSCRIPTION_PLANS, price_display
from kincare.billing.reconciler import PaymentReconciler
from kincare.billing.signature import WebhookVerificationError
from kincare.deps import Container, get_container
from kincare.errors import KinCareError
from kincare.interpret.assessment import assess
from kincare.models.schemas import (
    AddCreditsRequest,
    AuditResponse,
    BalanceCheck,
    BalanceResponse,
    CheckoutSession,
    CreditResult,
    DebitResult,
    FeatureRequest,
    HistoryResponse,
    InsufficientCredit,
    InterpretRequest,
    InterpretResponse,
    PackageListing,
    PlanListing,
    PurchaseRequest,
    SubscribeRequest,
)

router = APIRouter()


def require_user(x_user_id: str | None = Header(default=None)) -> str:
    if not x_user_id or not x_user_id.strip():
        raise HTTPException(status_code=401, detail="Unauthorized")
    return x_user_id.strip()


def require_internal(
    x_internal_key: str | None = Header(default=None),
    container: Container = Depends(get_container),
) -> None:
    expected = container.settings.internal_api_key
    if not expected or not x_internal_key or not hmac.compare_digest(x_internal_key, expected):
        raise HTTPException(status_code=401, detail="Unauthorized")


# ── Interpretation ──────────────────────────────────────────────────


@router.post("/interpret", response_model=InterpretResponse)
async def interpret_message(request: InterpretRequest, container: Container = Depends(get_container)):
    logger.info("Interpreting message from {}: {}", request.user_id or "anonymous", request.message)
    reading = await container.arbiter.interpret_message(request.message)
    return InterpretResponse(reading=reading, assessment=assess(reading))


# ── Credits ─────────────────────────────────────────────────────────


@router.get("/credits/balance", response_model=BalanceResponse)
def get_balance(user_id: str = Depends(require_user), container: Container = Depends(get_container)):
    return container.gate.balance(user_id)


@router.post("/credits/use", response_model=DebitResult, responses={402: {"model": InsufficientCredit}})
def use_credits(
    request: FeatureRequest,
    user_id: str = Depends(require_user),
    container: Container = Depends(get_container),
):
    result = container.gate.use(user_id, request.feature)
    if isinstance(result, InsufficientCredit):
        return JSONResponse(status_code=402, content=result.model_dump())
    return result


@router.post("/credits/check", response_model=BalanceCheck)
def check_credits(
    request: FeatureRequest,
    user_id: str = Depends(require_user),
    container: Container = Depends(get_container),
):
    return container.ledger.check_balance(user_id, request.feature)


@router.get("/credits/history", response_model=HistoryResponse)
def credit_history(
    limit: int = 20,
    user_id: str = Depends(require_user),
    container: Container = Depends(get_container),
):
    wallet = container.ledger.get_or_create_wallet(user_id)
    return HistoryResponse(balance=wallet.balance, transactions=container.ledger.history(user_id, limit))


@router.get("/credits/costs")
def credit_costs():
    return FEATURE_COSTS


@router.get("/credits/packages", response_model=list[PackageListing])
def credit_packages():
    return [
        PackageListing(
            id=pkg.id,
            name=pkg.name,
            description=pkg.description,
            credits=pkg.credits,
            price=pkg.price,
            price_display=price_display(pkg.price),
            popular=pkg.popular,
        )
        for pkg in CREDIT_PACKAGES.values()
    ]


@router.get("/credits/subscriptions", response_model=list[PlanListing])
def subscription_plans():
    return [
        PlanListing(
            id=plan.id,
            name=plan.name,
            description=plan.description,
            price=plan.price,
            price_display=price_display(plan.price, "/mo"),
            features=list(plan.features),
        )
        for plan in SUBSCRIPTION_PLANS.values()
    ]


@router.post("/credits/purchase", response_model=CheckoutSession)
def purchase_credits(
    request: PurchaseRequest,
    user_id: str = Depends(require_user),
    x_user_email: str | None = Header(default=None),
    x_user_name: str | None = Header(default=None),
    container: Container = Depends(get_container),
):
    return container.checkout.purchase(user_id, request.package_id, email=x_user_email, name=x_user_name)


@router.post("/credits/subscribe", response_model=CheckoutSession)
def subscribe(
    request: SubscribeRequest,
    user_id: str = Depends(require_user),
    x_user_email: str | None = Header(default=None),
    x_user_name: str | None = Header(default=None),
    container: Container = Depends(get_container),
):
    return container.checkout.subscribe(user_id, request.plan_id, email=x_user_email, name=x_user_name)


@router.post("/credits/add", response_model=CreditResult, dependencies=[Depends(require_internal)])
def add_credits(request: AddCreditsRequest, container: Container = Depends(get_container)):
    result = container.ledger.credit(
        request.user_id,
        request.credits,
        type="purchase",
        reference_id=request.reference_id,
        description=request.description or "Credits added",
    )
    logger.info("Internal credit for {} (ref {}): applied={}", request.user_id, request.reference_id, result.applied)
    return result


@router.get("/credits/audit", response_model=AuditResponse, dependencies=[Depends(require_internal)])
def audit_wallet(user_id: str, container: Container = Depends(get_container)):
    return AuditResponse(user_id=user_id, consistent=container.ledger.reconcile(user_id))


# ── Webhooks ────────────────────────────────────────────────────────


def _reconcile(reconciler: PaymentReconciler, event_type, payload) -> None:
    try:
        reconciler.handle_event(event_type, payload)
    except KinCareError as e:
        # Acknowledged already; the provider's redelivery is idempotent.
        logger.error("Async webhook processing failed for {}: {}", event_type, e)


@router.post("/webhooks/dodo")
async def dodo_webhook(
    request: Request,
    background_tasks: BackgroundTasks,
    container: Container = Depends(get_container),
):
    body = await request.body()

    try:
        if container.verifier is not None:
            payload = container.verifier.verify(body, request.headers)
        else:
            payload = json.loads(body)
    except WebhookVerificationError as e:
        logger.error("Webhook verification failed: {}", e)
        raise HTTPException(status_code=400, detail="Invalid signature")
    except (json.JSONDecodeError, UnicodeDecodeError):
        raise HTTPException(status_code=400, detail="Invalid JSON body")
    if not isinstance(payload, dict):
        raise HTTPException(status_code=400, detail="Webhook body must be an object")

    event_type = payload.get("type")
    if not isinstance(event_type, str) or not event_type.strip():
        logger.warning("Rejecting webhook without an event type")
        raise HTTPException(status_code=400, detail="Webhook event has no type")

    background_tasks.add_task(_reconcile, container.reconciler, event_type, payload)
    return {"received": True}
