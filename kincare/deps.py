from dataclasses import dataclass

from fastapi import Request

from kincare.billing.checkout import CheckoutGateway
from kincare.billing.gate import FeatureGate
from kincare.billing.reconciler import PaymentReconciler
from kincare.billing.signature import WebhookVerifier
from kincare.config import Settings
from kincare.db.database import Database
from kincare.db.ledger import CreditLedger
from kincare.interpret.arbiter import InterpretationArbiter
from kincare.interpret.generative import GenerativeInterpreter
from kincare.interpret.patterns import PatternMatcher


@dataclass
class Container:
    settings: Settings
    db: Database
    ledger: CreditLedger
    reconciler: PaymentReconciler
    gate: FeatureGate
    checkout: CheckoutGateway
    verifier: WebhookVerifier | None
    arbiter: InterpretationArbiter

    def close(self) -> None:
        self.checkout.close()
        self.db.dispose()


def build_container(
    settings: Settings,
    generative: GenerativeInterpreter | None = None,
    checkout: CheckoutGateway | None = None,
) -> Container:
    """Wire every component once at start-up. Tests pass their own collaborators."""
    db = Database(settings.database_url)
    ledger = CreditLedger(db, signup_bonus=settings.signup_bonus)
    reconciler = PaymentReconciler(db, ledger)
    arbiter = InterpretationArbiter(
        PatternMatcher(),
        generative if generative is not None else GenerativeInterpreter.from_settings(settings),
        threshold=settings.high_confidence_threshold,
    )
    return Container(
        settings=settings,
        db=db,
        ledger=ledger,
        reconciler=reconciler,
        gate=FeatureGate(ledger, reconciler),
        checkout=checkout or CheckoutGateway.from_settings(settings),
        verifier=WebhookVerifier(settings.dodo_webhook_secret) if settings.dodo_webhook_secret else None,
        arbiter=arbiter,
    )


def get_container(request: Request) -> Container:
    return request.app.state.container
