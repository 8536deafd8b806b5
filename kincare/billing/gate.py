from loguru import logger

from kincare.billing.catalog import feature_cost
from kincare.billing.reconciler import PaymentReconciler
from kincare.db.ledger import CreditLedger
from kincare.models.schemas import BalanceResponse, DebitResult, InsufficientCredit


class FeatureGate:
    """What feature collaborators call before running a paid AI feature."""

    def __init__(self, ledger: CreditLedger, reconciler: PaymentReconciler):
        self.ledger = ledger
        self.reconciler = reconciler

    def balance(self, user_id: str) -> BalanceResponse:
        wallet = self.ledger.get_or_create_wallet(user_id)
        subscription = self.reconciler.active_subscription(user_id)
        return BalanceResponse(
            balance=wallet.balance,
            updated_at=wallet.updated_at,
            subscription_active=subscription is not None,
            plan_id=subscription.plan_id if subscription else None,
            current_period_end=subscription.current_period_end if subscription else None,
        )

    def use(self, user_id: str, feature: str) -> DebitResult | InsufficientCredit:
        feature_cost(feature)
        if self.reconciler.active_subscription(user_id) is not None:
            wallet = self.ledger.get_or_create_wallet(user_id)
            logger.info("{} used {} under an active subscription", user_id, feature)
            return DebitResult(cost=0, new_balance=wallet.balance)
        return self.ledger.debit(user_id, feature)
