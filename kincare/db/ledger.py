from contextlib import contextmanager
from typing import Iterator

from loguru import logger
from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from kincare.billing.catalog import MAX_CREDIT_AMOUNT, feature_cost
from kincare.db.database import Database, TransactionRecord, WalletRecord, utc_now
from kincare.errors import PersistenceFailure, ValidationError
from kincare.models.schemas import (
    BalanceCheck,
    CreditResult,
    CreditTransaction,
    DebitResult,
    InsufficientCredit,
    Wallet,
)

SIGNUP_BONUS = 10
DEFAULT_HISTORY_LIMIT = 20
MAX_HISTORY_LIMIT = 100
CREDIT_TYPES = ("purchase", "refund", "adjustment")


def _wallet(record: WalletRecord) -> Wallet:
    return Wallet(
        id=record.id,
        user_id=record.user_id,
        balance=record.balance,
        updated_at=record.updated_at,
    )


def _transaction(record: TransactionRecord) -> CreditTransaction:
    return CreditTransaction(
        id=record.id,
        wallet_id=record.wallet_id,
        amount=record.amount,
        type=record.type,
        description=record.description,
        reference_id=record.reference_id,
        created_at=record.created_at,
    )


def _require_user(user_id: str) -> None:
    if not isinstance(user_id, str) or not user_id.strip():
        raise ValidationError("user_id is required")


class CreditLedger:
    """Sole owner of wallet balances and their transaction log.

    Holds no in-process locks: debits rely on a conditional UPDATE, wallet
    creation and reference-id idempotency rely on unique constraints.
    """

    def __init__(self, db: Database, signup_bonus: int = SIGNUP_BONUS):
        self.db = db
        self.signup_bonus = signup_bonus

    @contextmanager
    def _unit(self) -> Iterator[Session]:
        try:
            with self.db.session() as session:
                yield session
        except IntegrityError:
            raise
        except SQLAlchemyError as e:
            logger.error("Ledger storage failure: {}", e)
            raise PersistenceFailure(str(e)) from e

    def _find(self, session: Session, user_id: str) -> WalletRecord | None:
        return session.scalars(select(WalletRecord).where(WalletRecord.user_id == user_id)).first()

    def get_wallet(self, user_id: str) -> Wallet | None:
        _require_user(user_id)
        with self._unit() as session:
            record = self._find(session, user_id)
            return _wallet(record) if record else None

    def get_or_create_wallet(self, user_id: str) -> Wallet:
        _require_user(user_id)
        existing = self.get_wallet(user_id)
        if existing is not None:
            return existing

        try:
            with self._unit() as session:
                now = utc_now()
                record = WalletRecord(user_id=user_id, balance=self.signup_bonus, created_at=now, updated_at=now)
                session.add(record)
                session.flush()
                session.add(
                    TransactionRecord(
                        wallet_id=record.id,
                        amount=self.signup_bonus,
                        type="signup",
                        description="Welcome bonus credits",
                        created_at=now,
                    )
                )
                session.flush()
                logger.info("Created wallet for {} with {} signup credits", user_id, self.signup_bonus)
                return _wallet(record)
        except IntegrityError:
            # Lost the race against a concurrent creator; their row is committed.
            logger.debug("Wallet for {} created concurrently, reading it back", user_id)
            wallet = self.get_wallet(user_id)
            if wallet is None:
                raise PersistenceFailure(f"Wallet for {user_id} vanished after conflict")
            return wallet

    def check_balance(self, user_id: str, feature: str) -> BalanceCheck:
        cost = feature_cost(feature)
        wallet = self.get_wallet(user_id)
        balance = wallet.balance if wallet else 0
        return BalanceCheck(has_enough=balance >= cost, required=cost, balance=balance)

    def debit(self, user_id: str, feature: str) -> DebitResult | InsufficientCredit:
        cost = feature_cost(feature)
        wallet = self.get_or_create_wallet(user_id)

        with self._unit() as session:
            new_balance = session.execute(
                update(WalletRecord)
                .where(WalletRecord.id == wallet.id, WalletRecord.balance >= cost)
                .values(balance=WalletRecord.balance - cost, updated_at=utc_now())
                .returning(WalletRecord.balance)
            ).scalar_one_or_none()

            if new_balance is None:
                balance = session.scalar(select(WalletRecord.balance).where(WalletRecord.id == wallet.id))
                logger.info("Insufficient credits for {}: {} needs {}, has {}", user_id, feature, cost, balance)
                return InsufficientCredit(required=cost, balance=balance or 0)

            session.add(
                TransactionRecord(
                    wallet_id=wallet.id,
                    amount=-cost,
                    type="usage",
                    description=f"Used for {feature.replace('_', ' ')}",
                )
            )

        logger.info("Debited {} credits from {} for {}, balance {}", cost, user_id, feature, new_balance)
        return DebitResult(cost=cost, new_balance=new_balance)

    def credit(
        self,
        user_id: str,
        amount: int,
        type: str = "purchase",
        reference_id: str | None = None,
        description: str = "",
    ) -> CreditResult:
        if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
            raise ValidationError(f"Credit amount must be a positive integer, got {amount!r}")
        if amount > MAX_CREDIT_AMOUNT:
            raise ValidationError(f"Credit amount too large: {amount}")
        if type not in CREDIT_TYPES:
            raise ValidationError(f"Invalid credit type: {type!r}")
        if reference_id is not None and not reference_id.strip():
            raise ValidationError("reference_id must not be blank")

        wallet = self.get_or_create_wallet(user_id)

        try:
            with self._unit() as session:
                # The transaction row goes in first so a duplicate reference
                # aborts the unit before the balance moves.
                session.add(
                    TransactionRecord(
                        wallet_id=wallet.id,
                        amount=amount,
                        type=type,
                        description=description or f"{type.capitalize()} of {amount} credits",
                        reference_id=reference_id,
                    )
                )
                session.flush()
                new_balance = session.execute(
                    update(WalletRecord)
                    .where(WalletRecord.id == wallet.id)
                    .values(balance=WalletRecord.balance + amount, updated_at=utc_now())
                    .returning(WalletRecord.balance)
                ).scalar_one()
        except IntegrityError:
            if reference_id is None:
                raise PersistenceFailure(f"Unexpected constraint failure crediting {user_id}")
            current = self.get_wallet(user_id)
            logger.info("ConflictIgnored: reference {} already applied for {}", reference_id, user_id)
            return CreditResult(applied=False, duplicate=True, new_balance=current.balance if current else 0)

        logger.info("Credited {} credits to {} (ref {}), balance {}", amount, user_id, reference_id, new_balance)
        return CreditResult(applied=True, new_balance=new_balance)

    def history(self, user_id: str, limit: int = DEFAULT_HISTORY_LIMIT) -> list[CreditTransaction]:
        _require_user(user_id)
        limit = min(max(int(limit), 1), MAX_HISTORY_LIMIT)
        with self._unit() as session:
            records = session.scalars(
                select(TransactionRecord)
                .join(WalletRecord, TransactionRecord.wallet_id == WalletRecord.id)
                .where(WalletRecord.user_id == user_id)
                .order_by(TransactionRecord.created_at.desc(), TransactionRecord.id.desc())
                .limit(limit)
            ).all()
            return [_transaction(r) for r in records]

    def reconcile(self, user_id: str) -> bool:
        """True when the stored balance equals the sum of the wallet's transactions."""
        _require_user(user_id)
        with self._unit() as session:
            record = self._find(session, user_id)
            if record is None:
                return True
            total = session.scalar(
                select(func.coalesce(func.sum(TransactionRecord.amount), 0)).where(
                    TransactionRecord.wallet_id == record.id
                )
            )
            if total != record.balance:
                logger.error("Ledger drift for {}: balance {} vs transactions {}", user_id, record.balance, total)
            return total == record.balance
