"""
Ledger service: the only code path that changes a user's credit balance.

Every balance change reads the user row under a row lock, updates the balance
and appends an immutable CreditLogEntry in the same transaction.
"""
from typing import List, Optional
from uuid import UUID
import structlog
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select, func

from mediagen.core.config import CreditType, DebitPolicy
from mediagen.core.exceptions import (
    DuplicateEntryError,
    InsufficientCreditsError,
    UserNotFoundError,
    ValidationError,
)
from mediagen.core.timestamps import utcnow
from mediagen.core.monitoring.prometheus_metrics import (
    increment_credit_movement,
    increment_insufficient_credits,
)
from mediagen.db.models import CreditBalance, CreditLogEntry, User

logger = structlog.get_logger(__name__)

# User column holding each balance
BALANCE_FIELDS = {
    CreditType.STANDARD: "credits",
    CreditType.RADIO: "radio_credits",
}


class LedgerService:
    """Credit and debit operations with an append-only audit trail."""

    @staticmethod
    def _balance_field(credit_type: str) -> str:
        try:
            return BALANCE_FIELDS[CreditType(credit_type)]
        except ValueError:
            raise ValidationError(f"Unknown credit type: {credit_type}")

    @staticmethod
    def _lock_user(session: Session, user_id: UUID) -> User:
        """Load the user row with SELECT ... FOR UPDATE."""
        statement = (
            select(User)
            .where(User.id == user_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        user = session.exec(statement).first()
        if not user:
            raise UserNotFoundError(str(user_id))
        return user

    @staticmethod
    def _check_idempotency_key(session: Session, idempotency_key: Optional[str]) -> None:
        if idempotency_key is None:
            return
        existing = session.exec(
            select(CreditLogEntry.id).where(CreditLogEntry.idempotency_key == idempotency_key)
        ).first()
        if existing is not None:
            raise DuplicateEntryError(idempotency_key)

    @staticmethod
    def commit_entry(session: Session, idempotency_key: Optional[str]) -> None:
        """Commit, reporting an idempotency key collision as DuplicateEntryError."""
        try:
            session.commit()
        except IntegrityError:
            session.rollback()
            if idempotency_key is not None:
                # A concurrent writer recorded the same key first
                raise DuplicateEntryError(idempotency_key)
            raise

    @staticmethod
    def credit(
        session: Session,
        user_id: UUID,
        amount: int,
        description: str,
        related_entity_id: Optional[str] = None,
        related_entity_type: Optional[str] = None,
        credit_type: str = CreditType.STANDARD,
        idempotency_key: Optional[str] = None,
        commit: bool = True,
    ) -> int:
        """
        Add credits to a user's balance.

        Returns the new balance. Raises UserNotFoundError for unknown users
        and DuplicateEntryError when ``idempotency_key`` was already used.
        Pass ``commit=False`` to leave the transaction open for the caller.
        """
        if amount <= 0:
            raise ValidationError("Credit amount must be positive", details={"amount": amount})

        field = LedgerService._balance_field(credit_type)
        user = LedgerService._lock_user(session, user_id)
        LedgerService._check_idempotency_key(session, idempotency_key)

        new_balance = getattr(user, field) + amount
        setattr(user, field, new_balance)
        user.updated_at = utcnow()

        entry = CreditLogEntry(
            user_id=user.id,
            credit_type=CreditType(credit_type).value,
            amount=amount,
            balance_after=new_balance,
            description=description,
            related_entity_id=related_entity_id,
            related_entity_type=related_entity_type,
            idempotency_key=idempotency_key,
        )
        session.add(user)
        session.add(entry)

        if commit:
            LedgerService.commit_entry(session, idempotency_key)

        increment_credit_movement(CreditType(credit_type).value, "credit", amount)
        logger.info(
            "Credits added",
            user_id=str(user_id),
            credit_type=CreditType(credit_type).value,
            amount=amount,
            balance_after=new_balance,
            related_entity_id=related_entity_id,
        )
        return new_balance

    @staticmethod
    def debit(
        session: Session,
        user_id: UUID,
        amount: int,
        description: str,
        related_entity_id: Optional[str] = None,
        related_entity_type: Optional[str] = None,
        credit_type: str = CreditType.STANDARD,
        policy: str = DebitPolicy.STRICT,
        idempotency_key: Optional[str] = None,
        commit: bool = True,
    ) -> int:
        """
        Remove credits from a user's balance.

        ``strict`` raises InsufficientCreditsError when the balance cannot
        cover ``amount``; ``clamp`` deducts whatever is left. An entry is
        always appended, with amount zero when clamping an empty balance.
        Returns the new balance.
        """
        if amount < 0:
            raise ValidationError("Debit amount must not be negative", details={"amount": amount})

        policy = DebitPolicy(policy)
        field = LedgerService._balance_field(credit_type)
        user = LedgerService._lock_user(session, user_id)
        LedgerService._check_idempotency_key(session, idempotency_key)

        available = getattr(user, field)
        if amount > available:
            if policy == DebitPolicy.STRICT:
                increment_insufficient_credits(CreditType(credit_type).value)
                raise InsufficientCreditsError(required=amount, available=available)
            logger.warning(
                "Debit clamped to available balance",
                user_id=str(user_id),
                requested=amount,
                available=available,
            )

        deducted = min(amount, available)
        new_balance = available - deducted
        setattr(user, field, new_balance)
        user.total_credits_used += deducted
        user.updated_at = utcnow()

        entry = CreditLogEntry(
            user_id=user.id,
            credit_type=CreditType(credit_type).value,
            amount=-deducted,
            balance_after=new_balance,
            description=description,
            related_entity_id=related_entity_id,
            related_entity_type=related_entity_type,
            idempotency_key=idempotency_key,
        )
        session.add(user)
        session.add(entry)

        if commit:
            LedgerService.commit_entry(session, idempotency_key)

        increment_credit_movement(CreditType(credit_type).value, "debit", deducted)
        logger.info(
            "Credits deducted",
            user_id=str(user_id),
            credit_type=CreditType(credit_type).value,
            amount=deducted,
            balance_after=new_balance,
            related_entity_id=related_entity_id,
        )
        return new_balance

    @staticmethod
    def get_balance(
        session: Session,
        user_id: UUID,
        credit_type: str = CreditType.STANDARD,
        for_update: bool = False,
    ) -> int:
        """Current balance for one credit type."""
        field = LedgerService._balance_field(credit_type)
        if for_update:
            return getattr(LedgerService._lock_user(session, user_id), field)
        user = session.get(User, user_id)
        if not user:
            raise UserNotFoundError(str(user_id))
        return getattr(user, field)

    @staticmethod
    def history(
        session: Session,
        user_id: UUID,
        limit: int = 50,
        offset: int = 0,
        credit_type: Optional[str] = None,
    ) -> List[CreditLogEntry]:
        """Ledger entries for a user, newest first."""
        statement = select(CreditLogEntry).where(CreditLogEntry.user_id == user_id)
        if credit_type is not None:
            statement = statement.where(CreditLogEntry.credit_type == CreditType(credit_type).value)
        statement = (
            statement.order_by(CreditLogEntry.created_at.desc())
            .offset(offset)
            .limit(limit)
        )
        return list(session.exec(statement).all())

    @staticmethod
    def has_entry_for(
        session: Session,
        related_entity_id: str,
        related_entity_type: Optional[str] = None,
    ) -> bool:
        """Whether any ledger entry references the given entity."""
        statement = select(CreditLogEntry.id).where(CreditLogEntry.related_entity_id == related_entity_id)
        if related_entity_type is not None:
            statement = statement.where(CreditLogEntry.related_entity_type == related_entity_type)
        return session.exec(statement).first() is not None

    @staticmethod
    def summary(session: Session, user_id: UUID, credit_type: str = CreditType.STANDARD) -> CreditBalance:
        """Balance with lifetime earned and spent totals."""
        credit_type = CreditType(credit_type)
        current_balance = LedgerService.get_balance(session, user_id, credit_type)

        scoped = (CreditLogEntry.user_id == user_id, CreditLogEntry.credit_type == credit_type.value)
        total_earned = session.exec(
            select(func.coalesce(func.sum(CreditLogEntry.amount), 0))
            .where(*scoped)
            .where(CreditLogEntry.amount > 0)
        ).one()
        total_spent = session.exec(
            select(func.coalesce(func.sum(CreditLogEntry.amount), 0))
            .where(*scoped)
            .where(CreditLogEntry.amount < 0)
        ).one()
        last_transaction_at = session.exec(
            select(func.max(CreditLogEntry.created_at)).where(*scoped)
        ).one()

        return CreditBalance(
            user_id=user_id,
            credit_type=credit_type.value,
            current_balance=current_balance,
            total_earned=int(total_earned),
            total_spent=abs(int(total_spent)),
            last_transaction_at=last_transaction_at,
        )
