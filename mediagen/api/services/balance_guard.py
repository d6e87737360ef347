"""
Balance guard: read-only pre-flight check before a paid operation starts.
"""
from dataclasses import dataclass
from uuid import UUID
import structlog
from sqlmodel import Session

from mediagen.api.services.ledger import LedgerService
from mediagen.core.config import CreditType
from mediagen.core.exceptions import InsufficientCreditsError
from mediagen.core.monitoring.prometheus_metrics import increment_insufficient_credits

logger = structlog.get_logger(__name__)


@dataclass
class Authorization:
    """Outcome of a successful balance check."""
    ok: bool
    available: int
    required: int


class BalanceGuard:
    """Checks that a user can afford an operation. Never mutates state."""

    @staticmethod
    def authorize(
        session: Session,
        user_id: UUID,
        required_credits: int,
        credit_type: str = CreditType.STANDARD,
    ) -> Authorization:
        """
        Return an Authorization when ``required_credits <= balance``.

        Raises InsufficientCreditsError otherwise, and UserNotFoundError for
        unknown users.
        """
        available = LedgerService.get_balance(session, user_id, credit_type)

        if required_credits > available:
            increment_insufficient_credits(CreditType(credit_type).value)
            logger.info(
                "Insufficient credits",
                user_id=str(user_id),
                required=required_credits,
                available=available,
            )
            raise InsufficientCreditsError(required=required_credits, available=available)

        return Authorization(ok=True, available=available, required=required_credits)
