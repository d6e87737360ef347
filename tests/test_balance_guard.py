"""
Tests for the balance guard pre-flight check.
"""

import pytest
from uuid import uuid4
from sqlmodel import select

from mediagen.api.services.balance_guard import BalanceGuard
from mediagen.core.config import CreditType
from mediagen.core.exceptions import InsufficientCreditsError, UserNotFoundError
from mediagen.db.models import CreditLogEntry


class TestBalanceGuard:
    """authorize fails exactly when required exceeds the balance."""

    @pytest.mark.parametrize("balance,required", [(100, 0), (100, 99), (100, 100)])
    def test_authorized_when_balance_covers(self, session, make_user, balance, required):
        user = make_user(credits=balance)

        authorization = BalanceGuard.authorize(session, user.id, required)

        assert authorization.ok is True
        assert authorization.available == balance
        assert authorization.required == required

    def test_rejected_when_short(self, session, make_user):
        user = make_user(credits=100)

        with pytest.raises(InsufficientCreditsError) as exc_info:
            BalanceGuard.authorize(session, user.id, 150)

        assert exc_info.value.required == 150
        assert exc_info.value.available == 100
        assert exc_info.value.details["shortfall"] == 50

    def test_does_not_touch_balance(self, session, make_user):
        user = make_user(credits=100)

        BalanceGuard.authorize(session, user.id, 40)

        session.refresh(user)
        assert user.credits == 100
        assert session.exec(select(CreditLogEntry)).all() == []

    def test_radio_balance(self, session, make_user):
        user = make_user(credits=500, radio_credits=1)

        with pytest.raises(InsufficientCreditsError):
            BalanceGuard.authorize(session, user.id, 2, credit_type=CreditType.RADIO)

    def test_unknown_user(self, session):
        with pytest.raises(UserNotFoundError):
            BalanceGuard.authorize(session, uuid4(), 1)
