"""
Tests for the credit ledger.

Tests cover:
- Credits and debits with strict and clamp policies
- Balance equals starting balance plus the sum of entries
- Idempotency keys
- History, summary and entity lookups
"""

import pytest
from sqlmodel import select

from mediagen.api.services.ledger import LedgerService
from mediagen.core.config import CreditType, DebitPolicy
from mediagen.core.exceptions import (
    DuplicateEntryError,
    InsufficientCreditsError,
    UserNotFoundError,
    ValidationError,
)
from mediagen.db.models import CreditLogEntry, User
from uuid import uuid4


def entries_for(session, user_id):
    return session.exec(select(CreditLogEntry).where(CreditLogEntry.user_id == user_id)).all()


class TestCredit:
    """Adding credits."""

    def test_credit_increases_balance_and_appends_entry(self, session, make_user):
        user = make_user(credits=10)

        new_balance = LedgerService.credit(session, user.id, 25, "Purchased 25 credits")

        assert new_balance == 35
        session.refresh(user)
        assert user.credits == 35
        entries = entries_for(session, user.id)
        assert len(entries) == 1
        assert entries[0].amount == 25
        assert entries[0].balance_after == 35
        assert entries[0].credit_type == CreditType.STANDARD.value

    def test_credit_unknown_user(self, session):
        with pytest.raises(UserNotFoundError):
            LedgerService.credit(session, uuid4(), 10, "nobody")

    @pytest.mark.parametrize("amount", [0, -5])
    def test_credit_requires_positive_amount(self, session, make_user, amount):
        user = make_user(credits=10)
        with pytest.raises(ValidationError):
            LedgerService.credit(session, user.id, amount, "bad")
        assert entries_for(session, user.id) == []

    def test_radio_credits_are_ledgered_separately(self, session, make_user):
        user = make_user(credits=50, radio_credits=1)

        LedgerService.credit(session, user.id, 3, "Radio plan", credit_type=CreditType.RADIO)

        session.refresh(user)
        assert user.radio_credits == 4
        assert user.credits == 50
        entry = entries_for(session, user.id)[0]
        assert entry.credit_type == CreditType.RADIO.value
        assert entry.balance_after == 4

    def test_duplicate_idempotency_key_credits_once(self, session, make_user):
        user = make_user(credits=0)
        LedgerService.credit(session, user.id, 100, "Purchase", idempotency_key="stripe:cs_1")

        with pytest.raises(DuplicateEntryError):
            LedgerService.credit(session, user.id, 100, "Purchase", idempotency_key="stripe:cs_1")

        session.refresh(user)
        assert user.credits == 100
        assert len(entries_for(session, user.id)) == 1


class TestDebit:
    """Removing credits."""

    def test_strict_debit(self, session, make_user):
        user = make_user(credits=300)

        new_balance = LedgerService.debit(session, user.id, 200, "Image generation")

        assert new_balance == 100
        session.refresh(user)
        assert user.credits == 100
        assert user.total_credits_used == 200
        entries = entries_for(session, user.id)
        assert [e.amount for e in entries] == [-200]

    def test_strict_debit_insufficient_changes_nothing(self, session, make_user):
        user = make_user(credits=100)

        with pytest.raises(InsufficientCreditsError) as exc_info:
            LedgerService.debit(session, user.id, 150, "Video", policy=DebitPolicy.STRICT)

        assert exc_info.value.required == 150
        assert exc_info.value.available == 100
        session.refresh(user)
        assert user.credits == 100
        assert entries_for(session, user.id) == []

    def test_clamp_debit_takes_what_is_left(self, session, make_user):
        user = make_user(credits=30)

        new_balance = LedgerService.debit(session, user.id, 50, "Song", policy=DebitPolicy.CLAMP)

        assert new_balance == 0
        session.refresh(user)
        assert user.total_credits_used == 30
        assert [e.amount for e in entries_for(session, user.id)] == [-30]

    def test_clamp_debit_of_empty_balance_logs_zero(self, session, make_user):
        user = make_user(credits=0)

        new_balance = LedgerService.debit(session, user.id, 15, "Song", policy=DebitPolicy.CLAMP)

        assert new_balance == 0
        entries = entries_for(session, user.id)
        assert len(entries) == 1
        assert entries[0].amount == 0
        assert entries[0].balance_after == 0

    def test_debit_unknown_user(self, session):
        with pytest.raises(UserNotFoundError):
            LedgerService.debit(session, uuid4(), 1, "nobody")

    def test_uncommitted_debit_rolls_back_with_caller(self, session, make_user):
        user = make_user(credits=40)

        LedgerService.debit(session, user.id, 10, "Part of a larger transaction", commit=False)
        session.rollback()

        session.refresh(user)
        assert user.credits == 40
        assert entries_for(session, user.id) == []


class TestBalanceMatchesLog:
    """Balance is always the starting balance plus every entry."""

    def test_balance_matches_sum_of_entries(self, session, make_user):
        initial = 120
        user = make_user(credits=initial)

        LedgerService.credit(session, user.id, 50, "Purchase")
        LedgerService.debit(session, user.id, 70, "Song")
        LedgerService.debit(session, user.id, 500, "Video", policy=DebitPolicy.CLAMP)
        LedgerService.credit(session, user.id, 5, "Refund")
        with pytest.raises(InsufficientCreditsError):
            LedgerService.debit(session, user.id, 100, "Image")

        session.refresh(user)
        total = sum(e.amount for e in entries_for(session, user.id))
        assert user.credits == initial + total
        assert user.credits == 5


class TestQueries:
    """History, summary and lookups."""

    def test_history_newest_first_and_filtered(self, session, make_user):
        user = make_user(credits=100, radio_credits=0)
        LedgerService.credit(session, user.id, 10, "one")
        LedgerService.debit(session, user.id, 5, "two")
        LedgerService.credit(session, user.id, 2, "radio", credit_type=CreditType.RADIO)

        history = LedgerService.history(session, user.id)
        assert len(history) == 3
        timestamps = [entry.created_at for entry in history]
        assert timestamps == sorted(timestamps, reverse=True)

        radio_only = LedgerService.history(session, user.id, credit_type=CreditType.RADIO)
        assert [entry.description for entry in radio_only] == ["radio"]

        assert len(LedgerService.history(session, user.id, limit=1)) == 1

    def test_summary_totals(self, session, make_user):
        user = make_user(credits=0)
        LedgerService.credit(session, user.id, 100, "Purchase")
        LedgerService.debit(session, user.id, 30, "Song")
        LedgerService.debit(session, user.id, 20, "Image")

        summary = LedgerService.summary(session, user.id)

        assert summary.current_balance == 50
        assert summary.total_earned == 100
        assert summary.total_spent == 50
        assert summary.last_transaction_at is not None

    def test_has_entry_for(self, session, make_user):
        user = make_user(credits=0)
        LedgerService.credit(
            session, user.id, 10, "Purchase",
            related_entity_id="cs_abc", related_entity_type="stripe_payment",
        )

        assert LedgerService.has_entry_for(session, "cs_abc")
        assert LedgerService.has_entry_for(session, "cs_abc", "stripe_payment")
        assert not LedgerService.has_entry_for(session, "cs_abc", "Song")
        assert not LedgerService.has_entry_for(session, "cs_other")

    def test_get_balance_unknown_user(self, session):
        with pytest.raises(UserNotFoundError):
            LedgerService.get_balance(session, uuid4())
