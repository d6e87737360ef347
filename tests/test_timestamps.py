"""
Tests for UTC timestamp handling in models and services.
"""

from datetime import datetime, timedelta, timezone

from mediagen.api.services.ledger import LedgerService
from mediagen.api.services.tasks import TaskTracker
from mediagen.core.config import ContentKind
from mediagen.core.timestamps import as_utc, utcnow
from mediagen.db.models import ContentTask, CreditLogEntry, GalleryItem, User


class TestTimestampHelpers:
    def test_utcnow_is_aware(self):
        assert utcnow().tzinfo is not None
        assert utcnow().utcoffset() == timedelta(0)

    def test_naive_value_read_as_utc(self):
        value = as_utc(datetime(2025, 1, 2, 3, 4, 5))

        assert value == datetime(2025, 1, 2, 3, 4, 5, tzinfo=timezone.utc)

    def test_offset_value_converted(self):
        plus_two = timezone(timedelta(hours=2))

        assert as_utc(datetime(2025, 1, 2, 5, 0, tzinfo=plus_two)) == datetime(2025, 1, 2, 3, 0, tzinfo=timezone.utc)

    def test_none_passes_through(self):
        assert as_utc(None) is None


class TestModelDefaults:
    def test_new_rows_carry_aware_timestamps(self):
        user = User(email="tz@example.com")
        task = ContentTask(user_id=user.id, kind="image", provider="piapi_image", prompt="x")
        entry = CreditLogEntry(user_id=user.id, amount=1, balance_after=1, description="x")
        item = GalleryItem(user_id=user.id, task_id=task.id, kind="image", artifact_url="https://cdn.example.com/x.png")

        for value in (user.created_at, user.updated_at, task.created_at, task.updated_at, entry.created_at, item.created_at):
            assert value.tzinfo is not None


class TestPersistedTimestamps:
    def test_task_lifecycle_timestamps(self, session, user):
        before = utcnow()
        task = TaskTracker.create_task(
            session,
            user_id=user.id,
            kind=ContentKind.IMAGE,
            estimated_credits=100,
            provider="piapi_image",
            prompt="a lighthouse",
        )
        TaskTracker.attach_external_id(session, task.id, "T1")
        result = TaskTracker.mark_completed(session, task.id, "https://cdn.example.com/l.png")

        completed = result.task
        assert as_utc(completed.created_at) >= before - timedelta(seconds=1)
        assert as_utc(completed.completed_at) >= as_utc(completed.created_at)
        assert completed.generation_time_seconds >= 0

    def test_ledger_updates_user_timestamp(self, session, user):
        before = utcnow()

        LedgerService.credit(session, user.id, 10, description="top up")

        session.refresh(user)
        assert as_utc(user.updated_at) >= before - timedelta(seconds=1)
