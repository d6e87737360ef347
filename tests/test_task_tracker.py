"""
Tests for the generation task tracker.

Tests cover:
- Task creation and external id attachment
- Exactly-once settlement on completion
- Failure without charge, and refunds when a charge exists
- Recovery queue listing
"""

import pytest
from datetime import timedelta
from uuid import uuid4
from sqlmodel import select

from mediagen.api.services.tasks import TaskTracker
from mediagen.core.config import ContentKind, TaskStatus
from mediagen.core.exceptions import TaskNotFoundError, ValidationError
from mediagen.core.settings import settings
from mediagen.core.timestamps import utcnow
from mediagen.db.models import CreditLogEntry, GalleryItem


def make_task(session, user, credits=200, kind=ContentKind.IMAGE, provider="piapi_image"):
    return TaskTracker.create_task(
        session,
        user_id=user.id,
        kind=kind,
        estimated_credits=credits,
        provider=provider,
        prompt="a lighthouse at dusk",
        request_params={"aspect_ratio": "16:9"},
        title="Lighthouse",
    )


def entries(session, user):
    return session.exec(select(CreditLogEntry).where(CreditLogEntry.user_id == user.id)).all()


class TestCreateAndAttach:
    """Pending tasks and external ids."""

    def test_create_task_is_pending(self, session, user):
        task = make_task(session, user)

        assert task.id is not None
        assert task.status == TaskStatus.PENDING
        assert task.credits_used == 200
        assert task.credits_deducted is False
        assert task.external_task_id is None
        assert task.request_params == {"aspect_ratio": "16:9"}

    def test_attach_external_id_queues_task(self, session, user):
        task = make_task(session, user)

        task = TaskTracker.attach_external_id(session, task.id, "T1")

        assert task.status == TaskStatus.QUEUED
        assert task.external_task_id == "T1"
        assert TaskTracker.get_by_external_id(session, "piapi_image", "T1").id == task.id
        assert TaskTracker.get_by_external_id(session, "suno", "T1") is None

    def test_attach_same_id_twice_is_harmless(self, session, user):
        task = make_task(session, user)
        TaskTracker.attach_external_id(session, task.id, "T1")

        task = TaskTracker.attach_external_id(session, task.id, "T1")

        assert task.status == TaskStatus.QUEUED

    def test_attach_rejected_for_non_pending_task(self, session, user):
        task = make_task(session, user)
        TaskTracker.attach_external_id(session, task.id, "T1")

        with pytest.raises(ValidationError):
            TaskTracker.attach_external_id(session, task.id, "T2")

    def test_attach_unknown_task(self, session):
        with pytest.raises(TaskNotFoundError):
            TaskTracker.attach_external_id(session, uuid4(), "T1")


class TestCompletion:
    """Settlement on completion."""

    def test_completion_settles_once(self, session, user):
        task = make_task(session, user)
        TaskTracker.attach_external_id(session, task.id, "T1")

        result = TaskTracker.mark_completed(session, task.id, "https://cdn.example.com/x.png", {"seed": 7})

        assert result.transitioned is True
        assert result.credits_charged == 200
        assert result.balance_after == 100
        assert result.task.status == TaskStatus.COMPLETED
        assert result.task.artifact_url == "https://cdn.example.com/x.png"
        assert result.task.credits_deducted is True
        assert result.task.completed_at is not None
        assert result.task.result_metadata == {"seed": 7}

        session.refresh(user)
        assert user.credits == 100
        logged = entries(session, user)
        assert [e.amount for e in logged] == [-200]
        assert logged[0].related_entity_id == str(task.id)
        assert logged[0].related_entity_type == "Media"

        gallery = session.exec(select(GalleryItem).where(GalleryItem.task_id == task.id)).all()
        assert len(gallery) == 1
        assert gallery[0].artifact_url == "https://cdn.example.com/x.png"

    def test_second_completion_is_noop(self, session, user):
        task = make_task(session, user)
        TaskTracker.attach_external_id(session, task.id, "T1")
        TaskTracker.mark_completed(session, task.id, "https://cdn.example.com/x.png")

        again = TaskTracker.mark_completed(session, task.id, "https://cdn.example.com/other.png")

        assert again.transitioned is False
        assert again.task.artifact_url == "https://cdn.example.com/x.png"
        session.refresh(user)
        assert user.credits == 100
        assert len(entries(session, user)) == 1
        assert len(session.exec(select(GalleryItem)).all()) == 1

    def test_completion_after_failure_is_noop(self, session, user):
        task = make_task(session, user)
        TaskTracker.mark_failed(session, task.id, "provider error")

        result = TaskTracker.mark_completed(session, task.id, "https://cdn.example.com/x.png")

        assert result.transitioned is False
        assert result.task.status == TaskStatus.FAILED
        assert entries(session, user) == []

    def test_clamped_settlement_when_balance_dropped(self, session, make_user):
        poor_user = make_user(credits=50)
        task = make_task(session, poor_user, credits=200)

        result = TaskTracker.mark_completed(session, task.id, "https://cdn.example.com/x.png")

        assert result.transitioned is True
        assert result.credits_charged == 50
        session.refresh(poor_user)
        assert poor_user.credits == 0
        assert [e.amount for e in entries(session, poor_user)] == [-50]

    def test_strict_settlement_fails_task_when_short(self, session, make_user, monkeypatch):
        monkeypatch.setattr(settings, "settlement_debit_policy", "strict")
        poor_user = make_user(credits=50)
        task = make_task(session, poor_user, credits=200)

        result = TaskTracker.mark_completed(session, task.id, "https://cdn.example.com/x.png")

        assert result.task.status == TaskStatus.FAILED
        assert result.task.credits_deducted is False
        session.refresh(poor_user)
        assert poor_user.credits == 50
        assert entries(session, poor_user) == []
        assert session.exec(select(GalleryItem)).all() == []

    def test_song_entries_reference_songs(self, session, user):
        task = make_task(session, user, credits=15, kind=ContentKind.SONG, provider="diffrhythm")

        TaskTracker.mark_completed(session, task.id, "https://cdn.example.com/song.mp3")

        assert entries(session, user)[0].related_entity_type == "Song"

    def test_completion_unknown_task(self, session):
        with pytest.raises(TaskNotFoundError):
            TaskTracker.mark_completed(session, uuid4(), "https://cdn.example.com/x.png")


class TestFailure:
    """Failure handling."""

    def test_failure_without_charge_logs_nothing(self, session, user):
        task = make_task(session, user)
        TaskTracker.attach_external_id(session, task.id, "T1")

        result = TaskTracker.mark_failed(session, task.id, "content policy")

        assert result.transitioned is True
        assert result.credits_refunded == 0
        assert result.task.status == TaskStatus.FAILED
        assert result.task.error_message == "content policy"
        session.refresh(user)
        assert user.credits == 300
        assert entries(session, user) == []

    def test_failure_refunds_existing_charge(self, session, user):
        task = make_task(session, user)
        # A charge recorded before the task reached a terminal state
        task.credits_deducted = True
        user.credits = 100
        session.add(task)
        session.add(user)
        session.commit()

        result = TaskTracker.mark_failed(session, task.id, "provider crashed")

        assert result.credits_refunded == 200
        assert result.task.credits_deducted is False
        session.refresh(user)
        assert user.credits == 300
        refund = entries(session, user)
        assert [e.amount for e in refund] == [200]
        assert refund[0].idempotency_key == f"refund:{task.id}"

    def test_second_failure_is_noop(self, session, user):
        task = make_task(session, user)
        TaskTracker.mark_failed(session, task.id, "first")

        result = TaskTracker.mark_failed(session, task.id, "second")

        assert result.transitioned is False
        assert result.task.error_message == "first"

    def test_failure_after_completion_keeps_charge(self, session, user):
        task = make_task(session, user)
        TaskTracker.mark_completed(session, task.id, "https://cdn.example.com/x.png")

        result = TaskTracker.mark_failed(session, task.id, "late failure report")

        assert result.transitioned is False
        assert result.task.status == TaskStatus.COMPLETED
        session.refresh(user)
        assert user.credits == 100


class TestProcessingAndQueries:
    """Non-terminal transitions and lookups."""

    def test_mark_processing_updates_progress(self, session, user):
        task = make_task(session, user)
        TaskTracker.attach_external_id(session, task.id, "T1")

        assert TaskTracker.mark_processing(session, task.id, 40) is True

        task = TaskTracker.get_task(session, task.id)
        session.refresh(task)
        assert task.status == TaskStatus.PROCESSING
        assert task.progress == 40

    def test_mark_processing_ignored_for_terminal_task(self, session, user):
        task = make_task(session, user)
        TaskTracker.mark_completed(session, task.id, "https://cdn.example.com/x.png")

        assert TaskTracker.mark_processing(session, task.id, 10) is False
        session.refresh(task)
        assert task.status == TaskStatus.COMPLETED

    def test_mark_processing_unknown_task(self, session):
        with pytest.raises(TaskNotFoundError):
            TaskTracker.mark_processing(session, uuid4())

    def test_get_task_scoped_to_owner(self, session, user, make_user):
        task = make_task(session, user)
        stranger = make_user()

        assert TaskTracker.get_task(session, task.id, user_id=user.id).id == task.id
        with pytest.raises(TaskNotFoundError):
            TaskTracker.get_task(session, task.id, user_id=stranger.id)

    def test_list_user_tasks_filters_kind(self, session, user):
        make_task(session, user)
        make_task(session, user, credits=15, kind=ContentKind.SONG, provider="diffrhythm")

        assert len(TaskTracker.list_user_tasks(session, user.id)) == 2
        songs = TaskTracker.list_user_tasks(session, user.id, kind=ContentKind.SONG)
        assert [t.kind for t in songs] == ["song"]

    def test_list_reconcilable(self, session, user):
        waiting = make_task(session, user)
        TaskTracker.attach_external_id(session, waiting.id, "T-waiting")

        never_submitted = make_task(session, user)

        done = make_task(session, user)
        TaskTracker.attach_external_id(session, done.id, "T-done")
        TaskTracker.mark_completed(session, done.id, "https://cdn.example.com/x.png")

        stale = make_task(session, user)
        TaskTracker.attach_external_id(session, stale.id, "T-stale")
        stale.created_at = utcnow() - timedelta(hours=48)
        session.add(stale)
        session.commit()

        found = TaskTracker.list_reconcilable(session, timedelta(hours=24))

        assert [t.id for t in found] == [waiting.id]
        assert never_submitted.id not in [t.id for t in found]
