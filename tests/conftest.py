"""
Shared fixtures: in-memory database, users, tokens and an API client.
"""

import hashlib
import hmac
import json
import os
import time
from typing import Any, Dict

# Settings are read at import time, so the environment comes first
os.environ.update({
    "DATABASE_URL": "sqlite://",
    "JWT_SECRET": "test-jwt-secret",
    "ENVIRONMENT": "testing",
    "ENABLE_RATE_LIMITING": "false",
    "PROVIDER_WEBHOOK_SECRET": "test-provider-secret",
    "STRIPE_WEBHOOK_SECRET": "whsec_test_secret",
    "PIAPI_API_KEY": "test-piapi-key",
    "DIFFRHYTHM_API_KEY": "test-diffrhythm-key",
    "OPENAI_API_KEY": "test-openai-key",
    "SUBMISSION_PACING_SECONDS": "0",
    "LOG_LEVEL": "WARNING",
})

import pytest
from fastapi.testclient import TestClient
from sqlmodel import Session, SQLModel, create_engine
from sqlmodel.pool import StaticPool

from mediagen.core.config import UserRole
from mediagen.core.security import SecurityUtils
from mediagen.db.models import User
from mediagen.db.session import get_session

PROVIDER_WEBHOOK_SECRET = "test-provider-secret"
STRIPE_WEBHOOK_SECRET = "whsec_test_secret"


@pytest.fixture(name="engine")
def engine_fixture():
    """Fresh in-memory database per test."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SQLModel.metadata.create_all(engine)
    yield engine
    SQLModel.metadata.drop_all(engine)


@pytest.fixture(name="session")
def session_fixture(engine):
    with Session(engine) as session:
        yield session


@pytest.fixture
def make_user(session):
    """Factory creating users with a starting balance."""
    counter = {"n": 0}

    def _make_user(credits: int = 0, radio_credits: int = 0, role: str = UserRole.USER) -> User:
        counter["n"] += 1
        user = User(
            email=f"user{counter['n']}@example.com",
            role=role,
            credits=credits,
            radio_credits=radio_credits,
        )
        session.add(user)
        session.commit()
        session.refresh(user)
        return user

    return _make_user


@pytest.fixture
def user(make_user):
    return make_user(credits=300)


@pytest.fixture
def admin_user(make_user):
    return make_user(role=UserRole.ADMIN)


@pytest.fixture(name="client")
def client_fixture(session):
    """API client sharing the test session; runs the app lifespan."""
    from mediagen.api.main import app

    app.dependency_overrides[get_session] = lambda: session
    with TestClient(app) as client:
        yield client
    app.dependency_overrides.clear()


class TestHelpers:
    """Helpers for building authenticated and signed requests."""

    @staticmethod
    def auth_headers(user: User) -> Dict[str, str]:
        token = SecurityUtils.create_access_token({"sub": str(user.id), "role": user.role})
        return {"Authorization": f"Bearer {token}"}

    @staticmethod
    def provider_signature(payload: bytes, secret: str = PROVIDER_WEBHOOK_SECRET) -> str:
        return "sha256=" + hmac.new(secret.encode("utf-8"), payload, hashlib.sha256).hexdigest()

    @staticmethod
    def stripe_signature(payload: bytes, secret: str = STRIPE_WEBHOOK_SECRET) -> str:
        timestamp = int(time.time())
        signed = f"{timestamp}.{payload.decode('utf-8')}".encode("utf-8")
        digest = hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()
        return f"t={timestamp},v1={digest}"

    @staticmethod
    def checkout_event(
        session_id: str,
        metadata: Dict[str, Any],
        payment_status: str = "paid",
        amount_total: int = 1000,
        event_type: str = "checkout.session.completed",
    ) -> Dict[str, Any]:
        return {
            "id": f"evt_{session_id}",
            "type": event_type,
            "data": {
                "object": {
                    "id": session_id,
                    "object": "checkout.session",
                    "payment_status": payment_status,
                    "amount_total": amount_total,
                    "metadata": metadata,
                }
            },
        }

    @staticmethod
    def provider_event(task_id: str, status: str, output: Dict[str, Any] = None, error: str = None) -> bytes:
        data: Dict[str, Any] = {"task_id": task_id, "status": status, "output": output or {}}
        if error:
            data["error"] = {"message": error}
        return json.dumps({"data": data}).encode("utf-8")


@pytest.fixture
def helpers():
    return TestHelpers
