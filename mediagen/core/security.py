"""
Security utilities: access-token decoding and webhook signature checks.
"""
import hashlib
import hmac
from dataclasses import dataclass
from datetime import timedelta
from typing import Optional
from uuid import UUID
from jose import JWTError, jwt
from fastapi import Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
import structlog

from mediagen.core.config import UserRole
from mediagen.core.exceptions import AuthenticationError, AuthorizationError
from mediagen.core.settings import settings
from mediagen.core.timestamps import utcnow

logger = structlog.get_logger(__name__)

# JWT token scheme; missing headers are reported by us as 401
bearer_scheme = HTTPBearer(auto_error=False)


@dataclass
class SessionUser:
    """Identity supplied by the auth provider for the current request."""
    user_id: UUID
    role: str = UserRole.USER

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN


class SecurityUtils:
    """Security utility functions."""

    @staticmethod
    def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
        """Create JWT access token."""
        to_encode = data.copy()
        expire = utcnow() + (expires_delta or timedelta(hours=24))
        to_encode.update({"exp": expire})
        return jwt.encode(to_encode, settings.jwt_secret, algorithm=settings.jwt_algorithm)

    @staticmethod
    def verify_token(token: str) -> Optional[dict]:
        """Verify and decode JWT token."""
        try:
            return jwt.decode(
                token,
                settings.jwt_secret,
                algorithms=[settings.jwt_algorithm]
            )
        except JWTError:
            return None

    @staticmethod
    def compute_signature(payload: bytes, secret: str) -> str:
        """HMAC-SHA256 hex digest of a raw request body."""
        return hmac.new(secret.encode("utf-8"), payload, hashlib.sha256).hexdigest()

    @staticmethod
    def verify_webhook_signature(payload: bytes, signature: Optional[str], secret: str) -> bool:
        """
        Verify a webhook signature header against the raw body.

        Accepts bare hex digests and ``sha256=<hex>`` prefixed values.
        """
        if not signature or not secret:
            return False

        if "=" in signature:
            signature = signature.split("=", 1)[1]

        expected = SecurityUtils.compute_signature(payload, secret)
        return hmac.compare_digest(signature, expected)

    @staticmethod
    def verify_shared_secret(provided: Optional[str], secret: str) -> bool:
        """Constant-time comparison of a shared-secret header."""
        if not provided or not secret:
            return False
        return hmac.compare_digest(provided.encode("utf-8"), secret.encode("utf-8"))


class AuthenticationDependency:
    """Authentication dependency for FastAPI routes."""

    @staticmethod
    def get_current_user(
        credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    ) -> SessionUser:
        """Get current user identity from the bearer token."""
        if credentials is None:
            raise AuthenticationError()

        payload = SecurityUtils.verify_token(credentials.credentials)
        if payload is None:
            raise AuthenticationError("Could not validate credentials")

        subject = payload.get("sub")
        if subject is None:
            raise AuthenticationError("Could not validate credentials")

        try:
            user_id = UUID(str(subject))
        except ValueError:
            raise AuthenticationError("Could not validate credentials")

        return SessionUser(user_id=user_id, role=payload.get("role", UserRole.USER))


# Convenience function for dependency injection
get_current_user = AuthenticationDependency.get_current_user


def require_admin(current_user: SessionUser = Depends(get_current_user)) -> SessionUser:
    """Allow only admin sessions through."""
    if not current_user.is_admin:
        logger.warning("Admin route denied", user_id=str(current_user.user_id), role=current_user.role)
        raise AuthorizationError("Admin role required")
    return current_user
