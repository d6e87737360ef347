"""
Custom exception classes and error handling utilities.
"""
from typing import Optional, Dict, Any
from fastapi import HTTPException, Request, status
from fastapi.responses import JSONResponse


class MediaGenException(Exception):
    """Base exception class for the mediagen application."""

    def __init__(
        self,
        message: str,
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        details: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.status_code = status_code
        self.details = details or {}
        super().__init__(self.message)


class AuthenticationError(MediaGenException):
    """Missing or invalid session."""

    def __init__(self, message: str = "Unauthorized"):
        super().__init__(
            message=message,
            status_code=status.HTTP_401_UNAUTHORIZED
        )


class AuthorizationError(MediaGenException):
    """Authorization related errors."""

    def __init__(self, message: str = "Access denied"):
        super().__init__(
            message=message,
            status_code=status.HTTP_403_FORBIDDEN
        )


class ValidationError(MediaGenException):
    """Data validation errors."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(
            message=message,
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            details=details
        )


class NotFoundError(MediaGenException):
    """Resource not found errors."""

    def __init__(self, resource: str, identifier: str = ""):
        message = f"{resource} not found"
        if identifier:
            message += f": {identifier}"
        super().__init__(
            message=message,
            status_code=status.HTTP_404_NOT_FOUND
        )


class UserNotFoundError(NotFoundError):
    """The referenced user does not exist."""

    def __init__(self, user_id: str):
        super().__init__("User", str(user_id))


class TaskNotFoundError(NotFoundError):
    """The referenced generation task does not exist."""

    def __init__(self, task_id: str):
        super().__init__("Task", str(task_id))


class InsufficientCreditsError(MediaGenException):
    """Insufficient credits for operation."""

    def __init__(self, required: int, available: int):
        self.required = required
        self.available = available
        super().__init__(
            message=f"Insufficient credits. Required: {required}, Available: {available}",
            status_code=status.HTTP_402_PAYMENT_REQUIRED,
            details={
                "required_credits": required,
                "available_credits": available,
                "shortfall": max(required - available, 0),
            }
        )


class DuplicateEntryError(MediaGenException):
    """A ledger entry with the same idempotency key already exists."""

    def __init__(self, idempotency_key: str):
        self.idempotency_key = idempotency_key
        super().__init__(
            message=f"Ledger entry already recorded: {idempotency_key}",
            status_code=status.HTTP_409_CONFLICT,
            details={"idempotency_key": idempotency_key}
        )


class MissingMetadataError(MediaGenException):
    """Payment event lacks the metadata needed to credit an account."""

    def __init__(self, missing: list):
        super().__init__(
            message=f"Missing required metadata: {', '.join(missing)}",
            status_code=status.HTTP_400_BAD_REQUEST,
            details={"missing": missing}
        )


class InvalidSignatureError(MediaGenException):
    """Webhook payload could not be authenticated."""

    def __init__(self, message: str = "Invalid signature"):
        super().__init__(
            message=message,
            status_code=status.HTTP_401_UNAUTHORIZED
        )


class ExternalProviderError(MediaGenException):
    """Generation or payment provider returned an error or malformed response."""

    def __init__(self, provider: str, message: str, task_id: Optional[str] = None):
        details = {"provider": provider}
        if task_id:
            details["task_id"] = task_id
        super().__init__(
            message=message,
            status_code=status.HTTP_502_BAD_GATEWAY,
            details=details
        )


class QueueFullError(MediaGenException):
    """Submission queue is at capacity."""

    def __init__(self, message: str = "Generation queue is full, try again shortly"):
        super().__init__(
            message=message,
            status_code=status.HTTP_429_TOO_MANY_REQUESTS
        )


# Exception handlers
async def mediagen_exception_handler(request: Request, exc: MediaGenException) -> JSONResponse:
    """Global exception handler for application exceptions."""
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error": {
                "message": exc.message,
                "type": exc.__class__.__name__,
                "details": exc.details,
                "status_code": exc.status_code
            }
        }
    )


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Render framework HTTP errors with the same envelope."""
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error": {
                "message": exc.detail,
                "type": "HTTPException",
                "status_code": exc.status_code
            }
        },
        headers=getattr(exc, "headers", None)
    )


async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handler for unexpected exceptions."""
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error": {
                "message": "Internal server error",
                "type": "InternalServerError",
                "status_code": status.HTTP_500_INTERNAL_SERVER_ERROR
            }
        }
    )
