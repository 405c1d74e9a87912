"""
Custom exceptions and error handlers for consistent error responses.

Provides standardized error codes and global exception handlers.
Every financial failure is surfaced as a structured body:
{"success": false, "error_code", "message", "details"}.
"""

import logging
from datetime import datetime
from decimal import Decimal
from fastapi import HTTPException, Request, status
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)


class AppException(Exception):
    """Base application exception."""

    def __init__(self, message: str, error_code: str, status_code: int = 500, details: Dict[str, Any] = None):
        self.message = message
        self.error_code = error_code
        self.status_code = status_code
        self.details = details or {}
        super().__init__(message)


class InsufficientPermissionsError(AppException):
    """Raised when user doesn't have permission to perform an action."""

    def __init__(self, message: str = "Insufficient permissions", details: Dict[str, Any] = None):
        super().__init__(
            message=message,
            error_code="ERR_PERM_001",
            status_code=status.HTTP_403_FORBIDDEN,
            details=details
        )


class ResourceNotFoundError(AppException):
    """Raised when requested resource is not found."""

    def __init__(self, resource: str, resource_id: Any = None):
        message = f"{resource} not found"
        if resource_id:
            message = f"{resource} with ID {resource_id} not found"
        super().__init__(
            message=message,
            error_code="ERR_NOT_FOUND_001",
            status_code=status.HTTP_404_NOT_FOUND,
            details={"resource": resource, "id": resource_id}
        )


class LedgerValidationError(AppException):
    """Malformed or out-of-range input. Never partially applied."""

    def __init__(self, message: str, details: Dict[str, Any] = None):
        super().__init__(
            message=message,
            error_code="ERR_VALIDATION_002",
            status_code=status.HTTP_400_BAD_REQUEST,
            details=details
        )


class InsufficientFundsError(AppException):
    """Debit would take a balance below zero."""

    def __init__(self, available: Decimal, requested: Decimal):
        super().__init__(
            message="Insufficient balance",
            error_code="ERR_FUNDS_001",
            status_code=status.HTTP_400_BAD_REQUEST,
            details={"available": str(available), "requested": str(requested)}
        )


class LimitExceededError(AppException):
    """Amount violates a per-transaction, daily or minimum limit."""

    def __init__(self, message: str, limit: str, limit_value: Decimal, remaining: Optional[Decimal] = None):
        details = {"limit": limit, "limit_value": str(limit_value)}
        if remaining is not None:
            details["remaining"] = str(remaining)
        super().__init__(
            message=message,
            error_code="ERR_LIMIT_001",
            status_code=status.HTTP_400_BAD_REQUEST,
            details=details
        )


class AuthFailedError(AppException):
    """Wrong or missing PIN."""

    def __init__(self, message: str = "Incorrect PIN", attempts_remaining: Optional[int] = None):
        details = {}
        if attempts_remaining is not None:
            details["attempts_remaining"] = attempts_remaining
        super().__init__(
            message=message,
            error_code="ERR_PIN_001",
            status_code=status.HTTP_403_FORBIDDEN,
            details=details
        )


class AuthLockedError(AppException):
    """PIN verification refused until the lockout window passes."""

    def __init__(self, locked_until: datetime, now: datetime):
        minutes = max(1, int((locked_until - now).total_seconds() // 60) + 1)
        super().__init__(
            message=f"PIN locked, try again in {minutes} minutes",
            error_code="ERR_PIN_002",
            status_code=status.HTTP_423_LOCKED,
            details={"locked_until": locked_until.isoformat(), "minutes_remaining": minutes}
        )


class ConcurrencyConflictError(AppException):
    """Lost a race on an account lock. Safe to retry the whole operation."""

    def __init__(self, message: str = "Account is busy, please retry"):
        super().__init__(
            message=message,
            error_code="ERR_CONFLICT_001",
            status_code=status.HTTP_409_CONFLICT
        )


class InternalLedgerError(AppException):
    """Storage failure. No partial ledger mutation was committed."""

    def __init__(self, message: str = "Operation failed, no changes were made"):
        super().__init__(
            message=message,
            error_code="ERR_INTERNAL_001",
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR
        )


# Global Exception Handlers

async def app_exception_handler(request: Request, exc: AppException) -> JSONResponse:
    """Handler for custom application exceptions."""
    if exc.status_code >= 500:
        logger.error("Application error %s: %s", exc.error_code, exc.message)
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "success": False,
            "error_code": exc.error_code,
            "message": exc.message,
            "details": exc.details
        }
    )


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Handler for FastAPI HTTPException with standardized format."""
    # Map status code to error code
    error_code_map = {
        400: "ERR_BAD_REQUEST",
        401: "ERR_UNAUTHORIZED",
        403: "ERR_FORBIDDEN",
        404: "ERR_NOT_FOUND",
        409: "ERR_CONFLICT",
        423: "ERR_LOCKED",
        500: "ERR_INTERNAL_SERVER"
    }

    error_code = error_code_map.get(exc.status_code, "ERR_UNKNOWN")

    return JSONResponse(
        status_code=exc.status_code,
        content={
            "success": False,
            "error_code": error_code,
            "message": exc.detail,
            "details": {}
        },
        headers=getattr(exc, "headers", None)
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Handler for Pydantic validation errors."""
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={
            "success": False,
            "error_code": "ERR_VALIDATION",
            "message": "Validation error",
            "details": {
                "errors": [
                    {"loc": list(err.get("loc", [])), "msg": err.get("msg"), "type": err.get("type")}
                    for err in exc.errors()
                ]
            }
        }
    )


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handler for unhandled exceptions."""
    logger.exception("Unhandled exception: %s", type(exc).__name__)

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "success": False,
            "error_code": "ERR_INTERNAL_SERVER",
            "message": "An internal server error occurred",
            "details": {}
        }
    )
