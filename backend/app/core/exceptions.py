"""
Custom exceptions and error handlers for consistent error responses.

Provides standardized error codes and global exception handlers.
Expected fiscal failures are not raised: they travel as FiscalResult values
(see domain/fiscal/fiscal_service.py) and are translated by the router.
"""

import logging
from decimal import Decimal

from fastapi import HTTPException, Request, status
from fastapi.responses import JSONResponse
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from typing import Any, Dict

logger = logging.getLogger(__name__)


class AppException(Exception):
    """Base application exception."""

    def __init__(self, message: str, error_code: str, status_code: int = 500, details: Dict[str, Any] = None):
        self.message = message
        self.error_code = error_code
        self.status_code = status_code
        self.details = details or {}
        super().__init__(message)


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


class InvalidMovementError(AppException):
    """Raised when a ledger movement carries a non-positive amount or bad direction."""

    def __init__(self, message: str, details: Dict[str, Any] = None):
        super().__init__(
            message=message,
            error_code="ERR_LEDGER_001",
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            details=details
        )


class LedgerConflictError(AppException):
    """Raised when another writer appended to the same customer ledger first."""

    def __init__(self, customer_id: int, sequence: int):
        super().__init__(
            message=f"Concurrent posting detected for customer {customer_id}; movement not recorded",
            error_code="ERR_LEDGER_002",
            status_code=status.HTTP_409_CONFLICT,
            details={"customer_id": customer_id, "sequence": sequence}
        )


class EntryAlreadyReversedError(AppException):
    """Raised when reversing an entry that is already reversed or is itself a reversal."""

    def __init__(self, entry_id: int, reason: str):
        super().__init__(
            message=reason,
            error_code="ERR_LEDGER_003",
            status_code=status.HTTP_409_CONFLICT,
            details={"entry_id": entry_id}
        )


class FiscalStateError(AppException):
    """Raised when a sale is in the wrong fiscal state for the requested operation."""

    def __init__(self, message: str, details: Dict[str, Any] = None):
        super().__init__(
            message=message,
            error_code="ERR_FISCAL_001",
            status_code=status.HTTP_409_CONFLICT,
            details=details
        )


class SaleStateError(AppException):
    """Raised when a sale lifecycle transition finds the sale in another state."""

    def __init__(self, sale_id: int, expected: str):
        super().__init__(
            message=f"Sale {sale_id} is no longer {expected}",
            error_code="ERR_SALE_001",
            status_code=status.HTTP_409_CONFLICT,
            details={"sale_id": sale_id, "expected_status": expected}
        )


class DuplicateDocumentError(AppException):
    """Raised when a business document would violate a uniqueness rule."""

    def __init__(self, message: str, details: Dict[str, Any] = None):
        super().__init__(
            message=message,
            error_code="ERR_DOCUMENT_001",
            status_code=status.HTTP_409_CONFLICT,
            details=details
        )


def _jsonable(value: Any) -> Any:
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, dict):
        return {k: _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    return value


# Global Exception Handlers

async def app_exception_handler(request: Request, exc: AppException) -> JSONResponse:
    """Handler for custom application exceptions."""
    logger.warning("%s: %s", exc.error_code, exc.message)
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error_code": exc.error_code,
            "message": exc.message,
            "details": _jsonable(exc.details)
        }
    )


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Handler for FastAPI HTTPException with standardized format."""
    error_code_map = {
        400: "ERR_BAD_REQUEST",
        404: "ERR_NOT_FOUND",
        409: "ERR_CONFLICT",
        422: "ERR_VALIDATION",
        500: "ERR_INTERNAL_SERVER",
        502: "ERR_UPSTREAM",
        503: "ERR_UNAVAILABLE",
    }

    error_code = error_code_map.get(exc.status_code, "ERR_UNKNOWN")

    # Fiscal routes pass a dict detail carrying the FiscalResult
    if isinstance(exc.detail, dict):
        message = exc.detail.get("error") or error_code
        details = exc.detail
    else:
        message = exc.detail
        details = {}

    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error_code": error_code,
            "message": message,
            "details": _jsonable(details)
        }
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Handler for Pydantic validation errors."""
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={
            "error_code": "ERR_VALIDATION",
            "message": "Validation error",
            "details": {
                "errors": jsonable_encoder(exc.errors())
            }
        }
    )


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handler for unhandled exceptions."""
    logger.exception("Unhandled exception: %s", type(exc).__name__)

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error_code": "ERR_INTERNAL_SERVER",
            "message": "An internal server error occurred",
            "details": {}
        }
    )
