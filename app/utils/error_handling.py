"""
NairaPay Core - Error Handling

Exception taxonomy for payroll, wage advances and procurement, the JSON
error envelope returned by the API, and small input validators.

Every error response has the shape
``{"detail": {"code", "message", "timestamp", "field"?, "details"?}}``.
"""

from datetime import datetime
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Dict, Optional, Union
from uuid import UUID
import logging

from fastapi import FastAPI, Request, HTTPException, status
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from sqlalchemy.exc import (
    SQLAlchemyError,
    IntegrityError,
    OperationalError,
    DataError,
)
from sqlalchemy.orm.exc import StaleDataError
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = logging.getLogger("nairapay.errors")


class ErrorCode(str, Enum):
    """Machine-readable error codes"""

    # 422
    VALIDATION_ERROR = "VALIDATION_ERROR"
    INVALID_INPUT = "INVALID_INPUT"
    INVALID_ACCOUNT_NUMBER = "INVALID_ACCOUNT_NUMBER"
    INVALID_DATE_RANGE = "INVALID_DATE_RANGE"
    INVALID_AMOUNT = "INVALID_AMOUNT"
    INVALID_INSTALLMENTS = "INVALID_INSTALLMENTS"
    NOT_ELIGIBLE = "NOT_ELIGIBLE"
    OVERPAYMENT = "OVERPAYMENT"
    BUSINESS_RULE_VIOLATION = "BUSINESS_RULE_VIOLATION"
    INSUFFICIENT_INVENTORY = "INSUFFICIENT_INVENTORY"
    APPROVAL_REQUIRED = "APPROVAL_REQUIRED"

    # 401 / 403
    UNAUTHORIZED = "UNAUTHORIZED"
    FORBIDDEN = "FORBIDDEN"

    # 404 / 409
    NOT_FOUND = "NOT_FOUND"
    RESOURCE_CONFLICT = "RESOURCE_CONFLICT"
    DUPLICATE_ENTRY = "DUPLICATE_ENTRY"
    VERSION_CONFLICT = "VERSION_CONFLICT"
    PERIOD_OVERLAP = "PERIOD_OVERLAP"
    INVALID_STATE_TRANSITION = "INVALID_STATE_TRANSITION"

    # 500
    DATABASE_ERROR = "DATABASE_ERROR"
    CONNECTION_ERROR = "CONNECTION_ERROR"
    DATA_INTEGRITY_ERROR = "DATA_INTEGRITY_ERROR"
    INTERNAL_ERROR = "INTERNAL_ERROR"
    CONFIGURATION_ERROR = "CONFIGURATION_ERROR"
    NO_APPLICABLE_TAX_TABLE = "NO_APPLICABLE_TAX_TABLE"
    MISSING_PAYROLL_DETAIL = "MISSING_PAYROLL_DETAIL"


HTTP_STATUS_CODES = {
    400: ErrorCode.INVALID_INPUT,
    401: ErrorCode.UNAUTHORIZED,
    403: ErrorCode.FORBIDDEN,
    404: ErrorCode.NOT_FOUND,
    409: ErrorCode.RESOURCE_CONFLICT,
    422: ErrorCode.VALIDATION_ERROR,
}


class AppException(Exception):
    """Base for every domain error; carries its own HTTP status."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(
        self,
        code: ErrorCode,
        message: str,
        status_code: Optional[int] = None,
        details: Optional[Dict[str, Any]] = None,
        field: Optional[str] = None,
        original_error: Optional[Exception] = None,
    ):
        self.code = code
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        self.details = details or {}
        self.field = field
        self.original_error = original_error
        self.timestamp = datetime.utcnow()
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        body = {
            "code": self.code.value,
            "message": self.message,
            "timestamp": self.timestamp.isoformat() + "Z",
        }
        if self.field:
            body["field"] = self.field
        if self.details:
            body["details"] = self.details
        return body


# ============================================================================
# Configuration (500)
# ============================================================================

class ConfigurationError(AppException):
    """
    Missing or ambiguous configuration.

    Inside a pay run this is caught per employee and recorded on the item;
    it only reaches the API when a single calculation is requested.
    """

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.CONFIGURATION_ERROR,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(code=code, message=message, details=details)


class NoApplicableTaxTable(ConfigurationError):
    """Zero or more than one tax table matches a jurisdiction/date"""

    def __init__(self, jurisdiction: str, on_date: Any, matches: int):
        if matches == 0:
            message = f"No active tax table for {jurisdiction} on {on_date}"
        else:
            message = f"{matches} tax tables match {jurisdiction} on {on_date}; configuration is ambiguous"
        super().__init__(
            message=message,
            code=ErrorCode.NO_APPLICABLE_TAX_TABLE,
            details={"jurisdiction": jurisdiction, "date": str(on_date), "matches": matches},
        )


class MissingPayrollDetail(ConfigurationError):
    """Employee has no payroll detail covering the period"""

    def __init__(self, employee_id: Union[str, UUID]):
        super().__init__(
            message=f"Employee '{employee_id}' has no payroll detail",
            code=ErrorCode.MISSING_PAYROLL_DETAIL,
            details={"employee_id": str(employee_id)},
        )


# ============================================================================
# Validation (422)
# ============================================================================

class ValidationException(AppException):
    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        code: ErrorCode = ErrorCode.VALIDATION_ERROR,
    ):
        super().__init__(code=code, message=message, details=details, field=field)


class InvalidAccountNumberException(ValidationException):
    def __init__(self, account_number: str):
        super().__init__(
            message=f"Invalid account number: {account_number}. Expected 10 digits (NUBAN).",
            field="bank_account_number",
            code=ErrorCode.INVALID_ACCOUNT_NUMBER,
            details={"provided": account_number},
        )


class InvalidDateRangeException(ValidationException):
    def __init__(self, start_date: str, end_date: str, message: Optional[str] = None):
        super().__init__(
            message=message or f"Invalid date range: {start_date} to {end_date}",
            code=ErrorCode.INVALID_DATE_RANGE,
            details={"start_date": start_date, "end_date": end_date},
        )


class InvalidAmountException(ValidationException):
    def __init__(self, amount: Any, field: str = "amount", message: Optional[str] = None):
        super().__init__(
            message=message or f"Invalid amount: {amount}. Amount must be a positive number.",
            field=field,
            code=ErrorCode.INVALID_AMOUNT,
            details={"provided_amount": str(amount)},
        )


class EligibilityException(ValidationException):
    """Wage advance request outside the employee's eligibility"""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message=message, field="amount", code=ErrorCode.NOT_ELIGIBLE, details=details)


class OverpaymentException(ValidationException):
    """Payment would take paid_amount above total_amount"""

    def __init__(self, amount: Decimal, outstanding: Decimal, currency: str = "NGN"):
        super().__init__(
            message=f"Payment of {currency} {amount:,.2f} exceeds outstanding balance of {currency} {outstanding:,.2f}",
            field="amount",
            code=ErrorCode.OVERPAYMENT,
            details={"amount": str(amount), "outstanding": str(outstanding), "currency": currency},
        )


# ============================================================================
# Authorization (403)
# ============================================================================

class AuthorizationException(AppException):
    status_code = status.HTTP_403_FORBIDDEN

    def __init__(self, message: str = "Permission denied", required_role: Optional[str] = None):
        details = {"required_role": required_role} if required_role else None
        super().__init__(code=ErrorCode.FORBIDDEN, message=message, details=details)


# ============================================================================
# Resources (404 / 409)
# ============================================================================

class NotFoundException(AppException):
    status_code = status.HTTP_404_NOT_FOUND

    def __init__(self, resource_type: str, resource_id: Optional[Union[str, UUID]] = None):
        if resource_id:
            message = f"{resource_type} with ID '{resource_id}' not found"
        else:
            message = f"{resource_type} not found"
        super().__init__(
            code=ErrorCode.NOT_FOUND,
            message=message,
            details={"resource_type": resource_type, "resource_id": str(resource_id) if resource_id else None},
        )


class ConflictException(AppException):
    status_code = status.HTTP_409_CONFLICT

    def __init__(
        self,
        message: str,
        resource_type: Optional[str] = None,
        code: ErrorCode = ErrorCode.RESOURCE_CONFLICT,
        details: Optional[Dict[str, Any]] = None,
    ):
        details = dict(details or {})
        if resource_type:
            details["resource_type"] = resource_type
        super().__init__(code=code, message=message, details=details)


class ConcurrentModificationException(ConflictException):
    """Optimistic version check failed"""

    def __init__(self, resource_type: str, resource_id: Union[str, UUID]):
        super().__init__(
            message=f"{resource_type} '{resource_id}' was modified concurrently; reload and retry",
            resource_type=resource_type,
            code=ErrorCode.VERSION_CONFLICT,
            details={"resource_id": str(resource_id)},
        )


class StateTransitionError(ConflictException):
    """Action not allowed from the aggregate's current state"""

    def __init__(self, entity: str, from_state: Any, action: str, message: Optional[str] = None):
        state_value = getattr(from_state, "value", from_state)
        self.entity = entity
        self.from_state = state_value
        self.action = action
        super().__init__(
            message=message or f"Cannot {action} {entity} in '{state_value}' status",
            resource_type=entity,
            code=ErrorCode.INVALID_STATE_TRANSITION,
            details={"from_state": state_value, "action": action},
        )


# ============================================================================
# Business rules (422)
# ============================================================================

class BusinessRuleException(AppException):
    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY

    def __init__(
        self,
        message: str,
        rule: Optional[str] = None,
        code: ErrorCode = ErrorCode.BUSINESS_RULE_VIOLATION,
        details: Optional[Dict[str, Any]] = None,
    ):
        details = dict(details or {})
        if rule:
            details["violated_rule"] = rule
        super().__init__(code=code, message=message, details=details)


class InsufficientInventoryException(BusinessRuleException):
    def __init__(self, item_name: str, required: Decimal, available: Decimal, unit: str = "units"):
        super().__init__(
            message=f"Insufficient stock for '{item_name}': required {required} {unit}, available {available} {unit}",
            rule="SUFFICIENT_INVENTORY_REQUIRED",
            code=ErrorCode.INSUFFICIENT_INVENTORY,
            details={
                "item": item_name,
                "required_quantity": str(required),
                "available_quantity": str(available),
                "unit": unit,
                "shortfall": str(required - available),
            },
        )


# ============================================================================
# Handlers
# ============================================================================

def create_error_response(
    code: ErrorCode,
    message: str,
    status_code: int,
    details: Optional[Dict[str, Any]] = None,
    field: Optional[str] = None,
) -> JSONResponse:
    detail = {
        "code": code.value,
        "message": message,
        "timestamp": datetime.utcnow().isoformat() + "Z",
    }
    if field:
        detail["field"] = field
    if details:
        detail["details"] = details
    return JSONResponse(status_code=status_code, content={"detail": detail})


async def app_exception_handler(request: Request, exc: AppException) -> JSONResponse:
    log = logger.error if exc.status_code >= 500 else logger.warning
    log(
        f"{exc.code.value} on {request.method} {request.url.path}: {exc.message}",
        extra={"code": exc.code.value, "details": exc.details},
        exc_info=exc.original_error,
    )
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.to_dict()})


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    message = exc.detail if isinstance(exc.detail, str) else str(exc.detail)
    logger.warning(f"HTTP {exc.status_code} on {request.method} {request.url.path}: {message}")
    return create_error_response(
        code=HTTP_STATUS_CODES.get(exc.status_code, ErrorCode.INTERNAL_ERROR),
        message=message,
        status_code=exc.status_code,
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = [
        {
            "field": ".".join(str(loc) for loc in error["loc"]),
            "message": error["msg"],
            "type": error["type"],
        }
        for error in exc.errors()
    ]
    logger.warning(f"{len(errors)} validation errors on {request.method} {request.url.path}")
    return create_error_response(
        code=ErrorCode.VALIDATION_ERROR,
        message="Request validation failed",
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        details={"errors": errors},
    )


def _classify_database_error(exc: SQLAlchemyError):
    """Map a database error onto (code, message, status)."""
    if isinstance(exc, IntegrityError):
        reason = str(exc.orig).lower() if exc.orig else ""
        if "unique" in reason or "duplicate" in reason:
            return ErrorCode.DUPLICATE_ENTRY, "A record with this value already exists", status.HTTP_409_CONFLICT
        if "foreign key" in reason:
            return ErrorCode.DATA_INTEGRITY_ERROR, "Referenced record does not exist", status.HTTP_422_UNPROCESSABLE_ENTITY
        return ErrorCode.DATA_INTEGRITY_ERROR, "Data integrity constraint violated", status.HTTP_500_INTERNAL_SERVER_ERROR
    if isinstance(exc, OperationalError):
        return ErrorCode.CONNECTION_ERROR, "Database operation failed", status.HTTP_500_INTERNAL_SERVER_ERROR
    if isinstance(exc, DataError):
        return ErrorCode.DATABASE_ERROR, "Invalid data format for database", status.HTTP_422_UNPROCESSABLE_ENTITY
    return ErrorCode.DATABASE_ERROR, "A database error occurred", status.HTTP_500_INTERNAL_SERVER_ERROR


async def sqlalchemy_exception_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    code, message, status_code = _classify_database_error(exc)
    logger.error(f"{type(exc).__name__} on {request.method} {request.url.path}", exc_info=True)
    return create_error_response(code=code, message=message, status_code=status_code)


async def stale_data_exception_handler(request: Request, exc: StaleDataError) -> JSONResponse:
    """Optimistic version conflicts that escaped a service."""
    logger.warning(f"Stale data on {request.method} {request.url.path}: {exc}")
    return create_error_response(
        code=ErrorCode.VERSION_CONFLICT,
        message="The record was modified concurrently; reload and retry",
        status_code=status.HTTP_409_CONFLICT,
    )


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.critical(f"Unhandled {type(exc).__name__} on {request.method} {request.url.path}", exc_info=True)
    # Internal details stay in the log
    return create_error_response(
        code=ErrorCode.INTERNAL_ERROR,
        message="An unexpected error occurred. Please try again later.",
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
    )


def setup_exception_handlers(app: FastAPI) -> None:
    """Register all exception handlers with the FastAPI application"""
    app.add_exception_handler(AppException, app_exception_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(StaleDataError, stale_data_exception_handler)
    app.add_exception_handler(SQLAlchemyError, sqlalchemy_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)


class ErrorTrackingMiddleware:
    """ASGI middleware that logs requests failing with an exception"""

    def __init__(self, app: FastAPI):
        self.app = app

    async def __call__(self, scope, receive, send):
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        try:
            await self.app(scope, receive, send)
        except Exception as exc:
            logger.error(
                f"Request failed: {scope.get('method')} {scope.get('path', 'unknown')}",
                extra={"exception_type": type(exc).__name__},
                exc_info=True,
            )
            raise


# ============================================================================
# Validators
# ============================================================================

def validate_account_number(account_number: str) -> str:
    """Return the NUBAN with separators stripped, or raise."""
    cleaned = account_number.replace("-", "").replace(" ", "")
    if len(cleaned) != 10 or not cleaned.isdigit():
        raise InvalidAccountNumberException(account_number)
    return cleaned


def validate_amount(amount: Any, field: str = "amount", allow_zero: bool = False) -> Decimal:
    """Validate a monetary amount and return it as a 2dp Decimal"""
    try:
        value = Decimal(str(amount))
    except (TypeError, ValueError, InvalidOperation):
        raise InvalidAmountException(amount, field)
    if not value.is_finite() or value < 0 or (not allow_zero and value == 0):
        raise InvalidAmountException(amount, field)
    return value.quantize(Decimal("0.01"))


__all__ = [
    "AppException",
    "ErrorCode",
    "ConfigurationError",
    "NoApplicableTaxTable",
    "MissingPayrollDetail",
    "ValidationException",
    "InvalidAccountNumberException",
    "InvalidDateRangeException",
    "InvalidAmountException",
    "EligibilityException",
    "OverpaymentException",
    "AuthorizationException",
    "NotFoundException",
    "ConflictException",
    "ConcurrentModificationException",
    "StateTransitionError",
    "BusinessRuleException",
    "InsufficientInventoryException",
    "setup_exception_handlers",
    "create_error_response",
    "ErrorTrackingMiddleware",
    "validate_account_number",
    "validate_amount",
]
