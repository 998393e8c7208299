"""
TradeAcademy - Exception Handling Utilities

Application exception hierarchy and the Flask error handlers that turn
every failure into the same JSON error envelope.
"""

import logging
import traceback
from typing import Any, Dict, Optional, Tuple

from flask import Flask, g, jsonify, request
from marshmallow import ValidationError as MarshmallowValidationError
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm.exc import StaleDataError
from werkzeug.exceptions import HTTPException

from tradeacademy.models import utcnow


class AppError(Exception):
    """Base exception class for TradeAcademy."""

    def __init__(
        self,
        message: str,
        code: str = "APP_ERROR",
        status_code: int = 400,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = code
        self.status_code = status_code
        self.details = details or {}


class AuthenticationError(AppError):
    """Authentication related errors."""

    def __init__(
        self,
        message: str = "Authentication failed",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(
            message=message, code="AUTH_ERROR", status_code=401, details=details
        )


class AuthorizationError(AppError):
    """Authorization related errors."""

    def __init__(
        self, message: str = "Access denied", details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(
            message=message, code="AUTHZ_ERROR", status_code=403, details=details
        )


class ValidationError(AppError):
    """Data validation errors."""

    def __init__(
        self,
        message: str = "Validation failed",
        field: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(
            message=message, code="VALIDATION_ERROR", status_code=400, details=details
        )
        self.field = field


class NotFoundError(AppError):
    """Resource not found errors."""

    def __init__(
        self, resource: str = "Resource", details: Optional[Dict[str, Any]] = None
    ):
        message = f"{resource} not found"
        super().__init__(
            message=message, code="NOT_FOUND", status_code=404, details=details
        )


class ConflictError(AppError):
    """Resource conflict errors."""

    def __init__(
        self,
        message: str = "Resource conflict",
        code: str = "CONFLICT",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, code=code, status_code=409, details=details)


class BusinessLogicError(AppError):
    """Business rule violations."""

    def __init__(
        self,
        message: str,
        code: str = "BUSINESS_ERROR",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, code=code, status_code=400, details=details)


class TradingError(AppError):
    """Trading operation errors."""

    def __init__(
        self,
        message: str,
        code: str = "TRADING_ERROR",
        status_code: int = 400,
        symbol: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(
            message=message, code=code, status_code=status_code, details=details
        )
        self.symbol = symbol


class InsufficientFundsError(TradingError):
    """Raised when a buy order costs more than the available cash."""

    def __init__(self, required, available, symbol: Optional[str] = None):
        super().__init__(
            message="Insufficient funds",
            code="INSUFFICIENT_FUNDS",
            symbol=symbol,
            details={"required": float(required), "available": float(available)},
        )


class InsufficientSharesError(TradingError):
    """Raised when a sell order exceeds the shares held."""

    def __init__(self, symbol: str, requested: int, held: int):
        super().__init__(
            message="Insufficient shares",
            code="INSUFFICIENT_SHARES",
            symbol=symbol,
            details={"symbol": symbol, "requested": requested, "held": held},
        )


class SymbolNotFoundError(TradingError):
    """Raised when no quote exists for a symbol."""

    def __init__(self, symbol: str):
        super().__init__(
            message=f"Symbol {symbol} not found",
            code="SYMBOL_NOT_FOUND",
            status_code=404,
            symbol=symbol,
            details={"symbol": symbol},
        )


class AchievementNotClaimableError(BusinessLogicError):
    """Raised when claiming an achievement that is not completed."""

    def __init__(self, status: str):
        super().__init__(
            message="Achievement is not ready to be claimed",
            code="ACHIEVEMENT_NOT_CLAIMABLE",
            details={"status": status},
        )


class MarketDataError(AppError):
    """Market data related errors."""

    def __init__(
        self,
        message: str,
        symbol: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(
            message=message, code="MARKET_DATA_ERROR", status_code=503, details=details
        )
        self.symbol = symbol


class PaymentError(AppError):
    """Payment processing errors."""

    def __init__(
        self,
        message: str,
        code: str = "PAYMENT_ERROR",
        payment_id: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(
            message=message, code=code, status_code=400, details=details
        )
        self.payment_id = payment_id


class DatabaseError(AppError):
    """Database operation errors."""

    def __init__(
        self,
        message: str = "Database operation failed",
        operation: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(
            message=message, code="DATABASE_ERROR", status_code=500, details=details
        )
        self.operation = operation


def create_error_response(
    error: Exception, request_id: Optional[str] = None, include_traceback: bool = False
) -> Tuple[Dict[str, Any], int]:
    """
    Create standardized error response.

    Args:
        error: Exception instance
        request_id: Optional request ID for tracking
        include_traceback: Include traceback in response (development only)

    Returns:
        Tuple of (response_dict, status_code)
    """
    if isinstance(error, AppError):
        code, message, status_code = error.code, error.message, error.status_code
        details = error.details
    elif isinstance(error, HTTPException):
        code = "HTTP_ERROR"
        message = error.description or "HTTP error occurred"
        status_code = error.code or 500
        details = None
    else:
        code = "INTERNAL_ERROR"
        message = "An internal server error occurred"
        status_code = 500
        details = None

    body = {
        "code": code,
        "message": message,
        "timestamp": utcnow().isoformat(),
    }
    if details:
        body["details"] = details
    if request_id:
        body["request_id"] = request_id
    if include_traceback and status_code >= 500:
        body["traceback"] = traceback.format_exc()
        if not isinstance(error, (AppError, HTTPException)):
            body["original_message"] = str(error)

    response = {
        "status": "fail" if status_code < 500 else "error",
        "message": message,
        "error": body,
    }
    return response, status_code


def register_error_handlers(app: Flask) -> None:
    """Register error handlers for the Flask application."""

    logger = logging.getLogger(__name__)

    def _request_id() -> Optional[str]:
        return getattr(g, "request_id", None)

    def _respond(error: Exception):
        response, status_code = create_error_response(
            error, request_id=_request_id(), include_traceback=app.debug
        )
        return jsonify(response), status_code

    @app.errorhandler(AppError)
    def handle_app_error(error: AppError):
        """Handle application exceptions."""
        if error.status_code >= 500:
            logger.error(
                f"Application error: {error.code} - {error.message}",
                extra={
                    "request_id": _request_id(),
                    "error_code": error.code,
                    "user_agent": request.headers.get("User-Agent"),
                    "ip_address": request.remote_addr,
                    "details": error.details,
                },
            )
        else:
            logger.warning(
                f"Application warning: {error.code} - {error.message}",
                extra={
                    "request_id": _request_id(),
                    "error_code": error.code,
                    "details": error.details,
                },
            )

        return _respond(error)

    @app.errorhandler(MarshmallowValidationError)
    def handle_marshmallow_validation_error(error: MarshmallowValidationError):
        """Handle Marshmallow validation errors."""
        logger.warning(
            f"Validation error: {error.messages}",
            extra={"request_id": _request_id(), "validation_errors": error.messages},
        )

        return _respond(
            ValidationError(
                message="Input validation failed",
                details={"validation_errors": error.messages},
            )
        )

    @app.errorhandler(StaleDataError)
    def handle_stale_data_error(error: StaleDataError):
        """Handle optimistic concurrency failures."""
        from tradeacademy.models import db

        db.session.rollback()
        logger.warning(
            f"Concurrent modification detected: {str(error)}",
            extra={"request_id": _request_id()},
        )

        return _respond(
            ConflictError(
                message="The resource was modified by another request, please retry",
                code="CONCURRENT_MODIFICATION",
            )
        )

    @app.errorhandler(IntegrityError)
    def handle_integrity_error(error: IntegrityError):
        """Handle database integrity constraint errors."""
        from tradeacademy.models import db

        db.session.rollback()
        logger.error(
            f"Database integrity error: {str(error)}",
            extra={"request_id": _request_id(), "original_error": str(error.orig)},
        )

        original = str(error.orig).lower()
        if "duplicate key" in original or "unique" in original:
            db_error = ConflictError(
                message="Resource already exists",
                details={"constraint": "unique_constraint"},
            )
        elif "foreign key" in original:
            db_error = ValidationError(
                message="Referenced resource does not exist",
                details={"constraint": "foreign_key_constraint"},
            )
        else:
            db_error = ValidationError(
                message="Database constraint violation",
                details={"constraint": "integrity_constraint"},
            )

        return _respond(db_error)

    @app.errorhandler(SQLAlchemyError)
    def handle_sqlalchemy_error(error: SQLAlchemyError):
        """Handle general SQLAlchemy errors."""
        from tradeacademy.models import db

        db.session.rollback()
        logger.error(f"Database error: {str(error)}", extra={"request_id": _request_id()})

        return _respond(
            DatabaseError(
                message="Database operation failed",
                details={"error_type": type(error).__name__},
            )
        )

    @app.errorhandler(404)
    def handle_not_found(error):
        """Handle 404 errors."""
        return _respond(
            NotFoundError(
                resource="Endpoint",
                details={"path": request.path, "method": request.method},
            )
        )

    @app.errorhandler(405)
    def handle_method_not_allowed(error):
        """Handle method not allowed errors."""
        return _respond(
            AppError(
                message=f"Method {request.method} not allowed for this endpoint",
                code="METHOD_NOT_ALLOWED",
                status_code=405,
                details={"method": request.method, "path": request.path},
            )
        )

    @app.errorhandler(HTTPException)
    def handle_http_exception(error: HTTPException):
        """Handle HTTP exceptions."""
        logger.warning(
            f"HTTP error {error.code}: {error.description}",
            extra={"request_id": _request_id(), "status_code": error.code},
        )

        return _respond(error)

    @app.errorhandler(Exception)
    def handle_generic_exception(error: Exception):
        """Handle any unhandled exceptions."""
        logger.critical(
            f"Unhandled exception: {str(error)}",
            extra={
                "request_id": _request_id(),
                "error_type": type(error).__name__,
                "traceback": traceback.format_exc(),
            },
        )

        return _respond(error)
