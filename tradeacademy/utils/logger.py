"""
TradeAcademy - Logging Utilities

Structured logging configuration (structlog on top of stdlib logging) with
request context, console output and optional JSON file handlers.
"""

import logging
import logging.config
import os
import sys
from pathlib import Path
from typing import Any, Dict, Optional

import structlog
from flask import Flask, g, has_request_context, request
from pythonjsonlogger import jsonlogger

from tradeacademy.models import utcnow


class RequestContextFilter(logging.Filter):
    """Add Flask request context to log records."""

    def filter(self, record):
        if has_request_context():
            record.url = request.url
            record.remote_addr = request.remote_addr
            record.request_id = getattr(g, "request_id", None)
            record.user_id = getattr(g, "current_user_id", None)
            record.method = request.method
        else:
            record.url = None
            record.remote_addr = None
            record.request_id = None
            record.user_id = None
            record.method = None
        return True


class AppFormatter(logging.Formatter):
    """Formatter that stamps service metadata on every record."""

    def format(self, record):
        record.timestamp = utcnow().isoformat()
        record.service = "tradeacademy-api"
        record.version = os.getenv("APP_VERSION", "1.0.0")
        record.environment = os.getenv("FLASK_ENV", "development")

        return super().format(record)


def _build_logging_config(log_level: str, log_file: str, debug: bool) -> Dict[str, Any]:
    handlers: Dict[str, Dict[str, Any]] = {
        "console": {
            "level": log_level,
            "class": "logging.StreamHandler",
            "formatter": "standard",
            "filters": ["request_context"],
            "stream": sys.stdout,
        },
    }
    app_handlers = ["console"]

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        handlers["file"] = {
            "level": "INFO",
            "class": "logging.handlers.RotatingFileHandler",
            "formatter": "json",
            "filters": ["request_context"],
            "filename": str(log_path),
            "maxBytes": 10485760,  # 10MB
            "backupCount": 10,
            "encoding": "utf8",
        }
        handlers["error_file"] = {
            "level": "ERROR",
            "class": "logging.handlers.RotatingFileHandler",
            "formatter": "detailed",
            "filters": ["request_context"],
            "filename": str(log_path.with_name(f"{log_path.stem}_errors.log")),
            "maxBytes": 10485760,
            "backupCount": 5,
            "encoding": "utf8",
        }
        app_handlers = ["console", "file", "error_file"]

    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "standard": {
                "()": AppFormatter,
                "format": "[%(timestamp)s] %(levelname)s in %(name)s [%(service)s:%(environment)s]: %(message)s"
                " [req_id:%(request_id)s user:%(user_id)s %(method)s %(url)s]",
            },
            "json": {
                "()": jsonlogger.JsonFormatter,
                "format": "%(timestamp)s %(name)s %(levelname)s %(message)s %(service)s %(version)s "
                "%(environment)s %(request_id)s %(user_id)s %(remote_addr)s %(method)s %(url)s",
            },
            "detailed": {
                "()": AppFormatter,
                "format": "[%(timestamp)s] %(levelname)s in %(name)s [%(filename)s:%(lineno)d] "
                "[%(service)s:%(version)s:%(environment)s]: %(message)s"
                " [req_id:%(request_id)s user:%(user_id)s %(remote_addr)s %(method)s %(url)s]",
            },
        },
        "filters": {
            "request_context": {
                "()": RequestContextFilter,
            }
        },
        "handlers": handlers,
        "loggers": {
            "": {
                "level": log_level,
                "handlers": app_handlers[:2],
                "propagate": False,
            },
            "tradeacademy": {
                "level": log_level,
                "handlers": app_handlers,
                "propagate": False,
            },
            "sqlalchemy.engine": {
                "level": "INFO" if debug else "WARNING",
                "handlers": ["console"],
                "propagate": False,
            },
            "werkzeug": {
                "level": "WARNING",
                "handlers": ["console"],
                "propagate": False,
            },
        },
    }


def setup_logging(app: Flask) -> None:
    """
    Setup logging for the application.

    Args:
        app: Flask application instance
    """
    log_level = app.config.get("LOG_LEVEL", "INFO").upper()
    log_file = app.config.get("LOG_FILE", "")

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            structlog.processors.JSONRenderer(),
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    logging.config.dictConfig(_build_logging_config(log_level, log_file, app.debug))

    app.logger.setLevel(getattr(logging, log_level, logging.INFO))

    app.logger.info(
        "Logging system initialized",
        extra={
            "log_level": log_level,
            "log_file": log_file or None,
            "environment": app.config.get("ENV", "unknown"),
        },
    )


def get_logger(name: str) -> logging.Logger:
    """Get a stdlib logger by name (usually __name__)."""
    return logging.getLogger(name)


def get_event_logger(name: str):
    """Get a structlog logger for key/value event logging."""
    return structlog.get_logger(name)


def log_trade_event(
    event_type: str, portfolio_id: str, user_id: str, symbol: str, **kwargs
) -> None:
    """
    Log trading-related events with structured data.

    Args:
        event_type: Type of trade event (executed, rejected, etc.)
        portfolio_id: Portfolio identifier
        user_id: User identifier
        symbol: Trading symbol
        **kwargs: Additional event data
    """
    logger = get_logger("tradeacademy.trading")

    event_data = {
        "event_type": event_type,
        "portfolio_id": portfolio_id,
        "user_id": user_id,
        "symbol": symbol,
        "event_timestamp": utcnow().isoformat(),
        **kwargs,
    }

    logger.info(f"Trade event: {event_type}", extra=event_data)


def log_market_data_event(
    event_type: str,
    symbol: str,
    price: Optional[float] = None,
    volume: Optional[float] = None,
    **kwargs,
) -> None:
    """Log market data events (quote_refresh, cache_hit, provider_error...)."""
    logger = get_logger("tradeacademy.market_data")

    event_data = {
        "event_type": event_type,
        "symbol": symbol,
        "price": price,
        "volume": volume,
        "event_timestamp": utcnow().isoformat(),
        **kwargs,
    }

    logger.info(f"Market data event: {event_type}", extra=event_data)


def log_payment_event(
    event_type: str,
    payment_id: str,
    user_id: Optional[str],
    amount: float,
    currency: str = "usd",
    **kwargs,
) -> None:
    """
    Log payment-related events.

    Args:
        event_type: Type of payment event (created, succeeded, failed, etc.)
        payment_id: Payment identifier
        user_id: User identifier
        amount: Payment amount
        currency: Payment currency
        **kwargs: Additional event data
    """
    logger = get_logger("tradeacademy.payments")

    event_data = {
        "event_type": event_type,
        "payment_id": payment_id,
        "user_id": user_id,
        "amount": amount,
        "currency": currency,
        "event_timestamp": utcnow().isoformat(),
        **kwargs,
    }

    logger.info(f"Payment event: {event_type}", extra=event_data)


def log_security_event(
    event_type: str,
    user_id: Optional[str] = None,
    ip_address: Optional[str] = None,
    user_agent: Optional[str] = None,
    **kwargs,
) -> None:
    """Log security-related events (login, failed_auth, forbidden...)."""
    logger = get_logger("tradeacademy.security")

    event_data = {
        "event_type": event_type,
        "user_id": user_id,
        "ip_address": ip_address,
        "user_agent": user_agent,
        "event_timestamp": utcnow().isoformat(),
        **kwargs,
    }

    logger.warning(f"Security event: {event_type}", extra=event_data)


def log_performance_metric(
    metric_name: str, metric_value: float, metric_unit: str = "ms", **kwargs
) -> None:
    logger = get_logger("tradeacademy.performance")

    metric_data = {
        "metric_name": metric_name,
        "metric_value": metric_value,
        "metric_unit": metric_unit,
        **kwargs,
    }

    logger.debug(f"Performance metric: {metric_name}", extra=metric_data)
