"""
TradeAcademy - Service Container

Services are built once per application and looked up by request handlers
through ``get_services()``.
"""

from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Optional

from flask import Flask, current_app

from tradeacademy.accounts import AccountService
from tradeacademy.achievements import AchievementTracker
from tradeacademy.gamification import GamificationService
from tradeacademy.learning import LearningService
from tradeacademy.market_data import AlphaVantageProvider, MarketDataService
from tradeacademy.notifications import EmailService
from tradeacademy.payments import PaymentService
from tradeacademy.trade_engine import TradeEngine

EXTENSION_KEY = "tradeacademy"


@dataclass
class ServiceContainer:
    accounts: AccountService
    market_data: MarketDataService
    achievements: AchievementTracker
    trade_engine: TradeEngine
    gamification: GamificationService
    learning: LearningService
    payments: PaymentService
    notifier: Any


def build_services(app: Flask, mail, quote_provider=None, notifier=None) -> ServiceContainer:
    """
    Wire the application services from ``app.config``.

    Args:
        app: the Flask application
        mail: the Flask-Mail extension
        quote_provider: replaces the Alpha Vantage client (tests use a fake)
        notifier: replaces the email service
    """
    cfg = app.config

    if quote_provider is None:
        quote_provider = AlphaVantageProvider(
            api_key=cfg["MARKET_DATA_API_KEY"],
            base_url=cfg["MARKET_DATA_API_URL"],
            timeout=cfg["MARKET_DATA_TIMEOUT"],
        )
    if notifier is None:
        notifier = EmailService(
            mail,
            sender=cfg["MAIL_DEFAULT_SENDER"],
            frontend_url=cfg["FRONTEND_URL"],
            enabled=cfg["EMAIL_NOTIFICATIONS_ENABLED"],
        )

    market_data = MarketDataService(quote_provider, cfg["MARKET_DATA_DEFAULT_FREQUENCY"])
    achievements = AchievementTracker(notifier=notifier)

    return ServiceContainer(
        accounts=AccountService(
            notifier=notifier,
            reset_lifetime=timedelta(minutes=cfg["PASSWORD_RESET_MINUTES"]),
            verification_lifetime=timedelta(hours=cfg["EMAIL_VERIFICATION_HOURS"]),
        ),
        market_data=market_data,
        achievements=achievements,
        trade_engine=TradeEngine(
            market_data,
            achievements=achievements,
            default_starting_balance=cfg["DEFAULT_STARTING_BALANCE"],
            max_quantity=cfg["MAX_TRADE_QUANTITY"],
        ),
        gamification=GamificationService(notifier=notifier),
        learning=LearningService(achievements=achievements, notifier=notifier),
        payments=PaymentService(
            secret_key=cfg["STRIPE_SECRET_KEY"],
            webhook_secret=cfg["STRIPE_WEBHOOK_SECRET"],
            currencies=cfg["PAYMENT_CURRENCIES"],
            premium_days=cfg["PREMIUM_DAYS"],
            notifier=notifier,
        ),
        notifier=notifier,
    )


def get_services(app: Optional[Flask] = None) -> ServiceContainer:
    return (app or current_app).extensions[EXTENSION_KEY]
