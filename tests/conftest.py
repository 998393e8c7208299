"""
Shared test fixtures and configuration for the TradeAcademy test suite.
"""

from datetime import timedelta
from decimal import Decimal
from unittest.mock import MagicMock

import pytest
from flask_jwt_extended import create_access_token

from tradeacademy import create_app
from tradeacademy.models import (
    Course, CourseModule, Lesson, Level, MarketData, PublishStatus, User, UserRole,
    db, utcnow
)
from tradeacademy.services import get_services


class FakeQuoteProvider:
    """In-memory stand-in for the Alpha Vantage client."""

    def __init__(self):
        self.prices = {}
        self.history = {}
        self.overviews = {}
        self.quote_calls = 0

    def set_price(self, symbol, price):
        self.prices[symbol.upper()] = Decimal(str(price))

    def get_quote(self, symbol):
        self.quote_calls += 1
        price = self.prices.get(symbol.upper())
        if price is None:
            return None
        return {
            "symbol": symbol.upper(),
            "price": price,
            "open_price": price,
            "high_price": price,
            "low_price": price,
            "previous_close": price,
            "change": Decimal("0"),
            "change_percent": 0.0,
            "volume": 1000,
        }

    def get_daily_history(self, symbol):
        return list(self.history.get(symbol.upper(), []))

    def get_company_overview(self, symbol):
        return dict(self.overviews.get(symbol.upper(), {}))

    def search(self, keywords):
        term = keywords.upper()
        return [
            {"symbol": s, "name": s, "type": "Equity", "region": "United States", "currency": "USD"}
            for s in sorted(self.prices)
            if term in s
        ]


@pytest.fixture
def quotes():
    provider = FakeQuoteProvider()
    provider.set_price("AAPL", 50)
    provider.set_price("MSFT", 300)
    return provider


@pytest.fixture
def notifier():
    return MagicMock()


@pytest.fixture
def app(quotes, notifier):
    """Create and configure a fresh application with an empty database."""
    app = create_app("testing", services={"quote_provider": quotes, "notifier": notifier})

    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def services(app):
    return get_services(app)


def _make_user(email, name, role=UserRole.USER, password="password123"):
    user = User(email=email, name=name, role=role)
    user.set_password(password)
    db.session.add(user)
    db.session.commit()
    return user


@pytest.fixture
def user(app):
    return _make_user("trader@example.com", "Test Trader")


@pytest.fixture
def other_user(app):
    return _make_user("other@example.com", "Other Trader")


@pytest.fixture
def instructor(app):
    return _make_user("instructor@example.com", "Ina Instructor", role=UserRole.INSTRUCTOR)


@pytest.fixture
def admin(app):
    return _make_user("admin@example.com", "Ada Admin", role=UserRole.ADMIN)


def headers_for(user):
    return {"Authorization": f"Bearer {create_access_token(identity=user)}"}


@pytest.fixture
def make_headers(app):
    return headers_for


@pytest.fixture
def reprice(quotes):
    """Change a provider price and expire the cached quote so the next lookup refetches."""

    def _reprice(symbol, price):
        quotes.set_price(symbol, price)
        record = MarketData.query.filter_by(symbol=symbol.upper()).first()
        if record is not None:
            record.last_updated = utcnow() - timedelta(days=2)
            db.session.commit()

    return _reprice


@pytest.fixture
def auth_headers(user):
    return headers_for(user)


@pytest.fixture
def instructor_headers(instructor):
    return headers_for(instructor)


@pytest.fixture
def admin_headers(admin):
    return headers_for(admin)


@pytest.fixture
def course(instructor):
    """Published course with one module holding a reading lesson and a quiz lesson."""
    course = Course(
        title="Trading Basics",
        description="Orders, positions and risk",
        instructor_id=instructor.id,
        level=Level.BEGINNER,
        category="basics",
        status=PublishStatus.PUBLISHED,
    )
    module = CourseModule(title="Getting started", description="First steps", order=1)
    module.lessons = [
        Lesson(
            title="What is a stock",
            description="Shares and ownership",
            order=1,
            duration=5,
            completion_type="read",
        ),
        Lesson(
            title="Check your knowledge",
            description="Short quiz",
            order=2,
            completion_type="quiz",
            minimum_score=50,
            quiz=[
                {"question": "Buying adds shares?", "options": ["yes", "no"], "correct_answer": "yes"},
                {"question": "Selling adds cash?", "options": ["yes", "no"], "correct_answer": "yes"},
            ],
        ),
    ]
    course.modules = [module]
    db.session.add(course)
    db.session.commit()
    return course
