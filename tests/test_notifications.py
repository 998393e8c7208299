"""Tests for the email notification service."""

import smtplib
from decimal import Decimal
from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest

from tradeacademy import mail
from tradeacademy.models import RewardType
from tradeacademy.notifications import EmailService

pytestmark = pytest.mark.unit


@pytest.fixture
def email_service(app):
    return EmailService(mail, sender="noreply@test.local", frontend_url="https://academy.test/")


class TestEmailService:

    def test_render_uses_layout_and_template(self, email_service, user):
        html = email_service.render(
            "welcome", "Welcome", user, "/dashboard", "Start Learning", starting_balance=100000
        )

        assert "Hello Test Trader!" in html
        assert "$100,000.00" in html
        assert 'href="https://academy.test/dashboard"' in html
        assert user.email in html

    def test_send_welcome_is_recorded(self, email_service, user):
        with mail.record_messages() as outbox:
            assert email_service.send_welcome(user, 100000) is True

        assert len(outbox) == 1
        assert outbox[0].subject == "Welcome to TradeAcademy"
        assert outbox[0].recipients == [user.email]

    def test_achievement_email(self, email_service, user):
        achievement = SimpleNamespace(
            name="First Steps", description="Place a trade", reward_type=RewardType.FEATURE_UNLOCK
        )

        with mail.record_messages() as outbox:
            email_service.send_achievement_completed(user, achievement)

        assert "feature unlock" in outbox[0].html

    def test_receipt_without_expiry(self, email_service, user):
        payment = SimpleNamespace(amount=Decimal("19.99"), currency="usd")

        with mail.record_messages() as outbox:
            email_service.send_payment_receipt(user, payment)

        assert "19.99 USD" in outbox[0].html

    def test_account_token_links(self, email_service, user):
        with mail.record_messages() as outbox:
            email_service.send_email_verification(user, "abc123", 48)
            email_service.send_password_reset(user, "def456", 10)

        verify, reset = outbox
        assert 'href="https://academy.test/verify-email/abc123"' in verify.html
        assert "48 hours" in verify.html
        assert reset.subject == "Password reset request"
        assert 'href="https://academy.test/reset-password/def456"' in reset.html
        assert "10 minutes" in reset.html

    def test_disabled_service_sends_nothing(self, user):
        service = EmailService(mail, sender="a@b.c", frontend_url="http://x", enabled=False)

        with mail.record_messages() as outbox:
            assert service.send_welcome(user, 10) is False

        assert outbox == []

    def test_delivery_failure_returns_false(self, user):
        broken = MagicMock()
        broken.send.side_effect = smtplib.SMTPServerDisconnected("gone")
        service = EmailService(broken, sender="a@b.c", frontend_url="http://x")

        assert service.send_welcome(user, 10) is False
