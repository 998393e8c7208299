"""Tests for badges and leaderboards."""

from decimal import Decimal

import pytest

from tradeacademy.models import Badge, BadgeCriteria, db
from tradeacademy.utils.exceptions import ValidationError

pytestmark = pytest.mark.unit


@pytest.fixture
def gamification(services):
    return services.gamification


def _badge(name, criteria, value, xp=0, currency=0):
    badge = Badge(
        name=name,
        description=f"{name} badge",
        criteria_type=criteria,
        criteria_value=value,
        reward_xp=xp,
        reward_virtual_currency=Decimal(currency),
    )
    db.session.add(badge)
    db.session.commit()
    return badge


class TestBadges:

    def test_trade_count_badge_is_awarded_once(self, gamification, services, user, notifier):
        _badge("First Trade", BadgeCriteria.TRADE_COUNT, 1, xp=50, currency=1000)
        _badge("Veteran", BadgeCriteria.TRADE_COUNT, 100)

        portfolio = services.trade_engine.get_or_create_portfolio(user)
        services.trade_engine.execute_trade(portfolio, "AAPL", "buy", 1)

        awarded = gamification.check_and_award_badges(user)
        assert [b.name for b in awarded] == ["First Trade"]
        assert user.xp == 50
        assert user.virtual_balance == Decimal("1000")
        notifier.send_badge_earned.assert_called_once()

        assert gamification.check_and_award_badges(user) == []
        assert user.xp == 50

    def test_streak_badge(self, gamification, user):
        badge = _badge("Dedicated", BadgeCriteria.STREAK_MAINTAINED, 3)
        user.login_streak = 2
        db.session.commit()
        assert gamification.check_and_award_badges(user) == []

        user.login_streak = 3
        db.session.commit()
        assert gamification.check_and_award_badges(user) == [badge]

    def test_user_stats_without_activity(self, gamification, user):
        assert gamification.user_stats(user) == {
            "completed_courses": 0,
            "trade_count": 0,
            "total_profit": 0.0,
            "login_streak": 0,
        }


class TestLeaderboard:

    def test_trading_board_ranks_by_profit(self, gamification, services, user, other_user, reprice):
        engine = services.trade_engine
        winner = engine.get_or_create_portfolio(other_user)
        engine.execute_trade(winner, "AAPL", "buy", 10)
        reprice("AAPL", 70)
        engine.revalue(winner)
        engine.get_or_create_portfolio(user)

        rows = gamification.leaderboard("trading")

        assert [r["user"]["name"] for r in rows] == ["Other Trader", "Test Trader"]
        assert rows[0]["rank"] == 1
        assert rows[0]["total_profit"] == 200.0
        assert rows[1]["total_profit"] == 0.0

    def test_badges_board(self, gamification, user, other_user):
        badge = _badge("Early Bird", BadgeCriteria.STREAK_MAINTAINED, 1)
        user.award_badge(badge)
        db.session.commit()

        rows = gamification.leaderboard("badges", limit=1)

        assert len(rows) == 1
        assert rows[0]["user"]["id"] == str(user.id)
        assert rows[0]["badge_count"] == 1

    def test_unknown_board(self, gamification):
        with pytest.raises(ValidationError):
            gamification.leaderboard("karma")
