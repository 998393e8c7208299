"""
Badges and Leaderboards

Badge eligibility is evaluated against a user's learning and trading record;
leaderboards rank users by trading profit, completed courses, badge count or
an overall blend of the three.
"""

from decimal import Decimal
from typing import Any, Dict, List

from sqlalchemy import func

from tradeacademy.models import (
    ActiveStatus, Badge, BadgeCriteria, Enrollment, EnrollmentStatus, Portfolio,
    PortfolioStatus, Transaction, User, db, user_badges
)
from tradeacademy.utils.exceptions import ValidationError
from tradeacademy.utils.logger import get_logger

logger = get_logger(__name__)

LEADERBOARD_TYPES = ("overall", "trading", "courses", "badges")

# Profit is scaled down before it joins badge and course counts in the overall score
OVERALL_PROFIT_DIVISOR = 1000


class GamificationService:
    """Badge awarding and leaderboard queries."""

    def __init__(self, notifier=None):
        self.notifier = notifier

    def user_stats(self, user: User) -> Dict[str, Any]:
        completed_courses = Enrollment.query.filter_by(
            user_id=user.id, status=EnrollmentStatus.COMPLETED
        ).count()
        trade_count = (
            db.session.query(func.count(Transaction.id))
            .join(Portfolio)
            .filter(Portfolio.user_id == user.id)
            .scalar()
        )
        total_profit = (
            db.session.query(func.coalesce(func.sum(Portfolio.total_profit_loss), 0))
            .filter(Portfolio.user_id == user.id, Portfolio.status != PortfolioStatus.DELETED)
            .scalar()
        )
        return {
            "completed_courses": completed_courses,
            "trade_count": trade_count or 0,
            "total_profit": float(total_profit or 0),
            "login_streak": user.login_streak or 0,
        }

    def is_eligible(self, badge: Badge, stats: Dict[str, Any]) -> bool:
        criteria = badge.criteria_type
        if criteria == BadgeCriteria.COURSE_COMPLETION:
            return stats["completed_courses"] >= badge.criteria_value
        if criteria == BadgeCriteria.TRADE_COUNT:
            return stats["trade_count"] >= badge.criteria_value
        if criteria == BadgeCriteria.PROFIT_ACHIEVED:
            return stats["total_profit"] >= badge.criteria_value
        if criteria == BadgeCriteria.STREAK_MAINTAINED:
            return stats["login_streak"] >= badge.criteria_value
        return False

    def check_and_award_badges(self, user: User) -> List[Badge]:
        """Award every active badge the user now qualifies for."""
        stats = self.user_stats(user)
        owned = {b.id for b in user.badges}
        awarded = []

        for badge in Badge.query.filter_by(status=ActiveStatus.ACTIVE).all():
            if badge.id in owned or not self.is_eligible(badge, stats):
                continue
            user.award_badge(badge)
            user.xp = (user.xp or 0) + (badge.reward_xp or 0)
            if badge.reward_virtual_currency:
                user.virtual_balance = Decimal(user.virtual_balance or 0) + Decimal(
                    badge.reward_virtual_currency
                )
            awarded.append(badge)

        if awarded:
            db.session.commit()
            logger.info(
                f"Awarded {len(awarded)} badges to user {user.id}",
                extra={"badges": [b.name for b in awarded]},
            )
            if self.notifier is not None:
                for badge in awarded:
                    self.notifier.send_badge_earned(user, badge)

        return awarded

    def leaderboard(self, board_type: str = "overall", limit: int = 100) -> List[Dict[str, Any]]:
        if board_type not in LEADERBOARD_TYPES:
            raise ValidationError(
                f"Unknown leaderboard type {board_type}",
                field="type",
                details={"allowed": list(LEADERBOARD_TYPES)},
            )

        profit = (
            db.session.query(
                Portfolio.user_id.label("user_id"),
                func.sum(Portfolio.total_profit_loss).label("total_profit"),
            )
            .filter(Portfolio.status != PortfolioStatus.DELETED)
            .group_by(Portfolio.user_id)
            .subquery()
        )
        courses = (
            db.session.query(
                Enrollment.user_id.label("user_id"),
                func.count(Enrollment.id).label("completed_courses"),
            )
            .filter(Enrollment.status == EnrollmentStatus.COMPLETED)
            .group_by(Enrollment.user_id)
            .subquery()
        )
        badges = (
            db.session.query(
                user_badges.c.user_id.label("user_id"),
                func.count(user_badges.c.badge_id).label("badge_count"),
            )
            .group_by(user_badges.c.user_id)
            .subquery()
        )

        total_profit = func.coalesce(profit.c.total_profit, 0)
        completed_courses = func.coalesce(courses.c.completed_courses, 0)
        badge_count = func.coalesce(badges.c.badge_count, 0)
        score = badge_count + completed_courses + total_profit / OVERALL_PROFIT_DIVISOR

        order = {
            "trading": total_profit,
            "courses": completed_courses,
            "badges": badge_count,
            "overall": score,
        }[board_type]

        rows = (
            db.session.query(User, total_profit, completed_courses, badge_count, score)
            .outerjoin(profit, profit.c.user_id == User.id)
            .outerjoin(courses, courses.c.user_id == User.id)
            .outerjoin(badges, badges.c.user_id == User.id)
            .filter(User.is_active.is_(True))
            .order_by(order.desc(), User.created_at.asc())
            .limit(limit)
            .all()
        )

        return [
            {
                "rank": rank,
                "user": user.to_public_dict(),
                "total_profit": float(profit_value or 0),
                "completed_courses": int(course_value or 0),
                "badge_count": int(badge_value or 0),
                "score": round(float(score_value or 0), 4),
            }
            for rank, (user, profit_value, course_value, badge_value, score_value)
            in enumerate(rows, start=1)
        ]
