"""
Achievement Progress Tracker

Keeps one progress row per (user, achievement). Events carry a criteria type
and the user's current value for it; matching active achievements advance
towards their threshold and become claimable once it is reached. Claiming
grants the configured reward exactly once.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional, Union

from sqlalchemy import func

from tradeacademy.models import (
    Achievement, AchievementCriteria, ActiveStatus, Badge, ProgressStatus,
    RewardType, User, UserAchievement, db, utcnow
)
from tradeacademy.utils.exceptions import (
    AchievementNotClaimableError, NotFoundError, ValidationError
)
from tradeacademy.utils.logger import get_logger

logger = get_logger(__name__)

# History entries kept per progress row
HISTORY_LIMIT = 50


class AchievementTracker:
    """Records achievement progress and grants rewards on claim."""

    def __init__(self, notifier=None):
        self.notifier = notifier

    def record_event(
        self,
        user: User,
        criteria_type: Union[str, AchievementCriteria],
        value: float,
        commit: bool = True,
        now: Optional[datetime] = None,
    ) -> List[UserAchievement]:
        """
        Apply an event to every active achievement with ``criteria_type``.

        Returns the progress rows that were touched. Claimed rows are left
        untouched; ``current_value`` never exceeds ``target_value``.
        """
        try:
            criteria = AchievementCriteria(criteria_type)
        except ValueError:
            raise ValidationError(
                f"Unknown achievement type {criteria_type}",
                field="type",
                details={"allowed": [c.value for c in AchievementCriteria]},
            )

        achievements = Achievement.query.filter_by(
            criteria_type=criteria, status=ActiveStatus.ACTIVE
        ).all()

        touched = []
        newly_completed = []
        now = now or utcnow()
        for achievement in achievements:
            progress = UserAchievement.query.filter_by(
                user_id=user.id, achievement_id=achievement.id
            ).first()
            if progress is None:
                progress = UserAchievement(
                    user_id=user.id,
                    achievement=achievement,
                    current_value=0,
                    target_value=achievement.threshold,
                    percentage=0,
                    status=ProgressStatus.IN_PROGRESS,
                    history=[],
                )
                db.session.add(progress)

            if progress.status == ProgressStatus.CLAIMED:
                continue

            progress.current_value = min(float(value), progress.target_value)
            progress.percentage = round(progress.current_value / progress.target_value * 100, 2)
            entry = {"value": float(value), "date": now.isoformat()}
            progress.history = [*(progress.history or []), entry][-HISTORY_LIMIT:]

            if (
                progress.status == ProgressStatus.IN_PROGRESS
                and progress.current_value >= progress.target_value
            ):
                progress.status = ProgressStatus.COMPLETED
                progress.completed_at = now
                newly_completed.append(progress)

            touched.append(progress)

        # Without a commit here the caller announces completions after its own commit
        if commit:
            db.session.commit()
            self.announce_completed(user, newly_completed)

        return touched

    def announce_completed(self, user: User, completed: List[UserAchievement]) -> None:
        for progress in completed:
            logger.info(
                f"Achievement completed: {progress.achievement.name}",
                extra={"user_id": str(user.id), "achievement_id": str(progress.achievement_id)},
            )
            if self.notifier is not None:
                self.notifier.send_achievement_completed(user, progress.achievement)

    def claim(self, user: User, achievement_id) -> UserAchievement:
        """
        Claim a completed achievement and grant its reward.

        Raises:
            NotFoundError: the user has no progress on this achievement
            AchievementNotClaimableError: progress is not ``completed``
        """
        progress = UserAchievement.query.filter_by(
            user_id=user.id, achievement_id=achievement_id
        ).first()
        if progress is None:
            raise NotFoundError("Achievement progress")

        if progress.status != ProgressStatus.COMPLETED:
            raise AchievementNotClaimableError(progress.status.value)

        progress.status = ProgressStatus.CLAIMED
        progress.claimed_at = utcnow()
        reward = self._grant_reward(user, progress.achievement)
        db.session.commit()

        logger.info(
            f"Achievement claimed: {progress.achievement.name}",
            extra={"user_id": str(user.id), "reward": reward},
        )
        return progress

    def _grant_reward(self, user: User, achievement: Achievement) -> Dict[str, Any]:
        reward_type = achievement.reward_type
        value = achievement.reward_value

        if reward_type == RewardType.XP:
            points = int(float(value or 0))
            user.xp = (user.xp or 0) + points
            return {"type": reward_type.value, "xp": points}

        if reward_type == RewardType.BADGE:
            badge = achievement.reward_badge
            if badge is None and value:
                badge = Badge.query.filter_by(name=value).first()
            if badge is None:
                raise NotFoundError("Reward badge", details={"achievement": achievement.name})
            user.award_badge(badge)
            return {"type": reward_type.value, "badge": badge.name}

        if reward_type == RewardType.TITLE:
            user.add_title(value)
            return {"type": reward_type.value, "title": value}

        user.unlock_feature(value)
        return {"type": reward_type.value, "feature": value}

    def get_progress(self, user: User, achievement_id) -> UserAchievement:
        progress = UserAchievement.query.filter_by(
            user_id=user.id, achievement_id=achievement_id
        ).first()
        if progress is None:
            raise NotFoundError("Achievement progress")
        return progress

    def list_for_user(self, user: User, status: Optional[str] = None) -> List[UserAchievement]:
        query = UserAchievement.query.filter_by(user_id=user.id)
        if status:
            query = query.filter(UserAchievement.status == ProgressStatus(status))
        return query.order_by(UserAchievement.updated_at.desc()).all()

    def leaderboard(self, limit: int = 10) -> List[Dict[str, Any]]:
        """Users ranked by XP, with their claimed achievement count."""
        claimed = (
            db.session.query(
                UserAchievement.user_id,
                func.count(UserAchievement.id).label("claimed"),
            )
            .filter(UserAchievement.status == ProgressStatus.CLAIMED)
            .group_by(UserAchievement.user_id)
            .subquery()
        )
        rows = (
            db.session.query(User, func.coalesce(claimed.c.claimed, 0))
            .outerjoin(claimed, claimed.c.user_id == User.id)
            .filter(User.is_active.is_(True))
            .order_by(User.xp.desc(), func.coalesce(claimed.c.claimed, 0).desc())
            .limit(limit)
            .all()
        )
        return [
            {
                "rank": rank,
                "user": user.to_public_dict(),
                "xp": user.xp,
                "achievements_claimed": count,
            }
            for rank, (user, count) in enumerate(rows, start=1)
        ]
