"""
TradeAcademy - Request Schemas

Marshmallow schemas for every JSON request body. Unknown keys are rejected;
enum fields load straight into the model enums.
"""

from datetime import timezone

from marshmallow import Schema, ValidationError, fields, validate, validates_schema

from tradeacademy.models import (
    AchievementCriteria, ActiveStatus, BadgeCriteria, GradingType, Level,
    PublishStatus, RewardType, TradeType, UserRole
)


def _enum(enum_cls, **kwargs):
    return fields.Enum(enum_cls, by_value=True, **kwargs)


# Users
class RegisterSchema(Schema):
    """Schema for user registration."""

    email = fields.Email(required=True, validate=validate.Length(max=255))
    password = fields.Str(required=True, validate=validate.Length(min=8, max=128))
    name = fields.Str(required=True, validate=validate.Length(min=1, max=100))


class LoginSchema(Schema):
    """Schema for user login."""

    email = fields.Email(required=True)
    password = fields.Str(required=True)


class UpdateProfileSchema(Schema):
    name = fields.Str(validate=validate.Length(min=1, max=100))
    bio = fields.Str(allow_none=True, validate=validate.Length(max=2000))
    profile_picture = fields.Str(validate=validate.Length(max=255))


class UpdatePasswordSchema(Schema):
    current_password = fields.Str(required=True)
    new_password = fields.Str(required=True, validate=validate.Length(min=8, max=128))


class ForgotPasswordSchema(Schema):
    email = fields.Email(required=True)


class ResetPasswordSchema(Schema):
    password = fields.Str(required=True, validate=validate.Length(min=8, max=128))


class AdminUserUpdateSchema(Schema):
    """Fields an administrator may change on any account; passwords are excluded."""

    name = fields.Str(validate=validate.Length(min=1, max=100))
    email = fields.Email(validate=validate.Length(max=255))
    role = _enum(UserRole)
    is_active = fields.Bool()
    is_premium = fields.Bool()


# Trading
class TradeSchema(Schema):
    """Schema for a buy or sell order."""

    symbol = fields.Str(required=True, validate=validate.Length(min=1, max=20))
    type = _enum(TradeType, required=True)
    quantity = fields.Int(required=True, strict=True, validate=validate.Range(min=1))
    portfolio_id = fields.UUID()


class PortfolioSchema(Schema):
    name = fields.Str(required=True, validate=validate.Length(min=1, max=255))
    description = fields.Str(allow_none=True)
    initial_balance = fields.Decimal(
        places=2, validate=validate.Range(min=0, min_inclusive=False)
    )


class WatchlistSchema(Schema):
    symbol = fields.Str(required=True, validate=validate.Length(min=1, max=20))
    portfolio_id = fields.UUID()


# Gamification
class AchievementSchema(Schema):
    name = fields.Str(required=True, validate=validate.Length(min=1, max=100))
    description = fields.Str(required=True)
    category = fields.Str(validate=validate.Length(max=50))
    icon = fields.Str(validate=validate.Length(max=255))
    criteria_type = _enum(AchievementCriteria, required=True)
    threshold = fields.Float(required=True, validate=validate.Range(min=0, min_inclusive=False))
    reward_type = _enum(RewardType, required=True)
    reward_value = fields.Str(validate=validate.Length(max=255))
    reward_badge_id = fields.UUID()
    status = _enum(ActiveStatus)

    @validates_schema
    def validate_reward(self, data, **kwargs):
        reward_type = data.get("reward_type")
        if reward_type is None:
            return
        if reward_type != RewardType.BADGE and not data.get("reward_value"):
            raise ValidationError("reward_value is required", field_name="reward_value")
        if reward_type == RewardType.BADGE and not (
            data.get("reward_badge_id") or data.get("reward_value")
        ):
            raise ValidationError(
                "A badge reward needs reward_badge_id or a badge name in reward_value",
                field_name="reward_badge_id",
            )


class ProgressEventSchema(Schema):
    type = _enum(AchievementCriteria, required=True)
    value = fields.Float(required=True, validate=validate.Range(min=0))


class BadgeSchema(Schema):
    name = fields.Str(required=True, validate=validate.Length(min=1, max=100))
    description = fields.Str(required=True)
    icon = fields.Str(validate=validate.Length(max=255))
    category = fields.Str(validate=validate.Length(max=50))
    criteria_type = _enum(BadgeCriteria, required=True)
    criteria_value = fields.Float(required=True, validate=validate.Range(min=0))
    reward_xp = fields.Int(validate=validate.Range(min=0))
    reward_virtual_currency = fields.Decimal(places=2, validate=validate.Range(min=0))
    status = _enum(ActiveStatus)


# Learning
class CourseSchema(Schema):
    title = fields.Str(required=True, validate=validate.Length(min=1, max=100))
    description = fields.Str(required=True)
    level = _enum(Level, required=True)
    category = fields.Str(required=True, validate=validate.Length(min=1, max=50))
    price = fields.Decimal(places=2, validate=validate.Range(min=0))
    duration = fields.Int(validate=validate.Range(min=0))
    thumbnail = fields.Str(validate=validate.Length(max=255))
    status = _enum(PublishStatus)
    featured = fields.Bool()


class RatingSchema(Schema):
    rating = fields.Int(required=True, strict=True, validate=validate.Range(min=1, max=5))
    review = fields.Str(allow_none=True, validate=validate.Length(max=2000))


class ModuleSchema(Schema):
    course_id = fields.UUID(required=True)
    title = fields.Str(required=True, validate=validate.Length(min=1, max=100))
    description = fields.Str(required=True)
    order = fields.Int(required=True, validate=validate.Range(min=1))
    duration = fields.Int(validate=validate.Range(min=0))
    status = _enum(PublishStatus)
    resources = fields.List(fields.Dict())
    prerequisite_ids = fields.List(fields.UUID())


class ModuleReorderSchema(Schema):
    course_id = fields.UUID(required=True)
    module_ids = fields.List(fields.UUID(), required=True, validate=validate.Length(min=1))


class LessonReorderSchema(Schema):
    module_id = fields.UUID(required=True)
    lesson_ids = fields.List(fields.UUID(), required=True, validate=validate.Length(min=1))


class QuizQuestionSchema(Schema):
    question = fields.Str(required=True)
    options = fields.List(fields.Str(), load_default=list)
    correct_answer = fields.Raw(required=True)
    explanation = fields.Str()


class LessonSchema(Schema):
    module_id = fields.UUID(required=True)
    title = fields.Str(required=True, validate=validate.Length(min=1, max=100))
    description = fields.Str(required=True)
    order = fields.Int(required=True, validate=validate.Range(min=1))
    duration = fields.Int(validate=validate.Range(min=0))
    content_type = fields.Str(validate=validate.OneOf(["text", "video", "quiz", "exercise"]))
    body = fields.Str(allow_none=True)
    video_url = fields.Url(allow_none=True)
    quiz = fields.List(fields.Nested(QuizQuestionSchema))
    completion_type = fields.Str(validate=validate.OneOf(["read", "watch", "quiz", "exercise"]))
    minimum_score = fields.Int(validate=validate.Range(min=0, max=100))
    status = _enum(PublishStatus)
    resources = fields.List(fields.Dict())


class LessonCompleteSchema(Schema):
    time_spent = fields.Int(load_default=0, validate=validate.Range(min=0))
    score = fields.Float(validate=validate.Range(min=0, max=100))


class QuizSubmissionSchema(Schema):
    answers = fields.List(fields.Raw(allow_none=True), required=True)


class AssignmentSchema(Schema):
    course_id = fields.UUID(required=True)
    module_id = fields.UUID(allow_none=True)
    title = fields.Str(required=True, validate=validate.Length(min=1, max=100))
    description = fields.Str(required=True)
    type = fields.Str(
        required=True, validate=validate.OneOf(["quiz", "analysis", "project", "trading"])
    )
    difficulty = _enum(Level)
    due_date = fields.NaiveDateTime(timezone=timezone.utc, allow_none=True)
    points = fields.Int(required=True, validate=validate.Range(min=1))
    submission_type = fields.Str(validate=validate.OneOf(["text", "file", "link", "answers"]))
    max_attempts = fields.Int(validate=validate.Range(min=1))
    status = _enum(PublishStatus)
    grading_type = _enum(GradingType)
    answer_key = fields.List(fields.Raw(allow_none=True))


class SubmissionSchema(Schema):
    content = fields.Dict(required=True)


class GradeSchema(Schema):
    score = fields.Float(required=True, validate=validate.Range(min=0))
    feedback = fields.Str(allow_none=True)


class RegradeSchema(Schema):
    reason = fields.Str(required=True, validate=validate.Length(min=1, max=1000))


# Community
class TopicSchema(Schema):
    title = fields.Str(required=True, validate=validate.Length(min=1, max=200))
    description = fields.Str(required=True)
    category = fields.Str(required=True, validate=validate.Length(min=1, max=50))
    course_id = fields.UUID(allow_none=True)
    content = fields.Str(required=True)
    tags = fields.List(fields.Str(validate=validate.Length(max=50)))


class TopicModerationSchema(Schema):
    is_pinned = fields.Bool()
    is_locked = fields.Bool()


class ReplySchema(Schema):
    content = fields.Str(required=True, validate=validate.Length(min=1))


class VoteSchema(Schema):
    direction = fields.Str(required=True, validate=validate.OneOf(["up", "down", "none"]))


class PostSchema(Schema):
    title = fields.Str(required=True, validate=validate.Length(min=1, max=200))
    content = fields.Str(required=True)
    category = fields.Str(validate=validate.Length(min=1, max=50))
    tags = fields.List(fields.Str(validate=validate.Length(max=50)))
    status = _enum(PublishStatus)


class CommentSchema(Schema):
    content = fields.Str(required=True, validate=validate.Length(min=1, max=5000))


# Payments
class PaymentIntentSchema(Schema):
    amount = fields.Decimal(
        required=True, places=2, validate=validate.Range(min=0, min_inclusive=False)
    )
    currency = fields.Str(load_default="usd", validate=validate.Length(equal=3))
    description = fields.Str(validate=validate.Length(max=255))
