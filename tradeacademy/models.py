"""
TradeAcademy - Database Models

Learning, community, gamification, virtual trading and payment models
with their relationships, constraints and serialization helpers.
"""

import hashlib
import secrets
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from enum import Enum as PyEnum
from typing import Any, Dict, Iterable, List, Optional
from uuid import UUID, uuid4

from flask_sqlalchemy import SQLAlchemy
from sqlalchemy import (
    BigInteger, Boolean, CheckConstraint, Column, DateTime, Float, ForeignKey,
    Index, Integer, JSON, Numeric, String, Table, Text, UniqueConstraint, Uuid,
    Enum as SQLEnum
)
from sqlalchemy.orm import relationship, validates
from werkzeug.security import check_password_hash, generate_password_hash

# Initialize SQLAlchemy
db = SQLAlchemy()


def utcnow() -> datetime:
    """Naive UTC timestamp, the representation stored in every DateTime column."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _enum(enum_cls):
    return SQLEnum(
        enum_cls,
        values_callable=lambda members: [m.value for m in members],
        native_enum=False,
        length=32,
    )


# Enums for type safety
class UserRole(str, PyEnum):
    USER = 'user'
    INSTRUCTOR = 'instructor'
    MODERATOR = 'moderator'
    ADMIN = 'admin'


class PublishStatus(str, PyEnum):
    DRAFT = 'draft'
    PUBLISHED = 'published'
    ARCHIVED = 'archived'


class Level(str, PyEnum):
    BEGINNER = 'beginner'
    INTERMEDIATE = 'intermediate'
    ADVANCED = 'advanced'


class PortfolioStatus(str, PyEnum):
    ACTIVE = 'active'
    INACTIVE = 'inactive'
    DELETED = 'deleted'


class TradeType(str, PyEnum):
    BUY = 'buy'
    SELL = 'sell'


class UpdateFrequency(str, PyEnum):
    REALTIME = 'realtime'
    ONE_MINUTE = '1min'
    FIVE_MINUTES = '5min'
    FIFTEEN_MINUTES = '15min'
    THIRTY_MINUTES = '30min'
    ONE_HOUR = '1hour'
    ONE_DAY = '1day'

    @property
    def threshold(self) -> timedelta:
        return UPDATE_THRESHOLDS[self]


UPDATE_THRESHOLDS = {
    UpdateFrequency.REALTIME: timedelta(seconds=10),
    UpdateFrequency.ONE_MINUTE: timedelta(minutes=1),
    UpdateFrequency.FIVE_MINUTES: timedelta(minutes=5),
    UpdateFrequency.FIFTEEN_MINUTES: timedelta(minutes=15),
    UpdateFrequency.THIRTY_MINUTES: timedelta(minutes=30),
    UpdateFrequency.ONE_HOUR: timedelta(hours=1),
    UpdateFrequency.ONE_DAY: timedelta(hours=24),
}


class AssetType(str, PyEnum):
    STOCK = 'stock'
    ETF = 'etf'
    CRYPTO = 'crypto'
    FOREX = 'forex'
    INDEX = 'index'


class MarketDataStatus(str, PyEnum):
    ACTIVE = 'active'
    INACTIVE = 'inactive'
    DELISTED = 'delisted'


class AchievementCriteria(str, PyEnum):
    COURSE_COMPLETION = 'course_completion'
    TRADE_VOLUME = 'trade_volume'
    PROFIT_TARGET = 'profit_target'
    LOGIN_STREAK = 'login_streak'
    FORUM_PARTICIPATION = 'forum_participation'
    PORTFOLIO_DIVERSITY = 'portfolio_diversity'
    QUIZ_SCORE = 'quiz_score'


class RewardType(str, PyEnum):
    XP = 'xp'
    BADGE = 'badge'
    TITLE = 'title'
    FEATURE_UNLOCK = 'feature_unlock'


class ActiveStatus(str, PyEnum):
    ACTIVE = 'active'
    INACTIVE = 'inactive'


class ProgressStatus(str, PyEnum):
    IN_PROGRESS = 'in_progress'
    COMPLETED = 'completed'
    CLAIMED = 'claimed'


class BadgeCriteria(str, PyEnum):
    COURSE_COMPLETION = 'course_completion'
    TRADE_COUNT = 'trade_count'
    PROFIT_ACHIEVED = 'profit_achieved'
    STREAK_MAINTAINED = 'streak_maintained'


class EnrollmentStatus(str, PyEnum):
    NOT_STARTED = 'not_started'
    IN_PROGRESS = 'in_progress'
    COMPLETED = 'completed'
    ARCHIVED = 'archived'


class SubmissionStatus(str, PyEnum):
    DRAFT = 'draft'
    SUBMITTED = 'submitted'
    GRADED = 'graded'
    RETURNED = 'returned'


class GradingType(str, PyEnum):
    AUTOMATIC = 'automatic'
    MANUAL = 'manual'
    HYBRID = 'hybrid'


class TopicStatus(str, PyEnum):
    ACTIVE = 'active'
    CLOSED = 'closed'
    ARCHIVED = 'archived'


class PaymentStatus(str, PyEnum):
    PENDING = 'pending'
    SUCCEEDED = 'succeeded'
    FAILED = 'failed'


def serialize_value(value: Any) -> Any:
    """Convert a column value into something jsonify understands."""
    if isinstance(value, PyEnum):
        return value.value
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, UUID):
        return str(value)
    return value


# Base Model with common fields
class BaseModel(db.Model):
    __abstract__ = True

    # Columns never exposed through to_dict
    __private__: Iterable[str] = ()

    id = Column(Uuid, primary_key=True, default=uuid4)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    def to_dict(self, fields: Optional[Iterable[str]] = None) -> Dict[str, Any]:
        """Serialize mapped columns, optionally restricted to ``fields``."""
        wanted = set(fields) if fields else None
        data = {}
        for column in self.__table__.columns:
            name = column.key
            if name in self.__private__:
                continue
            if wanted is not None and name not in wanted and name != 'id':
                continue
            data[name] = serialize_value(getattr(self, name))
        return data


def hash_token(token: str) -> str:
    return hashlib.sha256(token.encode()).hexdigest()


user_badges = Table(
    'user_badges',
    db.metadata,
    Column('user_id', Uuid, ForeignKey('users.id', ondelete='CASCADE'), primary_key=True),
    Column('badge_id', Uuid, ForeignKey('badges.id', ondelete='CASCADE'), primary_key=True),
    Column('awarded_at', DateTime, default=utcnow),
)


# User Management Models
class User(BaseModel):
    __tablename__ = 'users'
    __private__ = (
        'password_hash', 'stripe_customer_id', 'email_verification_token',
        'email_verification_expires', 'password_reset_token', 'password_reset_expires',
    )

    email = Column(String(255), unique=True, nullable=False, index=True)
    password_hash = Column(String(255), nullable=False)
    name = Column(String(100), nullable=False)
    role = Column(_enum(UserRole), default=UserRole.USER, nullable=False)
    bio = Column(Text)
    profile_picture = Column(String(255), default='default.jpg')
    is_active = Column(Boolean, default=True, nullable=False)
    last_login = Column(DateTime)
    login_streak = Column(Integer, default=0, nullable=False)

    # Account lifecycle; tokens are stored as SHA-256 digests
    email_verified = Column(Boolean, default=False, nullable=False)
    email_verification_token = Column(String(64), index=True)
    email_verification_expires = Column(DateTime)
    password_reset_token = Column(String(64), index=True)
    password_reset_expires = Column(DateTime)
    password_changed_at = Column(DateTime)

    # Gamification
    xp = Column(Integer, default=0, nullable=False)
    titles = Column(JSON, default=list, nullable=False)
    unlocked_features = Column(JSON, default=list, nullable=False)
    virtual_balance = Column(Numeric(18, 2), default=0, nullable=False)

    # Subscription
    is_premium = Column(Boolean, default=False, nullable=False)
    premium_expires_at = Column(DateTime)
    stripe_customer_id = Column(String(255))

    badges = relationship('Badge', secondary=user_badges, lazy='selectin')
    portfolios = relationship('Portfolio', back_populates='user', cascade='all, delete-orphan')
    enrollments = relationship('Enrollment', back_populates='user', cascade='all, delete-orphan')

    def set_password(self, password: str) -> None:
        """Set password hash."""
        self.password_hash = generate_password_hash(password)

    def check_password(self, password: str) -> bool:
        """Check password against hash."""
        return check_password_hash(self.password_hash, password)

    def change_password(self, password: str) -> None:
        """Set a new password and clear any outstanding reset token."""
        self.set_password(password)
        self.password_changed_at = utcnow()
        self.password_reset_token = None
        self.password_reset_expires = None

    def create_password_reset_token(self, lifetime: timedelta) -> str:
        """Store the digest of a fresh reset token and return the raw token."""
        token = secrets.token_hex(32)
        self.password_reset_token = hash_token(token)
        self.password_reset_expires = utcnow() + lifetime
        return token

    def create_email_verification_token(self, lifetime: timedelta) -> str:
        token = secrets.token_hex(32)
        self.email_verification_token = hash_token(token)
        self.email_verification_expires = utcnow() + lifetime
        return token

    def has_role(self, *roles) -> bool:
        return self.role in {UserRole(r) for r in roles}

    def add_title(self, title: str) -> None:
        if title not in (self.titles or []):
            self.titles = [*(self.titles or []), title]

    def unlock_feature(self, feature: str) -> None:
        if feature not in (self.unlocked_features or []):
            self.unlocked_features = [*(self.unlocked_features or []), feature]

    def award_badge(self, badge: 'Badge') -> bool:
        """Attach a badge, returning False when the user already holds it."""
        if any(b.id == badge.id for b in self.badges):
            return False
        self.badges.append(badge)
        return True

    @validates('email')
    def validate_email(self, key, email):
        """Validate email format."""
        import re
        if not re.match(r'^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$', email):
            raise ValueError('Invalid email format')
        return email.lower()

    def to_dict(self, fields=None) -> Dict[str, Any]:
        data = super().to_dict(fields)
        if not fields or 'badges' in fields:
            data['badges'] = [b.to_dict() for b in self.badges]
        return data

    def to_public_dict(self) -> Dict[str, Any]:
        return {
            'id': str(self.id),
            'name': self.name,
            'profile_picture': self.profile_picture,
        }


# Virtual Trading Models
class Portfolio(BaseModel):
    __tablename__ = 'portfolios'

    user_id = Column(Uuid, ForeignKey('users.id'), nullable=False, index=True)
    name = Column(String(255), nullable=False, default='Default Portfolio')
    description = Column(Text)

    cash_balance = Column(Numeric(18, 6), nullable=False)
    initial_balance = Column(Numeric(18, 2), nullable=False)

    # Performance snapshot, refreshed after every trade
    total_value = Column(Numeric(18, 2), nullable=False, default=0)
    total_profit_loss = Column(Numeric(18, 2), nullable=False, default=0)
    total_profit_loss_percentage = Column(Numeric(12, 4), nullable=False, default=0)
    performance_updated_at = Column(DateTime)

    status = Column(_enum(PortfolioStatus), default=PortfolioStatus.ACTIVE, nullable=False)
    version = Column(Integer, nullable=False)

    user = relationship('User', back_populates='portfolios')
    holdings = relationship(
        'Holding', back_populates='portfolio', cascade='all, delete-orphan',
        order_by='Holding.symbol', lazy='selectin'
    )
    transactions = relationship(
        'Transaction', back_populates='portfolio', cascade='all, delete-orphan',
        order_by='Transaction.timestamp'
    )
    watchlist = relationship(
        'WatchlistItem', back_populates='portfolio', cascade='all, delete-orphan',
        order_by='WatchlistItem.added_at', lazy='selectin'
    )

    __mapper_args__ = {'version_id_col': version}

    __table_args__ = (
        CheckConstraint('cash_balance >= 0', name='check_non_negative_cash'),
        CheckConstraint('initial_balance > 0', name='check_positive_initial_balance'),
        Index('idx_portfolio_user_status', 'user_id', 'status'),
    )

    def holding_for(self, symbol: str) -> Optional['Holding']:
        for holding in self.holdings:
            if holding.symbol == symbol:
                return holding
        return None

    @property
    def holdings_value(self) -> Decimal:
        return sum((h.market_value for h in self.holdings), Decimal('0'))

    def to_dict(self, fields=None, include_transactions: bool = False) -> Dict[str, Any]:
        data = super().to_dict(fields)
        data['holdings'] = [h.to_dict() for h in self.holdings]
        data['watchlist'] = [w.symbol for w in self.watchlist]
        data['performance'] = {
            'total_value': float(self.total_value or 0),
            'total_profit_loss': float(self.total_profit_loss or 0),
            'total_profit_loss_percentage': float(self.total_profit_loss_percentage or 0),
            'updated_at': serialize_value(self.performance_updated_at),
        }
        if include_transactions:
            data['transactions'] = [t.to_dict() for t in self.transactions]
        return data


class Holding(BaseModel):
    __tablename__ = 'holdings'

    portfolio_id = Column(Uuid, ForeignKey('portfolios.id', ondelete='CASCADE'), nullable=False)
    symbol = Column(String(20), nullable=False)
    quantity = Column(Integer, nullable=False)
    average_buy_price = Column(Numeric(18, 6), nullable=False)
    current_price = Column(Numeric(18, 6))

    portfolio = relationship('Portfolio', back_populates='holdings')

    __table_args__ = (
        UniqueConstraint('portfolio_id', 'symbol', name='unique_portfolio_holding'),
        CheckConstraint('quantity > 0', name='check_positive_holding_quantity'),
    )

    @property
    def market_value(self) -> Decimal:
        price = self.current_price if self.current_price is not None else self.average_buy_price
        return Decimal(self.quantity) * Decimal(price)

    @property
    def cost_basis(self) -> Decimal:
        return Decimal(self.quantity) * Decimal(self.average_buy_price)

    @property
    def profit_loss(self) -> Decimal:
        return self.market_value - self.cost_basis

    @property
    def profit_loss_percentage(self) -> Decimal:
        if not self.cost_basis:
            return Decimal('0')
        return self.profit_loss / self.cost_basis * 100

    def to_dict(self, fields=None) -> Dict[str, Any]:
        return {
            'symbol': self.symbol,
            'quantity': self.quantity,
            'average_buy_price': float(self.average_buy_price),
            'current_price': float(self.current_price) if self.current_price is not None else None,
            'market_value': float(self.market_value),
            'profit_loss': float(self.profit_loss),
            'profit_loss_percentage': round(float(self.profit_loss_percentage), 4),
        }


class Transaction(BaseModel):
    __tablename__ = 'transactions'

    portfolio_id = Column(Uuid, ForeignKey('portfolios.id', ondelete='CASCADE'), nullable=False)
    type = Column(_enum(TradeType), nullable=False)
    symbol = Column(String(20), nullable=False, index=True)
    quantity = Column(Integer, nullable=False)
    price = Column(Numeric(18, 6), nullable=False)
    total = Column(Numeric(18, 6), nullable=False)
    timestamp = Column(DateTime, default=utcnow, nullable=False)

    portfolio = relationship('Portfolio', back_populates='transactions')

    __table_args__ = (
        CheckConstraint('quantity > 0', name='check_positive_transaction_quantity'),
        Index('idx_transaction_portfolio_time', 'portfolio_id', 'timestamp'),
    )


class WatchlistItem(BaseModel):
    __tablename__ = 'watchlist_items'

    portfolio_id = Column(Uuid, ForeignKey('portfolios.id', ondelete='CASCADE'), nullable=False)
    symbol = Column(String(20), nullable=False)
    added_at = Column(DateTime, default=utcnow, nullable=False)

    portfolio = relationship('Portfolio', back_populates='watchlist')

    __table_args__ = (
        UniqueConstraint('portfolio_id', 'symbol', name='unique_portfolio_watchlist_symbol'),
    )


class MarketData(BaseModel):
    __tablename__ = 'market_data'

    symbol = Column(String(20), unique=True, nullable=False, index=True)
    name = Column(String(255))
    asset_type = Column(_enum(AssetType), default=AssetType.STOCK, nullable=False)
    exchange = Column(String(50))
    currency = Column(String(10), default='USD')

    price = Column(Numeric(18, 6), nullable=False)
    open_price = Column(Numeric(18, 6))
    high_price = Column(Numeric(18, 6))
    low_price = Column(Numeric(18, 6))
    previous_close = Column(Numeric(18, 6))
    change = Column(Numeric(18, 6))
    change_percent = Column(Float)
    volume = Column(BigInteger)

    last_updated = Column(DateTime, default=utcnow, nullable=False)
    update_frequency = Column(
        _enum(UpdateFrequency), default=UpdateFrequency.ONE_MINUTE, nullable=False
    )
    historical_data = Column(JSON, default=list, nullable=False)
    historical_updated_at = Column(DateTime)
    fundamentals = Column(JSON, default=dict, nullable=False)
    status = Column(_enum(MarketDataStatus), default=MarketDataStatus.ACTIVE, nullable=False)

    __table_args__ = (
        Index('idx_market_data_type_change', 'asset_type', 'change_percent'),
    )

    def needs_update(self, now: Optional[datetime] = None) -> bool:
        """True once the quote is older than its update frequency allows."""
        if self.last_updated is None:
            return True
        now = now or utcnow()
        return now - self.last_updated > UpdateFrequency(self.update_frequency).threshold

    def historical_between(self, start: Optional[date] = None,
                           end: Optional[date] = None) -> List[Dict[str, Any]]:
        points = []
        for point in self.historical_data or []:
            day = date.fromisoformat(point['date'][:10])
            if start and day < start:
                continue
            if end and day > end:
                continue
            points.append(point)
        return sorted(points, key=lambda p: p['date'])

    def to_dict(self, fields=None) -> Dict[str, Any]:
        data = super().to_dict(fields)
        data.pop('historical_data', None)
        return data


# Gamification Models
class Badge(BaseModel):
    __tablename__ = 'badges'

    name = Column(String(100), unique=True, nullable=False)
    description = Column(Text, nullable=False)
    icon = Column(String(255))
    category = Column(String(50), default='general')
    criteria_type = Column(_enum(BadgeCriteria), nullable=False)
    criteria_value = Column(Float, nullable=False)
    reward_xp = Column(Integer, default=0, nullable=False)
    reward_virtual_currency = Column(Numeric(18, 2), default=0, nullable=False)
    status = Column(_enum(ActiveStatus), default=ActiveStatus.ACTIVE, nullable=False)


class Achievement(BaseModel):
    __tablename__ = 'achievements'

    name = Column(String(100), unique=True, nullable=False)
    description = Column(Text, nullable=False)
    category = Column(String(50), default='general')
    icon = Column(String(255))
    criteria_type = Column(_enum(AchievementCriteria), nullable=False, index=True)
    threshold = Column(Float, nullable=False)
    reward_type = Column(_enum(RewardType), nullable=False)
    reward_value = Column(String(255))
    reward_badge_id = Column(Uuid, ForeignKey('badges.id'))
    status = Column(_enum(ActiveStatus), default=ActiveStatus.ACTIVE, nullable=False)

    reward_badge = relationship('Badge')

    __table_args__ = (
        CheckConstraint('threshold > 0', name='check_positive_threshold'),
    )


class UserAchievement(BaseModel):
    __tablename__ = 'user_achievements'

    user_id = Column(Uuid, ForeignKey('users.id', ondelete='CASCADE'), nullable=False)
    achievement_id = Column(Uuid, ForeignKey('achievements.id', ondelete='CASCADE'), nullable=False)
    current_value = Column(Float, default=0, nullable=False)
    target_value = Column(Float, nullable=False)
    percentage = Column(Float, default=0, nullable=False)
    status = Column(_enum(ProgressStatus), default=ProgressStatus.IN_PROGRESS, nullable=False)
    completed_at = Column(DateTime)
    claimed_at = Column(DateTime)
    history = Column(JSON, default=list, nullable=False)

    user = relationship('User')
    achievement = relationship('Achievement', lazy='joined')

    __table_args__ = (
        UniqueConstraint('user_id', 'achievement_id', name='unique_user_achievement'),
        Index('idx_user_achievement_status', 'user_id', 'status'),
    )

    def to_dict(self, fields=None) -> Dict[str, Any]:
        data = super().to_dict(fields)
        data['achievement'] = self.achievement.to_dict() if self.achievement else None
        return data


# Learning Models
class Course(BaseModel):
    __tablename__ = 'courses'

    title = Column(String(100), nullable=False)
    description = Column(Text, nullable=False)
    instructor_id = Column(Uuid, ForeignKey('users.id'), nullable=False)
    level = Column(_enum(Level), nullable=False)
    category = Column(String(50), nullable=False)
    price = Column(Numeric(10, 2), default=0, nullable=False)
    duration = Column(Integer)
    thumbnail = Column(String(255), default='default-course.jpg')
    status = Column(_enum(PublishStatus), default=PublishStatus.DRAFT, nullable=False)
    featured = Column(Boolean, default=False, nullable=False)
    average_rating = Column(Float, default=0, nullable=False)
    ratings_count = Column(Integer, default=0, nullable=False)

    instructor = relationship('User')
    modules = relationship(
        'CourseModule', back_populates='course', cascade='all, delete-orphan',
        order_by='CourseModule.order'
    )
    ratings = relationship('CourseRating', back_populates='course', cascade='all, delete-orphan')

    __table_args__ = (
        CheckConstraint('price >= 0', name='check_non_negative_price'),
        Index('idx_course_status_level', 'status', 'level'),
    )

    def lessons(self) -> List['Lesson']:
        return [lesson for module in self.modules for lesson in module.lessons]

    def recalculate_rating(self) -> None:
        scores = [r.rating for r in self.ratings]
        self.ratings_count = len(scores)
        self.average_rating = round(sum(scores) / len(scores), 2) if scores else 0


class CourseRating(BaseModel):
    __tablename__ = 'course_ratings'

    course_id = Column(Uuid, ForeignKey('courses.id', ondelete='CASCADE'), nullable=False)
    user_id = Column(Uuid, ForeignKey('users.id'), nullable=False)
    rating = Column(Integer, nullable=False)
    review = Column(Text)

    course = relationship('Course', back_populates='ratings')

    __table_args__ = (
        UniqueConstraint('course_id', 'user_id', name='unique_course_rating'),
        CheckConstraint('rating BETWEEN 1 AND 5', name='check_rating_range'),
    )


module_prerequisites = Table(
    'module_prerequisites',
    db.metadata,
    Column('module_id', Uuid, ForeignKey('course_modules.id', ondelete='CASCADE'), primary_key=True),
    Column('prerequisite_id', Uuid, ForeignKey('course_modules.id', ondelete='CASCADE'), primary_key=True),
)


class CourseModule(BaseModel):
    __tablename__ = 'course_modules'

    course_id = Column(Uuid, ForeignKey('courses.id', ondelete='CASCADE'), nullable=False)
    title = Column(String(100), nullable=False)
    description = Column(Text, nullable=False)
    order = Column(Integer, nullable=False)
    duration = Column(Integer)
    status = Column(_enum(PublishStatus), default=PublishStatus.DRAFT, nullable=False)
    resources = Column(JSON, default=list, nullable=False)

    course = relationship('Course', back_populates='modules')
    lessons = relationship(
        'Lesson', back_populates='module', cascade='all, delete-orphan',
        order_by='Lesson.order'
    )
    prerequisites = relationship(
        'CourseModule',
        secondary=module_prerequisites,
        primaryjoin=lambda: CourseModule.id == module_prerequisites.c.module_id,
        secondaryjoin=lambda: CourseModule.id == module_prerequisites.c.prerequisite_id,
        order_by='CourseModule.order',
    )

    def to_dict(self, fields=None) -> Dict[str, Any]:
        data = super().to_dict(fields)
        if not fields or 'prerequisites' in fields:
            data['prerequisites'] = [str(m.id) for m in self.prerequisites]
        return data


class Lesson(BaseModel):
    __tablename__ = 'lessons'

    module_id = Column(Uuid, ForeignKey('course_modules.id', ondelete='CASCADE'), nullable=False)
    title = Column(String(100), nullable=False)
    description = Column(Text, nullable=False)
    order = Column(Integer, nullable=False)
    duration = Column(Integer)
    content_type = Column(String(20), default='text', nullable=False)
    body = Column(Text)
    video_url = Column(String(500))
    quiz = Column(JSON, default=list, nullable=False)
    completion_type = Column(String(20), default='read', nullable=False)
    minimum_score = Column(Integer, default=80, nullable=False)
    status = Column(_enum(PublishStatus), default=PublishStatus.DRAFT, nullable=False)
    resources = Column(JSON, default=list, nullable=False)

    module = relationship('CourseModule', back_populates='lessons')

    def to_dict(self, fields=None, reveal_answers: bool = False) -> Dict[str, Any]:
        data = super().to_dict(fields)
        if 'quiz' in data and not reveal_answers:
            data['quiz'] = [
                {k: v for k, v in question.items() if k != 'correct_answer'}
                for question in self.quiz or []
            ]
        return data


class Enrollment(BaseModel):
    __tablename__ = 'enrollments'

    user_id = Column(Uuid, ForeignKey('users.id', ondelete='CASCADE'), nullable=False)
    course_id = Column(Uuid, ForeignKey('courses.id', ondelete='CASCADE'), nullable=False)
    overall_progress = Column(Float, default=0, nullable=False)
    status = Column(_enum(EnrollmentStatus), default=EnrollmentStatus.NOT_STARTED, nullable=False)
    quiz_average = Column(Float)
    quiz_highest = Column(Float)
    quiz_lowest = Column(Float)
    certificate_earned = Column(Boolean, default=False, nullable=False)
    last_accessed = Column(DateTime, default=utcnow)
    completed_at = Column(DateTime)

    user = relationship('User', back_populates='enrollments')
    course = relationship('Course')
    lesson_progress = relationship(
        'LessonProgress', back_populates='enrollment', cascade='all, delete-orphan',
        lazy='selectin'
    )

    __table_args__ = (
        UniqueConstraint('user_id', 'course_id', name='unique_enrollment'),
    )

    def to_dict(self, fields=None) -> Dict[str, Any]:
        data = super().to_dict(fields)
        data['lessons'] = [p.to_dict() for p in self.lesson_progress]
        return data


class LessonProgress(BaseModel):
    __tablename__ = 'lesson_progress'

    enrollment_id = Column(Uuid, ForeignKey('enrollments.id', ondelete='CASCADE'), nullable=False)
    lesson_id = Column(Uuid, ForeignKey('lessons.id', ondelete='CASCADE'), nullable=False)
    completed = Column(Boolean, default=False, nullable=False)
    time_spent = Column(Integer, default=0, nullable=False)
    quiz_score = Column(Float)
    attempts = Column(Integer, default=0, nullable=False)
    last_accessed = Column(DateTime, default=utcnow)
    completed_at = Column(DateTime)

    enrollment = relationship('Enrollment', back_populates='lesson_progress')

    __table_args__ = (
        UniqueConstraint('enrollment_id', 'lesson_id', name='unique_lesson_progress'),
    )


class Assignment(BaseModel):
    __tablename__ = 'assignments'

    course_id = Column(Uuid, ForeignKey('courses.id', ondelete='CASCADE'), nullable=False)
    module_id = Column(Uuid, ForeignKey('course_modules.id', ondelete='SET NULL'))
    title = Column(String(100), nullable=False)
    description = Column(Text, nullable=False)
    type = Column(String(20), nullable=False)
    difficulty = Column(_enum(Level), default=Level.BEGINNER, nullable=False)
    due_date = Column(DateTime)
    points = Column(Integer, nullable=False)
    submission_type = Column(String(20), default='text', nullable=False)
    max_attempts = Column(Integer, default=1, nullable=False)
    status = Column(_enum(PublishStatus), default=PublishStatus.DRAFT, nullable=False)
    grading_type = Column(_enum(GradingType), default=GradingType.MANUAL, nullable=False)
    answer_key = Column(JSON, default=list, nullable=False)

    __private__ = ('answer_key',)

    course = relationship('Course')
    submissions = relationship('Submission', back_populates='assignment', cascade='all, delete-orphan')

    __table_args__ = (
        CheckConstraint('points > 0', name='check_positive_points'),
        CheckConstraint('max_attempts > 0', name='check_positive_attempts'),
    )


class Submission(BaseModel):
    __tablename__ = 'submissions'

    assignment_id = Column(Uuid, ForeignKey('assignments.id', ondelete='CASCADE'), nullable=False)
    user_id = Column(Uuid, ForeignKey('users.id'), nullable=False)
    content = Column(JSON, default=dict, nullable=False)
    status = Column(_enum(SubmissionStatus), default=SubmissionStatus.SUBMITTED, nullable=False)
    submitted_at = Column(DateTime, default=utcnow, nullable=False)
    is_late = Column(Boolean, default=False, nullable=False)
    attempt = Column(Integer, nullable=False)
    score = Column(Float)
    max_score = Column(Float, nullable=False)
    feedback = Column(Text)
    graded_by_id = Column(Uuid, ForeignKey('users.id'))
    graded_at = Column(DateTime)
    flags = Column(JSON, default=list, nullable=False)

    assignment = relationship('Assignment', back_populates='submissions')
    user = relationship('User', foreign_keys=[user_id])

    __table_args__ = (
        UniqueConstraint('assignment_id', 'user_id', 'attempt', name='unique_submission_attempt'),
    )


# Community Models
class ForumTopic(BaseModel):
    __tablename__ = 'forum_topics'

    title = Column(String(200), nullable=False)
    description = Column(Text, nullable=False)
    category = Column(String(50), nullable=False)
    course_id = Column(Uuid, ForeignKey('courses.id', ondelete='SET NULL'))
    author_id = Column(Uuid, ForeignKey('users.id'), nullable=False)
    content = Column(Text, nullable=False)
    tags = Column(JSON, default=list, nullable=False)
    upvotes = Column(JSON, default=list, nullable=False)
    downvotes = Column(JSON, default=list, nullable=False)
    views = Column(Integer, default=0, nullable=False)
    is_pinned = Column(Boolean, default=False, nullable=False)
    is_locked = Column(Boolean, default=False, nullable=False)
    status = Column(_enum(TopicStatus), default=TopicStatus.ACTIVE, nullable=False)

    author = relationship('User')
    replies = relationship(
        'ForumReply', back_populates='topic', cascade='all, delete-orphan',
        order_by='ForumReply.created_at'
    )

    @property
    def score(self) -> int:
        return len(self.upvotes or []) - len(self.downvotes or [])

    def to_dict(self, fields=None, include_replies: bool = False) -> Dict[str, Any]:
        data = super().to_dict(fields)
        data['score'] = self.score
        data['reply_count'] = len(self.replies)
        if include_replies:
            data['replies'] = [r.to_dict() for r in self.replies]
        return data


class ForumReply(BaseModel):
    __tablename__ = 'forum_replies'

    topic_id = Column(Uuid, ForeignKey('forum_topics.id', ondelete='CASCADE'), nullable=False)
    author_id = Column(Uuid, ForeignKey('users.id'), nullable=False)
    content = Column(Text, nullable=False)
    upvotes = Column(JSON, default=list, nullable=False)
    downvotes = Column(JSON, default=list, nullable=False)
    is_answer = Column(Boolean, default=False, nullable=False)

    topic = relationship('ForumTopic', back_populates='replies')


class Post(BaseModel):
    __tablename__ = 'posts'

    author_id = Column(Uuid, ForeignKey('users.id'), nullable=False)
    title = Column(String(200), nullable=False)
    content = Column(Text, nullable=False)
    category = Column(String(50), default='general', nullable=False)
    tags = Column(JSON, default=list, nullable=False)
    likes = Column(JSON, default=list, nullable=False)
    status = Column(_enum(PublishStatus), default=PublishStatus.PUBLISHED, nullable=False)

    author = relationship('User')
    comments = relationship(
        'Comment', back_populates='post', cascade='all, delete-orphan',
        order_by='Comment.created_at'
    )

    def to_dict(self, fields=None, include_comments: bool = False) -> Dict[str, Any]:
        data = super().to_dict(fields)
        data['like_count'] = len(self.likes or [])
        data['comment_count'] = len(self.comments)
        if include_comments:
            data['comments'] = [c.to_dict() for c in self.comments]
        return data


class Comment(BaseModel):
    __tablename__ = 'comments'

    post_id = Column(Uuid, ForeignKey('posts.id', ondelete='CASCADE'), nullable=False)
    author_id = Column(Uuid, ForeignKey('users.id'), nullable=False)
    content = Column(Text, nullable=False)
    likes = Column(JSON, default=list, nullable=False)

    post = relationship('Post', back_populates='comments')


# Payment Models
class Payment(BaseModel):
    __tablename__ = 'payments'

    user_id = Column(Uuid, ForeignKey('users.id'), nullable=False, index=True)
    stripe_payment_intent_id = Column(String(255), unique=True, nullable=False)
    amount = Column(Numeric(10, 2), nullable=False)
    currency = Column(String(3), default='usd', nullable=False)
    status = Column(_enum(PaymentStatus), default=PaymentStatus.PENDING, nullable=False)
    description = Column(String(255))
    failure_message = Column(Text)
    processed_at = Column(DateTime)

    user = relationship('User')

    __table_args__ = (
        CheckConstraint('amount > 0', name='check_positive_payment_amount'),
    )


class RevokedToken(BaseModel):
    """Access tokens withdrawn before their expiry (logout, password change)."""

    __tablename__ = 'revoked_tokens'

    jti = Column(String(36), unique=True, nullable=False, index=True)
    user_id = Column(Uuid, ForeignKey('users.id', ondelete='CASCADE'), nullable=False)
    expires_at = Column(DateTime)


# Utility functions
def init_db(app):
    """Create tables directly when the environment opts in; otherwise rely on migrations."""
    if app.config.get('AUTO_CREATE_TABLES'):
        db.create_all()
        app.logger.info('Database tables created')
