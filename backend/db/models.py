from datetime import datetime
from sqlalchemy import (
    Column, Integer, Float, Text, Boolean, ForeignKey, Index,
    Date, DateTime, UniqueConstraint,
)
from sqlalchemy.orm import relationship
from db.database import Base


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    username = Column(Text, unique=True, nullable=False)
    username_normalized = Column(Text, unique=True, nullable=False)
    password_hash = Column(Text, nullable=False)
    display_name = Column(Text, nullable=False)
    token_version = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    profile = relationship("UserProfile", back_populates="user", uselist=False, cascade="all, delete-orphan")
    challenges = relationship("Challenge", back_populates="user", cascade="all, delete-orphan")
    notification_preferences = relationship(
        "NotificationPreference", back_populates="user", uselist=False, cascade="all, delete-orphan"
    )
    push_subscriptions = relationship("PushSubscription", back_populates="user", cascade="all, delete-orphan")
    notification_logs = relationship("NotificationLog", back_populates="user", cascade="all, delete-orphan")


class UserProfile(Base):
    __tablename__ = "user_profiles"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, unique=True)
    timezone = Column(Text)  # IANA zone; NULL means "use DEFAULT_TIMEZONE"
    onboarding_completed_at = Column(DateTime, nullable=True)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    user = relationship("User", back_populates="profile")


class Challenge(Base):
    __tablename__ = "challenges"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    name = Column(Text, nullable=False, default="75 Hard")
    description = Column(Text)
    start_date = Column(Date, nullable=False)
    end_date = Column(Date, nullable=True)
    duration_days = Column(Integer, nullable=False, default=75)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    user = relationship("User", back_populates="challenges")
    daily_progress = relationship("DailyProgress", back_populates="challenge", cascade="all, delete-orphan")
    water_intake = relationship("WaterIntake", back_populates="challenge", cascade="all, delete-orphan")
    daily_notes = relationship("DailyNote", back_populates="challenge", cascade="all, delete-orphan")

    __table_args__ = (
        Index("idx_challenges_user_active", "user_id", "is_active"),
    )


class DailyProgress(Base):
    __tablename__ = "daily_progress"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    challenge_id = Column(Integer, ForeignKey("challenges.id"), nullable=False)
    date = Column(Date, nullable=False)
    day_number = Column(Integer, nullable=False)
    tasks = Column(Text, nullable=False, default="{}")  # JSON object keyed by task id
    tasks_completed = Column(Integer, nullable=False, default=0)
    is_complete = Column(Boolean, nullable=False, default=False)
    notes = Column(Text)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    challenge = relationship("Challenge", back_populates="daily_progress")

    __table_args__ = (
        UniqueConstraint("challenge_id", "date", name="uq_daily_progress_challenge_date"),
        Index("idx_daily_progress_challenge_date", "challenge_id", "date"),
    )


class WaterIntake(Base):
    __tablename__ = "water_intake"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    challenge_id = Column(Integer, ForeignKey("challenges.id"), nullable=False)
    date = Column(Date, nullable=False)
    amount = Column(Float, nullable=False, default=0.0)  # ounces
    goal = Column(Float, nullable=False, default=128.0)  # ounces; one gallon
    unit = Column(Text, nullable=False, default="oz")  # display unit
    intake_log = Column(Text, nullable=False, default="[]")  # JSON array of {timestamp, amount, unit}
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    challenge = relationship("Challenge", back_populates="water_intake")

    __table_args__ = (
        UniqueConstraint("challenge_id", "date", name="uq_water_intake_challenge_date"),
    )


class DailyNote(Base):
    __tablename__ = "daily_notes"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    challenge_id = Column(Integer, ForeignKey("challenges.id"), nullable=False)
    date = Column(Date, nullable=False)
    title = Column(Text)
    content = Column(Text, nullable=False, default="")
    tags = Column(Text, nullable=False, default="[]")  # JSON array of strings
    is_favorite = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    challenge = relationship("Challenge", back_populates="daily_notes")

    __table_args__ = (
        UniqueConstraint("challenge_id", "date", name="uq_daily_notes_challenge_date"),
        Index("idx_daily_notes_challenge_favorite", "challenge_id", "is_favorite"),
    )


class NotificationPreference(Base):
    __tablename__ = "notification_preferences"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, unique=True)
    enabled = Column(Boolean, nullable=False, default=False)
    daily_reminder = Column(Boolean, nullable=False, default=True)
    daily_reminder_time = Column(Text, nullable=False, default="06:00")
    workout_reminders = Column(Boolean, nullable=False, default=True)
    workout_reminder_times = Column(Text, nullable=False, default='["07:00", "17:00"]')  # JSON array
    water_reminders = Column(Boolean, nullable=False, default=True)
    water_reminder_interval = Column(Integer, nullable=False, default=2)  # hours
    reading_reminder = Column(Boolean, nullable=False, default=True)
    reading_reminder_time = Column(Text, nullable=False, default="20:00")
    photo_reminder = Column(Boolean, nullable=False, default=True)
    photo_reminder_time = Column(Text, nullable=False, default="07:30")
    streak_alerts = Column(Boolean, nullable=False, default=True)
    achievement_alerts = Column(Boolean, nullable=False, default=True)
    last_notification_sent_at = Column(DateTime, nullable=True)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    user = relationship("User", back_populates="notification_preferences")


class PushSubscription(Base):
    __tablename__ = "push_subscriptions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    endpoint = Column(Text, nullable=False)
    p256dh = Column(Text, nullable=False)
    auth = Column(Text, nullable=False)
    user_agent = Column(Text)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    user = relationship("User", back_populates="push_subscriptions")

    __table_args__ = (
        UniqueConstraint("user_id", "endpoint", name="uq_push_subscriptions_user_endpoint"),
    )


class NotificationLog(Base):
    __tablename__ = "notification_logs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    type = Column(Text, nullable=False)  # daily | workout | water | reading | photo | streak | achievement | test
    title = Column(Text)
    body = Column(Text)
    scheduled_for = Column(DateTime, nullable=True)
    sent_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    user = relationship("User", back_populates="notification_logs")

    __table_args__ = (
        Index("idx_notification_logs_user_created", "user_id", "created_at"),
    )
