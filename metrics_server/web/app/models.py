"""
SQLAlchemy 2.0 database models.

The platform tables are read-only inputs to the metrics engine; only
admin_metrics_snapshots is written, and only by appending.
"""
import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    Column, String, BigInteger, Date, DateTime, Float, ForeignKey, Text,
    Boolean, Integer, JSON, Uuid, UniqueConstraint
)
from sqlalchemy.orm import declarative_base

Base = declarative_base()


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Profile(Base):
    __tablename__ = "profiles"
    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    email = Column(String(255), unique=True, nullable=True, index=True)
    full_name = Column(String(255), nullable=True)
    membership_tier = Column(String(50), default="free", nullable=True, index=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False, index=True)
    last_sign_in_at = Column(DateTime(timezone=True), nullable=True, index=True)


class UserRole(Base):
    __tablename__ = "user_roles"
    __table_args__ = (UniqueConstraint("user_id", "role", name="uq_user_roles_user_role"),)
    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid, ForeignKey("profiles.id"), nullable=False, index=True)
    role = Column(String(50), nullable=False)


class Property(Base):
    __tablename__ = "properties"
    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    title = Column(String(255), nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)


class Neighborhood(Base):
    __tablename__ = "neighborhoods"
    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    name = Column(String(255), nullable=False)


class Lesson(Base):
    __tablename__ = "lessons"
    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    title = Column(String(255), nullable=False)


class LessonProgress(Base):
    __tablename__ = "lesson_progress"
    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid, ForeignKey("profiles.id"), nullable=False, index=True)
    lesson_id = Column(Uuid, ForeignKey("lessons.id"), nullable=False, index=True)
    is_completed = Column(Boolean, default=False, nullable=False)


class CommunityPost(Base):
    __tablename__ = "community_posts"
    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid, ForeignKey("profiles.id"), nullable=False, index=True)
    content = Column(Text, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)


class AIUsage(Base):
    __tablename__ = "ai_usage"
    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid, ForeignKey("profiles.id"), nullable=True, index=True)
    feature = Column(String(100), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)


class MarketingCampaign(Base):
    __tablename__ = "marketing_campaigns"
    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    date = Column(Date, nullable=False, index=True)
    channel = Column(String(100), nullable=True)
    ad_spend = Column(BigInteger, nullable=True)  # minor currency units
    conversions = Column(Integer, nullable=True)


class AdminMetricsSnapshot(Base):
    """Append-only history of computed snapshots; rows are never updated."""
    __tablename__ = "admin_metrics_snapshots"
    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    snapshot_date = Column(Date, nullable=False, index=True)
    generated_at = Column(DateTime(timezone=True), nullable=False, index=True)
    mrr = Column(BigInteger, nullable=False)
    arr = Column(BigInteger, nullable=False)
    total_users = Column(Integer, nullable=False)
    total_subscribers = Column(Integer, nullable=False)
    total_revenue = Column(BigInteger, nullable=False)
    recent_revenue = Column(BigInteger, nullable=False)
    churn_count = Column(Integer, nullable=False)
    churn_rate = Column(Float, nullable=False)
    tier_mapping_version = Column(String(50), nullable=False)
    payload = Column(JSON, nullable=False)
