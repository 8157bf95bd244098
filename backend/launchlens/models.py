"""SQLAlchemy ORM models and enums.

This module defines the attribution and launch schema using UUID primary
keys. Every business table carries `account_id` and every query issued by
the services is scoped by it.

Timestamps are stored as naive UTC (see `launchlens.utils.clock`).
"""

import uuid
from datetime import datetime
import enum

from sqlalchemy import (
    Column, String, DateTime, Integer, ForeignKey, Numeric, JSON, Text, Boolean,
    UniqueConstraint, CheckConstraint, Index,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship, declarative_base

from .utils.clock import utcnow


# Single Base used by the entire application
Base = declarative_base()


# Enums ---------------------------------------------------------

class PlatformEnum(str, enum.Enum):
    """Course platforms that report purchases."""
    kajabi = "kajabi"
    teachable = "teachable"
    stripe = "stripe"
    skool = "skool"


class AttributionStatusEnum(str, enum.Enum):
    """Whether a purchase could be tied to a visitor."""
    matched = "matched"
    unmatched = "unmatched"
    pending = "pending"


class LaunchStatusEnum(str, enum.Enum):
    """Launch lifecycle.

    upcoming -> active -> completed follows the clock. archived is set by the
    owner and is terminal: nothing time-driven moves a launch out of it.
    """
    upcoming = "upcoming"
    active = "active"
    completed = "completed"
    archived = "archived"


class TrackingEventTypeEnum(str, enum.Enum):
    visit = "visit"
    pageview = "pageview"
    identify = "identify"


class SyncJobStatusEnum(str, enum.Enum):
    pending = "pending"
    running = "running"
    completed = "completed"
    failed = "failed"


# Core models ----------------------------------------------------

class Account(Base):
    """Account that owns visitors, purchases and launches.

    Authentication and billing live outside this service; the account row is
    the scoping anchor for every query.
    """
    __tablename__ = "accounts"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    name = Column(String, nullable=False)
    email = Column(String, nullable=True)
    created_at = Column(DateTime, default=utcnow)

    launches = relationship("Launch", back_populates="account")

    def __str__(self):
        return self.name


class Visitor(Base):
    """Identity anchor for a browsing entity.

    WHAT: One row per public visitor token per account
    WHY: Purchases are matched back to visitors by email or device fingerprint

    `first_touch` is written once at creation and never rewritten. `email` may
    be filled later by an identify event but is never overwritten once set.
    """
    __tablename__ = "visitors"
    __table_args__ = (
        UniqueConstraint("account_id", "visitor_token", name="uq_visitor_account_token"),
        Index("ix_visitors_account_email", "account_id", "email"),
        Index("ix_visitors_account_fingerprint", "account_id", "device_fingerprint"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    account_id = Column(UUID(as_uuid=True), ForeignKey("accounts.id"), nullable=False)

    # Client-generated id from the tracking snippet
    visitor_token = Column(String, nullable=False)
    email = Column(String, nullable=True)

    # {source, medium, campaign, content, term, referrer, landing_page, captured_at}
    first_touch = Column(JSON, nullable=True)
    device_fingerprint = Column(String, nullable=True)

    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    sessions = relationship(
        "VisitorSession",
        back_populates="visitor",
        cascade="all, delete-orphan",
        order_by="VisitorSession.timestamp",
    )

    def __str__(self):
        return f"Visitor {self.visitor_token}"


class VisitorSession(Base):
    """One browsing session (touchpoint) for a visitor. Immutable once written."""
    __tablename__ = "sessions"
    __table_args__ = (
        Index("ix_sessions_visitor_timestamp", "visitor_id", "timestamp"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    visitor_id = Column(UUID(as_uuid=True), ForeignKey("visitors.id", ondelete="CASCADE"), nullable=False)
    session_token = Column(String, nullable=False)

    source = Column(String, nullable=True)
    medium = Column(String, nullable=True)
    campaign = Column(String, nullable=True)
    content = Column(String, nullable=True)
    term = Column(String, nullable=True)
    referrer = Column(Text, nullable=True)
    landing_page = Column(Text, nullable=True)

    timestamp = Column(DateTime, default=utcnow, nullable=False)

    visitor = relationship("Visitor", back_populates="sessions")

    def __str__(self):
        return f"{self.source or 'direct'} at {self.timestamp}"


class TrackingEvent(Base):
    """Raw tracking log (visit, pageview, identify) kept as received."""
    __tablename__ = "tracking_events"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    account_id = Column(UUID(as_uuid=True), ForeignKey("accounts.id"), nullable=False)
    visitor_token = Column(String, nullable=False)
    session_token = Column(String, nullable=True)
    event_type = Column(String, nullable=False)
    event_data = Column(JSON, default=dict)
    timestamp = Column(DateTime, default=utcnow, nullable=False)


class TrackingScript(Base):
    """Public snippet id -> account mapping used by the ingestion endpoints."""
    __tablename__ = "tracking_scripts"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    account_id = Column(UUID(as_uuid=True), ForeignKey("accounts.id"), nullable=False, unique=True)
    script_id = Column(String, nullable=False, unique=True)
    created_at = Column(DateTime, default=utcnow)


class Purchase(Base):
    """A monetized event ingested from a course platform.

    WHAT: One row per platform purchase id per account (idempotent upsert)
    WHY: Attribution fields are denormalized copies so dashboards never join
         back to visitors/sessions

    Invariant: attribution_status == "matched" iff visitor_id is set.
    Refunds zero the amount; rows are never deleted by this service.
    """
    __tablename__ = "purchases"
    __table_args__ = (
        UniqueConstraint("account_id", "platform", "platform_purchase_id", name="uq_purchase_platform_id"),
        Index("ix_purchases_account_purchased_at", "account_id", "purchased_at"),
        Index("ix_purchases_launch_id", "launch_id"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    account_id = Column(UUID(as_uuid=True), ForeignKey("accounts.id"), nullable=False)
    visitor_id = Column(UUID(as_uuid=True), ForeignKey("visitors.id", ondelete="SET NULL"), nullable=True)
    launch_id = Column(UUID(as_uuid=True), ForeignKey("launches.id", ondelete="SET NULL"), nullable=True)

    email = Column(String, nullable=False)
    amount = Column(Numeric(10, 2), nullable=False)
    currency = Column(String(3), nullable=False, default="USD")
    course_name = Column(String, nullable=True)
    platform = Column(String, nullable=False)
    platform_purchase_id = Column(String, nullable=False)

    first_touch_source = Column(String, nullable=True)
    first_touch_medium = Column(String, nullable=True)
    first_touch_campaign = Column(String, nullable=True)
    last_touch_source = Column(String, nullable=True)
    last_touch_medium = Column(String, nullable=True)
    last_touch_campaign = Column(String, nullable=True)

    attribution_status = Column(String, nullable=False, default=AttributionStatusEnum.pending.value)

    purchased_at = Column(DateTime, nullable=False)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    visitor = relationship("Visitor")
    launch = relationship("Launch", back_populates="purchases")

    def __str__(self):
        return f"{self.platform}:{self.platform_purchase_id} ({self.amount} {self.currency})"


class Launch(Base):
    """Time-boxed marketing campaign owned by an account.

    Status is a pure function of (start_date, end_date, now) except for
    `archived`, which is an owner override the scheduler never reverts.
    The cached_* columns hold metrics for completed launches only.
    """
    __tablename__ = "launches"
    __table_args__ = (
        CheckConstraint("end_date > start_date", name="valid_date_range"),
        Index("ix_launches_account_status", "account_id", "status"),
        Index("ix_launches_account_dates", "account_id", "start_date", "end_date"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    account_id = Column(UUID(as_uuid=True), ForeignKey("accounts.id"), nullable=False)

    title = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    start_date = Column(DateTime, nullable=False)
    end_date = Column(DateTime, nullable=False)
    revenue_goal = Column(Numeric(10, 2), nullable=True)
    sales_goal = Column(Integer, nullable=True)
    status = Column(String, nullable=False, default=LaunchStatusEnum.upcoming.value)

    # Sharing
    share_enabled = Column(Boolean, default=False, nullable=False)
    share_token = Column(String, unique=True, nullable=True)
    share_password_hash = Column(String, nullable=True)
    share_expires_at = Column(DateTime, nullable=True)

    # Cached metrics (completed launches)
    cached_revenue = Column(Numeric(10, 2), default=0)
    cached_students = Column(Integer, default=0)
    cached_conversion_rate = Column(Numeric(10, 2), default=0)
    metrics_updated_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    account = relationship("Account", back_populates="launches")
    purchases = relationship("Purchase", back_populates="launch")
    views = relationship("LaunchView", back_populates="launch", cascade="all, delete-orphan")

    def __str__(self):
        return f"{self.title} ({self.status})"


class LaunchView(Base):
    """One view of a public launch recap page."""
    __tablename__ = "launch_views"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    launch_id = Column(UUID(as_uuid=True), ForeignKey("launches.id", ondelete="CASCADE"), nullable=False)
    share_token = Column(String, nullable=True)
    viewed_at = Column(DateTime, default=utcnow)
    referrer = Column(Text, nullable=True)
    user_agent = Column(Text, nullable=True)

    launch = relationship("Launch", back_populates="views")


class SyncJob(Base):
    """Long-running platform import tracked as a pollable record."""
    __tablename__ = "sync_jobs"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    account_id = Column(UUID(as_uuid=True), ForeignKey("accounts.id"), nullable=False)
    platform = Column(String, nullable=False)
    status = Column(String, nullable=False, default=SyncJobStatusEnum.pending.value)
    total_records = Column(Integer, default=0)
    processed_records = Column(Integer, default=0)
    error_message = Column(Text, nullable=True)
    started_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utcnow)

    def __str__(self):
        return f"{self.platform} sync ({self.status})"
