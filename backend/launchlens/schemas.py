"""Pydantic schemas for request/response payloads."""

from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel, Field, field_validator

from .models import LaunchStatusEnum, PlatformEnum


# =============================================================================
# LAUNCHES
# =============================================================================

class LaunchCreate(BaseModel):
    """Payload for creating a launch."""

    title: str = Field(min_length=1, max_length=255, description="Launch title")
    description: Optional[str] = None
    start_date: datetime
    end_date: datetime
    revenue_goal: Optional[Decimal] = Field(default=None, ge=0)
    sales_goal: Optional[int] = Field(default=None, ge=0)

    model_config = {
        "json_schema_extra": {
            "example": {
                "title": "Spring cohort",
                "start_date": "2025-03-01T00:00:00Z",
                "end_date": "2025-03-08T00:00:00Z",
                "revenue_goal": 25000,
                "sales_goal": 100,
            }
        }
    }


class LaunchUpdate(BaseModel):
    """Partial update. Only fields that are present in the body are applied."""

    title: Optional[str] = Field(default=None, min_length=1, max_length=255)
    description: Optional[str] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    revenue_goal: Optional[Decimal] = Field(default=None, ge=0)
    sales_goal: Optional[int] = Field(default=None, ge=0)


class LaunchOut(BaseModel):
    id: UUID
    title: str
    description: Optional[str] = None
    start_date: datetime
    end_date: datetime
    revenue_goal: Optional[Decimal] = None
    sales_goal: Optional[int] = None
    status: LaunchStatusEnum
    share_enabled: bool = False
    share_token: Optional[str] = None
    share_expires_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class LaunchWithStatsOut(LaunchOut):
    purchase_count: int = 0
    current_revenue: float = 0.0


class Pagination(BaseModel):
    page: int
    limit: int
    total: int
    pages: int


class LaunchListResponse(BaseModel):
    launches: List[LaunchWithStatsOut]
    pagination: Pagination


class ShareEnableRequest(BaseModel):
    password: Optional[str] = Field(default=None, min_length=1)
    expires_at: Optional[datetime] = None


class ShareResponse(BaseModel):
    share_token: str
    share_url: str
    launch: LaunchOut


class CompareRequest(BaseModel):
    launch_ids: List[UUID] = Field(min_length=1, max_length=3)


class ViewCountResponse(BaseModel):
    view_count: int


# =============================================================================
# LAUNCH METRICS
# =============================================================================

class GoalProgress(BaseModel):
    revenue_percentage: Optional[float] = None
    sales_percentage: Optional[float] = None


class LaunchMetricsOut(BaseModel):
    revenue: float
    students: int
    purchases: int
    conversion_rate: float
    avg_order_value: float
    revenue_per_day: float
    goal_progress: GoalProgress
    cached: bool


class LaunchSourceOut(BaseModel):
    source: str
    revenue: float
    students: int
    purchases: int
    percentage: float


class DailyRevenueOut(BaseModel):
    date: str
    revenue: float
    purchases: int


class LaunchComparisonOut(BaseModel):
    launch_id: UUID
    title: str
    revenue: float
    students: int
    conversion_rate: float
    avg_order_value: float
    top_source: str
    revenue_per_day: float
    duration: int


# =============================================================================
# DASHBOARD ANALYTICS
# =============================================================================

class Trends(BaseModel):
    revenue: float
    students: float
    avg_order_value: float


class SummaryOut(BaseModel):
    total_revenue: float
    total_students: int
    total_purchases: int
    avg_order_value: float
    trends: Trends


class SourceRevenueOut(BaseModel):
    source: str
    visitors: int
    revenue: float
    students: int
    conversion_rate: str = Field(description="2-decimal percentage string, e.g. '18.18'")
    avg_order_value: str
    revenue_per_visitor: str


class RecentPurchaseOut(BaseModel):
    id: UUID
    amount: float
    currency: Optional[str] = None
    course_name: Optional[str] = None
    source: str
    email: str
    purchased_at: datetime


class DrillDownOut(BaseModel):
    campaign: str
    medium: str
    revenue: float
    students: int
    avg_order_value: str


class MatchRateOut(BaseModel):
    match_rate: int


# =============================================================================
# PUBLIC RECAP
# =============================================================================

class PublicLaunchInfo(BaseModel):
    title: str
    description: Optional[str] = None
    start_date: datetime
    end_date: datetime


class PublicMetrics(BaseModel):
    revenue: float
    students: int
    purchases: int
    conversion_rate: float
    avg_order_value: float


class PublicSource(BaseModel):
    source: str
    revenue: float
    students: int


class PublicDailyRevenue(BaseModel):
    date: str
    revenue: float


class PublicRecapOut(BaseModel):
    launch: PublicLaunchInfo
    metrics: PublicMetrics
    top_sources: List[PublicSource]
    daily_revenue: List[PublicDailyRevenue]


# =============================================================================
# TRACKING INGESTION
# =============================================================================

class TrackEventRequest(BaseModel):
    """Event sent by the browser snippet."""

    script_id: str
    visitor_id: str = Field(min_length=1, description="Client-generated visitor token")
    session_id: str = Field(min_length=1, description="Client-generated session token")
    event_type: str = Field(pattern="^(visit|pageview)$")
    source: Optional[str] = None
    medium: Optional[str] = None
    campaign: Optional[str] = None
    content: Optional[str] = None
    term: Optional[str] = None
    referrer: Optional[str] = None
    landing_page: Optional[str] = None
    device_fingerprint: Optional[str] = None


class IdentifyRequest(BaseModel):
    script_id: str
    visitor_id: str = Field(min_length=1)
    email: str = Field(min_length=3)

    @field_validator("email")
    @classmethod
    def normalize_email(cls, v: str) -> str:
        return v.strip().lower()


class SuccessResponse(BaseModel):
    success: bool = True


class TrackingScriptOut(BaseModel):
    script_id: str


# =============================================================================
# PURCHASES (platform integrations)
# =============================================================================

class PurchaseIn(BaseModel):
    """Normalized purchase handed over by a verified platform integration."""

    email: str = Field(min_length=3)
    amount: Decimal = Field(ge=0)
    currency: Optional[str] = Field(default=None, min_length=3, max_length=3)
    course_name: Optional[str] = None
    platform: PlatformEnum
    platform_purchase_id: str = Field(min_length=1)
    purchased_at: datetime
    device_fingerprint: Optional[str] = None

    @field_validator("email")
    @classmethod
    def normalize_email(cls, v: str) -> str:
        return v.strip().lower()


class RefundIn(BaseModel):
    platform: PlatformEnum
    platform_purchase_id: str = Field(min_length=1)


class AttributionOut(BaseModel):
    purchase_id: UUID
    status: str
    visitor_id: Optional[UUID] = None
    launch_id: Optional[UUID] = None
    match_method: Optional[str] = None
    first_touch: Optional[Dict] = None
    last_touch: Optional[Dict] = None


class ReattributionOut(BaseModel):
    purchase_id: UUID
    status: str
    visitor_id: Optional[UUID] = None
    first_touch: Optional[Dict] = None
    last_touch: Optional[Dict] = None


class PurchaseOut(BaseModel):
    id: UUID
    email: str
    amount: Decimal
    currency: str
    course_name: Optional[str] = None
    platform: str
    platform_purchase_id: str
    attribution_status: str
    launch_id: Optional[UUID] = None
    purchased_at: datetime

    model_config = {"from_attributes": True}


# =============================================================================
# SYNC JOBS
# =============================================================================

class SyncJobOut(BaseModel):
    id: UUID
    platform: str
    status: str
    total_records: Optional[int] = 0
    processed_records: Optional[int] = 0
    error_message: Optional[str] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


# =============================================================================
# MISC
# =============================================================================

class HealthResponse(BaseModel):
    status: str = "ok"
