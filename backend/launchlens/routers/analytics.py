"""Dashboard analytics endpoints.

WHAT:
    Summary with trends, revenue by source, recent purchases, drill-down,
    CSV export and attribution match rate for the current account.

WHY:
    Ranges are half-open [start, end). When omitted, the last 30 days up to
    now are used.

REFERENCES:
    - launchlens/services/metrics_service.py
"""

import logging
from datetime import datetime, timedelta
from typing import List, Optional, Tuple

from fastapi import APIRouter, Depends, Query
from fastapi.responses import PlainTextResponse
from sqlalchemy.orm import Session

from ..database import get_db
from ..deps import get_clock, get_current_account, get_metrics_cache
from ..models import Account
from ..schemas import DrillDownOut, MatchRateOut, RecentPurchaseOut, SourceRevenueOut, SummaryOut
from ..services.attribution_service import AttributionService
from ..services.exceptions import LaunchlensError
from ..services.metrics_cache import MetricsCache
from ..services.metrics_service import DEFAULT_RECENT_LIMIT, MetricsService
from ..utils.clock import Clock
from .errors import to_http_exception

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/analytics", tags=["Analytics"])

DEFAULT_RANGE_DAYS = 30


def get_metrics_service(
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
    cache: MetricsCache = Depends(get_metrics_cache),
) -> MetricsService:
    return MetricsService(db, clock=clock, cache=cache)


def _range(start: Optional[datetime], end: Optional[datetime], clock: Clock) -> Tuple[datetime, datetime]:
    end = end or clock()
    start = start or end - timedelta(days=DEFAULT_RANGE_DAYS)
    return start, end


@router.get("/summary", response_model=SummaryOut)
def summary(
    start: Optional[datetime] = Query(None, description="Range start (inclusive)"),
    end: Optional[datetime] = Query(None, description="Range end (exclusive)"),
    source: Optional[str] = Query(None, description="First-touch source filter; 'all' for none"),
    account: Account = Depends(get_current_account),
    clock: Clock = Depends(get_clock),
    service: MetricsService = Depends(get_metrics_service),
):
    start, end = _range(start, end, clock)
    try:
        return service.summary(account.id, start, end, source=source)
    except LaunchlensError as e:
        raise to_http_exception(e)


@router.get("/revenue-by-source", response_model=List[SourceRevenueOut])
def revenue_by_source(
    start: Optional[datetime] = Query(None),
    end: Optional[datetime] = Query(None),
    account: Account = Depends(get_current_account),
    clock: Clock = Depends(get_clock),
    service: MetricsService = Depends(get_metrics_service),
):
    start, end = _range(start, end, clock)
    try:
        return service.revenue_by_source(account.id, start, end)
    except LaunchlensError as e:
        raise to_http_exception(e)


@router.get("/recent-purchases", response_model=List[RecentPurchaseOut])
def recent_purchases(
    limit: int = Query(DEFAULT_RECENT_LIMIT, ge=1, le=100),
    account: Account = Depends(get_current_account),
    service: MetricsService = Depends(get_metrics_service),
):
    return service.recent_purchases(account.id, limit=limit)


@router.get("/drill-down/{source}", response_model=List[DrillDownOut])
def drill_down(
    source: str,
    start: Optional[datetime] = Query(None),
    end: Optional[datetime] = Query(None),
    account: Account = Depends(get_current_account),
    clock: Clock = Depends(get_clock),
    service: MetricsService = Depends(get_metrics_service),
):
    start, end = _range(start, end, clock)
    try:
        return service.drill_down(account.id, source, start, end)
    except LaunchlensError as e:
        raise to_http_exception(e)


@router.get("/export", response_class=PlainTextResponse)
def export_csv(
    start: Optional[datetime] = Query(None),
    end: Optional[datetime] = Query(None),
    account: Account = Depends(get_current_account),
    clock: Clock = Depends(get_clock),
    service: MetricsService = Depends(get_metrics_service),
):
    start, end = _range(start, end, clock)
    try:
        content = service.export_csv(account.id, start, end)
    except LaunchlensError as e:
        raise to_http_exception(e)
    return PlainTextResponse(
        content,
        media_type="text/csv",
        headers={"Content-Disposition": "attachment; filename=revenue-by-source.csv"},
    )


@router.get("/match-rate", response_model=MatchRateOut)
def match_rate(
    account: Account = Depends(get_current_account),
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
):
    return MatchRateOut(match_rate=AttributionService(db, clock=clock).match_rate(account.id))
