"""Launch endpoints.

WHAT:
    CRUD, archive, duplicate and sharing for launches, plus per-launch
    analytics (metrics, live stats, attribution, daily revenue, comparison,
    view count).

WHY:
    Thin HTTP layer: all rules live in LaunchService / LaunchMetricsService.

REFERENCES:
    - launchlens/services/launch_service.py
    - launchlens/services/launch_metrics_service.py
"""

import logging
from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from ..database import get_db
from ..deps import Settings, get_clock, get_current_account, get_metrics_cache, get_settings
from ..models import Account
from ..schemas import (
    CompareRequest,
    DailyRevenueOut,
    LaunchComparisonOut,
    LaunchCreate,
    LaunchListResponse,
    LaunchMetricsOut,
    LaunchOut,
    LaunchSourceOut,
    LaunchUpdate,
    LaunchWithStatsOut,
    Pagination,
    ShareEnableRequest,
    ShareResponse,
    SuccessResponse,
    ViewCountResponse,
)
from ..services.exceptions import LaunchlensError
from ..services.launch_metrics_service import LaunchMetricsService
from ..services.launch_service import LaunchService, LaunchWithStats
from ..services.metrics_cache import MetricsCache
from ..utils.clock import Clock
from .errors import to_http_exception

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/launches", tags=["Launches"])


# =============================================================================
# DEPENDENCIES
# =============================================================================

def get_launch_service(
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
    cache: MetricsCache = Depends(get_metrics_cache),
    settings: Settings = Depends(get_settings),
) -> LaunchService:
    return LaunchService(db, clock=clock, cache=cache, app_url=settings.APP_URL)


def get_launch_metrics_service(
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
) -> LaunchMetricsService:
    return LaunchMetricsService(db, clock=clock)


def _with_stats(item: LaunchWithStats) -> LaunchWithStatsOut:
    base = LaunchOut.model_validate(item.launch).model_dump()
    return LaunchWithStatsOut(
        **base,
        purchase_count=item.purchase_count,
        current_revenue=float(item.current_revenue),
    )


# =============================================================================
# CRUD
# =============================================================================

@router.post("", response_model=LaunchOut, status_code=status.HTTP_201_CREATED)
def create_launch(
    payload: LaunchCreate,
    account: Account = Depends(get_current_account),
    service: LaunchService = Depends(get_launch_service),
):
    """Create a launch; existing unassigned purchases inside its range are linked to it."""
    try:
        return service.create(account.id, payload.model_dump())
    except LaunchlensError as e:
        raise to_http_exception(e)


@router.get("", response_model=LaunchListResponse)
def list_launches(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    status_filter: Optional[str] = Query("all", alias="status"),
    sort_by: str = Query("start", pattern="^(start|end|created|start_date|end_date|created_at)$"),
    sort_order: str = Query("desc", pattern="^(asc|desc)$"),
    account: Account = Depends(get_current_account),
    service: LaunchService = Depends(get_launch_service),
):
    result = service.list(
        account.id,
        page=page,
        limit=limit,
        status=status_filter,
        sort_by=sort_by,
        sort_order=sort_order,
    )
    return LaunchListResponse(
        launches=[_with_stats(item) for item in result.launches],
        pagination=Pagination(page=result.page, limit=result.limit, total=result.total, pages=result.pages),
    )


@router.post("/compare", response_model=List[LaunchComparisonOut])
def compare_launches(
    payload: CompareRequest,
    account: Account = Depends(get_current_account),
    service: LaunchMetricsService = Depends(get_launch_metrics_service),
):
    try:
        return service.compare_launches(account.id, payload.launch_ids)
    except LaunchlensError as e:
        raise to_http_exception(e)


@router.get("/{launch_id}", response_model=LaunchWithStatsOut)
def get_launch(
    launch_id: UUID,
    account: Account = Depends(get_current_account),
    service: LaunchService = Depends(get_launch_service),
):
    try:
        return _with_stats(service.get(account.id, launch_id))
    except LaunchlensError as e:
        raise to_http_exception(e)


@router.patch("/{launch_id}", response_model=LaunchOut)
def update_launch(
    launch_id: UUID,
    payload: LaunchUpdate,
    account: Account = Depends(get_current_account),
    service: LaunchService = Depends(get_launch_service),
):
    """Partial update; changing dates recomputes which purchases belong to the launch."""
    try:
        return service.update(account.id, launch_id, payload.model_dump(exclude_unset=True))
    except LaunchlensError as e:
        raise to_http_exception(e)


@router.delete("/{launch_id}", response_model=SuccessResponse)
def delete_launch(
    launch_id: UUID,
    account: Account = Depends(get_current_account),
    service: LaunchService = Depends(get_launch_service),
):
    try:
        service.delete(account.id, launch_id)
    except LaunchlensError as e:
        raise to_http_exception(e)
    return SuccessResponse()


@router.post("/{launch_id}/archive", response_model=LaunchOut)
def archive_launch(
    launch_id: UUID,
    account: Account = Depends(get_current_account),
    service: LaunchService = Depends(get_launch_service),
):
    try:
        return service.archive(account.id, launch_id)
    except LaunchlensError as e:
        raise to_http_exception(e)


@router.post("/{launch_id}/duplicate", response_model=LaunchOut, status_code=status.HTTP_201_CREATED)
def duplicate_launch(
    launch_id: UUID,
    account: Account = Depends(get_current_account),
    service: LaunchService = Depends(get_launch_service),
):
    try:
        return service.duplicate(account.id, launch_id)
    except LaunchlensError as e:
        raise to_http_exception(e)


# =============================================================================
# SHARING
# =============================================================================

@router.post("/{launch_id}/share", response_model=ShareResponse)
def enable_share(
    launch_id: UUID,
    payload: Optional[ShareEnableRequest] = None,
    account: Account = Depends(get_current_account),
    service: LaunchService = Depends(get_launch_service),
):
    payload = payload or ShareEnableRequest()
    try:
        link = service.enable_share(
            account.id, launch_id, password=payload.password, expires_at=payload.expires_at,
        )
    except LaunchlensError as e:
        raise to_http_exception(e)
    return ShareResponse(share_token=link.share_token, share_url=link.share_url, launch=link.launch)


@router.delete("/{launch_id}/share", response_model=LaunchOut)
def disable_share(
    launch_id: UUID,
    account: Account = Depends(get_current_account),
    service: LaunchService = Depends(get_launch_service),
):
    try:
        return service.disable_share(account.id, launch_id)
    except LaunchlensError as e:
        raise to_http_exception(e)


@router.get("/{launch_id}/views", response_model=ViewCountResponse)
def view_count(
    launch_id: UUID,
    account: Account = Depends(get_current_account),
    service: LaunchService = Depends(get_launch_service),
):
    try:
        return ViewCountResponse(view_count=service.view_count(account.id, launch_id))
    except LaunchlensError as e:
        raise to_http_exception(e)


# =============================================================================
# ANALYTICS
# =============================================================================

@router.get("/{launch_id}/metrics", response_model=LaunchMetricsOut)
def launch_metrics(
    launch_id: UUID,
    account: Account = Depends(get_current_account),
    service: LaunchMetricsService = Depends(get_launch_metrics_service),
):
    try:
        return service.launch_metrics(account.id, launch_id)
    except LaunchlensError as e:
        raise to_http_exception(e)


@router.get("/{launch_id}/live", response_model=LaunchMetricsOut)
def live_stats(
    launch_id: UUID,
    account: Account = Depends(get_current_account),
    service: LaunchMetricsService = Depends(get_launch_metrics_service),
):
    try:
        return service.live_stats(account.id, launch_id)
    except LaunchlensError as e:
        raise to_http_exception(e)


@router.get("/{launch_id}/attribution", response_model=List[LaunchSourceOut])
def launch_attribution(
    launch_id: UUID,
    account: Account = Depends(get_current_account),
    service: LaunchMetricsService = Depends(get_launch_metrics_service),
):
    try:
        return service.attribution_by_source(account.id, launch_id)
    except LaunchlensError as e:
        raise to_http_exception(e)


@router.get("/{launch_id}/daily-revenue", response_model=List[DailyRevenueOut])
def daily_revenue(
    launch_id: UUID,
    account: Account = Depends(get_current_account),
    service: LaunchMetricsService = Depends(get_launch_metrics_service),
):
    try:
        return service.daily_revenue(account.id, launch_id)
    except LaunchlensError as e:
        raise to_http_exception(e)
