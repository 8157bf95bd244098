"""Public launch recap (no authentication).

The share token in the URL is the credential. Password-protected links take
the password in the `X-Share-Password` header so it never lands in access
logs. Each successful view is recorded.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Header, Request
from sqlalchemy.orm import Session

from ..database import get_db
from ..deps import get_clock
from ..schemas import PublicRecapOut
from ..services.exceptions import LaunchlensError
from ..services.launch_metrics_service import LaunchMetricsService
from ..utils.clock import Clock
from .errors import to_http_exception

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/public", tags=["Public"])


@router.get("/launch/{share_token}", response_model=PublicRecapOut)
def public_recap(
    share_token: str,
    request: Request,
    x_share_password: Optional[str] = Header(default=None),
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
):
    try:
        return LaunchMetricsService(db, clock=clock).public_recap(
            share_token,
            password=x_share_password,
            referrer=request.headers.get("referer"),
            user_agent=request.headers.get("user-agent"),
        )
    except LaunchlensError as e:
        raise to_http_exception(e)
