"""Tracking snippet ingestion endpoints.

WHAT:
    Receives visit/pageview and identify events from the browser snippet.

WHY:
    The snippet runs on course landing pages, so these endpoints are public
    and keyed by the account's script id rather than a session token.

REFERENCES:
    - launchlens/services/tracking_service.py
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from ..database import get_db
from ..deps import get_clock, get_current_account
from ..models import Account
from ..schemas import IdentifyRequest, SuccessResponse, TrackEventRequest, TrackingScriptOut
from ..services.tracking_service import TouchData, TrackingEventInput, TrackingService
from ..utils.clock import Clock

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1", tags=["Tracking"])


def get_tracking_service(
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
) -> TrackingService:
    return TrackingService(db, clock=clock)


def _resolve_account(service: TrackingService, script_id: str):
    account_id = service.account_for_script(script_id)
    if account_id is None:
        logger.info("[TRACKING] Unknown script id %s", script_id)
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Invalid script ID")
    return account_id


@router.post("/track", response_model=SuccessResponse)
def track_event(
    payload: TrackEventRequest,
    service: TrackingService = Depends(get_tracking_service),
):
    account_id = _resolve_account(service, payload.script_id)
    service.record_event(account_id, TrackingEventInput(
        visitor_token=payload.visitor_id,
        session_token=payload.session_id,
        event_type=payload.event_type,
        touch=TouchData(
            source=payload.source,
            medium=payload.medium,
            campaign=payload.campaign,
            content=payload.content,
            term=payload.term,
            referrer=payload.referrer,
            landing_page=payload.landing_page,
            device_fingerprint=payload.device_fingerprint,
        ),
    ))
    return SuccessResponse()


@router.post("/identify", response_model=SuccessResponse)
def identify(
    payload: IdentifyRequest,
    service: TrackingService = Depends(get_tracking_service),
):
    account_id = _resolve_account(service, payload.script_id)
    service.identify(account_id, payload.visitor_id, payload.email)
    return SuccessResponse()


@router.get("/script", response_model=TrackingScriptOut)
def tracking_script(
    account: Account = Depends(get_current_account),
    service: TrackingService = Depends(get_tracking_service),
):
    """Script id to embed in the account's snippet (created on first request)."""
    return TrackingScriptOut(script_id=service.get_or_create_script_id(account.id))
