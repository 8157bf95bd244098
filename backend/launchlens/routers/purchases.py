"""Inbound purchase endpoints for platform integrations.

WHAT:
    Attribute a normalized purchase, record a refund, or retry attribution
    for a stored purchase.

WHY:
    Integrations verify webhook signatures / OAuth on their side and then
    hand over a normalized purchase under the account's token. Redelivered
    webhooks are safe: the ledger upserts on (platform, platform_purchase_id).

REFERENCES:
    - launchlens/services/attribution_service.py
    - launchlens/services/purchase_ledger.py
"""

import logging
from uuid import UUID

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from ..database import get_db
from ..deps import get_clock, get_current_account, get_metrics_cache
from ..models import Account
from ..schemas import AttributionOut, PurchaseIn, PurchaseOut, ReattributionOut, RefundIn
from ..services.attribution_service import AttributionService
from ..services.exceptions import LaunchlensError
from ..services.metrics_cache import MetricsCache
from ..services.purchase_ledger import NormalizedPurchase, PurchaseLedger
from ..utils.clock import Clock
from .errors import to_http_exception

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/purchases", tags=["Purchases"])


def get_attribution_service(
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
    cache: MetricsCache = Depends(get_metrics_cache),
) -> AttributionService:
    return AttributionService(db, clock=clock, cache=cache)


@router.post("", response_model=AttributionOut, status_code=status.HTTP_201_CREATED)
def attribute_purchase(
    payload: PurchaseIn,
    account: Account = Depends(get_current_account),
    service: AttributionService = Depends(get_attribution_service),
):
    result = service.attribute(account.id, NormalizedPurchase(
        email=payload.email,
        amount=payload.amount,
        currency=payload.currency,
        course_name=payload.course_name,
        platform=payload.platform.value,
        platform_purchase_id=payload.platform_purchase_id,
        purchased_at=payload.purchased_at,
        device_fingerprint=payload.device_fingerprint,
    ))
    return AttributionOut(**result.__dict__)


@router.post("/refund", response_model=PurchaseOut)
def refund_purchase(
    payload: RefundIn,
    account: Account = Depends(get_current_account),
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
    cache: MetricsCache = Depends(get_metrics_cache),
):
    try:
        return PurchaseLedger(db, clock, cache).record_refund(
            account.id, payload.platform.value, payload.platform_purchase_id,
        )
    except LaunchlensError as e:
        raise to_http_exception(e)


@router.post("/{purchase_id}/reattribute", response_model=ReattributionOut)
def reattribute_purchase(
    purchase_id: UUID,
    account: Account = Depends(get_current_account),
    service: AttributionService = Depends(get_attribution_service),
):
    try:
        result = service.reattribute(account.id, purchase_id)
    except LaunchlensError as e:
        raise to_http_exception(e)
    return ReattributionOut(**result.__dict__)
