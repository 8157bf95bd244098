"""Attribution Resolver.

WHAT:
    Ties an incoming platform purchase back to the visitor that originated
    it and records first-touch / last-touch attribution on the purchase.

HOW (first success wins):
    1. Visitor lookup by purchase email
    2. If no email match and the purchase carries a device fingerprint,
       visitor lookup by fingerprint within 24 hours
    3. Otherwise the purchase is recorded as `unmatched`

    On a match, first touch is the visitor's immutable snapshot and last
    touch is the newest session (or the first touch when the visitor has no
    sessions). The purchase row is then upserted and auto-assigned to the
    launch whose date range contains it, in the SAME transaction: a crash
    between the two can never leave a committed purchase without its launch.

WHY:
    - Failing to find a visitor is an outcome, not an error
    - The email match is authoritative; the fingerprint lookup is never
      attempted once the email lookup succeeded

REFERENCES:
    - launchlens/services/identity_store.py
    - launchlens/services/purchase_ledger.py
    - launchlens/services/launch_service.py::assign_purchase
"""

import logging
from dataclasses import dataclass, replace
from typing import Any, Dict, Optional, Tuple
from uuid import UUID

from sqlalchemy.orm import Session

from ..models import AttributionStatusEnum, Purchase, Visitor
from ..utils.clock import Clock, to_naive_utc, utcnow
from ..utils.numbers import round_half_up, safe_ratio
from .identity_store import IdentityStore
from .launch_service import LaunchService
from .metrics_cache import MetricsCache
from .purchase_ledger import NormalizedPurchase, PurchaseLedger

logger = logging.getLogger(__name__)

FINGERPRINT_WINDOW_HOURS = 24
STILL_UNMATCHED = "still_unmatched"
EXISTING_MATCH = "existing"


@dataclass
class AttributionResult:
    purchase_id: UUID
    status: str
    visitor_id: Optional[UUID] = None
    launch_id: Optional[UUID] = None
    match_method: Optional[str] = None
    first_touch: Optional[Dict[str, Any]] = None
    last_touch: Optional[Dict[str, Any]] = None


@dataclass
class ReattributionResult:
    purchase_id: UUID
    status: str
    visitor_id: Optional[UUID] = None
    first_touch: Optional[Dict[str, Any]] = None
    last_touch: Optional[Dict[str, Any]] = None


class AttributionService:
    """Resolve purchases to visitors and persist attribution.

    Usage:
        service = AttributionService(db, cache=cache)
        result = service.attribute(account_id, NormalizedPurchase(
            email="buyer@example.com",
            amount=Decimal("197.00"),
            platform="kajabi",
            platform_purchase_id="ord_123",
            purchased_at=datetime(2025, 3, 1, 12, 0),
        ))
        result.status  # "matched" | "unmatched"
    """

    def __init__(self, db: Session, clock: Clock = utcnow, cache: Optional[MetricsCache] = None):
        self.db = db
        self.clock = clock
        self.cache = cache
        self.identity = IdentityStore(db, clock)
        self.ledger = PurchaseLedger(db, clock, cache)
        self.launches = LaunchService(db, clock, cache)

    # ------------------------------------------------------------------
    # Touches
    # ------------------------------------------------------------------

    def _touches(self, visitor: Visitor) -> Tuple[Optional[Dict[str, Any]], Optional[Dict[str, Any]]]:
        """(first_touch, last_touch) for a matched visitor. last_touch is never None."""
        first_touch = dict(visitor.first_touch or {})
        session = self.identity.last_session(visitor.id)
        if session is None:
            return first_touch, dict(first_touch)
        last_touch = {
            "source": session.source,
            "medium": session.medium,
            "campaign": session.campaign,
            "content": session.content,
            "term": session.term,
            "referrer": session.referrer,
            "landing_page": session.landing_page,
            "timestamp": session.timestamp.isoformat() if session.timestamp else None,
        }
        return first_touch, last_touch

    @staticmethod
    def _stored_touches(row: Purchase) -> Tuple[Dict[str, Any], Dict[str, Any]]:
        """Touches already recorded on a matched purchase row."""
        first_touch = {
            "source": row.first_touch_source,
            "medium": row.first_touch_medium,
            "campaign": row.first_touch_campaign,
        }
        last_touch = {
            "source": row.last_touch_source,
            "medium": row.last_touch_medium,
            "campaign": row.last_touch_campaign,
        }
        return first_touch, last_touch

    def _invalidate(self, account_id: UUID) -> None:
        if self.cache is not None:
            self.cache.invalidate_account(account_id)

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def attribute(self, account_id: UUID, purchase: NormalizedPurchase) -> AttributionResult:
        """Match, record and launch-assign one purchase (single transaction)."""
        purchase = replace(purchase, purchased_at=to_naive_utc(purchase.purchased_at))

        match_method = None
        visitor = self.identity.find_by_email(account_id, purchase.email)
        if visitor is not None:
            match_method = "email"
        elif purchase.device_fingerprint:
            visitor = self.identity.find_by_fingerprint(
                account_id, purchase.device_fingerprint, FINGERPRINT_WINDOW_HOURS
            )
            if visitor is not None:
                match_method = "fingerprint"

        first_touch = last_touch = None
        if visitor is not None:
            first_touch, last_touch = self._touches(visitor)

        try:
            row = self.ledger.upsert(
                account_id,
                purchase,
                visitor_id=visitor.id if visitor else None,
                first_touch=first_touch,
                last_touch=last_touch,
            )
            launch_id = self.launches.assign_purchase(account_id, row)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        self._invalidate(account_id)

        if visitor is None and row.attribution_status == AttributionStatusEnum.matched.value:
            # Redelivery that found nobody; the ledger kept the earlier match
            match_method = EXISTING_MATCH
            first_touch, last_touch = self._stored_touches(row)
            logger.info(
                "[ATTRIBUTION] Redelivered purchase %s:%s keeps its earlier match",
                purchase.platform, purchase.platform_purchase_id,
            )
        elif visitor is None:
            logger.info(
                "[ATTRIBUTION] Unmatched purchase %s:%s",
                purchase.platform, purchase.platform_purchase_id,
            )
        else:
            logger.info(
                "[ATTRIBUTION] Matched purchase %s:%s via %s (source=%s)",
                purchase.platform, purchase.platform_purchase_id, match_method,
                first_touch.get("source") if first_touch else None,
            )

        return AttributionResult(
            purchase_id=row.id,
            status=row.attribution_status,
            visitor_id=row.visitor_id,
            launch_id=launch_id or row.launch_id,
            match_method=match_method,
            first_touch=first_touch,
            last_touch=last_touch,
        )

    def reattribute(self, account_id: UUID, purchase_id: UUID) -> ReattributionResult:
        """Retry the email lookup (only) for a stored purchase.

        Already-matched purchases are returned unchanged.

        Raises:
            NotFoundError: purchase absent or owned by another account
        """
        purchase = self.ledger.get(account_id, purchase_id)

        if purchase.attribution_status == AttributionStatusEnum.matched.value:
            return ReattributionResult(
                purchase_id=purchase.id,
                status=AttributionStatusEnum.matched.value,
                visitor_id=purchase.visitor_id,
            )

        visitor = self.identity.find_by_email(account_id, purchase.email)
        if visitor is None:
            logger.debug("[ATTRIBUTION] Purchase %s still unmatched", purchase_id)
            return ReattributionResult(purchase_id=purchase.id, status=STILL_UNMATCHED)

        first_touch, last_touch = self._touches(visitor)
        self.ledger.apply_attribution(purchase, visitor.id, first_touch, last_touch)
        self.db.commit()
        self._invalidate(account_id)

        logger.info("[ATTRIBUTION] Reattributed purchase %s to visitor %s", purchase_id, visitor.id)
        return ReattributionResult(
            purchase_id=purchase.id,
            status=AttributionStatusEnum.matched.value,
            visitor_id=visitor.id,
            first_touch=first_touch,
            last_touch=last_touch,
        )

    def match_rate(self, account_id: UUID) -> int:
        """round(matched / total * 100), 0 when the account has no purchases."""
        counts = self.ledger.match_counts(account_id)
        if counts.total == 0:
            return 0
        return int(round_half_up(safe_ratio(counts.matched, counts.total) * 100))
