"""Purchase Ledger.

WHAT:
    Durable record of purchases with their denormalized attribution fields
    and launch linkage.

WHY:
    - Platform webhooks are delivered at-least-once. The write is an atomic
      `INSERT ... ON CONFLICT DO UPDATE` keyed on
      (account_id, platform, platform_purchase_id), never a read-then-write.
    - A redelivered webhook must not undo a refund, so the conflict branch
      leaves `amount` alone.
    - A redelivery that fails to match must not erase an earlier match, so
      attribution fields are only replaced when the new write carries a
      visitor.

The ledger does not commit on upsert; the attribution service commits once
after launch auto-assignment so both writes land in one transaction.

REFERENCES:
    - launchlens/services/attribution_service.py
    - launchlens/services/launch_service.py::assign_purchase
"""

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Optional
from uuid import UUID

from sqlalchemy import case, func
from sqlalchemy.orm import Session

from ..models import AttributionStatusEnum, Purchase
from ..utils.clock import Clock, utcnow
from ..utils.sql import dialect_insert
from .exceptions import NotFoundError
from .metrics_cache import MetricsCache

logger = logging.getLogger(__name__)

DEFAULT_CURRENCY = "USD"


@dataclass
class NormalizedPurchase:
    """Purchase as handed over by a platform integration after verification."""
    email: str
    amount: Decimal
    platform: str
    platform_purchase_id: str
    purchased_at: datetime
    currency: Optional[str] = None
    course_name: Optional[str] = None
    device_fingerprint: Optional[str] = None


@dataclass
class MatchCounts:
    total: int
    matched: int


def _touch_field(touch: Optional[Dict[str, Any]], key: str) -> Optional[str]:
    return touch.get(key) if touch else None


class PurchaseLedger:
    """Purchase persistence scoped by account."""

    def __init__(self, db: Session, clock: Clock = utcnow, cache: Optional[MetricsCache] = None):
        self.db = db
        self.clock = clock
        self.cache = cache

    def upsert(
        self,
        account_id: UUID,
        purchase: NormalizedPurchase,
        visitor_id: Optional[UUID] = None,
        first_touch: Optional[Dict[str, Any]] = None,
        last_touch: Optional[Dict[str, Any]] = None,
    ) -> Purchase:
        """Insert the purchase or update the existing row for the same platform id.

        Flushes but does not commit. Returns the persisted row.
        """
        now = self.clock()
        status = (
            AttributionStatusEnum.matched.value if visitor_id else AttributionStatusEnum.unmatched.value
        )
        values = {
            "visitor_id": visitor_id,
            "email": purchase.email,
            "currency": purchase.currency or DEFAULT_CURRENCY,
            "course_name": purchase.course_name,
            "purchased_at": purchase.purchased_at,
            "first_touch_source": _touch_field(first_touch, "source"),
            "first_touch_medium": _touch_field(first_touch, "medium"),
            "first_touch_campaign": _touch_field(first_touch, "campaign"),
            "last_touch_source": _touch_field(last_touch, "source"),
            "last_touch_medium": _touch_field(last_touch, "medium"),
            "last_touch_campaign": _touch_field(last_touch, "campaign"),
            "attribution_status": status,
            "updated_at": now,
        }

        table = Purchase.__table__
        stmt = dialect_insert(self.db, table).values(
            id=uuid.uuid4(),
            account_id=account_id,
            platform=purchase.platform,
            platform_purchase_id=purchase.platform_purchase_id,
            amount=purchase.amount,
            created_at=now,
            **values,
        )

        excluded = stmt.excluded
        matched_now = excluded.visitor_id.isnot(None)
        attribution_columns = (
            "visitor_id",
            "first_touch_source", "first_touch_medium", "first_touch_campaign",
            "last_touch_source", "last_touch_medium", "last_touch_campaign",
        )
        set_ = {
            "email": excluded.email,
            "currency": excluded.currency,
            "course_name": excluded.course_name,
            "purchased_at": excluded.purchased_at,
            "updated_at": excluded.updated_at,
            "attribution_status": case(
                (matched_now, AttributionStatusEnum.matched.value),
                (table.c.attribution_status == AttributionStatusEnum.matched.value,
                 AttributionStatusEnum.matched.value),
                else_=excluded.attribution_status,
            ),
        }
        for column in attribution_columns:
            set_[column] = case((matched_now, excluded[column]), else_=table.c[column])

        stmt = stmt.on_conflict_do_update(
            index_elements=["account_id", "platform", "platform_purchase_id"],
            set_=set_,
        )
        self.db.execute(stmt)

        row = (
            self.db.query(Purchase)
            .populate_existing()
            .filter(
                Purchase.account_id == account_id,
                Purchase.platform == purchase.platform,
                Purchase.platform_purchase_id == purchase.platform_purchase_id,
            )
            .one()
        )
        logger.debug(
            "[LEDGER] Upserted purchase %s:%s (status=%s)",
            purchase.platform, purchase.platform_purchase_id, row.attribution_status,
        )
        return row

    def get(self, account_id: UUID, purchase_id: UUID) -> Purchase:
        purchase = (
            self.db.query(Purchase)
            .filter(Purchase.id == purchase_id, Purchase.account_id == account_id)
            .first()
        )
        if not purchase:
            raise NotFoundError("Purchase not found")
        return purchase

    def apply_attribution(
        self,
        purchase: Purchase,
        visitor_id: UUID,
        first_touch: Optional[Dict[str, Any]],
        last_touch: Optional[Dict[str, Any]],
    ) -> Purchase:
        """Mark an existing purchase as matched to a visitor. Flushes, does not commit."""
        purchase.visitor_id = visitor_id
        purchase.first_touch_source = _touch_field(first_touch, "source")
        purchase.first_touch_medium = _touch_field(first_touch, "medium")
        purchase.first_touch_campaign = _touch_field(first_touch, "campaign")
        purchase.last_touch_source = _touch_field(last_touch, "source")
        purchase.last_touch_medium = _touch_field(last_touch, "medium")
        purchase.last_touch_campaign = _touch_field(last_touch, "campaign")
        purchase.attribution_status = AttributionStatusEnum.matched.value
        purchase.updated_at = self.clock()
        self.db.flush()
        return purchase

    def record_refund(self, account_id: UUID, platform: str, platform_purchase_id: str) -> Purchase:
        """Zero the amount of an existing purchase. Rows are never deleted."""
        purchase = (
            self.db.query(Purchase)
            .filter(
                Purchase.account_id == account_id,
                Purchase.platform == platform,
                Purchase.platform_purchase_id == platform_purchase_id,
            )
            .first()
        )
        if not purchase:
            raise NotFoundError("Purchase not found")

        purchase.amount = Decimal("0")
        purchase.updated_at = self.clock()
        self.db.commit()
        self.db.refresh(purchase)

        if self.cache is not None:
            self.cache.invalidate_account(account_id)

        logger.info("[LEDGER] Refund recorded for %s:%s", platform, platform_purchase_id)
        return purchase

    def match_counts(self, account_id: UUID) -> MatchCounts:
        total, matched = (
            self.db.query(
                func.count(Purchase.id),
                func.coalesce(func.sum(case(
                    (Purchase.attribution_status == AttributionStatusEnum.matched.value, 1),
                    else_=0,
                )), 0),
            )
            .filter(Purchase.account_id == account_id)
            .one()
        )
        return MatchCounts(total=int(total or 0), matched=int(matched or 0))
