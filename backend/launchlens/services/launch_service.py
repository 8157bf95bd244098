"""Launch Lifecycle Manager.

WHAT:
    CRUD over time-boxed launch campaigns, the launch status state machine,
    date-range purchase assignment, and public share links.

WHY:
    - Status is a pure function of (start, end, now) so it is re-derived on
      every direct read; `archived` is an owner override that nothing
      time-driven ever reverts.
    - Purchases are assigned to launches by date range. A date change
      triggers a full recomputation (detach everything, re-link by range)
      rather than an incremental diff: simpler and self-correcting.
    - Deleting a launch detaches its purchases; purchases are never deleted.

STATE MACHINE:
    upcoming --(now >= start)--> active --(now > end)--> completed
    any --(archive)--> archived (terminal)

REFERENCES:
    - launchlens/services/launch_status_scheduler.py (bulk advancement)
    - launchlens/services/launch_metrics_service.py (per-launch analytics)
    - launchlens/routers/launches.py
"""

import logging
import math
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Dict, List, Optional
from uuid import UUID

from sqlalchemy import func
from sqlalchemy.orm import Session

from ..models import Launch, LaunchStatusEnum, LaunchView, Purchase
from ..security import generate_share_token, get_password_hash, verify_password
from ..utils.clock import Clock, to_naive_utc, utcnow
from .exceptions import (
    InvalidSharePasswordError,
    NotFoundError,
    ShareExpiredError,
    ShareNotFoundError,
    SharePasswordRequiredError,
    ValidationError,
)
from .metrics_cache import MetricsCache

logger = logging.getLogger(__name__)

UPDATABLE_FIELDS = ("title", "description", "start_date", "end_date", "revenue_goal", "sales_goal")

SORT_FIELDS = {
    "start": Launch.start_date,
    "start_date": Launch.start_date,
    "end": Launch.end_date,
    "end_date": Launch.end_date,
    "created": Launch.created_at,
    "created_at": Launch.created_at,
}

DUPLICATE_SPAN = timedelta(days=7)


def derive_status(start_date: datetime, end_date: datetime, now: datetime) -> LaunchStatusEnum:
    """Time-driven status for a non-archived launch."""
    if now < start_date:
        return LaunchStatusEnum.upcoming
    if now > end_date:
        return LaunchStatusEnum.completed
    return LaunchStatusEnum.active


@dataclass
class LaunchWithStats:
    launch: Launch
    purchase_count: int
    current_revenue: Decimal


@dataclass
class LaunchPage:
    launches: List[LaunchWithStats]
    page: int
    limit: int
    total: int

    @property
    def pages(self) -> int:
        return math.ceil(self.total / self.limit) if self.limit else 0


@dataclass
class ShareLink:
    share_token: str
    share_url: str
    launch: Launch


class LaunchService:
    """Launch CRUD and lifecycle, scoped by account.

    Usage:
        service = LaunchService(db, clock=utcnow, cache=cache)
        launch = service.create(account_id, {"title": "Spring cohort",
                                             "start_date": start, "end_date": end})
    """

    def __init__(
        self,
        db: Session,
        clock: Clock = utcnow,
        cache: Optional[MetricsCache] = None,
        app_url: str = "http://localhost:3000",
    ):
        self.db = db
        self.clock = clock
        self.cache = cache
        self.app_url = app_url.rstrip("/")

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _invalidate(self, account_id: UUID) -> None:
        if self.cache is not None:
            self.cache.invalidate_account(account_id)

    def _load(self, account_id: UUID, launch_id: UUID) -> Launch:
        launch = (
            self.db.query(Launch)
            .filter(Launch.id == launch_id, Launch.account_id == account_id)
            .first()
        )
        if not launch:
            raise NotFoundError("Launch not found")
        return launch

    def _refresh_status(self, launch: Launch) -> bool:
        """Re-derive status in place. Returns True when it changed."""
        if launch.status == LaunchStatusEnum.archived.value:
            return False
        status = derive_status(launch.start_date, launch.end_date, self.clock()).value
        if launch.status == status:
            return False
        logger.debug("[LAUNCH] Status %s -> %s for launch %s", launch.status, status, launch.id)
        launch.status = status
        return True

    def _stats(self, launch_id: UUID):
        count, revenue = (
            self.db.query(func.count(Purchase.id), func.coalesce(func.sum(Purchase.amount), 0))
            .filter(Purchase.launch_id == launch_id)
            .one()
        )
        return int(count or 0), Decimal(str(revenue or 0))

    def _link_range(self, account_id: UUID, launch: Launch, only_unassigned: bool) -> int:
        query = self.db.query(Purchase).filter(
            Purchase.account_id == account_id,
            Purchase.purchased_at >= launch.start_date,
            Purchase.purchased_at <= launch.end_date,
        )
        if only_unassigned:
            query = query.filter(Purchase.launch_id.is_(None))
        return query.update({Purchase.launch_id: launch.id}, synchronize_session=False)

    @staticmethod
    def _validate_range(start_date: datetime, end_date: datetime) -> None:
        if end_date <= start_date:
            raise ValidationError("End date must be after start date")

    # ------------------------------------------------------------------
    # CRUD
    # ------------------------------------------------------------------

    def create(self, account_id: UUID, data: Dict[str, Any]) -> Launch:
        """Create a launch and link every unassigned purchase inside [start, end]."""
        title = data.get("title")
        if not title:
            raise ValidationError("Title is required")
        start_date = to_naive_utc(data["start_date"])
        end_date = to_naive_utc(data["end_date"])
        self._validate_range(start_date, end_date)

        now = self.clock()
        launch = Launch(
            id=uuid.uuid4(),
            account_id=account_id,
            title=title,
            description=data.get("description"),
            start_date=start_date,
            end_date=end_date,
            revenue_goal=data.get("revenue_goal"),
            sales_goal=data.get("sales_goal"),
            status=derive_status(start_date, end_date, now).value,
            created_at=now,
            updated_at=now,
        )
        self.db.add(launch)
        self.db.flush()

        linked = self._link_range(account_id, launch, only_unassigned=True)
        self.db.commit()
        self.db.refresh(launch)
        self._invalidate(account_id)

        logger.info(
            "[LAUNCH] Created launch %s (%s), linked %d purchases",
            launch.id, launch.status, linked,
        )
        return launch

    def get(self, account_id: UUID, launch_id: UUID) -> LaunchWithStats:
        """Load a launch with its purchase count and revenue, re-deriving status first."""
        launch = self._load(account_id, launch_id)
        if self._refresh_status(launch):
            launch.updated_at = self.clock()
            self.db.commit()
        count, revenue = self._stats(launch.id)
        return LaunchWithStats(launch=launch, purchase_count=count, current_revenue=revenue)

    def update(self, account_id: UUID, launch_id: UUID, fields: Dict[str, Any]) -> Launch:
        """Apply a partial update; a date change recomputes purchase links from scratch."""
        changes = {k: v for k, v in (fields or {}).items() if k in UPDATABLE_FIELDS}
        if not changes:
            raise ValidationError("No fields to update")

        launch = self._load(account_id, launch_id)

        for key in ("start_date", "end_date"):
            if changes.get(key) is not None:
                changes[key] = to_naive_utc(changes[key])

        dates_changed = any(changes.get(k) is not None for k in ("start_date", "end_date"))
        if dates_changed:
            self._validate_range(
                changes.get("start_date") or launch.start_date,
                changes.get("end_date") or launch.end_date,
            )

        for key, value in changes.items():
            if key in ("title", "start_date", "end_date") and value is None:
                continue
            setattr(launch, key, value)
        launch.updated_at = self.clock()

        if dates_changed:
            self._refresh_status(launch)
            # Metrics cached for the old range no longer apply
            launch.metrics_updated_at = None
            self.db.flush()

            detached = (
                self.db.query(Purchase)
                .filter(Purchase.launch_id == launch.id)
                .update({Purchase.launch_id: None}, synchronize_session=False)
            )
            linked = self._link_range(account_id, launch, only_unassigned=False)
            logger.info(
                "[LAUNCH] Dates changed for %s: detached %d, linked %d purchases",
                launch.id, detached, linked,
            )

        self.db.commit()
        self.db.refresh(launch)
        self._invalidate(account_id)
        return launch

    def delete(self, account_id: UUID, launch_id: UUID) -> None:
        """Delete a launch; its purchases are detached, never deleted."""
        launch = self._load(account_id, launch_id)
        detached = (
            self.db.query(Purchase)
            .filter(Purchase.launch_id == launch.id)
            .update({Purchase.launch_id: None}, synchronize_session=False)
        )
        self.db.delete(launch)
        self.db.commit()
        self._invalidate(account_id)
        logger.info("[LAUNCH] Deleted launch %s, detached %d purchases", launch_id, detached)

    def archive(self, account_id: UUID, launch_id: UUID) -> Launch:
        launch = self._load(account_id, launch_id)
        launch.status = LaunchStatusEnum.archived.value
        launch.updated_at = self.clock()
        self.db.commit()
        self.db.refresh(launch)
        logger.info("[LAUNCH] Archived launch %s", launch_id)
        return launch

    def list(
        self,
        account_id: UUID,
        page: int = 1,
        limit: int = 20,
        status: Optional[str] = None,
        sort_by: str = "start",
        sort_order: str = "desc",
    ) -> LaunchPage:
        """Paged launches with per-row purchase count and revenue."""
        page = max(1, page)
        limit = max(1, limit)

        stats = (
            self.db.query(
                Purchase.launch_id.label("launch_id"),
                func.count(Purchase.id).label("purchase_count"),
                func.coalesce(func.sum(Purchase.amount), 0).label("revenue"),
            )
            .filter(Purchase.account_id == account_id, Purchase.launch_id.isnot(None))
            .group_by(Purchase.launch_id)
            .subquery()
        )

        base = self.db.query(Launch).filter(Launch.account_id == account_id)
        if status and status != "all":
            base = base.filter(Launch.status == status)
        total = base.count()

        sort_column = SORT_FIELDS.get(sort_by, Launch.start_date)
        ordering = sort_column.asc() if sort_order == "asc" else sort_column.desc()

        rows = (
            base.outerjoin(stats, stats.c.launch_id == Launch.id)
            .add_columns(
                func.coalesce(stats.c.purchase_count, 0),
                func.coalesce(stats.c.revenue, 0),
            )
            .order_by(ordering, Launch.id)
            .offset((page - 1) * limit)
            .limit(limit)
            .all()
        )

        launches = [
            LaunchWithStats(launch=launch, purchase_count=int(count or 0), current_revenue=Decimal(str(revenue or 0)))
            for launch, count, revenue in rows
        ]
        return LaunchPage(launches=launches, page=page, limit=limit, total=total)

    def duplicate(self, account_id: UUID, launch_id: UUID) -> Launch:
        """Copy title/description/goals onto a new launch starting now, spanning 7 days."""
        original = self._load(account_id, launch_id)
        now = self.clock()
        return self.create(account_id, {
            "title": f"{original.title} (Copy)",
            "description": original.description,
            "start_date": now,
            "end_date": now + DUPLICATE_SPAN,
            "revenue_goal": original.revenue_goal,
            "sales_goal": original.sales_goal,
        })

    # ------------------------------------------------------------------
    # Purchase assignment
    # ------------------------------------------------------------------

    def assign_purchase(self, account_id: UUID, purchase: Purchase) -> Optional[UUID]:
        """Link one purchase to the launch whose range contains it.

        When several non-archived launches overlap the purchase time, the one
        that started most recently wins. Flushes, does not commit.
        """
        launch_id = (
            self.db.query(Launch.id)
            .filter(
                Launch.account_id == account_id,
                Launch.status != LaunchStatusEnum.archived.value,
                Launch.start_date <= purchase.purchased_at,
                Launch.end_date >= purchase.purchased_at,
            )
            .order_by(Launch.start_date.desc())
            .limit(1)
            .scalar()
        )
        if launch_id is None:
            return None
        purchase.launch_id = launch_id
        self.db.flush()
        return launch_id

    # ------------------------------------------------------------------
    # Sharing
    # ------------------------------------------------------------------

    def enable_share(
        self,
        account_id: UUID,
        launch_id: UUID,
        password: Optional[str] = None,
        expires_at: Optional[datetime] = None,
    ) -> ShareLink:
        """Turn on the public recap. A fresh token is issued on every call."""
        launch = self._load(account_id, launch_id)
        token = generate_share_token()
        launch.share_enabled = True
        launch.share_token = token
        launch.share_password_hash = get_password_hash(password) if password else None
        launch.share_expires_at = to_naive_utc(expires_at) if expires_at else None
        launch.updated_at = self.clock()
        self.db.commit()
        self.db.refresh(launch)

        logger.info("[LAUNCH] Sharing enabled for %s (password=%s)", launch_id, bool(password))
        return ShareLink(
            share_token=token,
            share_url=f"{self.app_url}/public/launch/{token}",
            launch=launch,
        )

    def disable_share(self, account_id: UUID, launch_id: UUID) -> Launch:
        launch = self._load(account_id, launch_id)
        launch.share_enabled = False
        launch.updated_at = self.clock()
        self.db.commit()
        self.db.refresh(launch)
        return launch

    def get_public_by_token(
        self,
        share_token: str,
        password: Optional[str] = None,
        referrer: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> Launch:
        """Pass the share gate and record a view.

        Raises, in order of precedence:
            ShareNotFoundError: unknown token or sharing disabled
            ShareExpiredError: past share_expires_at
            SharePasswordRequiredError: password set but none supplied
            InvalidSharePasswordError: password mismatch
        """
        launch = (
            self.db.query(Launch)
            .filter(Launch.share_token == share_token, Launch.share_enabled.is_(True))
            .first()
        )
        if not launch:
            raise ShareNotFoundError(share_token)

        if launch.share_expires_at and self.clock() > launch.share_expires_at:
            logger.info("[LAUNCH] Expired share link used for launch %s", launch.id)
            raise ShareExpiredError(share_token)

        if launch.share_password_hash:
            if not password:
                raise SharePasswordRequiredError(share_token)
            if not verify_password(password, launch.share_password_hash):
                logger.info("[LAUNCH] Wrong share password for launch %s", launch.id)
                raise InvalidSharePasswordError(share_token)

        self.db.add(LaunchView(
            launch_id=launch.id,
            share_token=share_token,
            viewed_at=self.clock(),
            referrer=referrer,
            user_agent=user_agent,
        ))
        self.db.commit()
        return launch

    def view_count(self, account_id: UUID, launch_id: UUID) -> int:
        launch = self._load(account_id, launch_id)
        return self.db.query(func.count(LaunchView.id)).filter(LaunchView.launch_id == launch.id).scalar() or 0
