"""Launch analytics.

WHAT:
    Per-launch metrics (revenue, students, conversion, goal progress),
    source attribution, daily revenue, side-by-side comparison and the
    public recap payload.

WHY:
    - Completed launches are immutable in practice, so their headline
      numbers are cached on the launch row for up to an hour.
    - Active and upcoming launches are always recomputed (live stats).
    - The cache write is a single UPDATE of the launch row, so concurrent
      readers never observe a half-written cache.

CONVERSION:
    students / visitors * 100, where visitors are those created inside the
    launch's [start, end] window. 0 when there are no visitors.

REFERENCES:
    - launchlens/services/launch_service.py
    - launchlens/routers/launches.py, launchlens/routers/public.py
"""

import logging
import math
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Dict, List, Optional
from uuid import UUID

from sqlalchemy import func
from sqlalchemy.orm import Session

from ..models import Launch, LaunchStatusEnum, Purchase, Visitor
from ..utils.clock import Clock, utcnow
from ..utils.numbers import percent_of, round_half_up, safe_ratio
from .exceptions import NotFoundError, ValidationError
from .launch_service import LaunchService, derive_status

logger = logging.getLogger(__name__)

METRICS_CACHE_MAX_AGE = timedelta(hours=1)
MAX_COMPARE = 3
TOP_SOURCES_LIMIT = 3
UNMATCHED_SOURCE = "unmatched"


def duration_days(launch: Launch) -> int:
    """Whole days spanned by the launch, at least 1."""
    seconds = (launch.end_date - launch.start_date).total_seconds()
    return max(1, math.ceil(seconds / 86400))


def _money(value) -> float:
    return float(round_half_up(value or 0, 2))


class LaunchMetricsService:
    """Per-launch analytics scoped by account."""

    def __init__(self, db: Session, clock: Clock = utcnow):
        self.db = db
        self.clock = clock

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _load(self, account_id: UUID, launch_id: UUID) -> Launch:
        launch = (
            self.db.query(Launch)
            .filter(Launch.id == launch_id, Launch.account_id == account_id)
            .first()
        )
        if not launch:
            raise NotFoundError("Launch not found")
        return launch

    def _effective_status(self, launch: Launch) -> str:
        if launch.status == LaunchStatusEnum.archived.value:
            return launch.status
        return derive_status(launch.start_date, launch.end_date, self.clock()).value

    def _purchase_totals(self, launch_id: UUID):
        revenue, students, purchases = (
            self.db.query(
                func.coalesce(func.sum(Purchase.amount), 0),
                func.count(func.distinct(Purchase.email)),
                func.count(Purchase.id),
            )
            .filter(Purchase.launch_id == launch_id)
            .one()
        )
        return Decimal(str(revenue or 0)), int(students or 0), int(purchases or 0)

    def _visitor_count(self, launch: Launch) -> int:
        return (
            self.db.query(func.count(Visitor.id))
            .filter(
                Visitor.account_id == launch.account_id,
                Visitor.created_at >= launch.start_date,
                Visitor.created_at <= launch.end_date,
            )
            .scalar()
        ) or 0

    def _conversion_rate(self, launch: Launch, students: int) -> float:
        return float(round_half_up(safe_ratio(students, self._visitor_count(launch)) * 100, 2))

    def _top_sources(self, launch_id: UUID, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        source_expr = func.coalesce(Purchase.first_touch_source, UNMATCHED_SOURCE)
        revenue_expr = func.coalesce(func.sum(Purchase.amount), 0)
        query = (
            self.db.query(
                source_expr,
                revenue_expr,
                func.count(func.distinct(Purchase.email)),
                func.count(Purchase.id),
            )
            .filter(Purchase.launch_id == launch_id)
            .group_by(source_expr)
            .order_by(revenue_expr.desc(), source_expr)
        )
        if limit:
            query = query.limit(limit)
        return [
            {
                "source": source,
                "revenue": _money(revenue),
                "students": int(students or 0),
                "purchases": int(purchases or 0),
            }
            for source, revenue, students, purchases in query.all()
        ]

    def _metrics(self, launch: Launch, revenue: Decimal, students: int, purchases: int,
                 conversion_rate: float, cached: bool) -> Dict[str, Any]:
        return {
            "revenue": _money(revenue),
            "students": students,
            "purchases": purchases,
            "conversion_rate": conversion_rate,
            "avg_order_value": _money(safe_ratio(revenue, purchases)),
            "revenue_per_day": _money(safe_ratio(revenue, duration_days(launch))),
            "goal_progress": {
                "revenue_percentage": percent_of(revenue, launch.revenue_goal),
                "sales_percentage": percent_of(students, launch.sales_goal),
            },
            "cached": cached,
        }

    def _compute(self, launch: Launch) -> Dict[str, Any]:
        revenue, students, purchases = self._purchase_totals(launch.id)
        return self._metrics(
            launch, revenue, students, purchases,
            self._conversion_rate(launch, students), cached=False,
        )

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def launch_metrics(self, account_id: UUID, launch_id: UUID) -> Dict[str, Any]:
        """Headline metrics; completed launches serve a cache younger than one hour."""
        launch = self._load(account_id, launch_id)
        now = self.clock()
        completed = self._effective_status(launch) == LaunchStatusEnum.completed.value

        if completed and launch.metrics_updated_at and now - launch.metrics_updated_at < METRICS_CACHE_MAX_AGE:
            _, _, purchases = self._purchase_totals(launch.id)
            logger.debug("[LAUNCH_METRICS] Serving cached metrics for launch %s", launch.id)
            return self._metrics(
                launch,
                Decimal(str(launch.cached_revenue or 0)),
                int(launch.cached_students or 0),
                purchases,
                float(launch.cached_conversion_rate or 0),
                cached=True,
            )

        metrics = self._compute(launch)

        if completed:
            (
                self.db.query(Launch)
                .filter(Launch.id == launch.id)
                .update(
                    {
                        Launch.cached_revenue: Decimal(str(metrics["revenue"])),
                        Launch.cached_students: metrics["students"],
                        Launch.cached_conversion_rate: Decimal(str(metrics["conversion_rate"])),
                        Launch.metrics_updated_at: now,
                    },
                    synchronize_session=False,
                )
            )
            self.db.commit()
            logger.info("[LAUNCH_METRICS] Cached metrics for completed launch %s", launch.id)

        return metrics

    def live_stats(self, account_id: UUID, launch_id: UUID) -> Dict[str, Any]:
        """Always recomputed, never cached."""
        return self._compute(self._load(account_id, launch_id))

    def attribution_by_source(self, account_id: UUID, launch_id: UUID) -> List[Dict[str, Any]]:
        """Per first-touch source revenue with each source's share of launch revenue."""
        launch = self._load(account_id, launch_id)
        rows = self._top_sources(launch.id)
        total = sum(Decimal(str(r["revenue"])) for r in rows)
        for row in rows:
            row["percentage"] = percent_of(row["revenue"], total) or 0.0
        return rows

    def daily_revenue(self, account_id: UUID, launch_id: UUID) -> List[Dict[str, Any]]:
        launch = self._load(account_id, launch_id)
        return self._daily(launch.id)

    def _daily(self, launch_id: UUID) -> List[Dict[str, Any]]:
        day_expr = func.date(Purchase.purchased_at)
        rows = (
            self.db.query(
                day_expr,
                func.coalesce(func.sum(Purchase.amount), 0),
                func.count(Purchase.id),
            )
            .filter(Purchase.launch_id == launch_id)
            .group_by(day_expr)
            .order_by(day_expr.asc())
            .all()
        )
        return [
            {"date": str(day), "revenue": _money(revenue), "purchases": int(purchases or 0)}
            for day, revenue, purchases in rows
        ]

    def compare_launches(self, account_id: UUID, launch_ids: List[UUID]) -> List[Dict[str, Any]]:
        """Side-by-side figures for 1 to 3 launches. Unknown or foreign ids are skipped."""
        if not launch_ids or len(launch_ids) > MAX_COMPARE:
            raise ValidationError("Must compare between 1 and 3 launches")

        comparisons = []
        for launch_id in launch_ids:
            launch = (
                self.db.query(Launch)
                .filter(Launch.id == launch_id, Launch.account_id == account_id)
                .first()
            )
            if launch is None:
                continue

            revenue, students, purchases = self._purchase_totals(launch.id)
            top = self._top_sources(launch.id, limit=1)
            days = duration_days(launch)
            comparisons.append({
                "launch_id": str(launch.id),
                "title": launch.title,
                "revenue": _money(revenue),
                "students": students,
                "conversion_rate": self._conversion_rate(launch, students),
                "avg_order_value": _money(safe_ratio(revenue, purchases)),
                "top_source": top[0]["source"] if top else "none",
                "revenue_per_day": _money(safe_ratio(revenue, days)),
                "duration": days,
            })
        return comparisons

    def public_recap(
        self,
        share_token: str,
        password: Optional[str] = None,
        referrer: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Recap for the public share page. Passes the share gate first (records a view)."""
        launch = LaunchService(self.db, self.clock).get_public_by_token(
            share_token, password=password, referrer=referrer, user_agent=user_agent,
        )
        revenue, students, purchases = self._purchase_totals(launch.id)
        return {
            "launch": {
                "title": launch.title,
                "description": launch.description,
                "start_date": launch.start_date.isoformat(),
                "end_date": launch.end_date.isoformat(),
            },
            "metrics": {
                "revenue": _money(revenue),
                "students": students,
                "purchases": purchases,
                "conversion_rate": self._conversion_rate(launch, students),
                "avg_order_value": _money(safe_ratio(revenue, purchases)),
            },
            "top_sources": [
                {"source": s["source"], "revenue": s["revenue"], "students": s["students"]}
                for s in self._top_sources(launch.id, limit=TOP_SOURCES_LIMIT)
            ],
            "daily_revenue": [
                {"date": d["date"], "revenue": d["revenue"]} for d in self._daily(launch.id)
            ],
        }
