"""Dashboard Metrics Aggregator.

WHAT:
    Account-level revenue analytics over a [start, end) range: headline
    summary with trends, per-source breakdown, recent purchases, per-source
    drill-down and CSV export.

WHY:
    - Every figure is derived from the purchase ledger's denormalized
      attribution fields; no joins back to sessions.
    - "Students" are distinct buyer emails, everywhere.
    - Ratios are computed in Decimal and rounded half-up so "18.18" is
      "18.18" regardless of float representation.

CACHING:
    Summary, revenue-by-source and drill-down results are cached through the
    injected MetricsCache, but only when the whole requested range lies in
    the past (the numbers can still change while the range is open).
    Ledger mutations invalidate the account.

REFERENCES:
    - launchlens/services/metrics_cache.py
    - launchlens/routers/analytics.py
"""

import csv
import io
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional
from uuid import UUID

from sqlalchemy import func
from sqlalchemy.orm import Session

from ..models import Purchase, Visitor
from ..utils.clock import Clock, to_naive_utc, utcnow
from ..utils.numbers import percent_change, round_half_up, safe_ratio, two_places
from .exceptions import ValidationError
from .metrics_cache import MetricsCache, make_fingerprint

logger = logging.getLogger(__name__)

UNMATCHED_SOURCE = "unmatched"
NO_CAMPAIGN = "no_campaign"
NO_MEDIUM = "none"
DEFAULT_RECENT_LIMIT = 20

CSV_HEADER = [
    "Source",
    "Visitors",
    "Revenue",
    "Students",
    "Conversion Rate %",
    "Avg Order Value",
    "Revenue Per Visitor",
]


class MetricsService:
    """Dashboard aggregates scoped by account.

    Usage:
        service = MetricsService(db, clock=utcnow, cache=get_metrics_cache())
        summary = service.summary(account_id, start, end)
    """

    def __init__(self, db: Session, clock: Clock = utcnow, cache: Optional[MetricsCache] = None):
        self.db = db
        self.clock = clock
        self.cache = cache

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _normalize_range(start: datetime, end: datetime):
        start, end = to_naive_utc(start), to_naive_utc(end)
        if end <= start:
            raise ValidationError("End date must be after start date")
        return start, end

    def _cacheable(self, end: datetime) -> bool:
        return self.cache is not None and end <= self.clock()

    def _cached(self, account_id: UUID, fingerprint: str, end: datetime, compute):
        if not self._cacheable(end):
            return compute()
        hit = self.cache.get(account_id, fingerprint)
        if hit is not None:
            logger.debug("[METRICS] Cache hit %s for account %s", fingerprint, account_id)
            return hit
        value = compute()
        self.cache.set(account_id, fingerprint, value)
        return value

    def _in_range(self, query, account_id: UUID, start: datetime, end: datetime):
        return query.filter(
            Purchase.account_id == account_id,
            Purchase.purchased_at >= start,
            Purchase.purchased_at < end,
        )

    def _period_totals(self, account_id: UUID, start: datetime, end: datetime, source: Optional[str]):
        query = self._in_range(
            self.db.query(
                func.coalesce(func.sum(Purchase.amount), 0),
                func.count(func.distinct(Purchase.email)),
                func.count(Purchase.id),
            ),
            account_id, start, end,
        )
        if source and source != "all":
            query = query.filter(Purchase.first_touch_source == source)
        revenue, students, purchases = query.one()
        revenue = round_half_up(revenue or 0, 2)
        purchases = int(purchases or 0)
        return {
            "revenue": revenue,
            "students": int(students or 0),
            "purchases": purchases,
            "avg_order_value": round_half_up(safe_ratio(revenue, purchases), 2),
        }

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def summary(
        self,
        account_id: UUID,
        start: datetime,
        end: datetime,
        source: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Headline totals for [start, end) with trends vs. the preceding range of equal length."""
        start, end = self._normalize_range(start, end)
        source = None if source in (None, "", "all") else source

        def compute():
            current = self._period_totals(account_id, start, end, source)
            previous = self._period_totals(account_id, start - (end - start), start, source)
            return {
                "total_revenue": float(current["revenue"]),
                "total_students": current["students"],
                "total_purchases": current["purchases"],
                "avg_order_value": float(current["avg_order_value"]),
                "trends": {
                    "revenue": percent_change(current["revenue"], previous["revenue"]),
                    "students": percent_change(current["students"], previous["students"]),
                    "avg_order_value": percent_change(current["avg_order_value"], previous["avg_order_value"]),
                },
            }

        fingerprint = make_fingerprint("summary", start=start, end=end, source=source)
        return self._cached(account_id, fingerprint, end, compute)

    def _visitor_counts(self, account_id: UUID, start: datetime, end: datetime) -> Dict[str, int]:
        source_expr = func.coalesce(Visitor.first_touch["source"].as_string(), "direct")
        rows = (
            self.db.query(source_expr, func.count(Visitor.id))
            .filter(
                Visitor.account_id == account_id,
                Visitor.created_at >= start,
                Visitor.created_at < end,
            )
            .group_by(source_expr)
            .all()
        )
        return {source: int(count) for source, count in rows}

    def revenue_by_source(self, account_id: UUID, start: datetime, end: datetime) -> List[Dict[str, Any]]:
        """Per first-touch source breakdown, highest revenue first."""
        start, end = self._normalize_range(start, end)

        def compute():
            source_expr = func.coalesce(Purchase.first_touch_source, UNMATCHED_SOURCE)
            rows = (
                self._in_range(
                    self.db.query(
                        source_expr,
                        func.coalesce(func.sum(Purchase.amount), 0),
                        func.count(func.distinct(Purchase.email)),
                        func.count(Purchase.id),
                    ),
                    account_id, start, end,
                )
                .group_by(source_expr)
                .all()
            )
            visitors_by_source = self._visitor_counts(account_id, start, end)

            results = []
            for source, revenue, students, purchases in rows:
                revenue = round_half_up(revenue or 0, 2)
                students = int(students or 0)
                visitors = visitors_by_source.get(source, 0)
                results.append({
                    "source": source,
                    "visitors": visitors,
                    "revenue": float(revenue),
                    "students": students,
                    "conversion_rate": two_places(safe_ratio(students, visitors) * 100),
                    "avg_order_value": two_places(safe_ratio(revenue, purchases)),
                    "revenue_per_visitor": two_places(safe_ratio(revenue, visitors)),
                })
            results.sort(key=lambda r: (-r["revenue"], r["source"]))
            return results

        fingerprint = make_fingerprint("revenue_by_source", start=start, end=end)
        return self._cached(account_id, fingerprint, end, compute)

    def recent_purchases(self, account_id: UUID, limit: int = DEFAULT_RECENT_LIMIT) -> List[Dict[str, Any]]:
        rows = (
            self.db.query(Purchase)
            .filter(Purchase.account_id == account_id)
            .order_by(Purchase.purchased_at.desc())
            .limit(max(1, limit))
            .all()
        )
        return [
            {
                "id": str(p.id),
                "amount": float(p.amount),
                "currency": p.currency,
                "course_name": p.course_name,
                "source": p.first_touch_source or UNMATCHED_SOURCE,
                "email": p.email,
                "purchased_at": p.purchased_at.isoformat(),
            }
            for p in rows
        ]

    def drill_down(self, account_id: UUID, source: str, start: datetime, end: datetime) -> List[Dict[str, Any]]:
        """(campaign, medium) breakdown for one first-touch source."""
        start, end = self._normalize_range(start, end)

        def compute():
            campaign_expr = func.coalesce(Purchase.first_touch_campaign, NO_CAMPAIGN)
            medium_expr = func.coalesce(Purchase.first_touch_medium, NO_MEDIUM)
            rows = (
                self._in_range(
                    self.db.query(
                        campaign_expr,
                        medium_expr,
                        func.coalesce(func.sum(Purchase.amount), 0),
                        func.count(func.distinct(Purchase.email)),
                        func.count(Purchase.id),
                    ),
                    account_id, start, end,
                )
                .filter(Purchase.first_touch_source == source)
                .group_by(campaign_expr, medium_expr)
                .all()
            )
            results = [
                {
                    "campaign": campaign,
                    "medium": medium,
                    "revenue": float(round_half_up(revenue or 0, 2)),
                    "students": int(students or 0),
                    "avg_order_value": two_places(safe_ratio(revenue, purchases)),
                }
                for campaign, medium, revenue, students, purchases in rows
            ]
            results.sort(key=lambda r: (-r["revenue"], r["campaign"], r["medium"]))
            return results

        fingerprint = make_fingerprint("drill_down", source=source, start=start, end=end)
        return self._cached(account_id, fingerprint, end, compute)

    def export_csv(self, account_id: UUID, start: datetime, end: datetime) -> str:
        """Revenue-by-source as CSV. Header only (no trailing newline) when empty."""
        rows = self.revenue_by_source(account_id, start, end)

        buffer = io.StringIO()
        writer = csv.writer(buffer, lineterminator="\n")
        writer.writerow(CSV_HEADER)
        for row in rows:
            writer.writerow([
                row["source"],
                row["visitors"],
                _format_amount(row["revenue"]),
                row["students"],
                row["conversion_rate"],
                row["avg_order_value"],
                row["revenue_per_visitor"],
            ])
        return buffer.getvalue().rstrip("\n")


def _format_amount(value: float) -> str:
    """300.0 -> "300", 150.5 -> "150.5"."""
    text = f"{value:.2f}".rstrip("0").rstrip(".")
    return text or "0"
