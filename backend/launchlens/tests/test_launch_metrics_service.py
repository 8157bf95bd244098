"""Tests for per-launch analytics.

REFERENCES:
  - launchlens/services/launch_metrics_service.py
"""

import uuid
from datetime import timedelta

import pytest

from launchlens.models import Launch
from launchlens.services.exceptions import NotFoundError, SharePasswordRequiredError, ValidationError
from launchlens.services.launch_metrics_service import LaunchMetricsService, duration_days
from launchlens.services.launch_service import LaunchService

from conftest import NOW

COMPLETED_START = NOW - timedelta(days=10)
COMPLETED_END = NOW - timedelta(days=3)


@pytest.fixture
def completed_launch(make_launch, make_purchase, make_visitor):
    launch = make_launch(
        title="Winter cohort",
        start_date=COMPLETED_START,
        end_date=COMPLETED_END,
        revenue_goal="1000.00",
        sales_goal=10,
    )
    make_purchase(amount="300.00", email="a@example.com", source="google",
                  purchased_at=COMPLETED_START + timedelta(days=1), launch_id=launch.id)
    make_purchase(amount="200.00", email="b@example.com", source="facebook",
                  purchased_at=COMPLETED_START + timedelta(days=2), launch_id=launch.id)
    for _ in range(4):
        make_visitor(created_at=COMPLETED_START + timedelta(hours=6))
    # outside the launch window
    make_visitor(created_at=COMPLETED_END + timedelta(days=1))
    return launch


class TestDurationDays:

    def test_exact_days(self):
        launch = Launch(start_date=NOW, end_date=NOW + timedelta(days=7))
        assert duration_days(launch) == 7

    def test_partial_day_rounds_up(self):
        launch = Launch(start_date=NOW, end_date=NOW + timedelta(days=7, hours=1))
        assert duration_days(launch) == 8

    def test_minimum_one_day(self):
        launch = Launch(start_date=NOW, end_date=NOW + timedelta(hours=1))
        assert duration_days(launch) == 1


class TestLaunchMetrics:

    def test_completed_launch_metrics(self, db, account, clock, completed_launch):
        metrics = LaunchMetricsService(db, clock).launch_metrics(account.id, completed_launch.id)

        assert metrics["revenue"] == 500.0
        assert metrics["students"] == 2
        assert metrics["purchases"] == 2
        assert metrics["conversion_rate"] == 50.0
        assert metrics["avg_order_value"] == 250.0
        assert metrics["revenue_per_day"] == 71.43
        assert metrics["goal_progress"] == {"revenue_percentage": 50.0, "sales_percentage": 20.0}
        assert metrics["cached"] is False

    def test_completed_launch_is_cached_for_an_hour(self, db, account, clock, completed_launch, make_purchase):
        service = LaunchMetricsService(db, clock)
        service.launch_metrics(account.id, completed_launch.id)

        make_purchase(amount="100.00", email="c@example.com", launch_id=completed_launch.id,
                      purchased_at=COMPLETED_START + timedelta(days=3))
        clock.advance(timedelta(minutes=30))
        cached = service.launch_metrics(account.id, completed_launch.id)

        assert cached["cached"] is True
        assert cached["revenue"] == 500.0
        assert cached["students"] == 2

        clock.advance(timedelta(minutes=31))
        fresh = service.launch_metrics(account.id, completed_launch.id)

        assert fresh["cached"] is False
        assert fresh["revenue"] == 600.0
        assert fresh["students"] == 3

    def test_cache_written_to_launch_row(self, db, account, clock, completed_launch):
        LaunchMetricsService(db, clock).launch_metrics(account.id, completed_launch.id)

        db.expire_all()
        row = db.get(Launch, completed_launch.id)
        assert row.metrics_updated_at == NOW
        assert float(row.cached_revenue) == 500.0
        assert row.cached_students == 2

    def test_conversion_rate_above_a_thousand_percent_is_cached(self, db, account, clock, make_launch, make_purchase, make_visitor):
        launch = make_launch(start_date=COMPLETED_START, end_date=COMPLETED_END)
        for n in range(11):
            make_purchase(amount="10.00", email=f"buyer{n}@example.com", launch_id=launch.id,
                          purchased_at=COMPLETED_START + timedelta(days=1))
        make_visitor(created_at=COMPLETED_START + timedelta(hours=1))

        metrics = LaunchMetricsService(db, clock).launch_metrics(account.id, launch.id)

        assert metrics["conversion_rate"] == 1100.0
        db.expire_all()
        assert float(db.get(Launch, launch.id).cached_conversion_rate) == 1100.0
        column_type = Launch.__table__.c.cached_conversion_rate.type
        assert column_type.precision - column_type.scale >= 5

    def test_active_launch_is_never_cached(self, db, account, clock, make_launch, make_purchase):
        launch = make_launch()
        make_purchase(amount="100.00", launch_id=launch.id)
        service = LaunchMetricsService(db, clock)

        service.launch_metrics(account.id, launch.id)
        again = service.launch_metrics(account.id, launch.id)

        assert again["cached"] is False
        db.expire_all()
        assert db.get(Launch, launch.id).metrics_updated_at is None

    def test_no_goals_yields_null_progress(self, db, account, clock, make_launch):
        launch = make_launch()

        metrics = LaunchMetricsService(db, clock).launch_metrics(account.id, launch.id)

        assert metrics["goal_progress"] == {"revenue_percentage": None, "sales_percentage": None}
        assert metrics["conversion_rate"] == 0.0
        assert metrics["avg_order_value"] == 0.0

    def test_live_stats_always_recompute(self, db, account, clock, completed_launch):
        service = LaunchMetricsService(db, clock)
        service.launch_metrics(account.id, completed_launch.id)

        assert service.live_stats(account.id, completed_launch.id)["cached"] is False

    def test_unknown_launch(self, db, account, clock):
        with pytest.raises(NotFoundError):
            LaunchMetricsService(db, clock).launch_metrics(account.id, uuid.uuid4())


class TestBreakdowns:

    def test_attribution_by_source_percentages(self, db, account, clock, make_launch, make_purchase):
        launch = make_launch()
        make_purchase(amount="300.00", source="google", launch_id=launch.id)
        make_purchase(amount="100.00", launch_id=launch.id)

        rows = LaunchMetricsService(db, clock).attribution_by_source(account.id, launch.id)

        assert [(r["source"], r["revenue"], r["percentage"]) for r in rows] == [
            ("google", 300.0, 75.0),
            ("unmatched", 100.0, 25.0),
        ]

    def test_daily_revenue_ascending(self, db, account, clock, make_launch, make_purchase):
        launch = make_launch(start_date=NOW - timedelta(days=5), end_date=NOW + timedelta(days=2))
        make_purchase(amount="50.00", launch_id=launch.id, purchased_at=NOW - timedelta(days=1))
        make_purchase(amount="25.00", launch_id=launch.id, purchased_at=NOW - timedelta(days=3))
        make_purchase(amount="75.00", launch_id=launch.id, purchased_at=NOW - timedelta(days=3, hours=2))

        rows = LaunchMetricsService(db, clock).daily_revenue(account.id, launch.id)

        assert rows == [
            {"date": "2025-03-12", "revenue": 100.0, "purchases": 2},
            {"date": "2025-03-14", "revenue": 50.0, "purchases": 1},
        ]


class TestCompare:

    def test_more_than_three_rejected(self, db, account, clock):
        with pytest.raises(ValidationError):
            LaunchMetricsService(db, clock).compare_launches(account.id, [uuid.uuid4() for _ in range(4)])

    def test_empty_rejected(self, db, account, clock):
        with pytest.raises(ValidationError):
            LaunchMetricsService(db, clock).compare_launches(account.id, [])

    def test_side_by_side(self, db, account, other_account, clock, completed_launch, make_launch):
        empty = make_launch(title="Empty")
        foreign = make_launch(title="Foreign", account_id=other_account.id)

        rows = LaunchMetricsService(db, clock).compare_launches(
            account.id, [completed_launch.id, empty.id, foreign.id],
        )

        assert [r["title"] for r in rows] == ["Winter cohort", "Empty"]
        winter, blank = rows
        assert winter["revenue"] == 500.0
        assert winter["top_source"] == "google"
        assert winter["duration"] == 7
        assert winter["revenue_per_day"] == 71.43
        assert winter["conversion_rate"] == 50.0
        assert blank["top_source"] == "none"
        assert blank["revenue"] == 0.0


class TestPublicRecap:

    def test_recap_payload(self, db, account, clock, completed_launch):
        token = LaunchService(db, clock).enable_share(account.id, completed_launch.id).share_token

        recap = LaunchMetricsService(db, clock).public_recap(token, referrer="https://x.com")

        assert recap["launch"]["title"] == "Winter cohort"
        assert recap["launch"]["start_date"] == COMPLETED_START.isoformat()
        assert recap["metrics"]["revenue"] == 500.0
        assert recap["metrics"]["students"] == 2
        assert [s["source"] for s in recap["top_sources"]] == ["google", "facebook"]
        assert len(recap["daily_revenue"]) == 2
        assert LaunchService(db, clock).view_count(account.id, completed_launch.id) == 1

    def test_recap_respects_password_gate(self, db, account, clock, completed_launch):
        token = LaunchService(db, clock).enable_share(
            account.id, completed_launch.id, password="s3cret",
        ).share_token

        with pytest.raises(SharePasswordRequiredError):
            LaunchMetricsService(db, clock).public_recap(token)
