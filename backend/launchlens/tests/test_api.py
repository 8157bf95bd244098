"""HTTP endpoint tests.

WHAT: Exercises the routers end to end through TestClient with the test
      session, frozen clock and in-memory cache injected
WHY: Routers are thin, but status codes, error mapping and payload shapes
     are the contract the frontend and integrations depend on

REFERENCES:
  - launchlens/main.py
  - launchlens/routers/
"""

import uuid
from datetime import timedelta

from launchlens.models import Purchase
from launchlens.services.sync_jobs import SyncJobService

from conftest import NOW


def _iso(value):
    return value.isoformat()


def _create_launch(client, title="Spring cohort", start=None, end=None):
    response = client.post("/launches", json={
        "title": title,
        "start_date": _iso(start or NOW - timedelta(days=1)),
        "end_date": _iso(end or NOW + timedelta(days=6)),
    })
    assert response.status_code == 201, response.text
    return response.json()


class TestHealthAndAuth:

    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "ok"}

    def test_missing_credentials_is_401(self, app, client):
        from launchlens.deps import get_current_account

        app.dependency_overrides.pop(get_current_account)

        response = client.get("/launches")

        assert response.status_code == 401

    def test_bearer_token_identifies_account(self, app, client, account):
        from launchlens.deps import get_current_account, get_settings
        from launchlens.security import create_access_token

        app.dependency_overrides.pop(get_current_account)
        token = create_access_token(str(account.id), get_settings().JWT_SECRET)

        response = client.get("/launches", headers={"Authorization": f"Bearer {token}"})

        assert response.status_code == 200

    def test_bad_token_is_401(self, app, client):
        from launchlens.deps import get_current_account

        app.dependency_overrides.pop(get_current_account)

        response = client.get("/launches", headers={"Authorization": "Bearer not-a-jwt"})

        assert response.status_code == 401


class TestLaunchEndpoints:

    def test_create_and_get(self, client, make_purchase):
        make_purchase(amount="120.00", purchased_at=NOW - timedelta(hours=3))

        created = _create_launch(client)
        assert created["status"] == "active"

        response = client.get(f"/launches/{created['id']}")
        assert response.status_code == 200
        body = response.json()
        assert body["purchase_count"] == 1
        assert body["current_revenue"] == 120.0

    def test_create_invalid_range_is_400(self, client):
        response = client.post("/launches", json={
            "title": "Backwards",
            "start_date": _iso(NOW),
            "end_date": _iso(NOW - timedelta(days=1)),
        })

        assert response.status_code == 400
        assert response.json()["detail"] == "End date must be after start date"

    def test_list_with_status_filter(self, client):
        _create_launch(client, title="Live")
        _create_launch(client, title="Done", start=NOW - timedelta(days=20), end=NOW - timedelta(days=10))

        response = client.get("/launches", params={"status": "completed"})

        assert response.status_code == 200
        body = response.json()
        assert [item["title"] for item in body["launches"]] == ["Done"]
        assert body["pagination"] == {"page": 1, "limit": 20, "total": 1, "pages": 1}

    def test_get_unknown_is_404(self, client):
        response = client.get(f"/launches/{uuid.uuid4()}")

        assert response.status_code == 404
        assert response.json()["detail"] == "Launch not found"

    def test_patch_empty_body_is_400(self, client):
        launch = _create_launch(client)

        response = client.patch(f"/launches/{launch['id']}", json={})

        assert response.status_code == 400
        assert response.json()["detail"] == "No fields to update"

    def test_patch_title(self, client):
        launch = _create_launch(client)

        response = client.patch(f"/launches/{launch['id']}", json={"title": "Renamed"})

        assert response.status_code == 200
        assert response.json()["title"] == "Renamed"

    def test_archive_duplicate_delete(self, client):
        launch = _create_launch(client)

        archived = client.post(f"/launches/{launch['id']}/archive")
        assert archived.json()["status"] == "archived"

        duplicate = client.post(f"/launches/{launch['id']}/duplicate")
        assert duplicate.status_code == 201
        assert duplicate.json()["title"] == "Spring cohort (Copy)"

        deleted = client.delete(f"/launches/{launch['id']}")
        assert deleted.json() == {"success": True}
        assert client.get(f"/launches/{launch['id']}").status_code == 404

    def test_compare_more_than_three_is_rejected(self, client):
        response = client.post("/launches/compare", json={"launch_ids": [str(uuid.uuid4()) for _ in range(4)]})

        assert response.status_code == 422

    def test_metrics_endpoints(self, client, make_purchase):
        launch = _create_launch(client)
        launch_id = uuid.UUID(launch["id"])
        make_purchase(amount="100.00", source="google", launch_id=launch_id)

        metrics = client.get(f"/launches/{launch['id']}/metrics").json()
        assert metrics["revenue"] == 100.0
        assert metrics["cached"] is False

        live = client.get(f"/launches/{launch['id']}/live")
        assert live.status_code == 200

        attribution = client.get(f"/launches/{launch['id']}/attribution").json()
        assert attribution[0]["source"] == "google"
        assert attribution[0]["percentage"] == 100.0

        daily = client.get(f"/launches/{launch['id']}/daily-revenue").json()
        assert daily[0]["revenue"] == 100.0


class TestPublicRecap:

    def test_password_header_gate(self, client):
        launch = _create_launch(client)
        share = client.post(f"/launches/{launch['id']}/share", json={"password": "s3cret"}).json()
        token = share["share_token"]
        assert share["share_url"].endswith(f"/public/launch/{token}")

        assert client.get(f"/public/launch/{token}").status_code == 401
        assert client.get(f"/public/launch/{token}", headers={"X-Share-Password": "nope"}).status_code == 403

        ok = client.get(f"/public/launch/{token}", headers={"X-Share-Password": "s3cret"})
        assert ok.status_code == 200
        assert ok.json()["launch"]["title"] == "Spring cohort"

        views = client.get(f"/launches/{launch['id']}/views").json()
        assert views == {"view_count": 1}

    def test_share_without_body(self, client):
        launch = _create_launch(client)

        share = client.post(f"/launches/{launch['id']}/share")

        assert share.status_code == 200
        assert client.get(f"/public/launch/{share.json()['share_token']}").status_code == 200

    def test_disabled_share_is_404(self, client):
        launch = _create_launch(client)
        token = client.post(f"/launches/{launch['id']}/share").json()["share_token"]
        client.delete(f"/launches/{launch['id']}/share")

        assert client.get(f"/public/launch/{token}").status_code == 404

    def test_expired_share_is_410(self, client, clock):
        launch = _create_launch(client)
        token = client.post(
            f"/launches/{launch['id']}/share",
            json={"expires_at": _iso(NOW + timedelta(hours=1))},
        ).json()["share_token"]

        clock.advance(timedelta(hours=2))

        assert client.get(f"/public/launch/{token}").status_code == 410


class TestTrackingAndPurchases:

    def test_track_identify_then_purchase_matches(self, client, db):
        script_id = client.get("/v1/script").json()["script_id"]

        tracked = client.post("/v1/track", json={
            "script_id": script_id,
            "visitor_id": "v_1",
            "session_id": "s_1",
            "event_type": "visit",
            "source": "google",
            "medium": "cpc",
        })
        assert tracked.status_code == 200
        assert tracked.headers["access-control-allow-origin"] == "*"

        identified = client.post("/v1/identify", json={
            "script_id": script_id,
            "visitor_id": "v_1",
            "email": "Buyer@Example.com",
        })
        assert identified.status_code == 200

        response = client.post("/v1/purchases", json={
            "email": "BUYER@example.com",
            "amount": "197.00",
            "platform": "kajabi",
            "platform_purchase_id": "ord_1",
            "purchased_at": _iso(NOW - timedelta(hours=1)),
        })
        assert response.status_code == 201, response.text
        body = response.json()
        assert body["status"] == "matched"
        assert body["match_method"] == "email"
        assert body["first_touch"]["source"] == "google"

        match_rate = client.get("/analytics/match-rate").json()
        assert match_rate == {"match_rate": 100}

    def test_unknown_script_id_is_404(self, client):
        response = client.post("/v1/track", json={
            "script_id": "unknown",
            "visitor_id": "v_1",
            "session_id": "s_1",
            "event_type": "visit",
        })

        assert response.status_code == 404
        assert response.json()["detail"] == "Invalid script ID"

    def test_track_rejects_identify_event_type(self, client):
        script_id = client.get("/v1/script").json()["script_id"]

        response = client.post("/v1/track", json={
            "script_id": script_id,
            "visitor_id": "v_1",
            "session_id": "s_1",
            "event_type": "identify",
        })

        assert response.status_code == 422

    def test_refund_and_reattribute(self, client, db):
        created = client.post("/v1/purchases", json={
            "email": "ghost@example.com",
            "amount": "99.00",
            "platform": "stripe",
            "platform_purchase_id": "pi_1",
            "purchased_at": _iso(NOW - timedelta(hours=1)),
        }).json()
        assert created["status"] == "unmatched"

        refund = client.post("/v1/purchases/refund", json={"platform": "stripe", "platform_purchase_id": "pi_1"})
        assert refund.status_code == 200
        assert float(refund.json()["amount"]) == 0.0

        retry = client.post(f"/v1/purchases/{created['purchase_id']}/reattribute")
        assert retry.json()["status"] == "still_unmatched"

        assert client.post(f"/v1/purchases/{uuid.uuid4()}/reattribute").status_code == 404
        assert db.query(Purchase).count() == 1

    def test_unknown_platform_is_422(self, client):
        response = client.post("/v1/purchases", json={
            "email": "a@example.com",
            "amount": "10.00",
            "platform": "gumroad",
            "platform_purchase_id": "x",
            "purchased_at": _iso(NOW),
        })

        assert response.status_code == 422

    def test_sync_job_polling(self, client, db, account, clock):
        job = SyncJobService(db, clock).start_job(account.id, "kajabi")

        running = client.get(f"/v1/sync-jobs/{job.id}").json()
        assert running["status"] == "running"

        SyncJobService(db, clock).complete_job(job.id, total=10, processed=10)
        done = client.get(f"/v1/sync-jobs/{job.id}").json()
        assert done["status"] == "completed"
        assert done["processed_records"] == 10

        assert client.get(f"/v1/sync-jobs/{uuid.uuid4()}").status_code == 404


class TestAnalyticsEndpoints:

    def test_summary_and_breakdowns(self, client, make_purchase):
        make_purchase(amount="100.00", email="a@example.com", source="google", campaign="spring")
        make_purchase(amount="50.00", email="b@example.com", source="facebook")
        params = {"start": _iso(NOW - timedelta(days=7)), "end": _iso(NOW)}

        summary = client.get("/analytics/summary", params=params).json()
        assert summary["total_revenue"] == 150.0
        assert summary["total_students"] == 2

        by_source = client.get("/analytics/revenue-by-source", params=params).json()
        assert [row["source"] for row in by_source] == ["google", "facebook"]

        drill = client.get("/analytics/drill-down/google", params=params).json()
        assert drill[0]["campaign"] == "spring"

        recent = client.get("/analytics/recent-purchases").json()
        assert len(recent) == 2

    def test_default_range_is_last_30_days(self, client, make_purchase):
        make_purchase(amount="40.00", purchased_at=NOW - timedelta(days=29))
        make_purchase(amount="60.00", purchased_at=NOW - timedelta(days=31))

        summary = client.get("/analytics/summary").json()

        assert summary["total_revenue"] == 40.0

    def test_invalid_range_is_400(self, client):
        response = client.get("/analytics/summary", params={"start": _iso(NOW), "end": _iso(NOW - timedelta(days=1))})

        assert response.status_code == 400

    def test_export_csv(self, client):
        response = client.get("/analytics/export", params={"start": _iso(NOW - timedelta(days=7)), "end": _iso(NOW)})

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/csv")
        assert response.text == "Source,Visitors,Revenue,Students,Conversion Rate %,Avg Order Value,Revenue Per Visitor"
