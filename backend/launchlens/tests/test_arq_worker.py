"""Tests for the ARQ worker configuration and cron job wrapper."""

import asyncio
from unittest.mock import patch

from launchlens.workers import arq_worker


def test_redis_settings_from_url(monkeypatch):
    monkeypatch.setenv("REDIS_URL", "rediss://:hunter2@cache.internal:6380/2")

    settings = arq_worker.get_redis_settings()

    assert settings.host == "cache.internal"
    assert settings.port == 6380
    assert settings.password == "hunter2"
    assert settings.database == 2
    assert settings.ssl is True


def test_redis_settings_defaults(monkeypatch):
    monkeypatch.setenv("REDIS_URL", "redis://localhost")

    settings = arq_worker.get_redis_settings()

    assert settings.port == 6379
    assert settings.database == 0
    assert settings.ssl is False


def test_cron_job_reports_counts():
    with patch.object(arq_worker, "run_launch_status_tick", return_value={"activated": 2, "completed": 1}):
        result = asyncio.run(arq_worker.scheduled_launch_status_tick({}))

    assert result == {"success": True, "activated": 2, "completed": 1}


def test_cron_job_failed_tick():
    with patch.object(arq_worker, "run_launch_status_tick", return_value=None):
        result = asyncio.run(arq_worker.scheduled_launch_status_tick({}))

    assert result == {"success": False}


def test_job_counter():
    ctx = {}
    asyncio.run(arq_worker.startup(ctx))
    asyncio.run(arq_worker.on_job_end(ctx))
    asyncio.run(arq_worker.on_job_end(ctx))

    assert ctx["jobs_processed"] == 2


def test_cron_runs_every_five_minutes():
    (job,) = arq_worker.WorkerSettings.cron_jobs

    assert job.minute == {0, 5, 10, 15, 20, 25, 30, 35, 40, 45, 50, 55}
    assert job.run_at_startup is True
    assert job.unique is True
