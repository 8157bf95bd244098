"""Sync job records.

WHAT:
    Pollable status records for long-running platform imports
    (pending -> running -> completed | failed).

WHY:
    Imports can take minutes; callers poll the job instead of blocking on
    the request. The import itself lives in the platform integrations.
"""

import logging
from typing import Optional
from uuid import UUID

from sqlalchemy.orm import Session

from ..models import SyncJob, SyncJobStatusEnum
from ..telemetry import capture_message
from ..utils.clock import Clock, utcnow
from .exceptions import NotFoundError

logger = logging.getLogger(__name__)


class SyncJobService:
    def __init__(self, db: Session, clock: Clock = utcnow):
        self.db = db
        self.clock = clock

    def _get(self, job_id: UUID) -> SyncJob:
        job = self.db.query(SyncJob).filter(SyncJob.id == job_id).first()
        if not job:
            raise NotFoundError("Sync job not found")
        return job

    def start_job(self, account_id: UUID, platform: str) -> SyncJob:
        now = self.clock()
        job = SyncJob(
            account_id=account_id,
            platform=platform,
            status=SyncJobStatusEnum.running.value,
            started_at=now,
            created_at=now,
        )
        self.db.add(job)
        self.db.commit()
        self.db.refresh(job)
        logger.info("[SYNC_JOB] Started %s sync %s for account %s", platform, job.id, account_id)
        return job

    def update_progress(self, job_id: UUID, processed: int, total: Optional[int] = None) -> SyncJob:
        job = self._get(job_id)
        job.processed_records = processed
        if total is not None:
            job.total_records = total
        self.db.commit()
        return job

    def complete_job(self, job_id: UUID, total: int, processed: int) -> SyncJob:
        job = self._get(job_id)
        job.status = SyncJobStatusEnum.completed.value
        job.total_records = total
        job.processed_records = processed
        job.completed_at = self.clock()
        self.db.commit()
        logger.info("[SYNC_JOB] Completed %s (%d/%d records)", job_id, processed, total)
        return job

    def fail_job(self, job_id: UUID, error: str) -> SyncJob:
        job = self._get(job_id)
        job.status = SyncJobStatusEnum.failed.value
        job.error_message = error
        job.completed_at = self.clock()
        self.db.commit()
        logger.warning("[SYNC_JOB] Failed %s: %s", job_id, error)
        capture_message(
            f"Sync job failed: {job.platform}",
            level="warning",
            extra={"job_id": str(job_id), "account_id": str(job.account_id), "error": error},
        )
        return job

    def get_job(self, account_id: UUID, job_id: UUID) -> SyncJob:
        job = (
            self.db.query(SyncJob)
            .filter(SyncJob.id == job_id, SyncJob.account_id == account_id)
            .first()
        )
        if not job:
            raise NotFoundError("Sync job not found")
        return job
