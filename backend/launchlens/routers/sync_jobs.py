"""Sync job polling.

Platform imports run in the background and report progress on a job
record; clients poll this endpoint until the status is completed or failed.
"""

from uuid import UUID

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..database import get_db
from ..deps import get_clock, get_current_account
from ..models import Account
from ..schemas import SyncJobOut
from ..services.exceptions import LaunchlensError
from ..services.sync_jobs import SyncJobService
from ..utils.clock import Clock
from .errors import to_http_exception

router = APIRouter(prefix="/v1/sync-jobs", tags=["Sync Jobs"])


@router.get("/{job_id}", response_model=SyncJobOut)
def get_sync_job(
    job_id: UUID,
    account: Account = Depends(get_current_account),
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
):
    try:
        return SyncJobService(db, clock=clock).get_job(account.id, job_id)
    except LaunchlensError as e:
        raise to_http_exception(e)
