from datetime import datetime
from typing import Optional
from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ....core.dependencies import get_db, get_current_admin_user
from ....core.exceptions import NotFoundError
from ....models.user import User
from ....services.job_service import JobService, JOB_NAMES

router = APIRouter()


@router.get("/")
async def list_jobs(current_user: User = Depends(get_current_admin_user)):
    return {"jobs": list(JOB_NAMES)}


@router.post("/run-all")
def run_all_jobs(
    now: Optional[datetime] = Query(None, description="Override the current time"),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_admin_user)
):
    """
    Run every scheduled job once. A failing job does not stop the others.
    """
    return JobService(db).run_scheduled_jobs(now)


@router.post("/{job_name}")
def run_job(
    job_name: str,
    now: Optional[datetime] = Query(None, description="Override the current time"),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_admin_user)
):
    if job_name not in JOB_NAMES:
        raise NotFoundError("Job", job_name)
    return JobService(db).run_job(job_name, now)
