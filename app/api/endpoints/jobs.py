"""Jobs endpoints: start, cancel, resume and the job/log read model"""
from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session
from app.database import get_db
from app.models import Job, JobLog
from app.schemas import StartJobRequest, StartJobResponse, JobResponse, JobLogResponse
from app.services import job_service
from app.services.exceptions import JobStateError, NotFoundError
from typing import List

router = APIRouter()


def get_enqueue():
    """Dependency returning the callable that queues a job tick"""
    from app.tasks.celery_tasks import enqueue_batch
    return enqueue_batch


@router.post("/jobs/start", response_model=StartJobResponse)
def start_job(request: StartJobRequest, db: Session = Depends(get_db), enqueue=Depends(get_enqueue)):
    """Create a job for an instance and queue its first batch"""
    try:
        job = job_service.start_job(db, request.instance_id, enqueue, created_by=request.created_by or "unknown")
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))

    return StartJobResponse(job_id=job.id, status=job.status, message="Augmentor job started")


@router.post("/jobs/{job_id}/cancel", response_model=JobResponse)
def cancel_job(job_id: str, db: Session = Depends(get_db)):
    """Cancel a job; an in-flight batch finishes first"""
    try:
        return job_service.cancel_job(db, job_id)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except JobStateError as e:
        raise HTTPException(status_code=409, detail=str(e))


@router.post("/jobs/{job_id}/resume", response_model=JobResponse)
def resume_job(job_id: str, db: Session = Depends(get_db), enqueue=Depends(get_enqueue)):
    """Manually resume a failed job"""
    try:
        return job_service.resume_job(db, job_id, enqueue)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except JobStateError as e:
        raise HTTPException(status_code=409, detail=str(e))


@router.get("/jobs", response_model=List[JobResponse])
def list_jobs(limit: int = Query(20, ge=1, le=200), db: Session = Depends(get_db)):
    return db.query(Job).order_by(Job.created_at.desc()).limit(limit).all()


@router.get("/jobs/{job_id}", response_model=JobResponse)
def get_job_status(job_id: str, db: Session = Depends(get_db)):
    """Get the status of a job"""
    job = db.query(Job).filter(Job.id == job_id).first()

    if not job:
        raise HTTPException(status_code=404, detail="Job not found")

    return job


@router.get("/jobs/{job_id}/logs", response_model=List[JobLogResponse])
def get_job_logs(job_id: str, db: Session = Depends(get_db)):
    """Audit trail of a job, newest first"""
    if not db.query(Job).filter(Job.id == job_id).first():
        raise HTTPException(status_code=404, detail="Job not found")

    return (
        db.query(JobLog)
        .filter(JobLog.job_id == job_id)
        .order_by(JobLog.id.desc())
        .all()
    )
