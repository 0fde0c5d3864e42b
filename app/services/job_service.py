"""Job lifecycle operations shared by the API, the orchestrator and the scheduler"""
from datetime import datetime
from typing import Callable, Optional
import logging
import uuid

from sqlalchemy import or_
from sqlalchemy.orm import Session

from app.models import AugmentorInstance, ExecutionType, Job, JobLog, JobStatus, TERMINAL_STATUSES
from app.services.exceptions import JobStateError, NotFoundError

logger = logging.getLogger(__name__)

FATAL_CONFIGURATION_PREFIX = "Fatal configuration error:"

LOG_LEVELS = {
    "INFO": logging.INFO,
    "WARNING": logging.WARNING,
    "ERROR": logging.ERROR,
}


def add_log(db: Session, job_id: str, message: str, level: str = "INFO") -> JobLog:
    """Append to the job's audit trail and mirror it to the process log"""
    logger.log(LOG_LEVELS.get(level, logging.INFO), f"[Job {job_id}] {message}")
    entry = JobLog(job_id=job_id, level=level, message=message, created_at=datetime.utcnow())
    db.add(entry)
    db.commit()
    return entry


def latest_error(db: Session, job_id: str) -> Optional[JobLog]:
    return (
        db.query(JobLog)
        .filter(JobLog.job_id == job_id, JobLog.level == "ERROR")
        .order_by(JobLog.id.desc())
        .first()
    )


def failed_on_configuration(db: Session, job_id: str) -> bool:
    entry = latest_error(db, job_id)
    return entry is not None and entry.message.startswith(FATAL_CONFIGURATION_PREFIX)


def acquire_batch_lock(db: Session, job_id: str) -> Optional[str]:
    """
    Set is_processing_batch only if it is currently clear.
    Returns a lease token for exactly one of any number of concurrent callers, None for the rest.
    """
    lease = str(uuid.uuid4())
    changed = (
        db.query(Job)
        .filter(
            Job.id == job_id,
            or_(Job.is_processing_batch.is_(False), Job.is_processing_batch.is_(None)),
        )
        .update(
            {Job.is_processing_batch: True, Job.batch_lease: lease, Job.updated_at: datetime.utcnow()},
            synchronize_session=False,
        )
    )
    db.commit()
    return lease if changed == 1 else None


def touch_batch_lock(db: Session, job_id: str, lease: str) -> bool:
    """Heartbeat for a held flag. False when the lease was released by recovery meanwhile."""
    changed = (
        db.query(Job)
        .filter(Job.id == job_id, Job.is_processing_batch.is_(True), Job.batch_lease == lease)
        .update({Job.updated_at: datetime.utcnow()}, synchronize_session=False)
    )
    db.commit()
    return changed == 1


def release_batch_lock(db: Session, job_id: str, lease: str):
    """Clear the flag, but only while this lease still holds it"""
    db.query(Job).filter(Job.id == job_id, Job.batch_lease == lease).update(
        {Job.is_processing_batch: False, Job.batch_lease: None, Job.updated_at: datetime.utcnow()},
        synchronize_session=False,
    )
    db.commit()


def finish_job(db: Session, job: Job, status: str, details: str) -> bool:
    """
    Move a job to completed or failed unless an operator cancelled it meanwhile.
    Cancellation committed from another session always wins.
    """
    values = {Job.status: status, Job.details: details, Job.updated_at: datetime.utcnow()}
    if status == JobStatus.COMPLETED.value:
        values[Job.completed_at] = datetime.utcnow()
    changed = (
        db.query(Job)
        .filter(Job.id == job.id, Job.status != JobStatus.CANCELLED.value)
        .update(values, synchronize_session=False)
    )
    db.commit()
    db.refresh(job)
    return changed == 1


def get_job(db: Session, job_id: str) -> Job:
    job = db.query(Job).filter(Job.id == job_id).first()
    if not job:
        raise NotFoundError(f"Job {job_id} not found")
    return job


def start_job(
    db: Session,
    instance_id: str,
    enqueue: Callable[[str], None],
    created_by: str = "unknown",
) -> Job:
    """Create a pending full-execution job for an instance and queue its first tick"""
    instance = db.query(AugmentorInstance).filter(AugmentorInstance.id == instance_id).first()
    if not instance:
        raise NotFoundError(f"Instance {instance_id} not found")

    job = Job(
        instance_id=instance.id,
        status=JobStatus.PENDING.value,
        execution_type=ExecutionType.FULL_EXECUTION.value,
        current_batch_offset=0,
        processed_records=0,
        failed_records=0,
        is_processing_batch=False,
        created_by=created_by,
    )
    db.add(job)
    db.commit()
    db.refresh(job)

    add_log(db, job.id, "Job created")
    enqueue(job.id)
    logger.info(f"Queued job {job.id} for instance {instance.name}")
    return job


def cancel_job(db: Session, job_id: str) -> Job:
    """Cooperative: an in-flight tick finishes, the next one sees the status and stops"""
    job = get_job(db, job_id)
    if job.status in TERMINAL_STATUSES:
        raise JobStateError(f"Job {job_id} is already {job.status}")

    job.status = JobStatus.CANCELLED.value
    job.details = "Cancelled by operator"
    job.completed_at = datetime.utcnow()
    db.commit()
    add_log(db, job.id, "Job cancelled")
    return job


def resume_job(db: Session, job_id: str, enqueue: Callable[[str], None]) -> Job:
    """Manual failed -> running transition; bypasses the automatic recoverability rule"""
    job = get_job(db, job_id)
    if job.status != JobStatus.FAILED.value:
        raise JobStateError(f"Only failed jobs can be resumed (job {job_id} is {job.status})")

    job.status = JobStatus.RUNNING.value
    job.is_processing_batch = False
    job.batch_lease = None
    job.auto_retry_count = 0
    job.details = None
    db.commit()
    add_log(db, job.id, "Job resumed by operator")
    enqueue(job.id)
    return job
