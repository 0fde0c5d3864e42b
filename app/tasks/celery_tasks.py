"""Celery background tasks for the augmentation engine"""
from celery import Celery
from celery.signals import after_setup_logger
from app.config import get_settings
from app.database import SessionLocal
from app.services.batch_orchestrator import BatchOrchestrator
from app.services.recovery_scheduler import RecoveryScheduler
import logging

settings = get_settings()
logger = logging.getLogger(__name__)

# Initialize Celery
celery_app = Celery(
    "augmentor_tasks",
    broker=settings.celery_broker_url,
    backend=settings.celery_result_backend
)

celery_app.conf.task_routes = {
    "process_batch_task": {"queue": "augmentor"},
    "recovery_tick_task": {"queue": "augmentor"},
}

# Recovery scheduler runs on a fixed interval via celery beat
celery_app.conf.beat_schedule = {
    "recovery-tick": {
        "task": "recovery_tick_task",
        "schedule": float(settings.recovery_interval_seconds),
    },
}


@after_setup_logger.connect
def configure_worker_logging(logger, **kwargs):
    logger.setLevel(settings.log_level.upper())


def enqueue_batch(job_id: str, batch_retry: int = 0, countdown: float = 0):
    """Queue one tick of a job"""
    process_batch_task.apply_async((job_id, batch_retry), countdown=countdown)


@celery_app.task(name="process_batch_task")
def process_batch_task(job_id: str, batch_retry: int = 0):
    """
    Run one tick of a job and schedule the next one.
    A lost follow-up (worker restart) is picked up by the recovery tick.
    """
    db = SessionLocal()

    try:
        result = BatchOrchestrator(db).run_tick(job_id, batch_retry)
    finally:
        db.close()

    if result.reschedule:
        enqueue_batch(job_id, result.batch_retry, countdown=result.delay)

    return result.as_dict()


@celery_app.task(name="recovery_tick_task")
def recovery_tick_task():
    """Resume stuck jobs, retry recoverable failures and fire due schedules"""
    db = SessionLocal()

    try:
        summary = RecoveryScheduler(db, enqueue=enqueue_batch).run()
        return summary
    except Exception as e:
        logger.error(f"Recovery tick failed: {e}", exc_info=True)
        return {"status": "error", "message": str(e)}
    finally:
        db.close()
