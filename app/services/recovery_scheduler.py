"""
Recovery scheduler: periodic reconciliation of jobs and recurring triggers.

Each run releases processing flags left behind by dead workers, re-invokes
running and orphaned pending jobs (their deferred next tick may have been
lost with a restart), retries failed jobs that are still worth retrying,
and starts jobs for scheduled instances whose trigger is due.
"""
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional, Tuple
import logging

from sqlalchemy import or_
from sqlalchemy.orm import Session

from app.config import get_settings
from app.models import AugmentorInstance, Job, JobStatus
from app.services.job_service import add_log, failed_on_configuration, start_job
from app.services.schedule_rules import is_due

logger = logging.getLogger(__name__)

ACTIVE_STATUSES = (JobStatus.PENDING.value, JobStatus.RUNNING.value)


def is_recoverable(job: Job, majority_loss_ratio: float = 0.5) -> Tuple[bool, str]:
    """
    Recoverability rule for failed jobs: do not retry a total loss
    (every record failed) or a majority loss (more than half failed).
    """
    failed = job.failed_records or 0
    if job.total_known:
        if failed >= job.total_records:
            return False, "all records failed"
        if failed / job.total_records > majority_loss_ratio:
            return False, f"{failed}/{job.total_records} records failed"
    return True, ""


class RecoveryScheduler:
    def __init__(
        self,
        db: Session,
        enqueue: Callable[[str], None],
        settings=None,
        now: Callable[[], datetime] = datetime.utcnow,
    ):
        self.db = db
        self.enqueue = enqueue
        self.settings = settings or get_settings()
        self.now = now

    def run(self) -> Dict[str, List[str]]:
        summary = {
            "released": self.release_stale_locks(),
            "resumed": self.resume_jobs(),
            "triggered": self.trigger_due_instances(),
        }
        logger.info(
            f"Recovery tick: released {len(summary['released'])}, resumed {len(summary['resumed'])}, "
            f"triggered {len(summary['triggered'])}"
        )
        return summary

    def release_stale_locks(self) -> List[str]:
        """Clear processing flags held longer than any live tick could take"""
        cutoff = self.now() - timedelta(seconds=self.settings.stale_lock_after_seconds())
        stale = (
            self.db.query(Job)
            .filter(
                Job.is_processing_batch.is_(True),
                Job.status.in_(ACTIVE_STATUSES + (JobStatus.FAILED.value,)),
                Job.updated_at < cutoff,
            )
            .all()
        )
        released = []
        for job in stale:
            job.is_processing_batch = False
            job.batch_lease = None
            self.db.commit()
            add_log(self.db, job.id, "Released stale processing flag", "WARNING")
            released.append(job.id)
        return released

    def resume_jobs(self) -> List[str]:
        orphan_cutoff = self.now() - timedelta(seconds=self.settings.recovery_interval_seconds)
        candidates = (
            self.db.query(Job)
            .filter(
                or_(Job.is_processing_batch.is_(False), Job.is_processing_batch.is_(None)),
                or_(
                    Job.status.in_((JobStatus.RUNNING.value, JobStatus.FAILED.value)),
                    (Job.status == JobStatus.PENDING.value) & (Job.created_at < orphan_cutoff),
                ),
            )
            .order_by(Job.created_at)
            .all()
        )

        resumed = []
        for job in candidates:
            if job.status == JobStatus.FAILED.value and not self._retry_failed(job):
                continue
            self.enqueue(job.id)
            resumed.append(job.id)
        return resumed

    def _retry_failed(self, job: Job) -> bool:
        recoverable, reason = is_recoverable(job, self.settings.majority_loss_ratio)
        if not recoverable:
            logger.info(f"Not retrying job {job.id}: {reason}")
            return False
        if failed_on_configuration(self.db, job.id):
            logger.info(f"Not retrying job {job.id}: configuration error needs operator action")
            return False
        if (job.auto_retry_count or 0) >= self.settings.max_auto_retries:
            logger.info(f"Not retrying job {job.id}: automatic retry limit reached")
            return False

        job.status = JobStatus.RUNNING.value
        job.auto_retry_count = (job.auto_retry_count or 0) + 1
        self.db.commit()
        add_log(
            self.db,
            job.id,
            f"Automatically resuming failed job (attempt {job.auto_retry_count}/{self.settings.max_auto_retries})",
        )
        return True

    def trigger_due_instances(self) -> List[str]:
        now = self.now()
        instances = (
            self.db.query(AugmentorInstance)
            .filter(
                AugmentorInstance.status == "active",
                AugmentorInstance.schedule_enabled.is_(True),
            )
            .all()
        )

        started = []
        for instance in instances:
            if not is_due(instance, now, self.settings.trigger_grace_seconds):
                continue
            job_id = self._start_scheduled(instance, now)
            if job_id:
                started.append(job_id)
        return started

    def _start_scheduled(self, instance: AugmentorInstance, now: datetime) -> Optional[str]:
        active = (
            self.db.query(Job)
            .filter(Job.instance_id == instance.id, Job.status.in_(ACTIVE_STATUSES))
            .first()
        )
        instance.last_run = now
        self.db.commit()

        if active:
            logger.info(f"Instance {instance.id} is due but job {active.id} is still active, skipping")
            return None

        job = start_job(self.db, instance.id, self.enqueue, created_by="scheduler")
        logger.info(f"Started scheduled job {job.id} for instance {instance.name}")
        return job.id
