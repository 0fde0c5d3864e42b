from datetime import datetime, timedelta

import pytest

from app.models import AugmentorInstance, Job, JobStatus
from app.services.job_service import FATAL_CONFIGURATION_PREFIX, add_log
from app.services.recovery_scheduler import RecoveryScheduler, is_recoverable

FAILED = JobStatus.FAILED.value
RUNNING = JobStatus.RUNNING.value
PENDING = JobStatus.PENDING.value


@pytest.fixture
def enqueued():
    return []


@pytest.fixture
def scheduler(db, settings, enqueued):
    return RecoveryScheduler(db, enqueued.append, settings=settings)


def reload(db, job):
    db.expire_all()
    return db.query(Job).filter(Job.id == job.id).first()


class TestRecoverability:
    @pytest.mark.parametrize("failed, total, expected", [
        (10, 10, False),
        (6, 10, False),
        (5, 10, True),
        (1, 10, True),
        (3, None, True),
    ])
    def test_rule(self, failed, total, expected):
        job = Job(failed_records=failed, total_records=total)
        assert is_recoverable(job)[0] is expected


class TestFailedJobs:
    def test_total_loss_is_never_retried(self, db, scheduler, enqueued, make_instance, make_job):
        job = make_job(make_instance(), status=FAILED, total_records=10, failed_records=10)

        scheduler.run()

        assert enqueued == []
        assert reload(db, job).status == FAILED

    def test_majority_loss_is_not_retried(self, db, scheduler, enqueued, make_instance, make_job):
        make_job(make_instance(), status=FAILED, total_records=10, failed_records=6, processed_records=4)

        scheduler.run()

        assert enqueued == []

    def test_minor_loss_is_retried(self, db, scheduler, enqueued, make_instance, make_job):
        job = make_job(make_instance(), status=FAILED, total_records=10, failed_records=1, processed_records=4)

        summary = scheduler.run()

        job = reload(db, job)
        assert enqueued == [job.id]
        assert summary["resumed"] == [job.id]
        assert job.status == RUNNING
        assert job.auto_retry_count == 1

    def test_configuration_failure_waits_for_operator(self, db, scheduler, enqueued, make_instance, make_job):
        job = make_job(make_instance(), status=FAILED)
        add_log(db, job.id, f"{FATAL_CONFIGURATION_PREFIX} Instance not found", "ERROR")

        scheduler.run()

        assert enqueued == []
        assert reload(db, job).status == FAILED

    def test_retry_cap(self, db, scheduler, enqueued, settings, make_instance, make_job):
        make_job(make_instance(), status=FAILED, auto_retry_count=settings.max_auto_retries)

        scheduler.run()

        assert enqueued == []


class TestActiveJobs:
    def test_running_job_without_flag_is_reinvoked(self, db, scheduler, enqueued, make_instance, make_job):
        job = make_job(make_instance(), status=RUNNING)

        scheduler.run()

        assert enqueued == [job.id]

    def test_running_job_mid_tick_is_left_alone(self, db, scheduler, enqueued, make_instance, make_job):
        make_job(make_instance(), status=RUNNING, is_processing_batch=True)

        summary = scheduler.run()

        assert summary["released"] == []
        assert enqueued == []

    def test_stale_flag_is_released_and_job_reinvoked(self, db, scheduler, enqueued, make_instance, make_job):
        an_hour_ago = datetime.utcnow() - timedelta(hours=1)
        job = make_job(make_instance(), status=RUNNING, is_processing_batch=True, updated_at=an_hour_ago)

        summary = scheduler.run()

        assert summary["released"] == [job.id]
        assert reload(db, job).is_processing_batch is False
        assert enqueued == [job.id]

    def test_flag_younger_than_longest_tick_is_kept(self, db, scheduler, enqueued, settings, make_instance, make_job):
        assert settings.stale_lock_after_seconds() == 783.0
        twelve_minutes_ago = datetime.utcnow() - timedelta(minutes=12)
        job = make_job(make_instance(), status=RUNNING, is_processing_batch=True, updated_at=twelve_minutes_ago)

        summary = scheduler.run()

        assert summary["released"] == []
        assert reload(db, job).is_processing_batch is True

    def test_orphaned_pending_job_is_reinvoked(self, db, scheduler, enqueued, make_instance, make_job):
        instance = make_instance()
        old = make_job(instance, created_at=datetime.utcnow() - timedelta(minutes=10))
        make_job(instance)

        scheduler.run()

        assert enqueued == [old.id]

    @pytest.mark.parametrize("status", [JobStatus.COMPLETED.value, JobStatus.CANCELLED.value])
    def test_terminal_jobs_are_ignored(self, db, scheduler, enqueued, make_instance, make_job, status):
        make_job(make_instance(), status=status)

        scheduler.run()

        assert enqueued == []


class TestTriggers:
    def test_due_instance_starts_a_job(self, db, settings, enqueued, make_instance):
        now = datetime(2026, 10, 19, 9, 2)
        instance = make_instance(schedule_enabled=True, schedule_frequency="interval", schedule_interval_minutes=30)

        summary = RecoveryScheduler(db, enqueued.append, settings=settings, now=lambda: now).trigger_due_instances()

        job = db.query(Job).filter(Job.instance_id == instance.id).one()
        assert summary == [job.id]
        assert enqueued == [job.id]
        assert job.created_by == "scheduler"
        db.refresh(instance)
        assert instance.last_run == now

    def test_due_instance_with_active_job_is_skipped(self, db, settings, enqueued, make_instance, make_job):
        now = datetime(2026, 10, 19, 9, 2)
        instance = make_instance(schedule_enabled=True, schedule_frequency="interval", schedule_interval_minutes=30)
        make_job(instance, status=RUNNING)

        summary = RecoveryScheduler(db, enqueued.append, settings=settings, now=lambda: now).trigger_due_instances()

        assert summary == []
        assert db.query(Job).filter(Job.instance_id == instance.id).count() == 1
        db.refresh(instance)
        assert instance.last_run == now

    def test_paused_and_unscheduled_instances_do_not_fire(self, db, scheduler, make_instance):
        make_instance(status="paused", schedule_enabled=True, schedule_frequency="interval",
                      schedule_interval_minutes=30)
        make_instance(schedule_enabled=False)

        assert scheduler.trigger_due_instances() == []
        assert db.query(AugmentorInstance).count() == 2
