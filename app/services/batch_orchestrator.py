"""
Batch orchestrator: drives one tick (one page) of an augmentation job.

A tick loads the job, takes its processing flag, fetches the next page from
the record store, runs programmatic language removal (Pass 1), sends what is
left to the completion service (Pass 2), refreshes embeddings, overwrites the
rows in the store and records the outcome. The caller re-schedules the next
tick from the returned TickResult, so a job is a chain of short tasks rather
than one long loop.
"""
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple
import logging
import re
import time

from sqlalchemy.orm import Session

from app.config import get_settings
from app.models import AugmentorInstance, Job, JobStatus
from app.services.ai_client import CompletionClient, EmbeddingClient
from app.services.content_filter import FilterStats, filter_content
from app.services.embeddings import EmbeddingFanout
from app.services.exceptions import BatchDispatchError, ConfigurationError
from app.services.job_service import (
    FATAL_CONFIGURATION_PREFIX,
    acquire_batch_lock,
    add_log,
    finish_job,
    release_batch_lock,
    touch_batch_lock,
)
from app.services.language_detector import DEFAULT_PROFILES, LanguageProfiles
from app.services.refinement import RefinementDispatcher, RefinementRequest, needs_refinement
from app.services.vector_store import VectorStoreClient

logger = logging.getLogger(__name__)

STOP_STATUSES = (JobStatus.COMPLETED.value, JobStatus.CANCELLED.value, JobStatus.FAILED.value)


class TickOutcome(str, Enum):
    NOT_FOUND = "not_found"
    STOPPED = "stopped"          # job already completed, cancelled or failed
    SKIPPED = "skipped"          # another tick holds the processing flag
    COMPLETED = "completed"
    CONTINUE = "continue"        # page recorded, next page due
    RETRY_BATCH = "retry_batch"  # combined refinement failed, same page again later
    DEFERRED = "deferred"        # time budget hit, partial progress saved
    FAILED = "failed"


@dataclass
class TickResult:
    outcome: TickOutcome
    delay: Optional[float] = None
    batch_retry: int = 0

    @property
    def reschedule(self) -> bool:
        return self.delay is not None

    def as_dict(self) -> Dict[str, Any]:
        return {"outcome": self.outcome.value, "delay": self.delay, "batch_retry": self.batch_retry}


@dataclass
class PageRecord:
    key: int
    row: Dict[str, Any]
    record_id: Any
    original_value: str
    content: str
    tagged: bool
    filter_stats: Optional[FilterStats] = None
    escalated: bool = False
    refined: bool = False
    final_text: Optional[str] = None
    error: Optional[str] = None


def tag_pattern(tag: str):
    escaped = re.escape(tag)
    return re.compile(rf"\[{escaped}\](.*?)\[/{escaped}\]", re.S)


def extract_tagged(value: str, tag: str) -> Tuple[str, bool]:
    """Content between the first [tag]...[/tag] pair, or the whole value when untagged"""
    match = tag_pattern(tag).search(value)
    if match:
        return match.group(1), True
    return value, False


def splice_tagged(value: str, content: str, tag: str) -> str:
    return tag_pattern(tag).sub(lambda _: f"[{tag}]{content}[/{tag}]", value, count=1)


class BatchOrchestrator:
    """Runs ticks for jobs using one database session"""

    def __init__(
        self,
        db: Session,
        settings=None,
        store_factory: Callable[[AugmentorInstance], Any] = VectorStoreClient.for_instance,
        completion_client=None,
        embedding_client=None,
        profiles: LanguageProfiles = DEFAULT_PROFILES,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.db = db
        self.settings = settings or get_settings()
        self.store_factory = store_factory
        self._completion_client = completion_client
        self._embedding_client = embedding_client
        self.profiles = profiles
        self.sleep = sleep
        self.clock = clock
        self.lease = None

    @property
    def completion_client(self):
        if self._completion_client is None:
            self._completion_client = CompletionClient()
        return self._completion_client

    @property
    def embedding_client(self):
        if self._embedding_client is None:
            self._embedding_client = EmbeddingClient()
        return self._embedding_client

    def log(self, job: Job, message: str, level: str = "INFO"):
        add_log(self.db, job.id, message, level)

    # ---- entry point ----

    def run_tick(self, job_id: str, batch_retry: int = 0) -> TickResult:
        job = self.db.query(Job).filter(Job.id == job_id).first()
        if not job:
            logger.error(f"[Batch] Job {job_id} not found")
            return TickResult(TickOutcome.NOT_FOUND)

        if job.status in STOP_STATUSES:
            logger.info(f"[Batch] Job {job_id} is {job.status}, stopping")
            return TickResult(TickOutcome.STOPPED)

        lease = None if job.is_processing_batch else acquire_batch_lock(self.db, job_id)
        if lease is None:
            logger.info(f"[Batch] Job {job_id} is already being processed, skipping")
            return TickResult(TickOutcome.SKIPPED)
        self.lease = lease

        self.db.refresh(job)
        deadline = self.clock() + self.settings.tick_time_budget_seconds
        logger.info(f"[Batch] Processing job {job_id} (retry {batch_retry}/{self.settings.max_batch_retries})")

        try:
            return self._tick(job, batch_retry, deadline)
        except ConfigurationError as e:
            self._fail(job_id, f"{FATAL_CONFIGURATION_PREFIX} {e}", str(e))
            return TickResult(TickOutcome.FAILED)
        except Exception as e:
            logger.exception(f"[Batch] Job {job_id} processing error")
            self._fail(job_id, f"Fatal error: {e}", str(e))
            return TickResult(TickOutcome.FAILED)
        finally:
            release_batch_lock(self.db, job_id, lease)
            self.lease = None

    # ---- tick stages ----

    def _tick(self, job: Job, batch_retry: int, deadline: float) -> TickResult:
        instance = self._load_instance(job)
        store = self.store_factory(instance)

        if job.status == JobStatus.PENDING.value:
            job.total_records = self._resolve_total(job, store, instance)
            job.status = JobStatus.RUNNING.value
            job.started_at = job.started_at or datetime.utcnow()
            self.db.commit()
            self.log(job, "Job started")
        elif job.total_records is None:
            job.total_records = self._resolve_total(job, store, instance)
            self.db.commit()

        batch_size = self.settings.batch_size
        self.log(job, f"Fetching batch at offset {job.current_batch_offset} (batch size: {batch_size})")
        rows = store.query(instance.query_filter, job.current_batch_offset, batch_size)
        self.log(job, f"Fetched {len(rows)} records")

        if not rows:
            return self._complete(job, "All records processed")

        page = [self._page_record(key, row, instance) for key, row in enumerate(rows)]
        requests = self._run_pass1(job, instance, page)

        if requests and self._over_budget(deadline):
            return self._defer(job, instance, store, page, "Time budget reached before AI refinement")

        if requests:
            if not self._heartbeat(job):
                return self._abandon(job)
            try:
                dispatch = self._refiner(instance).dispatch(requests, deadline=deadline)
            except BatchDispatchError as e:
                return self._handle_batch_failure(job, page, e, batch_retry)

            by_key = {record.key: record for record in page}
            for key, outcome in dispatch.outcomes.items():
                record = by_key[key]
                if outcome.succeeded:
                    record.final_text = outcome.text
                    record.refined = True
                elif not outcome.deferred:
                    record.error = outcome.error
                    self.log(job, f"Record {record.record_id}: refinement failed - {outcome.error}", "ERROR")

            self.log(
                job,
                f"AI processing completed: {dispatch.refined} refined, {dispatch.failed} failed ({dispatch.strategy})",
            )
            if dispatch.deferred:
                return self._defer(job, instance, store, page, f"Time budget reached with {dispatch.deferred} records unrefined")

        if not self._heartbeat(job):
            return self._abandon(job)
        written, embedding_failures = self._write_back(job, instance, store, page)
        failed = sum(1 for record in page if record.error is not None)

        job.record_outcome(written, failed)
        self._add_pass_counters(job, [r for r in page if r.final_text is not None or r.error is not None])
        job.embedding_failed_records = (job.embedding_failed_records or 0) + embedding_failures
        job.current_batch_offset = (job.current_batch_offset or 0) + len(rows)
        job.last_batch_at = datetime.utcnow()
        self.db.commit()
        self.log(job, f"Batch complete: {written} succeeded, {failed} failed")

        if job.is_finished():
            return self._complete(job, "All records processed")
        return TickResult(TickOutcome.CONTINUE, delay=self.settings.tick_delay_seconds)

    def _load_instance(self, job: Job) -> AugmentorInstance:
        instance = self.db.query(AugmentorInstance).filter(AugmentorInstance.id == job.instance_id).first()
        if not instance:
            raise ConfigurationError("Instance not found")

        for field_name in ("target_field", "primary_key_field", "prompt"):
            if not getattr(instance, field_name):
                raise ConfigurationError(f"Instance {instance.id} has no {field_name}")
        if self.settings.prompt_placeholder not in instance.prompt:
            raise ConfigurationError(f"Instance prompt lacks the {self.settings.prompt_placeholder} placeholder")
        return instance

    def _resolve_total(self, job: Job, store, instance: AugmentorInstance) -> Optional[int]:
        try:
            total = store.count(instance.query_filter)
        except Exception as e:
            self.log(job, f"Could not count matching records ({e}); continuing without a known total", "WARNING")
            return None
        self.log(job, f"Total records matching filter: {total}")
        return total

    def _page_record(self, key: int, row: Dict[str, Any], instance: AugmentorInstance) -> PageRecord:
        original = row.get(instance.target_field) or ""
        if not isinstance(original, str):
            original = str(original)
        content, tagged = extract_tagged(original, self.settings.content_tag)
        return PageRecord(
            key=key,
            row=row,
            record_id=row.get(instance.primary_key_field),
            original_value=original,
            content=content,
            tagged=tagged,
        )

    def _run_pass1(self, job: Job, instance: AugmentorInstance, page: List[PageRecord]) -> List[RefinementRequest]:
        """Resolve what Pass 1 can; return refinement requests for the rest"""
        threshold = instance.clean_threshold if instance.clean_threshold is not None else self.settings.clean_threshold
        two_pass = instance.enable_two_pass is not False
        removal = instance.removal_languages
        cap = instance.max_content_length or 0

        requests = []
        for record in page:
            text = record.content
            if two_pass:
                text, stats = filter_content(record.content, removal, self.profiles)
                record.filter_stats = stats
                if not needs_refinement(stats, threshold):
                    record.final_text = text
                    continue
            elif not text:
                record.final_text = text
                continue

            record.escalated = True
            if cap and len(text) > cap:
                text = text[:cap]
            requests.append(RefinementRequest(key=record.key, record_id=record.record_id, content=text))

        if two_pass:
            self.log(job, f"Pass 1: {len(page) - len(requests)} of {len(page)} records resolved, {len(requests)} need AI refinement")
        return requests

    def _refiner(self, instance: AugmentorInstance) -> RefinementDispatcher:
        return RefinementDispatcher(
            self.completion_client,
            instance.generative_model_name,
            instance.prompt,
            settings=self.settings,
            sleep=self.sleep,
            clock=self.clock,
        )

    def _over_budget(self, deadline: float) -> bool:
        return self.clock() > deadline

    def _updated_row(self, record: PageRecord, instance: AugmentorInstance, vector: Optional[List[float]]) -> Dict[str, Any]:
        row = dict(record.row)
        if record.tagged:
            row[instance.target_field] = splice_tagged(record.original_value, record.final_text, self.settings.content_tag)
        else:
            row[instance.target_field] = record.final_text
        row[self.settings.done_marker_field] = self.settings.done_marker_value
        if vector is not None and instance.vector_field_name:
            row[instance.vector_field_name] = vector
        return row

    def _write_back(self, job: Job, instance: AugmentorInstance, store, page: List[PageRecord]) -> Tuple[int, int]:
        """Embed and overwrite every resolved record. Returns (written, embedding failures)."""
        resolved = [record for record in page if record.final_text is not None]
        if not resolved:
            return 0, 0

        vectors = {}
        embedding_failures = 0
        if instance.vector_field_name:
            fanout = EmbeddingFanout(
                self.embedding_client,
                instance.embedding_model_name,
                settings=self.settings,
                sleep=self.sleep,
            )
            result = fanout.embed_all({record.key: record.final_text for record in resolved})
            vectors = result.vectors
            embedding_failures = result.failed
            self.log(job, f"Generated {len(vectors)} embeddings")
            if embedding_failures:
                self.log(job, f"{embedding_failures} embeddings failed; those records keep their previous vectors", "WARNING")

        rows = [self._updated_row(record, instance, vectors.get(record.key)) for record in resolved]
        store.replace(instance.primary_key_field, rows)
        return len(rows), embedding_failures

    def _add_pass_counters(self, job: Job, settled: List[PageRecord]):
        job.pass1_processed = (job.pass1_processed or 0) + sum(1 for r in settled if r.filter_stats is not None)
        job.pass1_cleaned = (job.pass1_cleaned or 0) + sum(1 for r in settled if r.filter_stats is not None and not r.escalated)
        job.pass2_needed = (job.pass2_needed or 0) + sum(1 for r in settled if r.escalated)
        job.pass2_processed = (job.pass2_processed or 0) + sum(1 for r in settled if r.refined)

    # ---- tick endings ----

    def _defer(self, job: Job, instance: AugmentorInstance, store, page: List[PageRecord], reason: str) -> TickResult:
        """Save resolved records, leave the rest matching the filter, keep the offset"""
        if not self._heartbeat(job):
            return self._abandon(job)
        written, embedding_failures = self._write_back(job, instance, store, page)
        job.record_outcome(written, 0)
        self._add_pass_counters(job, [r for r in page if r.final_text is not None])
        job.embedding_failed_records = (job.embedding_failed_records or 0) + embedding_failures
        job.last_batch_at = datetime.utcnow()
        self.db.commit()
        self.log(job, f"{reason}; saved {written} records, continuing in next batch", "WARNING")

        if job.is_finished():
            return self._complete(job, "All records processed")
        return TickResult(TickOutcome.DEFERRED, delay=self.settings.tick_delay_seconds)

    def _handle_batch_failure(self, job: Job, page: List[PageRecord], error: Exception, batch_retry: int) -> TickResult:
        max_retries = self.settings.max_batch_retries
        if batch_retry < max_retries:
            delay = self.settings.batch_retry_base_seconds * (2 ** batch_retry)
            self.log(
                job,
                f"Batch AI processing failed: {error}. Retrying ({batch_retry + 1}/{max_retries}) in {delay:.0f}s",
                "ERROR",
            )
            return TickResult(TickOutcome.RETRY_BATCH, delay=delay, batch_retry=batch_retry + 1)

        self.log(job, f"Batch AI processing failed after {max_retries} retries: {error}. Skipping batch.", "ERROR")
        job.record_outcome(0, len(page))
        self._add_pass_counters(job, page)
        job.current_batch_offset = (job.current_batch_offset or 0) + len(page)
        job.last_batch_at = datetime.utcnow()
        self.db.commit()
        self.log(job, "Moving to next batch")

        if job.is_finished():
            return self._complete(job, "All records processed")
        return TickResult(TickOutcome.CONTINUE, delay=self.settings.tick_delay_seconds)

    def _heartbeat(self, job: Job) -> bool:
        """Refresh the flag before a slow stage; False once recovery has taken it away"""
        return touch_batch_lock(self.db, job.id, self.lease)

    def _abandon(self, job: Job) -> TickResult:
        self.log(job, "Processing flag was released while this batch was running; abandoning it", "WARNING")
        return TickResult(TickOutcome.SKIPPED)

    def _complete(self, job: Job, details: str) -> TickResult:
        if not finish_job(self.db, job, JobStatus.COMPLETED.value, details):
            self.log(job, f"Job was {job.status} during the batch; not marking it completed")
            return TickResult(TickOutcome.STOPPED)
        self.log(job, f"Job completed - {details}")
        return TickResult(TickOutcome.COMPLETED)

    def _fail(self, job_id: str, message: str, details: str):
        self.db.rollback()
        job = self.db.query(Job).filter(Job.id == job_id).first()
        if not job:
            return
        finish_job(self.db, job, JobStatus.FAILED.value, details)
        self.log(job, message, "ERROR")
