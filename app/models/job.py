from sqlalchemy import Column, Integer, String, DateTime, Text, Boolean, ForeignKey
from sqlalchemy.orm import relationship
from datetime import datetime
import enum
import uuid
from app.database import Base


class JobStatus(str, enum.Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class ExecutionType(str, enum.Enum):
    DRY_RUN = "dry_run"
    FULL_EXECUTION = "full_execution"


TERMINAL_STATUSES = (JobStatus.COMPLETED.value, JobStatus.CANCELLED.value)


class Job(Base):
    __tablename__ = "jobs"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    instance_id = Column(String(36), nullable=False, index=True)
    status = Column(String(20), default=JobStatus.PENDING.value, index=True)  # pending, running, completed, failed, cancelled
    execution_type = Column(String(20), default=ExecutionType.FULL_EXECUTION.value)

    # Cursor and counters
    current_batch_offset = Column(Integer, default=0)
    total_records = Column(Integer)  # NULL until the count resolves
    processed_records = Column(Integer, default=0)
    failed_records = Column(Integer, default=0)
    embedding_failed_records = Column(Integer, default=0)

    # Two-pass observability
    pass1_processed = Column(Integer, default=0)
    pass1_cleaned = Column(Integer, default=0)
    pass2_needed = Column(Integer, default=0)
    pass2_processed = Column(Integer, default=0)

    is_processing_batch = Column(Boolean, default=False, index=True)
    batch_lease = Column(String(36))  # token of the tick holding the flag
    auto_retry_count = Column(Integer, default=0)
    details = Column(Text)
    created_by = Column(String(200))

    started_at = Column(DateTime)
    last_batch_at = Column(DateTime)
    completed_at = Column(DateTime)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    logs = relationship(
        "JobLog",
        back_populates="job",
        cascade="all, delete-orphan",
        order_by="JobLog.id",
    )

    @property
    def total_known(self) -> bool:
        return self.total_records is not None and self.total_records > 0

    @property
    def settled_records(self) -> int:
        return (self.processed_records or 0) + (self.failed_records or 0)

    def record_outcome(self, succeeded: int, failed: int):
        """
        Add a page's outcome to the counters.
        Never lets processed + failed exceed a known total; successes are kept first.
        """
        if self.total_known:
            room = max(self.total_records - self.settled_records, 0)
            succeeded = min(succeeded, room)
            failed = min(failed, room - succeeded)
        self.processed_records = (self.processed_records or 0) + succeeded
        self.failed_records = (self.failed_records or 0) + failed

    def is_finished(self) -> bool:
        return self.total_known and self.settled_records >= self.total_records

    def __repr__(self):
        return f"<Job(id={self.id}, instance={self.instance_id}, status='{self.status}')>"


class JobLog(Base):
    """Append-only audit trail for a job"""
    __tablename__ = "job_logs"

    id = Column(Integer, primary_key=True, index=True)
    job_id = Column(String(36), ForeignKey("jobs.id", ondelete="CASCADE"), nullable=False, index=True)
    level = Column(String(10), nullable=False, default="INFO")  # INFO, WARNING, ERROR
    message = Column(Text, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, index=True)

    job = relationship("Job", back_populates="logs")

    def __repr__(self):
        return f"<JobLog(job={self.job_id}, level='{self.level}')>"
