from app.models.instance import AugmentorInstance
from app.models.job import Job, JobLog, JobStatus, ExecutionType, TERMINAL_STATUSES

__all__ = [
    "AugmentorInstance",
    "Job",
    "JobLog",
    "JobStatus",
    "ExecutionType",
    "TERMINAL_STATUSES",
]
