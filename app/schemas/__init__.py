from app.schemas.job_schema import StartJobRequest, StartJobResponse, JobResponse, JobLogResponse

__all__ = [
    "StartJobRequest",
    "StartJobResponse",
    "JobResponse",
    "JobLogResponse",
]
