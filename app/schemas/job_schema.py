from pydantic import BaseModel
from datetime import datetime
from typing import Optional


class StartJobRequest(BaseModel):
    instance_id: str
    created_by: Optional[str] = None


class StartJobResponse(BaseModel):
    job_id: str
    status: str
    message: str


class JobResponse(BaseModel):
    id: str
    instance_id: str
    status: str
    execution_type: str
    current_batch_offset: int
    total_records: Optional[int]
    processed_records: int
    failed_records: int
    embedding_failed_records: int
    pass1_processed: int
    pass1_cleaned: int
    pass2_needed: int
    pass2_processed: int
    is_processing_batch: bool
    details: Optional[str]
    created_by: Optional[str]
    started_at: Optional[datetime]
    last_batch_at: Optional[datetime]
    completed_at: Optional[datetime]
    created_at: datetime

    class Config:
        from_attributes = True


class JobLogResponse(BaseModel):
    id: int
    job_id: str
    level: str
    message: str
    created_at: datetime

    class Config:
        from_attributes = True
