from sqlalchemy import Column, Integer, String, DateTime, Text, Boolean, Float, JSON
from sqlalchemy.dialects.postgresql import JSONB
from datetime import datetime
import uuid
from app.database import Base


class AugmentorInstance(Base):
    """Operator configuration for sweeping one collection. Read-only to the engine except last_run."""
    __tablename__ = "augmentor_instances"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    name = Column(String(200), nullable=False)
    description = Column(Text)
    status = Column(String(20), default="active", index=True)  # active, paused, error

    # Remote vector store
    store_endpoint = Column(String(500), nullable=False)
    store_token = Column(String(500), nullable=False)
    collection_name = Column(String(200), nullable=False)
    query_filter = Column(Text)
    primary_key_field = Column(String(100), default="id")
    target_field = Column(String(100))
    vector_field_name = Column(String(100))

    # Models and prompt
    prompt = Column(Text)
    generative_model_name = Column(String(100), default="gpt-4o")
    embedding_model_name = Column(String(100), default="text-embedding-3-large")
    max_content_length = Column(Integer, default=8000)

    # Two-pass reduction
    enable_two_pass = Column(Boolean, default=True)
    languages_to_remove = Column(String(200), default="en")  # comma-separated: en,fr,de
    clean_threshold = Column(Float)

    # Recurring trigger
    schedule_enabled = Column(Boolean, default=False, index=True)
    schedule_frequency = Column(String(20), default="once_daily")  # interval, hourly, every_x_hours, once_daily, twice_daily, weekly
    schedule_interval_minutes = Column(Integer, default=0)
    schedule_hours_interval = Column(Integer, default=4)
    schedule_time = Column(String(5), default="09:00")
    schedule_time_second = Column(String(5), default="21:00")
    schedule_day_of_week = Column(Integer, default=0)  # 0 = Monday
    schedule_days = Column(JSON().with_variant(JSONB, "postgresql"))  # ["monday", "tuesday", ...]
    last_run = Column(DateTime)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    @property
    def removal_languages(self):
        """Parsed languages_to_remove, lower-cased, order preserved"""
        if not self.languages_to_remove:
            return []
        tags = [tag.strip().lower() for tag in self.languages_to_remove.split(",")]
        return [tag for tag in dict.fromkeys(tags) if tag]

    def __repr__(self):
        return f"<AugmentorInstance(id={self.id}, name='{self.name}', collection='{self.collection_name}')>"
