"""
Shared pytest fixtures.

Tests run against an in-memory SQLite database and fake implementations of
the record store, completion service and embedding service, so no broker,
Postgres or network access is needed.
"""
import os

# Must be set before app.database builds its engine
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("OPENAI_API_KEY", "test-key")

import itertools
import threading

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.config import Settings
from app.database import Base
from app.models import AugmentorInstance, Job, JobStatus
from app.services.exceptions import ExternalServiceError, RecordStoreError
from app.services.refinement import RECORD_MARKER_PATTERN


ENGLISH_TEXT = (
    "The people of the city went home after work. "
    "They said that the water was very good this year. "
    "We have been there many times with our children."
)
GERMAN_TEXT = "Der Hund ist sehr alt und das Haus ist klein. Wir sind heute nicht zu Hause."


class FakeStore:
    """In-memory record store. Rows carrying the done marker drop out of the filter."""

    def __init__(self, rows=None, pk="id", done_field="changed_flag", done_value="done"):
        self.rows = [dict(row) for row in (rows or [])]
        self.pk = pk
        self.done_field = done_field
        self.done_value = done_value
        self.fail_count = False
        self.fail_replace = False
        self.queries = []
        self.replaced = []

    def _matching(self):
        return [row for row in self.rows if row.get(self.done_field) != self.done_value]

    def count(self, filter_expr):
        if self.fail_count:
            raise RecordStoreError("count unavailable", status_code=503)
        return len(self._matching())

    def query(self, filter_expr, offset, limit):
        self.queries.append((filter_expr, offset, limit))
        return [dict(row) for row in self._matching()[offset:offset + limit]]

    def replace(self, primary_key_field, rows):
        if self.fail_replace:
            raise RecordStoreError("insert rejected", status_code=503)
        self.replaced.append([dict(row) for row in rows])
        ids = {row[primary_key_field] for row in rows}
        self.rows = [row for row in self.rows if row[primary_key_field] not in ids] + [dict(r) for r in rows]

    def row(self, record_id):
        return next(row for row in self.rows if row[self.pk] == record_id)


class FakeCompletion:
    """Completion service that answers through a responder function"""

    def __init__(self, responder=None):
        self.responder = responder or echo_combined
        self.calls = []
        self._lock = threading.Lock()

    def complete(self, model, messages, timeout, temperature=0.3):
        with self._lock:
            self.calls.append({"model": model, "messages": messages, "timeout": timeout})
        return self.responder(messages)


class FakeEmbedding:
    def __init__(self, dims=3, fail_when=None):
        self.dims = dims
        self.fail_when = fail_when or (lambda text: False)
        self.calls = []
        self._lock = threading.Lock()

    def embed(self, model, text, timeout):
        with self._lock:
            self.calls.append(text)
        if self.fail_when(text):
            raise ExternalServiceError("embedding backend unavailable")
        return [0.5] * self.dims


def echo_combined(messages):
    """Answer a combined prompt with one 'refined' block per record marker"""
    prompt = messages[-1]["content"]
    count = len(RECORD_MARKER_PATTERN.findall(prompt))
    if count == 0:
        return "refined"
    return "\n\n".join(f"[RECORD {i}]\nrefined {i}" for i in range(1, count + 1))


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def db(engine):
    Session = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    session = Session()
    yield session
    session.close()


@pytest.fixture
def settings():
    return Settings(
        database_url="sqlite://",
        batch_size=5,
        tick_delay_seconds=1.0,
        tick_time_budget_seconds=240.0,
    )


@pytest.fixture
def no_sleep():
    delays = []
    return delays.append, delays


@pytest.fixture
def make_instance(db):
    def _make(**overrides):
        values = dict(
            name="docs",
            store_endpoint="https://store.example.com",
            store_token="secret",
            collection_name="pages",
            query_filter='changed_flag != "done"',
            primary_key_field="id",
            target_field="content",
            vector_field_name="vector",
            prompt="Remove English from: {{FIELD_VALUE}}",
            generative_model_name="gpt-4o",
            embedding_model_name="text-embedding-3-large",
            max_content_length=8000,
            enable_two_pass=True,
            languages_to_remove="en",
            status="active",
        )
        values.update(overrides)
        instance = AugmentorInstance(**values)
        db.add(instance)
        db.commit()
        db.refresh(instance)
        return instance
    return _make


@pytest.fixture
def make_job(db):
    def _make(instance, **overrides):
        values = dict(
            instance_id=instance.id,
            status=JobStatus.PENDING.value,
            current_batch_offset=0,
            processed_records=0,
            failed_records=0,
            is_processing_batch=False,
        )
        values.update(overrides)
        job = Job(**values)
        db.add(job)
        db.commit()
        db.refresh(job)
        return job
    return _make


@pytest.fixture
def ticking_clock():
    """Monotonic clock that advances one second per reading"""
    counter = itertools.count()
    return lambda: float(next(counter))
