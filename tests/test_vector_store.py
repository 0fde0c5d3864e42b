import threading

import pytest
import requests

from app.services.exceptions import ExternalTimeoutError, RecordStoreError
from app.services.vector_store import (
    DELETE_PATH,
    INSERT_PATH,
    QUERY_PATH,
    VectorStoreClient,
    build_in_filter,
)


class FakeResponse:
    def __init__(self, payload=None, status_code=200, text=""):
        self.payload = payload if payload is not None else {"code": 0, "data": []}
        self.status_code = status_code
        self.text = text

    @property
    def ok(self):
        return self.status_code < 400

    def json(self):
        return self.payload


class FakeSession:
    def __init__(self, *responses):
        self.headers = {}
        self.responses = list(responses)
        self.posts = []

    def post(self, url, json=None, timeout=None):
        self.posts.append({"url": url, "json": json, "timeout": timeout})
        response = self.responses.pop(0) if self.responses else FakeResponse()
        if isinstance(response, Exception):
            raise response
        return response


def make_client(*responses):
    session = FakeSession(*responses)
    client = VectorStoreClient(
        "https://store.example.com/",
        "secret",
        "pages",
        timeout=30,
        max_attempts=3,
        backoff_seconds=1.0,
        session=session,
        sleep=lambda seconds: None,
    )
    return client, session


class TestFilters:
    def test_string_keys_are_quoted(self):
        assert build_in_filter("id", ["a", 'b"c']) == 'id in ["a", "b\\"c"]'

    def test_integer_keys_stay_exact(self):
        assert build_in_filter("pk", [449916385734172753, 7]) == "pk in [449916385734172753, 7]"


class TestRequests:
    def test_query_sends_paging_and_auth(self):
        rows = [{"id": 1, "content": "x"}]
        client, session = make_client(FakeResponse({"code": 0, "data": rows}))

        assert client.query('flag != "done"', offset=10, limit=5) == rows
        post = session.posts[0]
        assert post["url"] == f"https://store.example.com{QUERY_PATH}"
        assert post["json"] == {
            "collectionName": "pages",
            "filter": 'flag != "done"',
            "offset": 10,
            "limit": 5,
            "outputFields": ["*"],
        }
        assert post["timeout"] == 30
        assert session.headers["Authorization"] == "Bearer secret"

    def test_count(self):
        client, session = make_client(FakeResponse({"code": 0, "data": [{"count(*)": 42}]}))

        assert client.count(None) == 42
        assert session.posts[0]["json"]["outputFields"] == ["count(*)"]
        assert session.posts[0]["json"]["filter"] == ""

    def test_replace_deletes_then_inserts(self):
        client, session = make_client()
        rows = [{"id": "a", "content": "x"}, {"id": "b", "content": "y"}]

        client.replace("id", rows)

        assert session.posts[0]["url"].endswith(DELETE_PATH)
        assert session.posts[1]["url"].endswith(INSERT_PATH)
        assert session.posts[0]["json"]["filter"] == 'id in ["a", "b"]'
        assert session.posts[1]["json"] == {"collectionName": "pages", "data": rows}

    def test_empty_writes_make_no_calls(self):
        client, session = make_client()
        client.delete_by_ids("id", [])
        client.insert([])
        assert session.posts == []


class TestErrors:
    def test_in_band_error_is_not_retried(self):
        client, session = make_client(FakeResponse({"code": 1100, "message": "invalid filter"}))

        with pytest.raises(RecordStoreError) as excinfo:
            client.query("bad", 0, 5)

        assert "invalid filter" in str(excinfo.value)
        assert excinfo.value.status_code == 400
        assert len(session.posts) == 1

    def test_server_error_is_retried(self):
        client, session = make_client(
            FakeResponse(status_code=503, text="unavailable"),
            FakeResponse({"code": 200, "data": [{"id": 1}]}),
        )

        assert client.query(None, 0, 5) == [{"id": 1}]
        assert len(session.posts) == 2

    def test_timeout_becomes_external_timeout(self):
        client, session = make_client(*[requests.Timeout()] * 3)

        with pytest.raises(ExternalTimeoutError):
            client.count(None)
        assert len(session.posts) == 3

    def test_connection_error_exhausts_retries(self):
        client, session = make_client(*[requests.ConnectionError("refused")] * 3)

        with pytest.raises(RecordStoreError):
            client.insert([{"id": 1}])
        assert len(session.posts) == 3

    def test_hung_request_hits_wall_clock_limit(self):
        release = threading.Event()

        class HangingSession(FakeSession):
            def post(self, url, json=None, timeout=None):
                release.wait(5)
                return super().post(url, json=json, timeout=timeout)

        client = VectorStoreClient(
            "https://store.example.com", "secret", "pages",
            timeout=0.05, max_attempts=1, session=HangingSession(), sleep=lambda seconds: None,
        )
        try:
            with pytest.raises(ExternalTimeoutError):
                client.query(None, 0, 5)
        finally:
            release.set()
