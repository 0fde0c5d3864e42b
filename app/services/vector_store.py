"""Client for the remote vector store (Milvus / Zilliz REST v2)"""
from typing import Any, Callable, Dict, List, Optional
import json
import logging
import time

import requests

from app.config import get_settings
from app.services.exceptions import ExternalTimeoutError, RecordStoreError
from app.services.retry import call_with_timeout, with_retry

logger = logging.getLogger(__name__)

QUERY_PATH = "/v2/vectordb/entities/query"
DELETE_PATH = "/v2/vectordb/entities/delete"
INSERT_PATH = "/v2/vectordb/entities/insert"


def format_filter_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return str(value)
    return json.dumps(str(value))


def build_in_filter(field: str, values: List[Any]) -> str:
    """Filter expression matching rows whose field is one of values, e.g. id in ["a", "b"]"""
    return f"{field} in [{', '.join(format_filter_value(v) for v in values)}]"


class VectorStoreClient:
    """Paginated query, delete-by-filter and bulk insert against one collection"""

    def __init__(
        self,
        endpoint: str,
        token: str,
        collection_name: str,
        timeout: Optional[float] = None,
        max_attempts: Optional[int] = None,
        backoff_seconds: Optional[float] = None,
        session: Optional[requests.Session] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        settings = get_settings()
        self.endpoint = endpoint.rstrip("/")
        self.collection_name = collection_name
        self.timeout = timeout if timeout is not None else settings.store_timeout_seconds
        self.max_attempts = max_attempts or settings.call_max_attempts
        self.backoff_seconds = backoff_seconds if backoff_seconds is not None else settings.call_backoff_seconds
        self.sleep = sleep
        self.session = session or requests.Session()
        self.session.headers.update({
            "Authorization": f"Bearer {token}",
            "Content-Type": "application/json",
        })

    @classmethod
    def for_instance(cls, instance) -> "VectorStoreClient":
        return cls(instance.store_endpoint, instance.store_token, instance.collection_name)

    def _post_once(self, path: str, body: Dict[str, Any]) -> Dict[str, Any]:
        try:
            response = call_with_timeout(
                lambda: self.session.post(f"{self.endpoint}{path}", json=body, timeout=self.timeout),
                self.timeout,
                f"Record store request {path}",
            )
        except requests.Timeout as e:
            raise ExternalTimeoutError(f"Record store request timeout after {self.timeout:.0f}s") from e
        except requests.ConnectionError as e:
            raise RecordStoreError(f"Record store connection failed: {e}") from e

        if not response.ok:
            raise RecordStoreError(
                f"Record store API error ({response.status_code}): {response.text[:500]}",
                status_code=response.status_code,
            )

        payload = response.json()

        # The v2 API reports most failures in-band with HTTP 200
        code = payload.get("code", 0)
        if code not in (0, 200):
            raise RecordStoreError(
                f"Record store API error (code {code}): {payload.get('message', '')}",
                status_code=400,
            )
        return payload

    def _post(self, path: str, body: Dict[str, Any]) -> Dict[str, Any]:
        return with_retry(
            lambda: self._post_once(path, body),
            max_attempts=self.max_attempts,
            base_delay=self.backoff_seconds,
            sleep=self.sleep,
            description=f"POST {path}",
        )

    def query(self, filter_expr: Optional[str], offset: int, limit: int) -> List[Dict[str, Any]]:
        payload = self._post(QUERY_PATH, {
            "collectionName": self.collection_name,
            "filter": filter_expr or "",
            "offset": offset,
            "limit": limit,
            "outputFields": ["*"],
        })
        return payload.get("data") or []

    def count(self, filter_expr: Optional[str]) -> int:
        payload = self._post(QUERY_PATH, {
            "collectionName": self.collection_name,
            "filter": filter_expr or "",
            "outputFields": ["count(*)"],
        })
        rows = payload.get("data") or []
        if not rows:
            return 0
        return int(rows[0].get("count(*)", 0))

    def delete_by_ids(self, primary_key_field: str, ids: List[Any]) -> None:
        if not ids:
            return
        self._post(DELETE_PATH, {
            "collectionName": self.collection_name,
            "filter": build_in_filter(primary_key_field, ids),
        })

    def insert(self, rows: List[Dict[str, Any]]) -> None:
        if not rows:
            return
        self._post(INSERT_PATH, {
            "collectionName": self.collection_name,
            "data": rows,
        })

    def replace(self, primary_key_field: str, rows: List[Dict[str, Any]]) -> None:
        """Overwrite rows by key: one delete call, then one insert call"""
        ids = [row[primary_key_field] for row in rows]
        self.delete_by_ids(primary_key_field, ids)
        self.insert(rows)
        logger.info(f"Replaced {len(rows)} rows in {self.collection_name}")
