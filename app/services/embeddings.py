"""Bounded-concurrency embedding generation"""
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional
import logging
import time

from app.config import get_settings
from app.services.retry import with_retry

logger = logging.getLogger(__name__)


@dataclass
class EmbeddingResult:
    vectors: Dict[int, List[float]] = field(default_factory=dict)
    errors: Dict[int, str] = field(default_factory=dict)

    @property
    def failed(self) -> int:
        return len(self.errors)


class EmbeddingFanout:
    """Embeds many texts in parallel; one failure never affects the others"""

    def __init__(self, embedding_client, model: str, settings=None, sleep: Callable[[float], None] = time.sleep):
        self.client = embedding_client
        self.model = model
        self.settings = settings or get_settings()
        self.sleep = sleep

    def _embed_one(self, key: int, text: str):
        try:
            vector = with_retry(
                lambda: self.client.embed(self.model, text, timeout=self.settings.embedding_timeout_seconds),
                max_attempts=self.settings.embedding_max_attempts,
                base_delay=self.settings.embedding_backoff_seconds,
                sleep=self.sleep,
                description=f"Embedding {key}",
            )
            return key, vector, None
        except Exception as e:
            return key, None, str(e)

    def embed_all(self, texts: Dict[int, str]) -> EmbeddingResult:
        result = EmbeddingResult()
        if not texts:
            return result

        with ThreadPoolExecutor(max_workers=self.settings.embedding_concurrency) as executor:
            futures = [executor.submit(self._embed_one, key, text) for key, text in texts.items()]
            for future in futures:
                key, vector, error = future.result()
                if error is None:
                    result.vectors[key] = vector
                else:
                    logger.warning(f"Embedding failed for record {key}: {error}")
                    result.errors[key] = error

        return result
