"""Pass 2: generative refinement of records that Pass 1 could not settle"""
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional
import logging
import re
import time

from app.config import get_settings
from app.services.content_filter import FilterStats
from app.services.exceptions import BatchDispatchError
from app.services.retry import with_retry

logger = logging.getLogger(__name__)

COMBINED = "combined"
INDIVIDUAL = "individual"

RECORD_MARKER = "[RECORD {index}]"
RECORD_SEPARATOR = "\n\n---\n\n"
RECORD_MARKER_PATTERN = re.compile(r"\[RECORD \d+\]")
TRAILING_SEPARATOR_PATTERN = re.compile(r"\s*-{3,}\s*$")

COMBINED_SYSTEM_PROMPT = (
    "Process each record separately. Return responses in the format: "
    "[RECORD X]\n<processed content>"
)


def needs_refinement(stats: FilterStats, clean_threshold: float) -> bool:
    """
    Pass 2 is skipped once Pass 1 has cut the content down to the clean threshold
    (what remains is presumed to be in the wanted language).
    """
    if stats.original_len == 0:
        return False
    return stats.retained_ratio > clean_threshold


def render_prompt(template: str, content: str, placeholder: str) -> str:
    return template.replace(placeholder, content)


def individual_timeout(content_length: int, per_char_ms: float, minimum: float, maximum: float) -> float:
    """Request timeout that grows with the content: clamp(length * per_char_ms, min, max) seconds"""
    return max(minimum, min(content_length * per_char_ms / 1000.0, maximum))


def parse_combined_response(text: str, expected: int) -> List[str]:
    """Split a combined answer on its [RECORD n] markers, in order"""
    chunks = RECORD_MARKER_PATTERN.split(text or "")[1:]
    responses = [TRAILING_SEPARATOR_PATTERN.sub("", chunk.strip()).strip() for chunk in chunks]
    if len(responses) != expected:
        raise BatchDispatchError(f"AI returned {len(responses)} responses but expected {expected}")
    return responses


@dataclass
class RefinementRequest:
    key: int  # position of the record within its page
    record_id: object
    content: str


@dataclass
class RefinementOutcome:
    key: int
    text: Optional[str] = None
    error: Optional[str] = None
    deferred: bool = False

    @property
    def succeeded(self) -> bool:
        return self.text is not None


@dataclass
class DispatchResult:
    strategy: str
    outcomes: Dict[int, RefinementOutcome] = field(default_factory=dict)

    def count(self, predicate: Callable[[RefinementOutcome], bool]) -> int:
        return sum(1 for outcome in self.outcomes.values() if predicate(outcome))

    @property
    def refined(self) -> int:
        return self.count(lambda o: o.succeeded)

    @property
    def failed(self) -> int:
        return self.count(lambda o: not o.succeeded and not o.deferred)

    @property
    def deferred(self) -> int:
        return self.count(lambda o: o.deferred)


class RefinementDispatcher:
    """
    Sends records to the completion service.

    Small batches go out as one combined prompt whose answer is split back
    by index markers; a count mismatch fails the whole batch. Batches over
    the combined-prompt limit go out one request per record under a bounded
    worker pool, each with its own size-scaled timeout, and failures stay
    isolated to their record.
    """

    def __init__(
        self,
        completion_client,
        model: str,
        prompt_template: str,
        settings=None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.client = completion_client
        self.model = model
        self.prompt_template = prompt_template
        self.settings = settings or get_settings()
        self.sleep = sleep
        self.clock = clock

    def _prompt(self, content: str) -> str:
        return render_prompt(self.prompt_template, content, self.settings.prompt_placeholder)

    def build_combined_prompt(self, requests: List[RefinementRequest]) -> str:
        parts = [
            f"{RECORD_MARKER.format(index=position)}\n{self._prompt(request.content)}"
            for position, request in enumerate(requests, 1)
        ]
        return RECORD_SEPARATOR.join(parts)

    def choose_strategy(self, requests: List[RefinementRequest]) -> str:
        if len(self.build_combined_prompt(requests)) <= self.settings.combined_prompt_limit:
            return COMBINED
        return INDIVIDUAL

    def concurrency_for(self, requests: List[RefinementRequest]) -> int:
        average = sum(len(r.content) for r in requests) / len(requests)
        if average > self.settings.large_content_average:
            return self.settings.refinement_concurrency_large
        return self.settings.refinement_concurrency

    def _call(self, messages, timeout: float, description: str) -> str:
        return with_retry(
            lambda: self.client.complete(self.model, messages, timeout=timeout),
            max_attempts=self.settings.call_max_attempts,
            base_delay=self.settings.call_backoff_seconds,
            sleep=self.sleep,
            description=description,
        )

    def dispatch(self, requests: List[RefinementRequest], deadline: Optional[float] = None) -> DispatchResult:
        if not requests:
            return DispatchResult(strategy=COMBINED)

        strategy = self.choose_strategy(requests)
        logger.info(f"Refining {len(requests)} records with {self.model} ({strategy})")
        if strategy == COMBINED:
            return self.dispatch_combined(requests)
        return self.dispatch_individual(requests, deadline)

    def dispatch_combined(self, requests: List[RefinementRequest]) -> DispatchResult:
        """One request for the whole batch. Raises BatchDispatchError on any failure."""
        messages = [
            {"role": "system", "content": COMBINED_SYSTEM_PROMPT},
            {"role": "user", "content": self.build_combined_prompt(requests)},
        ]
        try:
            text = self._call(messages, self.settings.combined_timeout_seconds, "Combined refinement")
        except Exception as e:
            raise BatchDispatchError(f"Combined refinement failed: {e}") from e

        responses = parse_combined_response(text, len(requests))
        result = DispatchResult(strategy=COMBINED)
        for request, response in zip(requests, responses):
            result.outcomes[request.key] = RefinementOutcome(key=request.key, text=response)
        return result

    def _refine_one(self, request: RefinementRequest, deadline: Optional[float]) -> RefinementOutcome:
        if deadline is not None and self.clock() > deadline:
            return RefinementOutcome(key=request.key, deferred=True)

        timeout = individual_timeout(
            len(request.content),
            self.settings.individual_timeout_per_char_ms,
            self.settings.individual_timeout_min_seconds,
            self.settings.individual_timeout_max_seconds,
        )
        messages = [{"role": "user", "content": self._prompt(request.content)}]
        try:
            text = self._call(messages, timeout, f"Refinement of record {request.record_id}")
        except Exception as e:
            logger.warning(f"Refinement failed for record {request.record_id}: {e}")
            return RefinementOutcome(key=request.key, error=str(e))
        return RefinementOutcome(key=request.key, text=text)

    def dispatch_individual(self, requests: List[RefinementRequest], deadline: Optional[float] = None) -> DispatchResult:
        """One request per record; a failure or timeout only affects its own record."""
        result = DispatchResult(strategy=INDIVIDUAL)
        with ThreadPoolExecutor(max_workers=self.concurrency_for(requests)) as executor:
            futures = [executor.submit(self._refine_one, request, deadline) for request in requests]
            for future in futures:
                outcome = future.result()
                result.outcomes[outcome.key] = outcome
        return result
