"""Completion and embedding clients: OpenAI-compatible APIs and Google Gemini"""
from typing import Dict, List, Optional
import logging

import google.generativeai as genai
import openai
from google.api_core import exceptions as google_exceptions
from openai import OpenAI

from app.config import get_settings
from app.services.exceptions import ConfigurationError, ExternalServiceError, ExternalTimeoutError
from app.services.retry import call_with_timeout

logger = logging.getLogger(__name__)

GEMINI_PREFIX = "gemini-"

TRANSIENT_OPENAI_ERRORS = (
    openai.APIConnectionError,
    openai.RateLimitError,
    openai.InternalServerError,
)

TRANSIENT_GOOGLE_ERRORS = (
    google_exceptions.ResourceExhausted,
    google_exceptions.ServiceUnavailable,
    google_exceptions.InternalServerError,
    google_exceptions.TooManyRequests,
)


def is_gemini_model(model: str) -> bool:
    return (model or "").startswith(GEMINI_PREFIX)


def _translate_error(error: Exception, timeout: float, what: str) -> Exception:
    """Map SDK exceptions onto the engine's transient/permanent taxonomy"""
    if isinstance(error, openai.APITimeoutError):
        return ExternalTimeoutError(f"{what} timed out after {timeout:.0f}s")
    if isinstance(error, TRANSIENT_OPENAI_ERRORS):
        return ExternalServiceError(f"{what} failed: {error}", retryable=True)
    if isinstance(error, openai.APIError):
        return ExternalServiceError(f"{what} failed: {error}", retryable=False)
    return error


def _translate_google_error(error: Exception, timeout: float, what: str) -> Exception:
    message = str(error)
    if isinstance(error, google_exceptions.DeadlineExceeded):
        return ExternalTimeoutError(f"{what} timed out after {timeout:.0f}s")
    if "API key not valid" in message or "API_KEY_INVALID" in message:
        return ExternalServiceError(
            "Google API key is invalid. Check GOOGLE_API_KEY.", retryable=False
        )
    if isinstance(error, google_exceptions.ResourceExhausted) or "quota" in message.lower():
        return ExternalServiceError(f"Google AI API quota exceeded: {message}", retryable=True)
    if isinstance(error, TRANSIENT_GOOGLE_ERRORS):
        return ExternalServiceError(f"Gemini API error: {message}", retryable=True)
    if isinstance(error, google_exceptions.GoogleAPIError):
        return ExternalServiceError(f"Gemini API error: {message}", retryable=False)
    return error


def _raise_translated(error: Exception, translated: Exception):
    if translated is error:
        raise error
    raise translated from error


def _require_text(text: Optional[str], what: str) -> str:
    text = (text or "").strip()
    if not text:
        raise ExternalServiceError(f"{what} returned no content", retryable=True)
    return text


def messages_to_prompt(messages: List[Dict[str, str]]) -> str:
    """Gemini takes one prompt: system messages become an Instructions paragraph"""
    parts = []
    for message in messages:
        if message.get("role") == "system":
            parts.append(f"Instructions: {message['content']}")
        else:
            parts.append(message["content"])
    return "\n\n".join(parts)


class OpenAIService:
    """Shared OpenAI client construction. SDK-level retries are disabled; the engine retries."""

    def __init__(self, api_key: Optional[str] = None, base_url: Optional[str] = None, client: Optional[OpenAI] = None):
        self._client = client
        self._api_key = api_key
        self._base_url = base_url

    @property
    def client(self) -> OpenAI:
        if self._client is None:
            settings = get_settings()
            api_key = self._api_key or settings.openai_api_key
            if not api_key:
                raise ConfigurationError("OPENAI_API_KEY environment variable is not configured")
            self._client = OpenAI(
                api_key=api_key,
                base_url=self._base_url or settings.openai_base_url,
                max_retries=0,
            )
        return self._client


class GeminiService:
    """Google Generative AI models, created per model name"""

    def __init__(self, api_key: Optional[str] = None, model_factory=None):
        self._api_key = api_key
        self._model_factory = model_factory

    def model(self, name: str):
        if self._model_factory is None:
            api_key = self._api_key or get_settings().google_api_key
            if not api_key:
                raise ConfigurationError("GOOGLE_API_KEY environment variable is not configured")
            genai.configure(api_key=api_key)
            self._model_factory = genai.GenerativeModel
        return self._model_factory(name)

    def generate(self, model: str, messages: List[Dict[str, str]], timeout: float, temperature: float) -> str:
        what = f"Completion with {model}"
        try:
            response = self.model(model).generate_content(
                messages_to_prompt(messages),
                generation_config={"temperature": temperature},
                request_options={"timeout": timeout},
            )
            text = response.text
        except (ConfigurationError, ExternalServiceError):
            raise
        except Exception as e:
            _raise_translated(e, _translate_google_error(e, timeout, what))
        return _require_text(text, what)


class CompletionClient(OpenAIService):
    """
    Generative completion: ordered role-tagged messages in, text out.
    gemini-* models go to Google Generative AI, everything else to the OpenAI-compatible API.
    """

    def __init__(self, api_key: Optional[str] = None, base_url: Optional[str] = None,
                 client: Optional[OpenAI] = None, gemini: Optional[GeminiService] = None):
        super().__init__(api_key=api_key, base_url=base_url, client=client)
        self.gemini = gemini or GeminiService()

    def complete(self, model: str, messages: List[Dict[str, str]], timeout: float, temperature: float = 0.3) -> str:
        what = f"Completion with {model}"
        if is_gemini_model(model):
            return call_with_timeout(
                lambda: self.gemini.generate(model, messages, timeout, temperature), timeout, what
            )

        client = self.client
        try:
            response = call_with_timeout(
                lambda: client.with_options(timeout=timeout).chat.completions.create(
                    model=model,
                    messages=messages,
                    temperature=temperature,
                ),
                timeout,
                what,
            )
        except ExternalServiceError:
            raise
        except Exception as e:
            _raise_translated(e, _translate_error(e, timeout, what))

        return _require_text(response.choices[0].message.content, what)


class EmbeddingClient(OpenAIService):
    """Embedding: text in, fixed-length vector out"""

    def embed(self, model: str, text: str, timeout: float) -> List[float]:
        what = f"Embedding with {model}"
        client = self.client
        try:
            response = call_with_timeout(
                lambda: client.with_options(timeout=timeout).embeddings.create(model=model, input=text),
                timeout,
                what,
            )
        except ExternalServiceError:
            raise
        except Exception as e:
            _raise_translated(e, _translate_error(e, timeout, what))

        return list(response.data[0].embedding)
