from app.services.embeddings import EmbeddingFanout
from app.services.exceptions import ExternalServiceError

from tests.conftest import FakeEmbedding


def test_embeds_every_text(settings, no_sleep):
    sleep, _ = no_sleep
    client = FakeEmbedding(dims=4)

    result = EmbeddingFanout(client, "text-embedding-3-large", settings=settings, sleep=sleep).embed_all(
        {0: "a", 1: "b", 2: "c"}
    )

    assert result.vectors == {0: [0.5] * 4, 1: [0.5] * 4, 2: [0.5] * 4}
    assert result.failed == 0
    assert sorted(client.calls) == ["a", "b", "c"]


def test_failure_is_isolated_and_retried_once(settings, no_sleep):
    sleep, delays = no_sleep
    client = FakeEmbedding(fail_when=lambda text: text == "b")

    result = EmbeddingFanout(client, "m", settings=settings, sleep=sleep).embed_all({0: "a", 1: "b"})

    assert set(result.vectors) == {0}
    assert result.failed == 1
    assert "unavailable" in result.errors[1]
    assert client.calls.count("b") == 2
    assert delays == [0.5]


def test_non_retryable_error_is_not_retried(settings, no_sleep):
    sleep, delays = no_sleep

    class Rejecting:
        calls = 0

        def embed(self, model, text, timeout):
            Rejecting.calls += 1
            raise ExternalServiceError("input too long", retryable=False)

    result = EmbeddingFanout(Rejecting(), "m", settings=settings, sleep=sleep).embed_all({0: "a"})

    assert result.failed == 1
    assert Rejecting.calls == 1
    assert delays == []


def test_nothing_to_embed(settings):
    assert EmbeddingFanout(FakeEmbedding(), "m", settings=settings).embed_all({}).vectors == {}
