import random

import pytest

from pulsecheck.models import SentimentLabel
from pulsecheck.providers.mock import (
    MOCK_TRANSCRIPTS,
    FallbackTranscriptionProvider,
    MockSpeechClient,
    keyword_sentiment,
)


@pytest.mark.asyncio
async def test_fallback_preserves_result_shape(audio_file):
    provider = FallbackTranscriptionProvider(rng=random.Random(7))
    res = await provider.transcribe_with_sentiment(str(audio_file))
    assert res.transcript in MOCK_TRANSCRIPTS
    assert 0.0 <= res.confidence <= 1.0
    assert 0.0 <= res.sentiment.score <= 1.0
    assert 0.0 <= res.sentiment.confidence <= 1.0
    assert isinstance(res.sentiment.label, SentimentLabel)
    assert res.processing_time >= 0


@pytest.mark.asyncio
async def test_fallback_does_not_need_the_file(tmp_path):
    provider = FallbackTranscriptionProvider(rng=random.Random(1))
    res = await provider.transcribe_with_sentiment(str(tmp_path / "never-written.wav"))
    assert res.transcript


@pytest.mark.parametrize("seed", range(10))
def test_keyword_sentiment_bands(seed):
    rng = random.Random(seed)
    pos = keyword_sentiment("I feel great and grateful", rng)
    neg = keyword_sentiment("so stressed and overwhelmed", rng)
    neu = keyword_sentiment("I went to class and had lunch", rng)
    assert pos.label == SentimentLabel.POSITIVE and 0.7 <= pos.score <= 1.0
    assert neg.label == SentimentLabel.NEGATIVE and 0.1 <= neg.score <= 0.4
    assert neu.label == SentimentLabel.NEUTRAL and 0.4 <= neu.score <= 0.6
    for r in (pos, neg, neu):
        assert 0.8 <= r.confidence <= 1.0


@pytest.mark.asyncio
async def test_mock_speech_client_empty_text_yields_no_audio():
    client = MockSpeechClient()
    assert await client.synthesize("") == b""
    assert (await client.synthesize("hello there")).startswith(b"ID3")
