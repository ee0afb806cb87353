import random

import pytest

from pulsecheck import orchestrator as orch
from pulsecheck.cache import ContentAddressedCache
from pulsecheck.coaching import GET_HELP_NOW, CoachingEngine
from pulsecheck.db import Database
from pulsecheck.errors import ProviderError
from pulsecheck.models import CoachingMode, SentimentLabel, SentimentResult, UnifiedResult
from pulsecheck.orchestrator import (
    CheckinOrchestrator,
    CheckinRequest,
    resolve_coaching_mode,
    resolve_tts_enabled,
)
from pulsecheck.providers.base import SpeechClient, TranscriptionSentimentProvider
from pulsecheck.providers.mock import FallbackTranscriptionProvider, MockCoachingLLMClient, MockSpeechClient
from pulsecheck.speech import SpeechSynthesizer
from pulsecheck.stores import CoachingSessionStore, SentimentStore


class SpyProvider(TranscriptionSentimentProvider):
    provider_name = "spy"

    def __init__(self, sentiment=None, fail=False):
        self.calls = 0
        self.fail = fail
        self.sentiment = sentiment or SentimentResult(0.8, SentimentLabel.POSITIVE, 0.9)

    async def transcribe_with_sentiment(self, audio_path):
        self.calls += 1
        if self.fail:
            raise ProviderError("upstream unavailable")
        return UnifiedResult("Today went well.", 0.95, self.sentiment, processing_time=5)


class BrokenFallback(TranscriptionSentimentProvider):
    provider_name = "broken-fallback"

    async def transcribe_with_sentiment(self, audio_path):
        raise RuntimeError("fallback exploded")


class BrokenCoachingEngine(CoachingEngine):
    async def generate_coaching(self, sentiment, transcript="", mode=CoachingMode.FAST):
        raise RuntimeError("coaching exploded")


class BrokenSpeechClient(SpeechClient):
    provider_name = "broken"

    async def synthesize(self, text):
        raise RuntimeError("tts exploded")


class SpyCoachingEngine(CoachingEngine):
    def __init__(self, *a, **kw):
        super().__init__(*a, **kw)
        self.modes = []

    async def generate_coaching(self, sentiment, transcript="", mode=CoachingMode.FAST):
        self.modes.append((mode, self.resolve_mode(sentiment, mode)))
        return await super().generate_coaching(sentiment, transcript, mode)


@pytest.fixture
def removals(monkeypatch):
    """Count real deletions performed by the orchestrator's temp-file cleanup."""
    seen = {"calls": 0, "deleted": 0}
    real = orch.cleanup_temp_file

    def _spy(path):
        seen["calls"] += 1
        deleted = real(path)
        if deleted:
            seen["deleted"] += 1
        return deleted

    monkeypatch.setattr(orch, "cleanup_temp_file", _spy)
    return seen


def _build(database: Database, tmp_path, **overrides):
    synth_client = overrides.pop("speech_client", MockSpeechClient())
    parts = dict(
        cache=ContentAddressedCache(),
        provider=SpyProvider(),
        fallback_provider=FallbackTranscriptionProvider(rng=random.Random(3)),
        sentiment_store=SentimentStore(database),
        coaching_engine=CoachingEngine(MockCoachingLLMClient()),
        synthesizer=SpeechSynthesizer(synth_client, str(tmp_path / "audio")),
        session_store=CoachingSessionStore(database),
        session_cleanup_delay_s=3600,
    )
    parts.update(overrides)
    return CheckinOrchestrator(**parts)


def _upload(tmp_path, name="upload.wav", data=b"RIFF-fake-wave-bytes"):
    p = tmp_path / name
    p.write_bytes(data)
    return p


# ---- resolution helpers -------------------------------------------------------

@pytest.mark.parametrize("query, header, env, expected", [
    ("optimized", "fast", "fast", (CoachingMode.OPTIMIZED, "query")),
    (None, "optimized", "fast", (CoachingMode.OPTIMIZED, "header")),
    (None, None, "optimized", (CoachingMode.OPTIMIZED, "env")),
    (None, None, None, (CoachingMode.FAST, "default")),
    ("turbo", "OPTIMIZED", None, (CoachingMode.OPTIMIZED, "header")),
    ("", "", "bogus", (CoachingMode.FAST, "default")),
])
def test_resolve_coaching_mode(query, header, env, expected):
    assert resolve_coaching_mode(query, header, env) == expected


def test_resolve_tts_enabled():
    assert resolve_tts_enabled(None, True) is True
    assert resolve_tts_enabled("false", True) is False
    assert resolve_tts_enabled("true", False) is False
    assert resolve_tts_enabled("FALSE", True) is False


# ---- pipeline -------------------------------------------------------------------

@pytest.mark.asyncio
async def test_happy_path(database, tmp_path, removals):
    o = _build(database, tmp_path)
    upload = _upload(tmp_path)
    out = await o.run(CheckinRequest(audio_path=str(upload)))

    assert out.status_code == 200
    body = out.body
    assert body["success"] is True
    assert body["processingTime"] > 0
    data = body["data"]
    assert 0.0 <= data["sentiment"]["score"] <= 1.0
    assert len(data["coaching"]["resources"]) == 3
    assert data["audioUrl"].startswith("/audio/tts_")
    assert data["audioText"] == data["coaching"]["motivationalMessage"]
    assert data["audioMetadata"]["format"] == "mp3"

    assert not upload.exists()
    assert removals["deleted"] == 1

    session = await o.session_store.get(data["sessionId"])
    assert session is not None and session.audio_url == data["audioUrl"]
    assert session.voice_config["voiceName"] == "en-US-Standard-C"
    stats = await o.sentiment_store.stats()
    assert stats["total"] == 1
    o.synthesizer.cancel_scheduled()


@pytest.mark.asyncio
async def test_cache_hit_skips_provider(database, tmp_path, removals):
    o = _build(database, tmp_path)
    first = await o.run(CheckinRequest(audio_path=str(_upload(tmp_path, "a.wav")), query_tts="false"))
    second = await o.run(CheckinRequest(audio_path=str(_upload(tmp_path, "renamed.m4a")), query_tts="false"))

    assert o.provider.calls == 1
    assert first.body["data"]["transcript"] == second.body["data"]["transcript"]
    assert first.body["data"]["sessionId"] != second.body["data"]["sessionId"]
    assert removals["deleted"] == 2


@pytest.mark.asyncio
async def test_provider_outage_uses_fallback(database, tmp_path, removals):
    o = _build(database, tmp_path, provider=SpyProvider(fail=True))
    out = await o.run(CheckinRequest(audio_path=str(_upload(tmp_path)), query_tts="false"))

    assert out.status_code == 200
    data = out.body["data"]
    assert data["transcript"]
    assert data["sentiment"]["label"] in ("positive", "negative", "neutral")
    assert 0.0 <= data["sentiment"]["score"] <= 1.0
    assert "audioUrl" not in data
    # fallback output is not cached
    assert len(o.cache) == 0
    assert removals["deleted"] == 1


@pytest.mark.asyncio
async def test_primary_and_fallback_failure_is_generic_500(database, tmp_path, removals):
    o = _build(database, tmp_path, provider=SpyProvider(fail=True), fallback_provider=BrokenFallback())
    upload = _upload(tmp_path)
    out = await o.run(CheckinRequest(audio_path=str(upload)))

    assert out.status_code == 500
    assert out.body["success"] is False
    assert out.body["error"] == "Internal server error during audio processing"
    assert "exploded" not in out.body["error"]
    assert not upload.exists()
    assert removals["deleted"] == 1


@pytest.mark.asyncio
async def test_coaching_failure_still_removes_upload(database, tmp_path, removals):
    o = _build(database, tmp_path, coaching_engine=BrokenCoachingEngine())
    upload = _upload(tmp_path)
    out = await o.run(CheckinRequest(audio_path=str(upload)))
    assert out.status_code == 500
    assert not upload.exists()
    assert removals["deleted"] == 1


@pytest.mark.asyncio
async def test_synthesis_failure_degrades_to_no_audio(database, tmp_path, removals):
    o = _build(database, tmp_path, speech_client=BrokenSpeechClient())
    upload = _upload(tmp_path)
    out = await o.run(CheckinRequest(audio_path=str(upload)))

    assert out.status_code == 200
    data = out.body["data"]
    assert data["coaching"]["motivationalMessage"]
    assert "audioUrl" not in data and "audioText" not in data and "audioMetadata" not in data
    assert await o.session_store.get(data["sessionId"]) is None
    assert not upload.exists()
    assert removals["deleted"] == 1


@pytest.mark.asyncio
async def test_persistence_failure_does_not_fail_checkin(tmp_path, removals):
    broken_db = Database("sqlite://")  # no tables
    o = _build(broken_db, tmp_path)
    out = await o.run(CheckinRequest(audio_path=str(_upload(tmp_path))))
    assert out.status_code == 200
    assert out.body["data"]["audioUrl"]
    o.synthesizer.cancel_scheduled()
    broken_db.dispose()


@pytest.mark.asyncio
async def test_missing_upload_is_400(database, tmp_path, removals):
    o = _build(database, tmp_path)
    out = await o.run(CheckinRequest(audio_path=None))
    assert out.status_code == 400
    assert out.body["success"] is False
    assert "audio" in out.body["error"]

    gone = await o.run(CheckinRequest(audio_path=str(tmp_path / "never.wav")))
    assert gone.status_code == 400
    assert o.provider.calls == 0
    assert removals["deleted"] == 0


@pytest.mark.asyncio
async def test_crisis_forces_fast_mode(database, tmp_path, removals):
    engine = SpyCoachingEngine(MockCoachingLLMClient())
    crisis = SentimentResult(0.1, SentimentLabel.NEGATIVE, 0.95)
    o = _build(database, tmp_path, provider=SpyProvider(sentiment=crisis), coaching_engine=engine)
    out = await o.run(CheckinRequest(audio_path=str(_upload(tmp_path)), query_mode="optimized", query_tts="false"))

    assert out.status_code == 200
    assert engine.modes == [(CoachingMode.OPTIMIZED, CoachingMode.FAST)]
    resources = out.body["data"]["coaching"]["resources"]
    assert resources[0]["title"] == GET_HELP_NOW.title
    assert resources[0]["category"] == "emergency"
    assert len(resources) == 3


@pytest.mark.asyncio
async def test_env_tts_disable_wins(database, tmp_path, removals):
    o = _build(database, tmp_path, env_tts_enabled=False)
    out = await o.run(CheckinRequest(audio_path=str(_upload(tmp_path))))
    assert "audioUrl" not in out.body["data"]


@pytest.mark.asyncio
async def test_successful_tts_arms_session_cleanup(database, tmp_path, removals):
    o = _build(database, tmp_path, session_cleanup_delay_s=0.01)
    out = await o.run(CheckinRequest(audio_path=str(_upload(tmp_path))))
    sid = out.body["data"]["sessionId"]
    task = o.synthesizer._scheduled[sid]
    await task
    name = out.body["data"]["audioUrl"].rsplit("/", 1)[-1]
    assert not (o.synthesizer.audio_dir / name).exists()
