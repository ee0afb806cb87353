import asyncio
import time

import pytest

from pulsecheck.errors import SynthesisError
from pulsecheck.providers.base import SpeechClient
from pulsecheck.providers.mock import MockSpeechClient
from pulsecheck.speech import SpeechSynthesizer, estimate_duration_seconds


class BrokenSpeechClient(SpeechClient):
    provider_name = "broken"

    async def synthesize(self, text):
        raise RuntimeError("Google TTS error 500")


@pytest.fixture
def synth(tmp_path):
    return SpeechSynthesizer(MockSpeechClient(), str(tmp_path / "audio"))


def test_duration_estimate():
    assert estimate_duration_seconds("") == 1
    assert estimate_duration_seconds("word " * 125) == 60
    assert estimate_duration_seconds("word " * 126) == 61


@pytest.mark.asyncio
async def test_generate_speech_writes_tracked_file(synth):
    res = await synth.generate_speech("You are doing fine today.", "sess-1")
    name = res.audio_url.rsplit("/", 1)[-1]
    assert res.audio_url.startswith("/audio/tts_sess-1_")
    assert name.endswith(".mp3")
    assert (synth.audio_dir / name).is_file()
    assert res.file_size == (synth.audio_dir / name).stat().st_size
    assert res.metadata()["format"] == "mp3"
    assert synth.info()["activeSessions"] == 1
    assert synth.info()["totalTrackedFiles"] == 1
    assert synth.resolve_audio_path(name) is not None


@pytest.mark.asyncio
async def test_concurrent_writes_get_distinct_files(tmp_path):
    synth = SpeechSynthesizer(MockSpeechClient(), str(tmp_path / "audio"), clock=lambda: 1000.0)
    a, b = await asyncio.gather(
        synth.generate_speech("first message", "same"),
        synth.generate_speech("second message", "same"),
    )
    assert a.audio_url != b.audio_url
    assert synth.info()["totalTrackedFiles"] == 2


@pytest.mark.asyncio
async def test_empty_audio_is_synthesis_error(synth):
    with pytest.raises(SynthesisError):
        await synth.generate_speech("", "sess-empty")
    assert not synth.audio_dir.exists() or not any(synth.audio_dir.iterdir())


@pytest.mark.asyncio
async def test_client_failure_is_synthesis_error(tmp_path):
    synth = SpeechSynthesizer(BrokenSpeechClient(), str(tmp_path / "audio"))
    with pytest.raises(SynthesisError):
        await synth.generate_speech("hello", "sess-x")


@pytest.mark.asyncio
async def test_cleanup_session_files_is_idempotent(synth):
    res = await synth.generate_speech("hello there", "sess-2")
    path = synth.audio_dir / res.audio_url.rsplit("/", 1)[-1]
    assert await synth.cleanup_session_files("sess-2") == 1
    assert not path.exists()
    assert await synth.cleanup_session_files("sess-2") == 0
    assert await synth.cleanup_session_files("never-seen") == 0


@pytest.mark.asyncio
async def test_cleanup_by_audio_url_after_restart(tmp_path):
    first = SpeechSynthesizer(MockSpeechClient(), str(tmp_path / "audio"))
    res = await first.generate_speech("hello there", "sess-3")
    restarted = SpeechSynthesizer(MockSpeechClient(), str(tmp_path / "audio"))
    assert await restarted.cleanup_session_files("sess-3", audio_url=res.audio_url) == 1
    assert await restarted.cleanup_session_files("sess-3", audio_url=res.audio_url) == 0


@pytest.mark.asyncio
async def test_scheduled_cleanup_removes_files(synth):
    res = await synth.generate_speech("hello there", "sess-4")
    path = synth.audio_dir / res.audio_url.rsplit("/", 1)[-1]
    task = synth.schedule_session_cleanup("sess-4", delay_s=0.01)
    await task
    assert not path.exists()


@pytest.mark.asyncio
async def test_rescheduling_replaces_previous_timer(synth):
    await synth.generate_speech("hello there", "sess-5")
    first = synth.schedule_session_cleanup("sess-5", delay_s=60)
    second = synth.schedule_session_cleanup("sess-5", delay_s=0.01)
    await second
    await asyncio.sleep(0)
    assert first.cancelled()
    assert synth.info()["activeSessions"] == 0


@pytest.mark.asyncio
async def test_cancel_scheduled(synth):
    synth.schedule_session_cleanup("a", delay_s=60)
    synth.schedule_session_cleanup("b", delay_s=60)
    assert synth.cancel_scheduled() == 2
    assert synth.cancel_scheduled() == 0


@pytest.mark.asyncio
async def test_sweep_removes_only_old_tts_files(tmp_path):
    audio_dir = tmp_path / "audio"
    now = {"t": time.time()}
    synth = SpeechSynthesizer(MockSpeechClient(), str(audio_dir), clock=lambda: now["t"])
    await synth.generate_speech("old message", "old")
    (audio_dir / "notes.txt").write_text("keep me")

    assert await synth.cleanup_expired_files(max_age_s=3600) == 0
    now["t"] += 2 * 3600
    assert await synth.cleanup_expired_files(max_age_s=3600) == 1
    assert (audio_dir / "notes.txt").exists()


@pytest.mark.asyncio
async def test_sweep_on_missing_directory(tmp_path):
    synth = SpeechSynthesizer(MockSpeechClient(), str(tmp_path / "nope"))
    assert await synth.cleanup_expired_files() == 0


def test_resolve_audio_path_rejects_traversal(synth):
    assert synth.resolve_audio_path("../secrets.mp3") is None
    assert synth.resolve_audio_path("tts_x_1.wav") is None
    assert synth.resolve_audio_path("tts_missing_1.mp3") is None
