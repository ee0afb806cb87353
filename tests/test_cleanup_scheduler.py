import asyncio
import datetime as dt

import pytest

from pulsecheck.cache import ContentAddressedCache
from pulsecheck.db import utcnow
from pulsecheck.models import CoachingSessionRecord, SentimentLabel, SentimentResult, UnifiedResult
from pulsecheck.providers.mock import MockSpeechClient
from pulsecheck.scheduler import CleanupScheduler
from pulsecheck.speech import SpeechSynthesizer, cleanup_expired_tts_sessions
from pulsecheck.stores import CoachingSessionStore, SentimentStore


@pytest.fixture
def parts(database, tmp_path):
    synth = SpeechSynthesizer(MockSpeechClient(), str(tmp_path / "audio"))
    return {
        "synthesizer": synth,
        "session_store": CoachingSessionStore(database, file_ttl_seconds=3600),
        "sentiment_store": SentimentStore(database),
        "cache": ContentAddressedCache(ttl_seconds=3600),
    }


async def _session_with_audio(parts, session_id, created):
    speech = await parts["synthesizer"].generate_speech("Keep going.", session_id)
    await parts["session_store"].create(
        CoachingSessionRecord(session_id=session_id, tts_text="Keep going.", audio_url=speech.audio_url),
        now=created,
    )
    return parts["synthesizer"].audio_dir / speech.audio_url.rsplit("/", 1)[-1]


@pytest.mark.asyncio
async def test_expired_sessions_lose_files_and_get_marked(parts):
    now = utcnow()
    old_file = await _session_with_audio(parts, "old", now - dt.timedelta(hours=2))
    new_file = await _session_with_audio(parts, "new", now)

    res = await cleanup_expired_tts_sessions(parts["synthesizer"], parts["session_store"])
    assert res == {"filesCleanedUp": 1, "sessionsMarked": 1}
    assert not old_file.exists()
    assert new_file.exists()
    assert (await parts["session_store"].get("old")).cleanup is True
    assert (await parts["session_store"].get("new")).cleanup is False

    again = await cleanup_expired_tts_sessions(parts["synthesizer"], parts["session_store"])
    assert again == {"filesCleanedUp": 0, "sessionsMarked": 0}


@pytest.mark.asyncio
async def test_cleanup_pass_covers_every_step(parts):
    now = utcnow()
    await parts["sentiment_store"].log(
        "ancient", SentimentResult(0.5, SentimentLabel.NEUTRAL, 0.9), now=now - dt.timedelta(days=40)
    )
    await _session_with_audio(parts, "stale", now - dt.timedelta(hours=30))
    clock = {"t": 1000.0}
    parts["cache"]._clock = lambda: clock["t"]
    await parts["cache"].set(b"audio", UnifiedResult("t", 0.9, SentimentResult(0.5, SentimentLabel.NEUTRAL, 0.9)))
    clock["t"] += 7200

    scheduler = CleanupScheduler(**parts)
    result = await scheduler.run_cleanup_tasks()

    assert result["ttsCleanup"] == {"filesCleanedUp": 1, "sessionsMarked": 1}
    assert result["sentimentLogsCleanup"] == 1
    assert result["coachingSessionsCleanup"] == 1
    assert result["cacheCleanup"] == 1
    assert result["errors"] == []
    assert result["processingTime"] >= 0
    assert scheduler.status()["lastRun"] is result


@pytest.mark.asyncio
async def test_failing_step_does_not_stop_the_pass(parts):
    class ExplodingStore:
        async def prune_older_than(self, *a, **kw):
            raise RuntimeError("db down")

    parts["sentiment_store"] = ExplodingStore()
    scheduler = CleanupScheduler(**parts)
    result = await scheduler.run_cleanup_tasks()
    assert result["sentimentLogsCleanup"] is None
    assert result["coachingSessionsCleanup"] == 0
    assert result["cacheCleanup"] == 0
    assert result["errors"] == ["sentiment_logs:RuntimeError"]


@pytest.mark.asyncio
async def test_start_is_idempotent_and_runs_immediately(parts):
    scheduler = CleanupScheduler(**parts, interval_minutes=60)
    assert scheduler.status() == {"isRunning": False, "intervalMinutes": 60}

    scheduler.start()
    first_task = scheduler._task
    scheduler.start()
    assert scheduler._task is first_task

    for _ in range(50):
        if scheduler.status().get("lastRun"):
            break
        await asyncio.sleep(0.01)
    st = scheduler.status()
    assert st["isRunning"] is True
    assert "nextRunTime" in st
    assert "lastRun" in st

    scheduler.stop()
    await asyncio.sleep(0)
    assert scheduler.is_running is False


@pytest.mark.asyncio
async def test_manual_cleanup_works_while_stopped(parts):
    scheduler = CleanupScheduler(**parts)
    result = await scheduler.run_manual_cleanup()
    assert set(["ttsCleanup", "sentimentLogsCleanup", "coachingSessionsCleanup", "cacheCleanup", "processingTime"]).issubset(result)


@pytest.mark.asyncio
async def test_shutdown_runs_final_pass_and_cancels_timers(parts):
    scheduler = CleanupScheduler(**parts)
    scheduler.start()
    timer = parts["synthesizer"].schedule_session_cleanup("pending", delay_s=600)

    await scheduler.shutdown()
    await asyncio.gather(timer, return_exceptions=True)

    assert scheduler.is_running is False
    assert timer.cancelled()
    assert scheduler.status()["lastRun"] is not None


@pytest.mark.asyncio
async def test_loop_survives_failing_passes(parts):
    calls = {"n": 0}

    class ExplodingStore:
        async def prune_older_than(self, *a, **kw):
            calls["n"] += 1
            raise RuntimeError("db down")

    parts["sentiment_store"] = ExplodingStore()
    scheduler = CleanupScheduler(**parts, interval_minutes=0.0005)
    scheduler.start()
    try:
        for _ in range(100):
            if calls["n"] >= 3:
                break
            await asyncio.sleep(0.02)
        assert calls["n"] >= 3
        assert scheduler.is_running is True
        assert "sentiment_logs:RuntimeError" in scheduler.status()["lastRun"]["errors"]
    finally:
        scheduler.stop()
