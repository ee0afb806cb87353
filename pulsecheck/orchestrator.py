from __future__ import annotations

import asyncio
import logging
import math
import os
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional, Tuple

from .cache import ContentAddressedCache
from .coaching import CoachingEngine
from .errors import InternalError, PersistenceError, ProviderError, UploadError
from .logs import get_logger, log_event
from .metrics import CHECKIN_SECONDS, CHECKINS_TOTAL, PERSIST_FAILURES_TOTAL, PROVIDER_FALLBACKS_TOTAL
from .models import CoachingMode, CoachingResponse, CoachingSessionRecord, SentimentResult, SpeechResult, UnifiedResult
from .providers.base import TranscriptionSentimentProvider
from .speech import SpeechSynthesizer
from .stores import CoachingSessionStore, SentimentStore
from .uploads import cleanup_temp_file

logger = get_logger("pulsecheck.orchestrator")

MISSING_AUDIO_MESSAGE = 'No audio file uploaded. Please include an audio file with key "audio".'


def resolve_coaching_mode(
    query: Optional[str] = None,
    header: Optional[str] = None,
    env: Optional[str] = None,
) -> Tuple[CoachingMode, str]:
    """Pick the coaching mode: query param, then header, then env, else fast.

    Values outside `fast|optimized` are ignored and the next source is tried.
    Returns the mode and the name of the source that decided it.
    """
    for source, value in (("query", query), ("header", header), ("env", env)):
        v = (value or "").strip().lower()
        if v in (CoachingMode.FAST.value, CoachingMode.OPTIMIZED.value):
            return CoachingMode(v), source
    return CoachingMode.FAST, "default"


def resolve_tts_enabled(query_tts: Optional[str] = None, env_enabled: bool = True) -> bool:
    if not env_enabled:
        return False
    return (query_tts or "").strip().lower() != "false"


def error_body(message: str) -> Dict[str, Any]:
    return {
        "success": False,
        "error": message,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


@dataclass
class CheckinRequest:
    audio_path: Optional[str]
    query_mode: Optional[str] = None
    header_mode: Optional[str] = None
    query_tts: Optional[str] = None
    request_id: Optional[str] = None


@dataclass
class CheckinOutcome:
    status_code: int
    body: Dict[str, Any] = field(default_factory=dict)


class CheckinOrchestrator:
    """Runs one check-in: cache, transcription, logging, coaching, speech.

    Only upload problems (400) and unexpected failures (500) are reported as
    errors. Provider, synthesis and persistence failures degrade the result.
    The uploaded temp file is removed on every exit path.
    """

    def __init__(
        self,
        *,
        cache: ContentAddressedCache,
        provider: TranscriptionSentimentProvider,
        fallback_provider: TranscriptionSentimentProvider,
        sentiment_store: SentimentStore,
        coaching_engine: CoachingEngine,
        synthesizer: SpeechSynthesizer,
        session_store: CoachingSessionStore,
        env_mode: Optional[str] = None,
        env_tts_enabled: bool = True,
        session_cleanup_delay_s: float = 60 * 60,
        session_id_factory: Callable[[], str] = lambda: str(uuid.uuid4()),
    ):
        self.cache = cache
        self.provider = provider
        self.fallback_provider = fallback_provider
        self.sentiment_store = sentiment_store
        self.coaching_engine = coaching_engine
        self.synthesizer = synthesizer
        self.session_store = session_store
        self.env_mode = env_mode
        self.env_tts_enabled = env_tts_enabled
        self.session_cleanup_delay_s = session_cleanup_delay_s
        self._new_session_id = session_id_factory

    async def run(self, request: CheckinRequest) -> CheckinOutcome:
        start = time.perf_counter()
        path = request.audio_path
        outcome = "error"
        try:
            if not path or not os.path.isfile(path):
                raise UploadError(MISSING_AUDIO_MESSAGE)
            session_id = self._new_session_id()

            unified = await self.transcribe(path)

            mode, mode_source = resolve_coaching_mode(request.query_mode, request.header_mode, self.env_mode)
            tts_enabled = resolve_tts_enabled(request.query_tts, self.env_tts_enabled)
            log_event(
                logger,
                "checkin_transcribed",
                requestId=request.request_id,
                sessionId=session_id,
                label=unified.sentiment.label.value,
                mode=mode.value,
                modeSource=mode_source,
                tts=tts_enabled,
            )

            # Sentiment logging runs alongside coaching; neither needs the other
            log_task = asyncio.create_task(self.log_sentiment(session_id, unified.sentiment))
            try:
                coaching = await self.coaching_engine.generate_coaching(unified.sentiment, unified.transcript, mode)
            finally:
                await log_task

            speech = await self.synthesize(coaching, session_id) if tts_enabled else None

            data: Dict[str, Any] = {
                "transcript": unified.transcript,
                "sentiment": unified.sentiment.to_dict(),
                "coaching": coaching.to_dict(),
                "sessionId": session_id,
            }
            if speech is not None:
                data["audioUrl"] = speech.audio_url
                data["audioText"] = coaching.motivational_message
                data["audioMetadata"] = speech.metadata()

            elapsed_ms = _elapsed_ms(start)
            outcome = "success" if speech is not None or not tts_enabled else "degraded"
            log_event(
                logger,
                "checkin_complete",
                requestId=request.request_id,
                sessionId=session_id,
                processingTimeMs=elapsed_ms,
                audio=speech is not None,
            )
            return CheckinOutcome(200, {"success": True, "data": data, "processingTime": elapsed_ms})
        except UploadError as e:
            outcome = "rejected"
            log_event(logger, "checkin_rejected", requestId=request.request_id, error=e.public_message)
            return CheckinOutcome(e.status_code, error_body(e.public_message))
        except Exception as e:
            # Details stay in the log; callers only see the generic message
            log_event(
                logger,
                "checkin_failed",
                level=logging.ERROR,
                requestId=request.request_id,
                errorType=type(e).__name__,
                error=str(e)[:500],
            )
            err = InternalError(str(e))
            return CheckinOutcome(err.status_code, error_body(err.public_message))
        finally:
            cleanup_temp_file(path)
            try:
                CHECKINS_TOTAL.labels(outcome=outcome).inc()
                CHECKIN_SECONDS.observe(time.perf_counter() - start)
            except Exception:
                pass

    async def transcribe(self, audio_path: str) -> UnifiedResult:
        """Cache, then primary provider, then fallback on ProviderError.

        Only primary results are written back to the cache.
        """
        cached = await self.cache.get(audio_path)
        if cached is not None:
            return cached
        try:
            result = await self.provider.transcribe_with_sentiment(audio_path)
        except ProviderError as e:
            try:
                PROVIDER_FALLBACKS_TOTAL.inc()
            except Exception:
                pass
            log_event(
                logger,
                "provider_fallback",
                provider=self.provider.provider_name,
                fallback=self.fallback_provider.provider_name,
                error=str(e)[:300],
            )
            return await self.fallback_provider.transcribe_with_sentiment(audio_path)
        await self.cache.set(audio_path, result)
        return result

    async def log_sentiment(self, session_id: str, sentiment: SentimentResult) -> None:
        try:
            await self.sentiment_store.log(session_id, sentiment)
        except PersistenceError:
            PERSIST_FAILURES_TOTAL.labels(store="sentiment").inc()

    async def synthesize(self, coaching: CoachingResponse, session_id: str) -> Optional[SpeechResult]:
        """Speak the motivational message. Any failure yields None."""
        text = coaching.motivational_message
        try:
            speech = await self.synthesizer.generate_speech(text, session_id)
        except Exception as e:
            log_event(logger, "tts_degraded", sessionId=session_id, errorType=type(e).__name__, error=str(e)[:300])
            return None

        record = CoachingSessionRecord(
            session_id=session_id,
            tts_text=text,
            audio_url=speech.audio_url,
            audio_metadata=speech.metadata(),
            voice_config=self.synthesizer.voice_config,
            processing_time=speech.processing_time,
            file_size=speech.file_size,
            duration=speech.duration,
        )
        try:
            await self.session_store.create(record)
        except PersistenceError:
            PERSIST_FAILURES_TOTAL.labels(store="coaching_session").inc()
        self.synthesizer.schedule_session_cleanup(session_id, self.session_cleanup_delay_s)
        return speech


def _elapsed_ms(start: float) -> int:
    # Rounded up so a completed check-in never reports zero
    return max(1, math.ceil((time.perf_counter() - start) * 1000))
