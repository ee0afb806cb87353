import asyncio
import math
import os
import time
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, List, Optional

import httpx
from starlette.concurrency import run_in_threadpool

from ..errors import ProviderError
from ..logs import get_logger, log_event
from ..metrics import PROVIDER_RETRIES_TOTAL
from ..models import NEUTRAL_DEFAULT, SentimentLabel, SentimentResult, UnifiedResult
from ..retry import retry_async
from .base import TranscriptionSentimentProvider

logger = get_logger("pulsecheck.providers.assemblyai")

DEFAULT_TRANSCRIPT_CONFIDENCE = 0.8


def _round2(x: float) -> float:
    # half-up, not banker's rounding
    return math.floor(x * 100 + 0.5) / 100


def aggregate_sentiment(sentences: Optional[List[Dict[str, Any]]]) -> SentimentResult:
    """Collapse per-sentence sentiment into one score/label/confidence triple.

    Confidence is summed per class and divided by the total to get ratios.
    The label is the class with the strictly greatest ratio; ties resolve to
    neutral. Scores map into per-label bands: positive [0.5, 1.0], negative
    [0.0, 0.5], neutral [0.4, 0.6].
    """
    if not sentences:
        return NEUTRAL_DEFAULT

    totals = {"POSITIVE": 0.0, "NEGATIVE": 0.0, "NEUTRAL": 0.0}
    total_confidence = 0.0
    for s in sentences:
        try:
            confidence = float((s or {}).get("confidence") or 0.0)
        except (TypeError, ValueError):
            confidence = 0.0
        sentiment = str((s or {}).get("sentiment") or "").upper()
        if sentiment in totals:
            totals[sentiment] += confidence
        total_confidence += confidence

    # No usable signal at all
    if total_confidence <= 0:
        return NEUTRAL_DEFAULT

    positive = totals["POSITIVE"] / total_confidence
    negative = totals["NEGATIVE"] / total_confidence
    neutral = totals["NEUTRAL"] / total_confidence

    if positive > negative and positive > neutral:
        label = SentimentLabel.POSITIVE
        score = 0.5 + positive * 0.5
    elif negative > positive and negative > neutral:
        label = SentimentLabel.NEGATIVE
        score = 0.5 - negative * 0.5
    else:
        label = SentimentLabel.NEUTRAL
        score = 0.4 + neutral * 0.2

    avg_confidence = total_confidence / len(sentences)
    return SentimentResult(score=_round2(score), label=label, confidence=_round2(avg_confidence))


class AssemblyAIProvider(TranscriptionSentimentProvider):
    provider_name: str = "assemblyai"

    def __init__(
        self,
        api_key: Optional[str] = None,
        *,
        base_url: str = "https://api.assemblyai.com",
        max_attempts: Optional[int] = None,
        backoff_base_ms: Optional[int] = None,
        poll_interval_s: float = 1.0,
        poll_timeout_s: float = 60.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        api_key = (api_key or os.getenv("ASSEMBLYAI_API_KEY", "")).strip()
        if not api_key:
            raise RuntimeError("ASSEMBLYAI_API_KEY is required for AssemblyAI provider")
        self._api_key = api_key
        self._base_url = base_url.rstrip("/")
        try:
            self._timeout = float(os.getenv("ASSEMBLYAI_TIMEOUT_SECONDS") or os.getenv("AI_HTTP_TIMEOUT_SECONDS") or 30)
        except Exception:
            self._timeout = 30.0
        self._max_attempts = max_attempts if max_attempts is not None else int(os.getenv("PROVIDER_MAX_ATTEMPTS") or 3)
        self._backoff_base_ms = backoff_base_ms if backoff_base_ms is not None else int(os.getenv("PROVIDER_BACKOFF_BASE_MS") or 1000)
        self._poll_interval_s = poll_interval_s
        self._poll_timeout_s = poll_timeout_s
        self._sleep = sleep

    async def transcribe_with_sentiment(self, audio_path: str) -> UnifiedResult:
        start = time.perf_counter()
        log_event(logger, "assemblyai_transcribe_start", file=os.path.basename(audio_path))
        try:
            audio = await run_in_threadpool(Path(audio_path).read_bytes)
        except OSError as e:
            raise ProviderError(f"Could not read audio file: {e}") from e

        def _on_retry(attempt: int, delay: float, exc: BaseException) -> None:
            PROVIDER_RETRIES_TOTAL.labels(provider=self.provider_name).inc()
            log_event(logger, "provider_retry", provider=self.provider_name, attempt=attempt, backoff_ms=int(delay * 1000), error=str(exc))

        try:
            data = await retry_async(
                lambda: self._request_transcript(audio),
                max_attempts=self._max_attempts,
                base_delay_s=self._backoff_base_ms / 1000.0,
                on_retry=_on_retry,
                sleep=self._sleep,
            )
        except Exception as e:
            raise ProviderError(f"AssemblyAI service error: {e}") from e

        text = (data.get("text") or "").strip()
        if not text:
            raise ProviderError("No transcription text received from AssemblyAI")

        sentiment = aggregate_sentiment(data.get("sentiment_analysis_results"))
        try:
            confidence = float(data.get("confidence") or DEFAULT_TRANSCRIPT_CONFIDENCE)
        except (TypeError, ValueError):
            confidence = DEFAULT_TRANSCRIPT_CONFIDENCE
        elapsed_ms = int((time.perf_counter() - start) * 1000)
        log_event(
            logger,
            "assemblyai_transcribe_done",
            chars=len(text),
            label=sentiment.label.value,
            score=sentiment.score,
            processingTimeMs=elapsed_ms,
        )
        return UnifiedResult(transcript=text, confidence=confidence, sentiment=sentiment, processing_time=elapsed_ms)

    async def _request_transcript(self, audio: bytes) -> Dict[str, Any]:
        headers = {"authorization": self._api_key}
        async with httpx.AsyncClient(timeout=self._timeout) as client:
            up = await client.post(f"{self._base_url}/v2/upload", headers=headers, content=audio)
            if up.status_code >= 400:
                raise RuntimeError(f"AssemblyAI upload error {up.status_code}: {up.text}")
            upload_url = (up.json() or {}).get("upload_url")
            if not upload_url:
                raise RuntimeError("AssemblyAI upload returned no upload_url")

            payload = {
                "audio_url": upload_url,
                "sentiment_analysis": True,
                "punctuate": True,
                "format_text": True,
            }
            created = await client.post(f"{self._base_url}/v2/transcript", headers=headers, json=payload)
            if created.status_code >= 400:
                raise RuntimeError(f"AssemblyAI transcript error {created.status_code}: {created.text}")
            transcript_id = (created.json() or {}).get("id")
            if not transcript_id:
                raise RuntimeError("AssemblyAI transcript returned no id")

            waited = 0.0
            while True:
                r = await client.get(f"{self._base_url}/v2/transcript/{transcript_id}", headers=headers)
                if r.status_code >= 400:
                    raise RuntimeError(f"AssemblyAI poll error {r.status_code}: {r.text}")
                data = r.json() or {}
                status = data.get("status")
                if status == "completed":
                    return data
                if status == "error":
                    raise RuntimeError(f"AssemblyAI transcription failed: {data.get('error')}")
                if waited >= self._poll_timeout_s:
                    raise TimeoutError(f"AssemblyAI transcript {transcript_id} not ready after {waited:.0f}s")
                await self._sleep(self._poll_interval_s)
                waited += self._poll_interval_s

    def describe(self) -> Dict[str, Any]:
        return {
            "provider": "AssemblyAI",
            "features": ["transcription", "sentiment_analysis", "punctuation", "text_formatting"],
        }
