from __future__ import annotations

import asyncio
import math
import os
import re
import time
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from starlette.concurrency import run_in_threadpool

from .errors import SynthesisError
from .logs import get_logger, log_event
from .metrics import TTS_TOTAL
from .models import SpeechResult
from .providers.base import SpeechClient

logger = get_logger("pulsecheck.speech")

WORDS_PER_MINUTE = 125
AUDIO_FILE_RE = re.compile(r"^tts_[A-Za-z0-9_-]+\.mp3$")


def estimate_duration_seconds(text: str) -> int:
    words = len((text or "").split())
    return max(1, math.ceil(words / WORDS_PER_MINUTE * 60))


def _safe_session_id(session_id: str) -> str:
    return re.sub(r"[^A-Za-z0-9-]", "", session_id or "") or "anon"


def _file_age_anchor(st: os.stat_result) -> float:
    # Birth time where the platform reports it; mtime otherwise
    return getattr(st, "st_birthtime", None) or st.st_mtime


class SpeechSynthesizer:
    """Writes synthesized speech to per-session files and reclaims them.

    Files live under `audio_dir` as `tts_<session>_<ms>.mp3` and are served
    from `url_prefix`. Each file is tracked under its session id so it can be
    removed on demand; `cleanup_expired_files` sweeps the directory by age
    for files whose tracking was lost (e.g. after a restart).
    """

    def __init__(
        self,
        client: SpeechClient,
        audio_dir: str,
        *,
        url_prefix: str = "/audio",
        clock: Callable[[], float] = time.time,
    ):
        self.client = client
        self.audio_dir = Path(audio_dir)
        self.url_prefix = url_prefix.rstrip("/")
        self._clock = clock
        self._session_files: Dict[str, List[Path]] = {}
        self._scheduled: Dict[str, asyncio.Task] = {}

    @property
    def voice_config(self) -> Dict[str, Any]:
        return dict(self.client.voice_config)

    def _ensure_dir(self) -> None:
        if not self.audio_dir.exists():
            self.audio_dir.mkdir(parents=True, exist_ok=True)
            log_event(logger, "audio_dir_created", path=str(self.audio_dir))

    def _write_unique(self, session_id: str, audio: bytes) -> Path:
        # Exclusive create; bump the millisecond suffix on collision
        sid = _safe_session_id(session_id)
        ms = int(self._clock() * 1000)
        while True:
            path = self.audio_dir / f"tts_{sid}_{ms}.mp3"
            try:
                with open(path, "xb") as fh:
                    fh.write(audio)
                return path
            except FileExistsError:
                ms += 1

    async def generate_speech(self, text: str, session_id: str) -> SpeechResult:
        start = time.perf_counter()
        log_event(logger, "tts_start", sessionId=session_id, chars=len(text or ""))
        try:
            audio = await self.client.synthesize(text)
        except Exception as e:
            TTS_TOTAL.labels(outcome="error").inc()
            raise SynthesisError(f"TTS generation failed: {e}") from e
        if not audio:
            TTS_TOTAL.labels(outcome="empty").inc()
            raise SynthesisError("No audio content received from TTS provider")

        def _write() -> Path:
            self._ensure_dir()
            return self._write_unique(session_id, audio)

        try:
            path = await run_in_threadpool(_write)
            file_size = (await run_in_threadpool(path.stat)).st_size
        except OSError as e:
            TTS_TOTAL.labels(outcome="error").inc()
            raise SynthesisError(f"Could not store synthesized audio: {e}") from e
        self._session_files.setdefault(session_id, []).append(path)

        result = SpeechResult(
            audio_url=f"{self.url_prefix}/{path.name}",
            audio_file_path=str(path),
            duration=estimate_duration_seconds(text),
            file_size=file_size,
            processing_time=int((time.perf_counter() - start) * 1000),
        )
        TTS_TOTAL.labels(outcome="success").inc()
        log_event(
            logger,
            "tts_generated",
            sessionId=session_id,
            file=path.name,
            sizeKb=round(file_size / 1024, 1),
            durationS=result.duration,
            processingTimeMs=result.processing_time,
        )
        return result

    def resolve_audio_path(self, filename: str) -> Optional[Path]:
        """Path for a servable audio file name, or None if unknown/invalid."""
        if not AUDIO_FILE_RE.match(filename or ""):
            return None
        path = self.audio_dir / filename
        return path if path.is_file() else None

    async def cleanup_session_files(self, session_id: str, *, audio_url: Optional[str] = None) -> int:
        """Delete every file tracked for `session_id`. Idempotent.

        When nothing is tracked (process restarted), `audio_url` names the
        file to remove instead.
        """
        paths = self._session_files.pop(session_id, [])
        if not paths and audio_url:
            name = audio_url.rsplit("/", 1)[-1]
            if AUDIO_FILE_RE.match(name):
                paths = [self.audio_dir / name]

        def _unlink_all() -> int:
            removed = 0
            for p in paths:
                try:
                    p.unlink()
                    removed += 1
                except FileNotFoundError:
                    continue
                except OSError as e:
                    log_event(logger, "tts_file_delete_failed", file=p.name, error=str(e))
            return removed

        removed = await run_in_threadpool(_unlink_all) if paths else 0
        if removed:
            log_event(logger, "tts_session_cleaned", sessionId=session_id, files=removed)
        return removed

    def schedule_session_cleanup(self, session_id: str, delay_s: float = 60 * 60) -> asyncio.Task:
        """Arm a one-shot deferred cleanup; re-arming replaces the earlier timer."""
        previous = self._scheduled.pop(session_id, None)
        if previous is not None and not previous.done():
            previous.cancel()

        async def _later() -> None:
            try:
                await asyncio.sleep(delay_s)
                await self.cleanup_session_files(session_id)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                log_event(logger, "tts_scheduled_cleanup_failed", sessionId=session_id, error=str(e))
            finally:
                if self._scheduled.get(session_id) is task:
                    self._scheduled.pop(session_id, None)

        task = asyncio.get_running_loop().create_task(_later())
        self._scheduled[session_id] = task
        log_event(logger, "tts_cleanup_scheduled", sessionId=session_id, delayS=delay_s)
        return task

    def cancel_scheduled(self) -> int:
        tasks = list(self._scheduled.values())
        self._scheduled.clear()
        for t in tasks:
            t.cancel()
        return len(tasks)

    async def cleanup_expired_files(self, max_age_s: float = 60 * 60) -> int:
        def _sweep() -> int:
            if not self.audio_dir.is_dir():
                return 0
            now = self._clock()
            removed = 0
            for p in self.audio_dir.iterdir():
                if not AUDIO_FILE_RE.match(p.name):
                    continue
                try:
                    if now - _file_age_anchor(p.stat()) > max_age_s:
                        p.unlink()
                        removed += 1
                except FileNotFoundError:
                    # Deleted concurrently
                    continue
            return removed

        removed = await run_in_threadpool(_sweep)
        if removed:
            log_event(logger, "tts_expired_files_cleaned", files=removed)
        return removed

    def info(self) -> Dict[str, Any]:
        return {
            "provider": self.client.provider_name,
            "voiceConfig": self.voice_config,
            "audioFormat": "MP3",
            "activeSessions": len(self._session_files),
            "totalTrackedFiles": sum(len(v) for v in self._session_files.values()),
        }


async def cleanup_expired_tts_sessions(synthesizer: SpeechSynthesizer, session_store: Any, *, max_file_age_s: float = 60 * 60) -> Dict[str, int]:
    """Reclaim audio for expired sessions, mark them cleaned, then sweep the directory."""
    files = 0
    marked = 0
    for record in await session_store.list_expired():
        files += await synthesizer.cleanup_session_files(record.session_id, audio_url=record.audio_url)
        await session_store.mark_cleaned(record.session_id)
        marked += 1
    files += await synthesizer.cleanup_expired_files(max_file_age_s)
    return {"filesCleanedUp": files, "sessionsMarked": marked}
