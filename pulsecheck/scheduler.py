from __future__ import annotations

import asyncio
import time
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from .cache import ContentAddressedCache
from .db import Database
from .logs import get_logger, log_event
from .metrics import CLEANUP_ITEMS_TOTAL, CLEANUP_RUNS_TOTAL, CLEANUP_SECONDS
from .speech import SpeechSynthesizer, cleanup_expired_tts_sessions
from .stores import CoachingSessionStore, SentimentStore

logger = get_logger("pulsecheck.scheduler")


class CleanupScheduler:
    """Recurring cleanup of TTS audio, retention windows and the cache.

    stopped -> running on `start()` (a no-op while running); running ->
    stopped on `stop()`/`shutdown()`. A pass runs immediately on start and
    then every `interval_minutes`. Each step is isolated: a failing step is
    logged and the remaining steps and future ticks still run.
    """

    def __init__(
        self,
        *,
        synthesizer: SpeechSynthesizer,
        session_store: CoachingSessionStore,
        sentiment_store: SentimentStore,
        cache: Optional[ContentAddressedCache] = None,
        database: Optional[Database] = None,
        interval_minutes: float = 30,
        sentiment_retention_days: float = 30,
        session_retention_hours: float = 24,
        tts_file_ttl_s: float = 60 * 60,
    ):
        self.synthesizer = synthesizer
        self.session_store = session_store
        self.sentiment_store = sentiment_store
        self.cache = cache
        self.database = database
        self.interval_s = float(interval_minutes) * 60
        self.sentiment_retention_days = sentiment_retention_days
        self.session_retention_hours = session_retention_hours
        self.tts_file_ttl_s = tts_file_ttl_s
        self._task: Optional[asyncio.Task] = None
        self._last_run: Optional[Dict[str, Any]] = None
        self._next_run_at: Optional[float] = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.is_running:
            log_event(logger, "cleanup_scheduler_already_running")
            return
        self._task = asyncio.get_running_loop().create_task(self._loop())
        log_event(logger, "cleanup_scheduler_started", intervalMinutes=self.interval_s / 60)

    def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            self._task = None
            self._next_run_at = None
            log_event(logger, "cleanup_scheduler_stopped")

    async def _loop(self) -> None:
        while True:
            await self.run_cleanup_tasks()
            self._next_run_at = time.time() + self.interval_s
            await asyncio.sleep(self.interval_s)

    async def run_cleanup_tasks(self) -> Dict[str, Any]:
        start = time.perf_counter()
        errors: List[str] = []
        result: Dict[str, Any] = {
            "ttsCleanup": None,
            "sentimentLogsCleanup": None,
            "coachingSessionsCleanup": None,
            "cacheCleanup": None,
        }

        # Order matters: reclaim expired audio before session rows are pruned
        try:
            result["ttsCleanup"] = await cleanup_expired_tts_sessions(
                self.synthesizer, self.session_store, max_file_age_s=self.tts_file_ttl_s
            )
        except Exception as e:
            errors.append(f"tts:{type(e).__name__}")
            log_event(logger, "cleanup_step_failed", step="tts", error=str(e))
        try:
            result["sentimentLogsCleanup"] = await self.sentiment_store.prune_older_than(self.sentiment_retention_days)
        except Exception as e:
            errors.append(f"sentiment_logs:{type(e).__name__}")
            log_event(logger, "cleanup_step_failed", step="sentiment_logs", error=str(e))
        try:
            result["coachingSessionsCleanup"] = await self.session_store.prune_older_than(self.session_retention_hours)
        except Exception as e:
            errors.append(f"coaching_sessions:{type(e).__name__}")
            log_event(logger, "cleanup_step_failed", step="coaching_sessions", error=str(e))
        if self.cache is not None:
            try:
                result["cacheCleanup"] = self.cache.prune_expired()
            except Exception as e:
                errors.append(f"cache:{type(e).__name__}")
                log_event(logger, "cleanup_step_failed", step="cache", error=str(e))

        elapsed = time.perf_counter() - start
        result["processingTime"] = int(elapsed * 1000)
        result["errors"] = errors
        result["completedAt"] = datetime.now(timezone.utc).isoformat()
        self._last_run = result
        try:
            CLEANUP_RUNS_TOTAL.labels(status="failure" if errors else "success").inc()
            CLEANUP_SECONDS.observe(elapsed)
            tts = result["ttsCleanup"] or {}
            CLEANUP_ITEMS_TOTAL.labels(kind="tts_files").inc(tts.get("filesCleanedUp", 0))
            CLEANUP_ITEMS_TOTAL.labels(kind="sentiment_logs").inc(result["sentimentLogsCleanup"] or 0)
            CLEANUP_ITEMS_TOTAL.labels(kind="coaching_sessions").inc(result["coachingSessionsCleanup"] or 0)
            CLEANUP_ITEMS_TOTAL.labels(kind="cache_entries").inc(result["cacheCleanup"] or 0)
        except Exception:
            pass
        log_event(logger, "cleanup_pass", **result)
        return result

    async def run_manual_cleanup(self) -> Dict[str, Any]:
        log_event(logger, "cleanup_manual_trigger")
        return await self.run_cleanup_tasks()

    def status(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "isRunning": self.is_running,
            "intervalMinutes": self.interval_s / 60,
        }
        if self.is_running:
            next_at = self._next_run_at if self._next_run_at is not None else time.time()
            out["nextRunTime"] = datetime.fromtimestamp(next_at, tz=timezone.utc).isoformat()
        if self._last_run is not None:
            out["lastRun"] = self._last_run
        return out

    async def shutdown(self) -> None:
        """Stop the timer, run one final pass and release store connections."""
        log_event(logger, "cleanup_scheduler_shutdown_start")
        task = self._task
        self.stop()
        if task is not None:
            try:
                await task
            except asyncio.CancelledError:
                pass
            except Exception as e:
                log_event(logger, "cleanup_scheduler_task_error", error=str(e))
        await self.run_cleanup_tasks()
        self.synthesizer.cancel_scheduled()
        if self.database is not None:
            try:
                self.database.dispose()
            except Exception as e:
                log_event(logger, "database_dispose_failed", error=str(e))
        log_event(logger, "cleanup_scheduler_shutdown_done")
