from __future__ import annotations

import datetime as dt
from typing import Any, Dict, List, Optional

from sqlalchemy import delete, select, update
from starlette.concurrency import run_in_threadpool

from .db import CoachingSession, Database, StressLog, utcnow
from .errors import PersistenceError
from .logs import get_logger, log_event
from .models import CoachingSessionRecord, SentimentLabel, SentimentResult

logger = get_logger("pulsecheck.stores")


class SentimentStore:
    """Anonymized, append-only sentiment log (`stress_logs`).

    Rows hold only an opaque session id, score, label and timestamp.
    """

    def __init__(self, db: Database):
        self.db = db

    async def log(self, session_id: str, sentiment: SentimentResult, *, now: Optional[dt.datetime] = None) -> None:
        try:
            await run_in_threadpool(self._log_sync, session_id, sentiment, now or utcnow())
        except Exception as e:
            log_event(logger, "sentiment_log_failed", sessionId=session_id, error=str(e))
            raise PersistenceError(f"Database logging failed: {e}") from e
        log_event(logger, "sentiment_logged", sessionId=session_id, label=sentiment.label.value, score=sentiment.score)

    def _log_sync(self, session_id: str, sentiment: SentimentResult, now: dt.datetime) -> None:
        with self.db.session_factory() as s:
            s.add(StressLog(uuid=session_id, score=sentiment.score, label=sentiment.label.value, created_at=now))
            s.commit()

    async def stats(self, window_hours: float = 24, *, now: Optional[dt.datetime] = None) -> Dict[str, Any]:
        since = (now or utcnow()) - dt.timedelta(hours=window_hours)
        try:
            rows = await run_in_threadpool(self._rows_since, since)
        except Exception as e:
            raise PersistenceError(f"Database query failed: {e}") from e
        counts = {lbl.value: 0 for lbl in SentimentLabel}
        for _score, label in rows:
            if label in counts:
                counts[label] += 1
        total = len(rows)
        return {
            "total": total,
            "positive": counts["positive"],
            "negative": counts["negative"],
            "neutral": counts["neutral"],
            "averageScore": (sum(r[0] for r in rows) / total) if total else 0.0,
        }

    def _rows_since(self, since: dt.datetime) -> List[Any]:
        with self.db.session_factory() as s:
            return list(s.execute(select(StressLog.score, StressLog.label).where(StressLog.created_at >= since)).all())

    async def prune_older_than(self, days: float = 30, *, now: Optional[dt.datetime] = None) -> int:
        cutoff = (now or utcnow()) - dt.timedelta(days=days)
        try:
            count = await run_in_threadpool(self._delete_before, cutoff)
        except Exception as e:
            raise PersistenceError(f"Database cleanup failed: {e}") from e
        log_event(logger, "sentiment_logs_pruned", count=count, retentionDays=days)
        return count

    def _delete_before(self, cutoff: dt.datetime) -> int:
        with self.db.session_factory() as s:
            res = s.execute(delete(StressLog).where(StressLog.created_at < cutoff))
            s.commit()
            return int(res.rowcount or 0)

    async def health(self) -> bool:
        try:
            return await run_in_threadpool(self.db.ping)
        except Exception as e:
            log_event(logger, "database_health_failed", error=str(e))
            return False


def _to_record(row: CoachingSession) -> CoachingSessionRecord:
    return CoachingSessionRecord(
        session_id=row.session_id,
        tts_text=row.tts_text,
        audio_url=row.audio_url,
        audio_metadata=row.audio_metadata,
        voice_config=row.voice_config,
        processing_time=row.processing_time,
        file_size=row.file_size,
        duration=row.duration,
        cleanup=bool(row.cleanup),
        created_at=row.created_at,
        expires_at=row.expires_at,
    )


class CoachingSessionStore:
    """TTS session metadata (`coaching_sessions`).

    `expires_at` is always `created_at + file_ttl`, computed here. The row
    outlives its audio file: `cleanup` flips once the file is gone and the
    row itself is removed later by `prune_older_than`.
    """

    def __init__(self, db: Database, *, file_ttl_seconds: float = 60 * 60):
        self.db = db
        self.file_ttl = dt.timedelta(seconds=file_ttl_seconds)

    async def create(self, record: CoachingSessionRecord, *, now: Optional[dt.datetime] = None) -> CoachingSessionRecord:
        created = now or utcnow()
        try:
            row = await run_in_threadpool(self._create_sync, record, created, created + self.file_ttl)
        except Exception as e:
            log_event(logger, "coaching_session_create_failed", sessionId=record.session_id, error=str(e))
            raise PersistenceError(f"Coaching session creation failed: {e}") from e
        log_event(logger, "coaching_session_created", sessionId=record.session_id, expiresAt=row.expires_at)
        return row

    def _create_sync(self, record: CoachingSessionRecord, created: dt.datetime, expires: dt.datetime) -> CoachingSessionRecord:
        with self.db.session_factory() as s:
            row = CoachingSession(
                session_id=record.session_id,
                tts_text=record.tts_text,
                audio_url=record.audio_url,
                audio_metadata=record.audio_metadata,
                voice_config=record.voice_config,
                processing_time=record.processing_time,
                file_size=record.file_size,
                duration=record.duration,
                cleanup=False,
                created_at=created,
                expires_at=expires,
            )
            s.add(row)
            s.commit()
            return _to_record(row)

    async def get(self, session_id: str) -> Optional[CoachingSessionRecord]:
        try:
            return await run_in_threadpool(self._get_sync, session_id)
        except Exception as e:
            raise PersistenceError(f"Database query failed: {e}") from e

    def _get_sync(self, session_id: str) -> Optional[CoachingSessionRecord]:
        with self.db.session_factory() as s:
            row = s.execute(select(CoachingSession).where(CoachingSession.session_id == session_id)).scalar_one_or_none()
            return _to_record(row) if row is not None else None

    async def mark_cleaned(self, session_id: str) -> None:
        # Bookkeeping only; never disrupts the caller
        try:
            updated = await run_in_threadpool(self._mark_sync, session_id)
        except Exception as e:
            log_event(logger, "coaching_session_mark_failed", sessionId=session_id, error=str(e))
            return
        if updated:
            log_event(logger, "coaching_session_cleaned", sessionId=session_id)
        else:
            log_event(logger, "coaching_session_mark_missing", sessionId=session_id)

    def _mark_sync(self, session_id: str) -> int:
        with self.db.session_factory() as s:
            res = s.execute(update(CoachingSession).where(CoachingSession.session_id == session_id).values(cleanup=True))
            s.commit()
            return int(res.rowcount or 0)

    async def list_expired(self, now: Optional[dt.datetime] = None) -> List[CoachingSessionRecord]:
        try:
            return await run_in_threadpool(self._expired_sync, now or utcnow())
        except Exception as e:
            log_event(logger, "coaching_session_expired_query_failed", error=str(e))
            return []

    def _expired_sync(self, now: dt.datetime) -> List[CoachingSessionRecord]:
        with self.db.session_factory() as s:
            rows = s.execute(
                select(CoachingSession).where(CoachingSession.expires_at < now, CoachingSession.cleanup.is_(False))
            ).scalars().all()
            return [_to_record(r) for r in rows]

    async def prune_older_than(self, hours: float = 24, *, now: Optional[dt.datetime] = None) -> int:
        cutoff = (now or utcnow()) - dt.timedelta(hours=hours)
        try:
            count = await run_in_threadpool(self._delete_before, cutoff)
        except Exception as e:
            raise PersistenceError(f"Coaching session cleanup failed: {e}") from e
        log_event(logger, "coaching_sessions_pruned", count=count, retentionHours=hours)
        return count

    def _delete_before(self, cutoff: dt.datetime) -> int:
        with self.db.session_factory() as s:
            res = s.execute(delete(CoachingSession).where(CoachingSession.created_at < cutoff))
            s.commit()
            return int(res.rowcount or 0)

    async def stats(self, hours: float = 24, *, now: Optional[dt.datetime] = None) -> Dict[str, Any]:
        since = (now or utcnow()) - dt.timedelta(hours=hours)
        try:
            rows = await run_in_threadpool(self._rows_since, since)
        except Exception as e:
            raise PersistenceError(f"Database query failed: {e}") from e
        with_audio = [r for r in rows if r.audio_url]
        return {
            "total": len(rows),
            "withAudio": len(with_audio),
            "averageProcessingTime": (sum(r.processing_time or 0 for r in with_audio) / len(with_audio)) if with_audio else 0.0,
            "totalFileSize": sum(r.file_size or 0 for r in rows),
            "averageDuration": (sum(r.duration or 0 for r in with_audio) / len(with_audio)) if with_audio else 0.0,
        }

    def _rows_since(self, since: dt.datetime) -> List[CoachingSessionRecord]:
        with self.db.session_factory() as s:
            rows = s.execute(select(CoachingSession).where(CoachingSession.created_at >= since)).scalars().all()
            return [_to_record(r) for r in rows]
