import asyncio
import logging
import time
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from fastapi import FastAPI, File, Header, Query, Request, UploadFile
from fastapi.responses import FileResponse, JSONResponse, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from starlette.middleware.cors import CORSMiddleware

from . import __version__, config
from .cache import ContentAddressedCache
from .coaching import CoachingEngine
from .db import Database
from .errors import InternalError, PulseCheckError, UploadError
from .logs import get_logger, log_event
from .metrics import HTTP_REQUEST_DURATION_SECONDS, HTTP_REQUESTS_TOTAL
from .middleware.request_id import RequestIdMiddleware
from .orchestrator import CheckinOrchestrator, CheckinRequest, error_body
from .providers.factory import (
    get_coaching_llm_client,
    get_fallback_provider,
    get_speech_client,
    get_transcription_provider,
)
from .scheduler import CleanupScheduler
from .speech import SpeechSynthesizer
from .stores import CoachingSessionStore, SentimentStore
from .uploads import save_upload

logger = get_logger("pulsecheck.api")


app = FastAPI(
    title="PulseCheck API",
    description="Voice check-ins: transcription, sentiment, coaching and narrated encouragement.",
    version=__version__,
)
app.add_middleware(
    CORSMiddleware,
    allow_origins=config.ALLOWED_ORIGINS,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["X-Request-Id"],
    allow_credentials=False,
)
app.add_middleware(RequestIdMiddleware)


# HTTP metrics middleware
@app.middleware("http")
async def _http_metrics_middleware(request: Request, call_next):
    t0 = time.perf_counter()
    method = request.method
    status_code = 500
    try:
        response = await call_next(request)
        status_code = getattr(response, "status_code", 500)
        return response
    except Exception:
        status_code = 500
        raise
    finally:
        # Route template, not the raw URL: /audio/{filename} is one series
        path = getattr(request.scope.get("route"), "path", "unmatched")
        try:
            status_class = f"{status_code // 100}xx"
            HTTP_REQUESTS_TOTAL.labels(method=method, path=path, status_class=status_class).inc()
            HTTP_REQUEST_DURATION_SECONDS.labels(method=method, path=path).observe(time.perf_counter() - t0)
        except Exception:
            pass


def build_services() -> Dict[str, Any]:
    """Wire every pipeline component from the environment."""
    database = Database(config.DATABASE_URL)
    database.create_all()
    cache = ContentAddressedCache(ttl_seconds=config.CACHE_TTL_SECONDS, max_entries=config.CACHE_MAX_ENTRIES)
    provider = get_transcription_provider()
    fallback_provider = get_fallback_provider()
    coaching_engine = CoachingEngine(get_coaching_llm_client())
    synthesizer = SpeechSynthesizer(get_speech_client(), config.AUDIO_DIR)
    sentiment_store = SentimentStore(database)
    session_store = CoachingSessionStore(database, file_ttl_seconds=config.TTS_FILE_TTL_SECONDS)
    scheduler = CleanupScheduler(
        synthesizer=synthesizer,
        session_store=session_store,
        sentiment_store=sentiment_store,
        cache=cache,
        database=database,
        interval_minutes=config.CLEANUP_INTERVAL_MINUTES,
        sentiment_retention_days=config.SENTIMENT_RETENTION_DAYS,
        session_retention_hours=config.COACHING_SESSION_RETENTION_HOURS,
        tts_file_ttl_s=config.TTS_FILE_TTL_SECONDS,
    )
    orchestrator = CheckinOrchestrator(
        cache=cache,
        provider=provider,
        fallback_provider=fallback_provider,
        sentiment_store=sentiment_store,
        coaching_engine=coaching_engine,
        synthesizer=synthesizer,
        session_store=session_store,
        env_mode=config.COACHING_MODE,
        env_tts_enabled=config.ENABLE_TTS,
        session_cleanup_delay_s=config.TTS_FILE_TTL_SECONDS,
    )
    return {
        "database": database,
        "cache": cache,
        "provider": provider,
        "fallback_provider": fallback_provider,
        "coaching_engine": coaching_engine,
        "synthesizer": synthesizer,
        "sentiment_store": sentiment_store,
        "session_store": session_store,
        "scheduler": scheduler,
        "orchestrator": orchestrator,
        "upload_dir": config.UPLOAD_DIR,
    }


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    for name, svc in build_services().items():
        setattr(app.state, name, svc)
    if config.CLEANUP_SCHEDULER_ENABLED:
        app.state.scheduler.start()
    log_event(
        logger,
        "service_started",
        provider=app.state.provider.provider_name,
        tts=config.ENABLE_TTS,
        coachingMode=config.COACHING_MODE or "fast",
        scheduler=config.CLEANUP_SCHEDULER_ENABLED,
    )
    try:
        yield
    finally:
        # Shutdown: final cleanup pass bounded by SHUTDOWN_TIMEOUT_SECONDS
        try:
            await asyncio.wait_for(app.state.scheduler.shutdown(), timeout=config.SHUTDOWN_TIMEOUT_SECONDS)
        except asyncio.TimeoutError:
            log_event(logger, "shutdown_timeout", timeoutS=config.SHUTDOWN_TIMEOUT_SECONDS)
            app.state.database.dispose()
        log_event(logger, "service_stopped")

# Register lifespan context to replace deprecated on_event hooks
app.router.lifespan_context = lifespan


@app.exception_handler(PulseCheckError)
async def _pulsecheck_error_handler(request: Request, exc: PulseCheckError):
    log_event(logger, "request_error", path=request.url.path, errorType=type(exc).__name__, error=str(exc)[:300])
    return JSONResponse(status_code=exc.status_code, content=error_body(exc.public_message))


@app.get("/ping", tags=["meta"])
async def ping():
    return {"message": "pong"}


@app.get("/health", tags=["meta"], description="Liveness endpoint for health checks.")
async def health():
    return {"status": "ok"}


@app.get("/api/health", tags=["meta"], description="Health report including a database check.")
async def api_health(request: Request):
    state = request.app.state
    db_ok = await state.sentiment_store.health()
    body = {
        "status": "healthy" if db_ok else "unhealthy",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "version": __version__,
        "services": {
            "database": db_ok,
            "transcription": state.provider.describe(),
            "tts": state.synthesizer.info(),
            "cache": state.cache.stats(),
            "cleanupScheduler": state.scheduler.status(),
        },
    }
    return JSONResponse(status_code=200 if db_ok else 503, content=body)


@app.get("/metrics", tags=["meta"], include_in_schema=False)
async def metrics():
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)


@app.post("/api/checkin", tags=["checkin"], description="Process one voice check-in recording.")
async def checkin(
    request: Request,
    audio: Optional[UploadFile] = File(None),
    mode: Optional[str] = Query(None, description="Coaching mode: fast | optimized"),
    tts: Optional[str] = Query(None, description="Set to 'false' to skip speech synthesis"),
    x_coaching_mode: Optional[str] = Header(None),
):
    state = request.app.state
    try:
        path = await save_upload(
            audio,
            state.upload_dir,
            max_bytes=config.MAX_UPLOAD_BYTES,
            allowed_extensions=config.ALLOWED_AUDIO_EXTENSIONS,
        )
    except UploadError as e:
        log_event(logger, "upload_rejected", error=e.public_message)
        return JSONResponse(status_code=e.status_code, content=error_body(e.public_message))
    except Exception as e:
        # e.g. disk full while spooling the upload
        log_event(logger, "upload_failed", level=logging.ERROR, errorType=type(e).__name__, error=str(e)[:300])
        err = InternalError(str(e))
        return JSONResponse(status_code=err.status_code, content=error_body(err.public_message))
    finally:
        if audio is not None:
            await audio.close()

    outcome = await state.orchestrator.run(
        CheckinRequest(
            audio_path=path,
            query_mode=mode,
            header_mode=x_coaching_mode,
            query_tts=tts,
            request_id=getattr(request.state, "request_id", None),
        )
    )
    return JSONResponse(status_code=outcome.status_code, content=outcome.body)


@app.get("/audio/{filename}", tags=["audio"], name="tts_audio", description="Serve generated TTS audio.")
async def tts_audio(filename: str, request: Request):
    path = request.app.state.synthesizer.resolve_audio_path(filename)
    if path is None:
        return JSONResponse(status_code=404, content=error_body("Audio file not found"))
    return FileResponse(str(path), media_type="audio/mpeg")


@app.get("/api/stats", tags=["stats"], description="Aggregate sentiment, session and cache statistics.")
async def stats(request: Request, hours: float = Query(24, gt=0, le=24 * 365)):
    state = request.app.state
    return {
        "success": True,
        "data": {
            "sentiment": await state.sentiment_store.stats(hours),
            "coachingSessions": await state.session_store.stats(hours),
            "cache": state.cache.stats(),
            "cleanupScheduler": state.scheduler.status(),
            "windowHours": hours,
        },
    }


@app.post("/api/cleanup", tags=["maintenance"], description="Run one cleanup pass now.")
async def manual_cleanup(request: Request):
    result = await request.app.state.scheduler.run_manual_cleanup()
    return {"success": True, "data": result}


@app.get("/api/cleanup/status", tags=["maintenance"])
async def cleanup_status(request: Request):
    return {"success": True, "data": request.app.state.scheduler.status()}
