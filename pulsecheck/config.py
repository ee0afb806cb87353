import os

from dotenv import load_dotenv

# Load environment variables from .env if present, but not under pytest
if "PYTEST_CURRENT_TEST" not in os.environ:
    load_dotenv()


def _env_str(name: str, default: str = "") -> str:
    return os.getenv(name, default).strip()


def _env_float(name: str, default: float) -> float:
    try:
        return float(os.getenv(name, str(default)))
    except Exception:
        return default


def _env_int(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, str(default)))
    except Exception:
        return default


def _env_bool(name: str, default: bool) -> bool:
    try:
        v = os.getenv(name, "1" if default else "0").strip().lower()
        return v in ("1", "true", "yes", "on")
    except Exception:
        return default


# Storage
DATABASE_URL = _env_str("DATABASE_URL", "sqlite:///./pulsecheck.db")
AUDIO_DIR = _env_str("AUDIO_DIR", os.path.join(".", "uploads", "audio"))
UPLOAD_DIR = _env_str("UPLOAD_DIR", os.path.join(".", "uploads", "temp"))

# Upload limits
ALLOWED_AUDIO_EXTENSIONS = (".wav", ".mp3", ".m4a")
MAX_UPLOAD_BYTES = _env_int("MAX_UPLOAD_BYTES", 10 * 1024 * 1024)

# Coaching / TTS toggles
COACHING_MODE = _env_str("COACHING_MODE") or None
ENABLE_TTS = _env_bool("ENABLE_TTS", True)

# Transcription cache
CACHE_TTL_SECONDS = _env_int("CACHE_TTL_SECONDS", 24 * 60 * 60)
CACHE_MAX_ENTRIES = _env_int("CACHE_MAX_ENTRIES", 1000)

# Upstream retry policy
PROVIDER_MAX_ATTEMPTS = _env_int("PROVIDER_MAX_ATTEMPTS", 3)
PROVIDER_BACKOFF_BASE_MS = _env_int("PROVIDER_BACKOFF_BASE_MS", 1000)

# Network
AI_HTTP_TIMEOUT_SECONDS = _env_float("AI_HTTP_TIMEOUT_SECONDS", 30.0)

# Two independent expiry clocks on a coaching session: audio file vs. row
TTS_FILE_TTL_SECONDS = _env_int("TTS_FILE_TTL_SECONDS", 60 * 60)
SENTIMENT_RETENTION_DAYS = _env_int("SENTIMENT_RETENTION_DAYS", 30)
COACHING_SESSION_RETENTION_HOURS = _env_int("COACHING_SESSION_RETENTION_HOURS", 24)

# Scheduler
CLEANUP_INTERVAL_MINUTES = _env_float("CLEANUP_INTERVAL_MINUTES", 30.0)
CLEANUP_SCHEDULER_ENABLED = _env_bool("CLEANUP_SCHEDULER_ENABLED", True)
SHUTDOWN_TIMEOUT_SECONDS = _env_float("SHUTDOWN_TIMEOUT_SECONDS", 10.0)

# CORS
ALLOWED_ORIGINS = [
    o.strip()
    for o in _env_str("ALLOWED_ORIGINS", "http://localhost:3000,http://localhost:8081,exp://localhost:8081").split(",")
    if o.strip()
]
