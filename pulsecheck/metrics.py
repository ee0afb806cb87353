from prometheus_client import Counter, Histogram

# HTTP request metrics
HTTP_REQUESTS_TOTAL = Counter(
    "pulsecheck_http_requests_total",
    "Total HTTP requests",
    ["method", "path", "status_class"],
)
HTTP_REQUEST_DURATION_SECONDS = Histogram(
    "pulsecheck_http_request_duration_seconds",
    "Duration of HTTP requests in seconds",
    ["method", "path"],
)

# Check-in pipeline
CHECKINS_TOTAL = Counter(
    "pulsecheck_checkins_total",
    "Check-in request outcomes",
    ["outcome"],
)
CHECKIN_SECONDS = Histogram(
    "pulsecheck_checkin_seconds",
    "Duration of a full check-in in seconds",
)
CACHE_LOOKUPS_TOTAL = Counter(
    "pulsecheck_cache_lookups_total",
    "Transcription cache lookups",
    ["result"],
)
PROVIDER_RETRIES_TOTAL = Counter(
    "pulsecheck_provider_retries_total",
    "Upstream transcription retries",
    ["provider"],
)
PROVIDER_FALLBACKS_TOTAL = Counter(
    "pulsecheck_provider_fallbacks_total",
    "Check-ins served by the fallback transcription provider",
)
COACHING_TOTAL = Counter(
    "pulsecheck_coaching_total",
    "Coaching generations by resolved mode",
    ["mode", "crisis"],
)
COACHING_LLM_FAILURES_TOTAL = Counter(
    "pulsecheck_coaching_llm_failures_total",
    "Optimized coaching generations that degraded to fast mode",
    ["reason"],
)
TTS_TOTAL = Counter(
    "pulsecheck_tts_total",
    "Speech synthesis outcomes",
    ["outcome"],
)
PERSIST_FAILURES_TOTAL = Counter(
    "pulsecheck_persist_failures_total",
    "Best-effort persistence failures",
    ["store"],
)

# Cleanup scheduler
CLEANUP_RUNS_TOTAL = Counter(
    "pulsecheck_cleanup_runs_total",
    "Cleanup pass outcomes",
    ["status"],
)
CLEANUP_ITEMS_TOTAL = Counter(
    "pulsecheck_cleanup_items_total",
    "Items removed by cleanup passes",
    ["kind"],
)
CLEANUP_SECONDS = Histogram(
    "pulsecheck_cleanup_seconds",
    "Duration of a cleanup pass in seconds",
)
