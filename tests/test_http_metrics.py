from fastapi.testclient import TestClient
from prometheus_client import REGISTRY

from pulsecheck.main import app


def _get_metric_count(name: str, labels: dict) -> float:
    val = REGISTRY.get_sample_value(name, labels)
    return float(val) if val is not None else 0.0


def test_http_metrics_increment_on_2xx_and_4xx():
    client = TestClient(app)

    # Baselines
    before_ok = _get_metric_count(
        "pulsecheck_http_requests_total", {"method": "GET", "path": "/health", "status_class": "2xx"}
    )
    before_dur_ok = _get_metric_count(
        "pulsecheck_http_request_duration_seconds_count", {"method": "GET", "path": "/health"}
    )

    before_404 = _get_metric_count(
        "pulsecheck_http_requests_total", {"method": "GET", "path": "unmatched", "status_class": "4xx"}
    )
    before_dur_404 = _get_metric_count(
        "pulsecheck_http_request_duration_seconds_count", {"method": "GET", "path": "unmatched"}
    )

    # Hit a 2xx route
    r1 = client.get("/health")
    assert r1.status_code == 200

    # Hit a 4xx route
    r2 = client.get("/nope")
    assert r2.status_code == 404

    after_ok = _get_metric_count(
        "pulsecheck_http_requests_total", {"method": "GET", "path": "/health", "status_class": "2xx"}
    )
    after_dur_ok = _get_metric_count(
        "pulsecheck_http_request_duration_seconds_count", {"method": "GET", "path": "/health"}
    )

    after_404 = _get_metric_count(
        "pulsecheck_http_requests_total", {"method": "GET", "path": "unmatched", "status_class": "4xx"}
    )
    after_dur_404 = _get_metric_count(
        "pulsecheck_http_request_duration_seconds_count", {"method": "GET", "path": "unmatched"}
    )

    assert after_ok >= before_ok + 1
    assert after_dur_ok >= before_dur_ok + 1
    assert after_404 >= before_404 + 1
    assert after_dur_404 >= before_dur_404 + 1


def test_request_id_generated_when_absent():
    client = TestClient(app)
    r = client.get("/ping")
    assert r.status_code == 200
    assert r.headers.get("X-Request-Id")


def test_metrics_endpoint_exposes_pipeline_counters():
    with TestClient(app) as client:
        client.post(
            "/api/checkin?tts=false",
            files={"audio": ("m.wav", b"RIFF-metrics-test", "audio/wav")},
        )
        r = client.get("/metrics")
    assert r.status_code == 200
    text = r.text
    assert "pulsecheck_checkins_total" in text
    assert "pulsecheck_cache_lookups_total" in text
    assert "pulsecheck_coaching_total" in text


def test_http_metrics_label_by_route_template():
    labels = {"method": "GET", "path": "/audio/{filename}", "status_class": "4xx"}
    before = _get_metric_count("pulsecheck_http_requests_total", labels)

    with TestClient(app) as client:
        assert client.get("/audio/tts_a_1.mp3").status_code == 404
        assert client.get("/audio/tts_b_2.mp3").status_code == 404

    assert _get_metric_count("pulsecheck_http_requests_total", labels) == before + 2
    for raw in ("/audio/tts_a_1.mp3", "/audio/tts_b_2.mp3"):
        assert REGISTRY.get_sample_value(
            "pulsecheck_http_requests_total", {"method": "GET", "path": raw, "status_class": "4xx"}
        ) is None
