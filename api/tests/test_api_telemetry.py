import pytest

from listings_api.core.config import Settings
from listings_api.core.telemetry import build_tracer_provider, otlp_endpoint, parse_otlp_headers


def test_parse_otlp_headers_skips_malformed_pairs() -> None:
    assert parse_otlp_headers("authorization=Basic abc, x-tenant = listings ,broken,=nokey") == {
        "authorization": "Basic abc",
        "x-tenant": "listings",
    }
    assert parse_otlp_headers(None) == {}


def test_otlp_endpoint_prefers_settings_over_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("OTEL_EXPORTER_OTLP_TRACES_ENDPOINT", "http://collector:4318/v1/traces")
    monkeypatch.setenv("OTEL_EXPORTER_OTLP_ENDPOINT", "http://fallback:4318")

    assert otlp_endpoint(Settings(otel_exporter_otlp_endpoint="http://explicit:4318")) == "http://explicit:4318"
    assert otlp_endpoint(Settings()) == "http://collector:4318/v1/traces"
    monkeypatch.delenv("OTEL_EXPORTER_OTLP_TRACES_ENDPOINT")
    assert otlp_endpoint(Settings()) == "http://fallback:4318"


def test_tracer_provider_describes_the_api(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("OTEL_EXPORTER_OTLP_TRACES_ENDPOINT", raising=False)
    monkeypatch.delenv("OTEL_EXPORTER_OTLP_ENDPOINT", raising=False)

    provider = build_tracer_provider(Settings(environment="staging"))
    try:
        attributes = provider.resource.attributes
        assert attributes["service.name"] == "listing-publication-api"
        assert attributes["deployment.environment"] == "staging"
        assert attributes["service.component"] == "listings-api"
    finally:
        provider.shutdown()
