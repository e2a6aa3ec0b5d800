from opentelemetry.sdk.trace import TracerProvider

from listings_worker.core.telemetry import annotate_sweep_span, parse_otlp_headers


def test_sweep_report_counters_land_on_span() -> None:
    provider = TracerProvider()
    tracer = provider.get_tracer(__name__)
    report = {
        "mode": "expiry",
        "slots_found": 4,
        "succeeded": [{}, {}],
        "failed": [{}],
        "skipped": [{}],
        "host_notification_failures": 1,
    }

    with tracer.start_as_current_span("worker.slot_sweep") as span:
        annotate_sweep_span(span, report)
        attributes = dict(span.attributes)

    assert attributes == {
        "sweep.mode": "expiry",
        "sweep.slots_found": 4,
        "sweep.succeeded": 2,
        "sweep.failed": 1,
        "sweep.skipped": 1,
        "sweep.host_notification_failures": 1,
    }
    provider.shutdown()


def test_worker_otlp_headers() -> None:
    assert parse_otlp_headers("api-key=secret") == {"api-key": "secret"}
    assert parse_otlp_headers("") == {}
