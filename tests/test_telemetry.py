from __future__ import annotations

from fileuploader.config import ObservabilityConfig
from fileuploader.telemetry import TelemetryCollector


def test_buffers_keep_only_the_most_recent_entries():
    telemetry = TelemetryCollector(ObservabilityConfig(telemetry_buffer_size=10))
    for index in range(25):
        telemetry.emit_metric("uploads.events", 1, {"type": "progress", "seq": str(index)})
        telemetry.emit_event("upload_created", {"upload_id": str(index)})

    assert len(telemetry.metrics) == 10
    assert len(telemetry.events) == 10
    assert telemetry.metrics[0]["seq"] == "15"
    assert telemetry.count("uploads.events", type="progress") == 10


def test_flush_clears_buffers():
    telemetry = TelemetryCollector(ObservabilityConfig())
    telemetry.emit_metric("uploads.authorized", 1)
    telemetry.emit_event("upload_created")
    telemetry.flush()
    assert len(telemetry.metrics) == 0
    assert len(telemetry.events) == 0
    assert telemetry.count("uploads.authorized") == 0
