"""Observability helpers: logging setup and an in-process metrics collector."""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Deque, Dict

from .config import ObservabilityConfig
from .models import ObservabilityEvent

LOG_FORMAT = "[%(asctime)s] %(levelname)s %(name)s: %(message)s"


def configure_logging(config: ObservabilityConfig) -> None:
    level = logging.getLevelName(config.log_level.upper())
    if not isinstance(level, int):
        level = logging.INFO
    logging.basicConfig(level=level, format=LOG_FORMAT)


@dataclass
class TelemetryCollector:
    """Keeps the most recent metrics and events; older entries fall off the buffer."""

    config: ObservabilityConfig
    metrics: Deque[Dict[str, object]] = field(init=False)
    events: Deque[ObservabilityEvent] = field(init=False)

    def __post_init__(self) -> None:
        self.metrics = deque(maxlen=self.config.telemetry_buffer_size)
        self.events = deque(maxlen=self.config.telemetry_buffer_size)

    def emit_metric(self, name: str, value: float, labels: Dict[str, str] | None = None) -> None:
        payload = {
            "name": name,
            "value": value,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            **(labels or {}),
        }
        self.metrics.append(payload)

    def emit_event(self, message: str, attributes: Dict[str, str] | None = None) -> None:
        self.events.append(ObservabilityEvent(event_type="custom", message=message, attributes=attributes))

    def count(self, name: str, **labels: str) -> float:
        total = 0.0
        for metric in list(self.metrics):
            if metric.get("name") != name:
                continue
            if any(metric.get(key) != value for key, value in labels.items()):
                continue
            total += float(metric.get("value", 0.0))
        return total

    def flush(self) -> None:
        # Placeholder for pushing metrics/events to an exporter
        self.metrics.clear()
        self.events.clear()
