"""Shared plumbing for the upload services: configuration plus telemetry."""

from __future__ import annotations

from dataclasses import dataclass

from ..config import UploadServerConfig
from ..telemetry import TelemetryCollector


@dataclass
class BaseService:
    config: UploadServerConfig
    telemetry: TelemetryCollector

    def emit_metric(self, name: str, value: float, **labels: object) -> None:
        # labels are compared as strings by TelemetryCollector.count
        self.telemetry.emit_metric(name, value, {key: str(label) for key, label in labels.items()})

    def emit_event(self, message: str, **attrs: object) -> None:
        attributes = {key: str(attr) for key, attr in attrs.items()}
        attributes.setdefault("service", type(self).__name__)
        self.telemetry.emit_event(message, attributes)
