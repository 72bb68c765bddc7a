"""Data models shared across upload services."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, Optional


@dataclass
class UploadInfo:
    id: str
    size: int
    offset: int = 0
    metadata: Dict[str, str] = field(default_factory=dict)
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def is_complete(self) -> bool:
        return self.offset >= self.size


@dataclass
class UploadRecord:
    id: str
    size: int
    created_at: datetime
    uploader_ip: Optional[str] = None


@dataclass
class ObservabilityEvent:
    event_type: str
    message: str
    attributes: Dict[str, str] | None = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
