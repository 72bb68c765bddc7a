"""Lifecycle activity logging."""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass, field
from typing import Deque

from ..messaging import EventSubscription, UploadEvent, UploadEventType
from .base import BaseService

logger = logging.getLogger(__name__)


@dataclass
class ActivityService(BaseService):
    events: Deque[UploadEvent] = field(default_factory=lambda: deque(maxlen=200))

    async def run(self, subscription: EventSubscription) -> None:
        async for event in subscription:
            self._handle_event(event)

    def _handle_event(self, event: UploadEvent) -> None:
        self.events.append(event)
        self.emit_metric("uploads.events", 1, type=event.type.value)
        level = logging.DEBUG if event.type is UploadEventType.PROGRESS else logging.INFO
        logger.log(
            level,
            "Upload %s (id=%s, offset=%d, size=%d)",
            event.type.value,
            event.upload_id,
            event.offset,
            event.size,
        )
