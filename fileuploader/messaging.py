"""Upload lifecycle events and a single-producer broadcast fan-out."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from types import MappingProxyType
from typing import AsyncIterator, List, Mapping, Optional

logger = logging.getLogger(__name__)

_CLOSED = None


class UploadEventType(str, Enum):
    CREATED = "created"
    PROGRESS = "progress"
    COMPLETED = "completed"
    TERMINATED = "terminated"


@dataclass(frozen=True)
class UploadEvent:
    type: UploadEventType
    upload_id: str
    metadata: Mapping[str, str]
    size: int = 0
    offset: int = 0
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @classmethod
    def snapshot(cls, event_type: UploadEventType, upload_id: str, metadata: Mapping[str, str], *, size: int = 0, offset: int = 0) -> "UploadEvent":
        return cls(
            type=event_type,
            upload_id=upload_id,
            metadata=MappingProxyType(dict(metadata)),
            size=size,
            offset=offset,
        )


class EventSubscription:
    """Receive side of one subscriber; iterate it to consume events until close."""

    def __init__(self, name: str, maxsize: int = 0) -> None:
        self.name = name
        self.queue: "asyncio.Queue[Optional[UploadEvent]]" = asyncio.Queue(maxsize=maxsize)
        self.dropped = 0

    def offer(self, event: Optional[UploadEvent]) -> None:
        try:
            self.queue.put_nowait(event)
        except asyncio.QueueFull:
            if event is _CLOSED:
                # make room for the sentinel so the subscriber loop still ends
                self.queue.get_nowait()
                self.queue.put_nowait(event)
                return
            self.dropped += 1
            logger.warning(
                "Subscriber %s queue full, dropping %s event for upload %s",
                self.name,
                event.type.value,
                event.upload_id,
            )

    async def __aiter__(self) -> AsyncIterator[UploadEvent]:
        while True:
            event = await self.queue.get()
            if event is _CLOSED:
                return
            yield event


class UploadEventBroadcaster:
    """Fans out events from one producer into an independent queue per subscriber.

    ``publish`` never blocks: events go onto an unbounded source queue and a
    single distribution task copies them to every subscriber in order.
    """

    def __init__(self, subscriber_queue_size: int = 0) -> None:
        self._source: "asyncio.Queue[Optional[UploadEvent]]" = asyncio.Queue()
        self._subscribers: List[EventSubscription] = []
        self._subscriber_queue_size = subscriber_queue_size
        self._task: Optional[asyncio.Task] = None
        self._closed = False

    def listen(self, name: str = "subscriber") -> EventSubscription:
        if self._closed:
            raise RuntimeError("Broadcaster is closed")
        subscription = EventSubscription(name, maxsize=self._subscriber_queue_size)
        self._subscribers.append(subscription)
        return subscription

    def publish(self, event: UploadEvent) -> None:
        if self._closed:
            raise RuntimeError("Cannot publish on a closed broadcaster")
        self._source.put_nowait(event)

    def start(self) -> asyncio.Task:
        if self._task is None:
            self._task = asyncio.get_running_loop().create_task(self._distribute(), name="upload-event-broadcaster")
        return self._task

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._source.put_nowait(_CLOSED)
        if self._task is not None:
            await self._task
        else:
            self._fan_out(_CLOSED)

    async def _distribute(self) -> None:
        while True:
            event = await self._source.get()
            self._fan_out(event)
            if event is _CLOSED:
                return

    def _fan_out(self, event: Optional[UploadEvent]) -> None:
        for subscription in list(self._subscribers):
            subscription.offer(event)
