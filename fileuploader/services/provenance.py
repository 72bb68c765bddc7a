"""Records the uploader IP of every newly created upload."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Optional, Set

from ..errors import PersistenceFailure
from ..messaging import EventSubscription, UploadEvent, UploadEventType
from ..metadata import REMOTE_IP_KEY
from ..storage.upload_store import UploadStore
from .base import BaseService

logger = logging.getLogger(__name__)


@dataclass
class ProvenanceRecorder(BaseService):
    store: Optional[UploadStore] = None
    _pending: Set[asyncio.Task] = field(default_factory=set, init=False, repr=False)

    async def run(self, subscription: EventSubscription) -> None:
        async for event in subscription:
            if event.type is UploadEventType.CREATED:
                self._spawn(event)

    def _spawn(self, event: UploadEvent) -> None:
        # Detached: writes outlive the subscription and are never cancelled by it.
        task = asyncio.get_running_loop().create_task(self._record(event))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _record(self, event: UploadEvent) -> None:
        ip = event.metadata.get(REMOTE_IP_KEY)
        if not ip:
            logger.warning("Created upload %s carries no %s metadata", event.upload_id, REMOTE_IP_KEY)
            return

        logger.debug("Recording uploader IP (id=%s, ip=%s)", event.upload_id, ip)
        try:
            await asyncio.to_thread(self.store.update_uploader_ip, event.upload_id, ip)
        except PersistenceFailure as exc:
            logger.error("Failed to record uploader IP for upload %s: %s", event.upload_id, exc)
            self.emit_metric("provenance.failures", 1)
            return
        self.emit_metric("provenance.recorded", 1)

    async def drain(self) -> None:
        if self._pending:
            await asyncio.gather(*list(self._pending))
