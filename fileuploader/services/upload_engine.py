"""In-memory upload engine.

Stands in for the resumable transfer engine: it keeps upload offsets and
bytes in memory, records each upload row in the store and publishes lifecycle
events with a metadata snapshot. Only the most recent completed uploads stay
in memory; older ones are evicted once ``retained_completed_uploads`` is
exceeded.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Dict, Optional

from ..errors import InvalidUploadLength, OffsetMismatch, UploadNotFound, UploadTooLarge
from ..messaging import UploadEvent, UploadEventBroadcaster, UploadEventType
from ..metadata import decode_metadata
from ..models import UploadInfo
from ..storage.upload_store import UploadStore
from .base import BaseService

logger = logging.getLogger(__name__)


@dataclass
class UploadEngine(BaseService):
    store: Optional[UploadStore] = None
    broadcaster: Optional[UploadEventBroadcaster] = None
    uploads: Dict[str, UploadInfo] = field(default_factory=dict)
    _buffers: Dict[str, bytearray] = field(default_factory=dict, init=False, repr=False)
    _completed: "OrderedDict[str, None]" = field(default_factory=OrderedDict, init=False, repr=False)

    async def post_file(self, metadata_header: Optional[str], upload_length: int) -> UploadInfo:
        if upload_length < 0:
            raise InvalidUploadLength("Upload-Length must not be negative")
        limit = self.config.storage.maximum_upload_size
        if upload_length > limit:
            raise UploadTooLarge(f"Upload size {upload_length} exceeds maximum upload size {limit}")

        upload_id = uuid.uuid4().hex
        info = UploadInfo(id=upload_id, size=upload_length, metadata=decode_metadata(metadata_header))
        await asyncio.to_thread(self.store.create_upload, upload_id, upload_length, info.created_at)
        self.uploads[upload_id] = info
        self._buffers[upload_id] = bytearray()
        self.emit_event("upload_created", upload_id=upload_id)
        self._publish(UploadEventType.CREATED, info)
        if info.is_complete:
            self._complete(info)
        return info

    def write_chunk(self, upload_id: str, offset: int, data: bytes) -> UploadInfo:
        info = self.get_info(upload_id)
        if offset != info.offset:
            raise OffsetMismatch(f"Upload-Offset {offset} does not match current offset {info.offset}")
        if info.offset + len(data) > info.size:
            raise UploadTooLarge("Chunk exceeds declared upload length")
        if not data:
            return info

        self._buffers[upload_id].extend(data)
        info.offset += len(data)
        self._publish(UploadEventType.PROGRESS, info)
        if info.is_complete:
            self._complete(info)
        return info

    def get_info(self, upload_id: str) -> UploadInfo:
        info = self.uploads.get(upload_id)
        if info is None:
            raise UploadNotFound(upload_id)
        return info

    def read(self, upload_id: str) -> bytes:
        self.get_info(upload_id)
        return bytes(self._buffers[upload_id])

    def terminate(self, upload_id: str) -> UploadInfo:
        info = self.get_info(upload_id)
        self._forget(upload_id)
        self.emit_event("upload_terminated", upload_id=upload_id)
        self._publish(UploadEventType.TERMINATED, info)
        return info

    def _complete(self, info: UploadInfo) -> None:
        self.emit_event("upload_completed", upload_id=info.id)
        self._publish(UploadEventType.COMPLETED, info)
        self._completed[info.id] = None
        while len(self._completed) > self.config.storage.retained_completed_uploads:
            evicted, _ = self._completed.popitem(last=False)
            self._forget(evicted)
            logger.debug("Evicted completed upload %s from memory", evicted)

    def _forget(self, upload_id: str) -> None:
        self.uploads.pop(upload_id, None)
        self._buffers.pop(upload_id, None)
        self._completed.pop(upload_id, None)

    def _publish(self, event_type: UploadEventType, info: UploadInfo) -> None:
        self.broadcaster.publish(
            UploadEvent.snapshot(event_type, info.id, info.metadata, size=info.size, offset=info.offset)
        )
