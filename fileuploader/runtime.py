"""Runtime wiring for the upload server."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import List, Optional

from .config import UploadServerConfig
from .messaging import UploadEventBroadcaster
from .services.activity_service import ActivityService
from .services.authorization import UploadAuthorizer
from .services.provenance import ProvenanceRecorder
from .services.upload_engine import UploadEngine
from .storage.upload_store import UploadStore
from .telemetry import TelemetryCollector

logger = logging.getLogger(__name__)


@dataclass
class UploadServerRuntime:
    config: UploadServerConfig
    telemetry: TelemetryCollector
    store: UploadStore
    broadcaster: UploadEventBroadcaster
    engine: UploadEngine
    authorizer: UploadAuthorizer
    provenance_recorder: ProvenanceRecorder
    activity_service: ActivityService
    _tasks: List[asyncio.Task] = field(default_factory=list, init=False, repr=False)

    @classmethod
    def bootstrap(cls, config: Optional[UploadServerConfig] = None) -> "UploadServerRuntime":
        cfg = config or UploadServerConfig.default()
        telemetry = TelemetryCollector(cfg.observability)
        store = UploadStore(cfg.database.path)
        broadcaster = UploadEventBroadcaster(cfg.observability.subscriber_queue_size)

        engine = UploadEngine(config=cfg, telemetry=telemetry, store=store, broadcaster=broadcaster)
        authorizer = UploadAuthorizer(config=cfg, telemetry=telemetry)
        provenance_recorder = ProvenanceRecorder(config=cfg, telemetry=telemetry, store=store)
        activity_service = ActivityService(config=cfg, telemetry=telemetry)

        return cls(
            config=cfg,
            telemetry=telemetry,
            store=store,
            broadcaster=broadcaster,
            engine=engine,
            authorizer=authorizer,
            provenance_recorder=provenance_recorder,
            activity_service=activity_service,
        )

    async def start(self) -> None:
        self.store.connect()
        loop = asyncio.get_running_loop()
        # subscribe before the distribution loop starts so no event is missed
        activity = self.broadcaster.listen("activity")
        provenance = self.broadcaster.listen("provenance")
        self.broadcaster.start()
        self._tasks = [
            loop.create_task(self.activity_service.run(activity), name="activity-subscriber"),
            loop.create_task(self.provenance_recorder.run(provenance), name="provenance-subscriber"),
        ]
        logger.info(
            "Upload server started (route_prefix=%s, trusted_ranges=%d, issuers=%d)",
            self.config.server.route_prefix,
            len(self.config.server.trusted_reverse_proxy_ranges),
            len(self.config.auth.jwt_secrets_by_issuer),
        )

    async def shutdown(self) -> None:
        await self.broadcaster.close()
        if self._tasks:
            await asyncio.gather(*self._tasks)
            self._tasks = []
        await self.provenance_recorder.drain()
        self.store.close()
        logger.debug("Flushing %d buffered metrics", len(self.telemetry.metrics))
        self.telemetry.flush()
        logger.info("Upload server stopped")
