"""FastAPI application exposing the upload endpoints.

Run with ``uvicorn --factory fileuploader.api.server:create_app``; configuration
is read from ``FILEUPLOADER_*`` environment variables.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import APIRouter, FastAPI, Request, Response
from fastapi.responses import JSONResponse

from ..config import UploadServerConfig
from ..errors import UploadError
from ..metadata import UPLOAD_METADATA_HEADER, encode_metadata
from ..runtime import UploadServerRuntime
from ..services.proxy_trust import FORWARDED_FOR_HEADER, format_peer_address
from ..telemetry import configure_logging
from .cors import OriginAllowListMiddleware

logger = logging.getLogger(__name__)


def _parse_int_header(request: Request, name: str) -> int:
    raw = request.headers.get(name)
    if raw is None:
        raise UploadError(f"Missing {name} header")
    try:
        value = int(raw)
    except ValueError as exc:
        raise UploadError(f"Invalid {name} header") from exc
    if value < 0:
        raise UploadError(f"Invalid {name} header")
    return value


def _get_runtime(request: Request) -> UploadServerRuntime:
    return request.app.state.runtime


async def post_file(request: Request) -> Response:
    runtime = _get_runtime(request)
    upload_length = _parse_int_header(request, "Upload-Length")
    authorized = runtime.authorizer.authorize(
        request.headers.get(UPLOAD_METADATA_HEADER),
        format_peer_address(request.client),
        request.headers.get(FORWARDED_FOR_HEADER),
    )
    info = await runtime.engine.post_file(authorized.header, upload_length)
    location = str(request.url_for("head_file", upload_id=info.id))
    return Response(status_code=201, headers={"Location": location, "Upload-Offset": str(info.offset)})


async def head_file(upload_id: str, request: Request) -> Response:
    info = _get_runtime(request).engine.get_info(upload_id)
    headers = {
        "Upload-Offset": str(info.offset),
        "Upload-Length": str(info.size),
        "Cache-Control": "no-store",
    }
    if info.metadata:
        headers[UPLOAD_METADATA_HEADER] = encode_metadata(info.metadata)
    return Response(status_code=200, headers=headers)


async def patch_file(upload_id: str, request: Request) -> Response:
    offset = _parse_int_header(request, "Upload-Offset")
    data = await request.body()
    info = _get_runtime(request).engine.write_chunk(upload_id, offset, data)
    return Response(status_code=204, headers={"Upload-Offset": str(info.offset)})


async def delete_file(upload_id: str, request: Request) -> Response:
    _get_runtime(request).engine.terminate(upload_id)
    return Response(status_code=204)


async def get_file(upload_id: str, request: Request) -> Response:
    data = _get_runtime(request).engine.read(upload_id)
    return Response(content=data, media_type="application/octet-stream")


async def get_file_with_name(upload_id: str, filename: str, request: Request) -> Response:
    return await get_file(upload_id, request)


def build_router(prefix: str) -> APIRouter:
    router = APIRouter(prefix=prefix)
    # a prefix-less mount can only expose the creation endpoint at "/"
    post_paths = ["", "/"] if prefix else ["/"]
    for index, path in enumerate(post_paths):
        router.add_api_route(path, post_file, methods=["POST"], status_code=201, include_in_schema=index == 0)
    router.add_api_route("/{upload_id}", head_file, methods=["HEAD"], name="head_file")
    router.add_api_route("/{upload_id}", patch_file, methods=["PATCH"], status_code=204)
    router.add_api_route("/{upload_id}", delete_file, methods=["DELETE"], status_code=204)
    router.add_api_route("/{upload_id}", get_file, methods=["GET"])
    router.add_api_route("/{upload_id}/{filename}", get_file_with_name, methods=["GET"])
    return router


async def _upload_error_handler(request: Request, exc: UploadError) -> JSONResponse:
    if exc.expose:
        logger.info("Rejected %s %s: %s", request.method, request.url.path, exc.message)
    else:
        logger.error("Internal error on %s %s: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})


def create_app(config: Optional[UploadServerConfig] = None) -> FastAPI:
    cfg = config or UploadServerConfig.from_env()
    configure_logging(cfg.observability)
    runtime = UploadServerRuntime.bootstrap(cfg)

    @asynccontextmanager
    async def _lifespan(app: FastAPI):
        await runtime.start()
        try:
            yield
        finally:
            await runtime.shutdown()

    app = FastAPI(title="File Uploader", version="0.1.0", lifespan=_lifespan)
    app.state.runtime = runtime
    app.add_exception_handler(UploadError, _upload_error_handler)
    app.add_middleware(OriginAllowListMiddleware, allowed_origins=cfg.server.cors_origins)
    app.include_router(build_router(cfg.server.route_prefix))
    logger.debug("Using upload limit of %d bytes", cfg.storage.maximum_upload_size)
    return app

